"""
ORM 模型声明基类（SQLAlchemy 2.0 风格）
"""
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


# create_tables 与迁移共用的元数据
metadata = Base.metadata
