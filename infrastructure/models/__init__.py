"""ORM 模型导出"""
from .base import Base, metadata
from .catalog import BookModel, CopyModel
from .loan import LoanModel
from .payment import PaymentModel

__all__ = [
    "Base",
    "metadata",
    "BookModel",
    "CopyModel",
    "LoanModel",
    "PaymentModel",
]
