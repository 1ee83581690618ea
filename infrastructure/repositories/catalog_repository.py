"""
馆藏仓储实现 - 图书与副本的 SQLAlchemy 数据访问
"""
from typing import Optional, List

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from domain.catalog.entity import Book, Copy, CopyState
from domain.catalog.repository import BookRepository, CopyRepository
from domain.common.exceptions import CopyAlreadyRegisteredException
from infrastructure.models.catalog import BookModel, CopyModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyBookRepository(BookRepository):
    """基于 SQLAlchemy 的图书仓储"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: BookModel) -> Book:
        return Book(
            id=model.id,
            title=model.title,
            author=model.author,
            isbn=model.isbn,
            total_copies=model.total_copies,
            available_copies=model.available_copies,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def create(self, book: Book) -> Book:
        db_book = BookModel(
            title=book.title,
            author=book.author,
            isbn=book.isbn,
            total_copies=0,
            available_copies=0,
        )
        self.session.add(db_book)
        await self.session.flush()
        await self.session.refresh(db_book)
        logger.info("book_created", book_id=db_book.id, isbn=db_book.isbn)
        return self._to_entity(db_book)

    async def get_by_id(self, book_id: int, *, for_update: bool = False) -> Optional[Book]:
        query = (
            select(BookModel)
            .where(BookModel.id == book_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        db_book = result.scalar_one_or_none()
        return self._to_entity(db_book) if db_book else None

    async def update_counts(self, book_id: int, available: int, total: int) -> None:
        await self.session.execute(
            update(BookModel)
            .where(BookModel.id == book_id)
            .values(available_copies=available, total_copies=total)
            .execution_options(synchronize_session=False)
        )
        logger.debug("book_counts_recomputed", book_id=book_id, available=available, total=total)


class SQLAlchemyCopyRepository(CopyRepository):
    """副本仓储，状态写入为 CAS 更新"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: CopyModel) -> Copy:
        return Copy(
            id=model.id,
            book_id=model.book_id,
            barcode=model.barcode,
            state=CopyState(model.state),
            version=model.version,
            last_borrowed_at=model.last_borrowed_at,
            last_returned_at=model.last_returned_at,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def create(self, copy: Copy) -> Copy:
        try:
            db_copy = CopyModel(
                book_id=copy.book_id,
                barcode=copy.barcode,
                state=copy.state.value,
                version=copy.version,
                created_at=copy.created_at,
                updated_at=copy.updated_at,
            )
            self.session.add(db_copy)
            await self.session.flush()
            await self.session.refresh(db_copy)
        except IntegrityError as e:
            if "barcode" in str(e).lower():
                logger.warning("copy_create_conflict", barcode=copy.barcode)
                raise CopyAlreadyRegisteredException(copy.barcode)
            raise
        logger.info("copy_registered", copy_id=db_copy.id, book_id=db_copy.book_id, barcode=db_copy.barcode)
        return self._to_entity(db_copy)

    async def get_by_id(self, copy_id: int) -> Optional[Copy]:
        result = await self.session.execute(
            select(CopyModel)
            .where(CopyModel.id == copy_id)
            .execution_options(populate_existing=True)
        )
        db_copy = result.scalar_one_or_none()
        return self._to_entity(db_copy) if db_copy else None

    async def exists_by_barcode(self, barcode: str) -> bool:
        result = await self.session.execute(
            select(func.count(CopyModel.id)).where(CopyModel.barcode == barcode)
        )
        return result.scalar_one() > 0

    async def list_by_book(
        self,
        book_id: int,
        state: Optional[CopyState] = None,
        limit: int = 100,
    ) -> List[Copy]:
        query = select(CopyModel).where(CopyModel.book_id == book_id)
        if state:
            query = query.where(CopyModel.state == state.value)
        query = (
            query.order_by(CopyModel.id)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        return [self._to_entity(c) for c in result.scalars().all()]

    async def count_by_state(self, book_id: int) -> dict[CopyState, int]:
        result = await self.session.execute(
            select(CopyModel.state, func.count(CopyModel.id))
            .where(CopyModel.book_id == book_id)
            .group_by(CopyModel.state)
        )
        return {CopyState(state): count for state, count in result.all()}

    async def save_state(self, copy: Copy, *, expected_state: CopyState, expected_version: int) -> bool:
        result = await self.session.execute(
            update(CopyModel)
            .where(
                CopyModel.id == copy.id,
                CopyModel.state == expected_state.value,
                CopyModel.version == expected_version,
            )
            .values(
                state=copy.state.value,
                version=copy.version,
                last_borrowed_at=copy.last_borrowed_at,
                last_returned_at=copy.last_returned_at,
                updated_at=copy.updated_at,
            )
            .execution_options(synchronize_session=False)
        )
        swapped = result.rowcount == 1
        if swapped:
            logger.info(
                "copy_state_changed",
                copy_id=copy.id,
                book_id=copy.book_id,
                from_state=expected_state.value,
                to_state=copy.state.value,
                version=copy.version,
            )
        else:
            logger.info("copy_state_cas_lost", copy_id=copy.id, expected_state=expected_state.value)
        return swapped
