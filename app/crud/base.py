# app/crud/base.py
from typing import Any, Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from app.db.base_class import Base
from app.db.session import store_errors

ModelType = TypeVar("ModelType", bound=Base)


class CRUDBase(Generic[ModelType]):
    def __init__(self, model: type[ModelType]):
        """
        Repository object with the default read operations.

        **Parameters**

        * `model`: A SQLAlchemy model class
        """
        self.model = model

    async def get(self, db: AsyncSession, id: Any) -> ModelType | None:
        """
        Get a single record by primary key.
        """
        with store_errors(f"{self.model.__tablename__}.get"):
            result = await db.execute(select(self.model).filter(self.model.id == id))
        return result.scalars().first()

    async def get_multi(
        self,
        db: AsyncSession,
        *,
        filters: list[ColumnElement[bool]] | None = None,
        order_by: ColumnElement | list[ColumnElement] | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> list[ModelType]:
        """
        Get multiple records, optionally filtered, with pagination and ordering.
        """
        stmt = select(self.model)
        if filters:
            stmt = stmt.where(*filters)
        if order_by is not None:
            if isinstance(order_by, list):
                stmt = stmt.order_by(*order_by)
            else:
                stmt = stmt.order_by(order_by)
        stmt = stmt.offset(skip).limit(limit)
        with store_errors(f"{self.model.__tablename__}.get_multi"):
            result = await db.execute(stmt)
        return list(result.scalars().all())

    async def commit(self, db: AsyncSession) -> None:
        """Finish a unit of work that was left open by a non-committing write."""
        with store_errors(f"{self.model.__tablename__}.commit"):
            await db.commit()
