"""Shared repository plumbing for the SQLAlchemy stores."""

from abc import ABC, abstractmethod
from typing import Any, Generic, Optional, TypeVar
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


class RepositoryBase(ABC, Generic[T]):
    """Session-bound store for one aggregate.

    Reservations, promo codes and ledger rows are never deleted by the
    engine, so there is no delete operation.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _commit(self) -> None:
        """Commit, leaving the session usable if the write fails."""
        try:
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            raise

    @abstractmethod
    async def get_by_id(self, id: UUID) -> Optional[T]:
        ...

    @abstractmethod
    async def create(self, entity: Any) -> T:
        ...
