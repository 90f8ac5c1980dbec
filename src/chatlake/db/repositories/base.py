"""
Base repository with generic CRUD operations.
"""

import uuid
from typing import Any, Callable, Generic, List, Optional, Type, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from chatlake.models.db import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """
    Generic repository for a single model.

    Args:
        model: SQLAlchemy model class
        session: Active database session (the caller owns the transaction)
    """

    def __init__(self, model: Type[ModelType], session: Session):
        self.model = model
        self.session = session

    def get(self, id: uuid.UUID) -> Optional[ModelType]:
        return self.session.get(self.model, id)

    def get_all(self, limit: Optional[int] = None, offset: int = 0) -> List[ModelType]:
        query = self.session.query(self.model).offset(offset)
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    def create(self, **kwargs: Any) -> ModelType:
        """Create and flush a new instance."""
        instance = self.model(**kwargs)
        self.session.add(instance)
        self.session.flush()
        return instance

    def update(self, instance: ModelType, **kwargs: Any) -> ModelType:
        for key, value in kwargs.items():
            setattr(instance, key, value)
        self.session.flush()
        return instance

    def delete(self, id: uuid.UUID) -> bool:
        instance = self.get(id)
        if instance is None:
            return False
        self.session.delete(instance)
        self.session.flush()
        return True

    def count(self) -> int:
        return self.session.query(self.model).count()

    def _insert_if_absent(
        self, lookup: Callable[[], Optional[ModelType]], **kwargs: Any
    ) -> tuple[ModelType, bool]:
        """
        Insert a row unless one with the same natural key already exists.

        The insert runs inside a savepoint. If a concurrent writer inserted the
        same key between the lookup and the flush, the savepoint is rolled
        back and the existing row is returned instead.

        Args:
            lookup: Returns the existing row for the natural key, or None
            **kwargs: Column values for the new row

        Returns:
            Tuple of (row, inserted) where inserted is False when the row
            was already present
        """
        existing = lookup()
        if existing is not None:
            return existing, False

        savepoint = self.session.begin_nested()
        try:
            instance = self.model(**kwargs)
            self.session.add(instance)
            self.session.flush()
            savepoint.commit()
            return instance, True
        except IntegrityError:
            savepoint.rollback()
            existing = lookup()
            if existing is None:
                raise
            return existing, False
