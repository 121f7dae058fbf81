# billing_engine/repositories/base_repository.py
"""
Base Repository Pattern for the billing engine.

Provides the foundation for all repository classes with:
- Common read/create operations
- Conflict-tolerant inserts arbitrated by unique constraints
- Query builder helpers

Repositories never commit; transaction boundaries belong to services.
"""

import logging
from typing import Any, Dict, Generic, List, Optional, Sequence, Type, TypeVar

from sqlalchemy import insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session

from billing_engine.core.exceptions import RepositoryException
from billing_engine.database import get_dialect_name

# Type variable for generic model support
T = TypeVar("T")

logger = logging.getLogger(__name__)


class BaseRepository(Generic[T]):
    """
    Concrete base repository implementation with common data access patterns.

    Attributes:
        db: SQLAlchemy session
        model: SQLAlchemy model class
    """

    def __init__(self, db: Session, model: Type[T]):
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    @property
    def dialect_name(self) -> str:
        return get_dialect_name(self.db)

    def get_by_id(self, id: str) -> Optional[T]:
        try:
            return self.db.get(self.model, id)
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting {self.model.__name__} by id {id}: {str(e)}")
            raise RepositoryException(f"Failed to retrieve {self.model.__name__}: {str(e)}")

    def create(self, **kwargs) -> T:
        """
        Create a new entity.

        Note: Does NOT commit - transaction management is handled by service layer.
        """
        try:
            entity = self.model(**kwargs)
            self.db.add(entity)
            self.db.flush()  # Get ID without committing
            return entity
        except IntegrityError as exc:
            self.logger.error(
                "Integrity error creating %s: %s", self.model.__name__, exc, exc_info=True
            )
            raise RepositoryException(f"Integrity constraint violated: {exc}") from exc
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating {self.model.__name__}: {str(e)}")
            raise RepositoryException(f"Failed to create {self.model.__name__}: {str(e)}")

    def flush(self) -> None:
        """Flush pending ORM changes."""
        try:
            self.db.flush()
        except SQLAlchemyError as e:
            self.logger.error(f"Flush failed for {self.model.__name__}: {str(e)}")
            raise RepositoryException(f"Failed to flush {self.model.__name__}: {str(e)}")

    def find_one_by(self, **kwargs) -> Optional[T]:
        """
        Find a single entity by given criteria.

        Args:
            **kwargs: Filter criteria (exact match)

        Returns:
            First matching entity or None
        """
        try:
            return self.db.query(self.model).filter_by(**kwargs).first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error finding one by criteria: {str(e)}")
            raise RepositoryException(f"Failed to find record: {str(e)}")

    def insert_ignoring_conflict(
        self, rows: Sequence[Dict[str, Any]], conflict_columns: Sequence[str]
    ) -> int:
        """
        Insert rows, silently skipping any that collide on ``conflict_columns``.

        The unique constraint is the arbiter: concurrent inserts of the same key
        resolve inside the database, never through a read-then-write check.

        Returns:
            Number of rows actually inserted
        """
        if not rows:
            return 0
        dialect = self.dialect_name
        if dialect == "postgresql":
            stmt = pg_insert(self.model).on_conflict_do_nothing(
                index_elements=list(conflict_columns)
            )
        elif dialect == "sqlite":
            stmt = sqlite_insert(self.model).on_conflict_do_nothing(
                index_elements=list(conflict_columns)
            )
        else:
            stmt = insert(self.model)
        try:
            # Pending ORM state must reach the database before a Core statement runs
            self.db.flush()
            inserted = 0
            for row in rows:
                result = self.db.execute(stmt.values(**row))
                inserted += max(getattr(result, "rowcount", 0) or 0, 0)
            return inserted
        except SQLAlchemyError as e:
            self.logger.error(
                f"Conflict-tolerant insert into {self.model.__name__} failed: {str(e)}"
            )
            raise RepositoryException(f"Failed to insert {self.model.__name__}: {str(e)}")

    def upsert(
        self,
        rows: Sequence[Dict[str, Any]],
        conflict_columns: Sequence[str],
        update_columns: Sequence[str],
        update_where: Optional[Any] = None,
    ) -> None:
        """
        Insert rows; on a key collision overwrite ``update_columns`` where ``update_where`` holds.

        A concurrent writer of the same key waits on the unique index until the
        other transaction finishes, then updates the committed row.
        """
        if not rows:
            return
        dialect = self.dialect_name
        if dialect == "postgresql":
            base = pg_insert(self.model)
        elif dialect == "sqlite":
            base = sqlite_insert(self.model)
        else:
            raise RepositoryException(f"Upsert is not supported on {dialect}")
        stmt = base.on_conflict_do_update(
            index_elements=list(conflict_columns),
            set_={column: base.excluded[column] for column in update_columns},
            where=update_where,
        )
        try:
            self.db.flush()
            for row in rows:
                self.db.execute(stmt.values(**row))
        except SQLAlchemyError as e:
            self.logger.error(f"Upsert into {self.model.__name__} failed: {str(e)}")
            raise RepositoryException(f"Failed to upsert {self.model.__name__}: {str(e)}")

    # Protected helper methods for use by subclasses

    def _build_query(self) -> Query:
        """Get base query for the model."""
        return self.db.query(self.model)

    def _execute_query(self, query: Query) -> List[T]:
        """Execute query with error handling."""
        try:
            return query.all()
        except SQLAlchemyError as e:
            self.logger.error(f"Query execution error: {str(e)}")
            raise RepositoryException(f"Query failed: {str(e)}")

    def _execute_scalar(self, query: Query) -> Any:
        """Execute scalar query with error handling."""
        try:
            return query.scalar()
        except SQLAlchemyError as e:
            self.logger.error(f"Scalar query error: {str(e)}")
            raise RepositoryException(f"Scalar query failed: {str(e)}")
