"""
Base Repository - Abstract base class for all repositories
Implements common database operations following the Repository Pattern
"""

from abc import ABC
from typing import TypeVar, Generic, List, Optional, Dict, Any, Type
from sqlalchemy.orm import Session, Query
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.exc import SQLAlchemyError
import logging

from services.common.exceptions import ConcurrencyConflictError, PersistenceError

logger = logging.getLogger(__name__)

# Type variable for model classes
T = TypeVar('T')


class BaseRepository(ABC, Generic[T]):
    """
    Abstract base repository with common CRUD operations.

    Writes only flush; the caller owns the unit of work and decides when to
    commit. Failed writes roll the session back and surface as engine
    exceptions: a stale version as ConcurrencyConflictError, anything else
    as PersistenceError.
    """

    def __init__(self, session: Session, model_class: Type[T]):
        """
        Initialize repository with database session and model class.

        Args:
            session: SQLAlchemy database session
            model_class: The model class this repository manages
        """
        self.session = session
        self.model_class = model_class

    def _write_failed(self, action: str, error: SQLAlchemyError):
        """Roll back and translate a failed write"""
        self.session.rollback()
        if isinstance(error, StaleDataError):
            logger.warning(f"Stale {self.model_class.__name__} while {action}: {error}")
            raise ConcurrencyConflictError(
                f"{self.model_class.__name__} was modified concurrently") from error
        logger.error(f"Error {action} {self.model_class.__name__}: {error}")
        raise PersistenceError(f"Error {action} {self.model_class.__name__}: {error}") from error

    # CREATE Operations

    def create(self, **kwargs) -> T:
        """
        Create a new entity.

        Args:
            **kwargs: Attributes for the new entity

        Returns:
            Created entity instance

        Raises:
            PersistenceError: If database operation fails
        """
        try:
            entity = self.model_class(**kwargs)
            self.session.add(entity)
            self.session.flush()  # Flush to get ID without committing
            logger.debug(f"Created {self.model_class.__name__} with id {entity.id}")
            return entity
        except SQLAlchemyError as e:
            self._write_failed("creating", e)

    # READ Operations

    def get_by_id(self, entity_id: Any) -> Optional[T]:
        """
        Get entity by ID.

        Args:
            entity_id: Entity ID

        Returns:
            Entity instance or None if not found
        """
        try:
            return self.session.get(self.model_class, entity_id)
        except SQLAlchemyError as e:
            logger.error(f"Error getting {self.model_class.__name__} by id {entity_id}: {e}")
            return None

    def find_by(self, **filters) -> List[T]:
        """
        Find entities by specific field values.

        Args:
            **filters: Field-value pairs to filter by

        Returns:
            List of matching entities
        """
        try:
            return self._build_query(filters).all()
        except SQLAlchemyError as e:
            logger.error(f"Error finding {self.model_class.__name__} by filters: {e}")
            return []

    def find_one_by(self, **filters) -> Optional[T]:
        results = self.find_by(**filters)
        return results[0] if results else None

    def count(self, **filters) -> int:
        """
        Count entities matching filters.

        Args:
            **filters: Field-value pairs to filter by

        Returns:
            Count of matching entities
        """
        try:
            return self._build_query(filters).count()
        except SQLAlchemyError as e:
            logger.error(f"Error counting {self.model_class.__name__}: {e}")
            return 0

    # UPDATE Operations

    def update(self, entity: T, **updates) -> T:
        """
        Update an entity with new values.

        Args:
            entity: Entity to update
            **updates: Field-value pairs to update

        Returns:
            Updated entity

        Raises:
            ConcurrencyConflictError: If the row changed since it was read
            PersistenceError: If database operation fails
        """
        try:
            for field, value in updates.items():
                if hasattr(entity, field):
                    setattr(entity, field, value)
            self.session.flush()
            logger.debug(f"Updated {self.model_class.__name__} with id {entity.id}")
            return entity
        except SQLAlchemyError as e:
            self._write_failed("updating", e)

    # Transaction Management

    def commit(self) -> None:
        """Commit the current transaction."""
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            self._write_failed("committing", e)

    def rollback(self) -> None:
        """Rollback the current transaction."""
        self.session.rollback()

    def flush(self) -> None:
        """Flush pending changes without committing."""
        try:
            self.session.flush()
        except SQLAlchemyError as e:
            self._write_failed("flushing", e)

    # Helper Methods

    def _build_query(self, filters: Optional[Dict[str, Any]] = None) -> Query:
        """
        Build a query with filters.

        Args:
            filters: Dictionary of filters to apply

        Returns:
            SQLAlchemy Query object
        """
        query = self.session.query(self.model_class)

        if filters:
            for field, value in filters.items():
                if hasattr(self.model_class, field):
                    if isinstance(value, list):
                        # Handle IN clause
                        query = query.filter(getattr(self.model_class, field).in_(value))
                    elif value is None:
                        # Handle NULL check
                        query = query.filter(getattr(self.model_class, field).is_(None))
                    else:
                        # Handle equality
                        query = query.filter(getattr(self.model_class, field) == value)

        return query
