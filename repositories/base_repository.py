"""
Base Repository - Base class for all repositories
Implements common database operations following the Repository Pattern
"""

from typing import TypeVar, Generic, Optional, Dict, Any, Type
from sqlalchemy.orm import Session, Query
from sqlalchemy.exc import SQLAlchemyError
import logging

logger = logging.getLogger(__name__)

# Type variable for model classes
T = TypeVar('T')


class BaseRepository(Generic[T]):
    """
    Base repository with common persistence operations.

    Repositories own the session work for one model class; services never
    touch the session directly.
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

    def get_by_id(self, entity_id: Any) -> Optional[T]:
        """
        Get entity by ID.

        Returns:
            Entity instance or None if not found
        """
        return self.session.get(self.model_class, entity_id)

    def find_one_by(self, **filters) -> Optional[T]:
        """Find single entity by specific field values."""
        return self._build_query(filters).first()

    def delete(self, entity: T) -> None:
        """Delete an entity and commit."""
        try:
            self.session.delete(entity)
            self.session.commit()
            logger.debug(f"Deleted {self.model_class.__name__} with id {entity.id}")
        except SQLAlchemyError as e:
            logger.error(f"Error deleting {self.model_class.__name__}: {e}")
            self.session.rollback()
            raise

    # Helper Methods

    def _build_query(self, filters: Optional[Dict[str, Any]] = None) -> Query:
        """
        Build a query with equality, IN and NULL filters.

        Args:
            filters: Dictionary of filters to apply
        """
        query = self.session.query(self.model_class)

        if filters:
            for field, value in filters.items():
                if hasattr(self.model_class, field):
                    column = getattr(self.model_class, field)
                    if isinstance(value, list):
                        query = query.filter(column.in_(value))
                    elif value is None:
                        query = query.filter(column.is_(None))
                    else:
                        query = query.filter(column == value)

        return query
