"""
Base Repository - shared persistence plumbing for the inbox repositories

Subclasses add the natural-key lookups their services need; this class owns
the write path and its rollback behaviour.
"""

from typing import TypeVar, Generic, Optional, Type
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
import logging

logger = logging.getLogger(__name__)

T = TypeVar('T')


class BaseRepository(Generic[T]):
    """
    Create, read by id, update and delete for one model class.

    Reads swallow SQLAlchemy errors and return None; writes roll back and
    re-raise so the calling service can turn them into a Result. Writes only
    flush; services decide when to commit.
    """

    def __init__(self, session: Session, model_class: Type[T]):
        self.session = session
        self.model_class = model_class

    def create(self, **kwargs) -> T:
        """
        Add a new entity and flush it to obtain its id.

        Raises:
            SQLAlchemyError: on failure, IntegrityError included, after rolling back
        """
        try:
            entity = self.model_class(**kwargs)
            self.session.add(entity)
            self.session.flush()
            logger.debug(f"Created {self.model_class.__name__} {entity.id}")
            return entity
        except SQLAlchemyError as e:
            logger.error(f"Error creating {self.model_class.__name__}: {e}")
            self.session.rollback()
            raise

    def get_by_id(self, entity_id: int) -> Optional[T]:
        try:
            return self.session.get(self.model_class, entity_id)
        except SQLAlchemyError as e:
            logger.error(f"Error loading {self.model_class.__name__} {entity_id}: {e}")
            return None

    def update(self, entity: T, **updates) -> T:
        """Set the given columns; names the model does not have are skipped"""
        try:
            for name, value in updates.items():
                if hasattr(entity, name):
                    setattr(entity, name, value)
            self.session.flush()
            return entity
        except SQLAlchemyError as e:
            logger.error(f"Error updating {self.model_class.__name__} {entity.id}: {e}")
            self.session.rollback()
            raise

    def delete(self, entity: T) -> bool:
        try:
            self.session.delete(entity)
            self.session.flush()
            return True
        except SQLAlchemyError as e:
            logger.error(f"Error deleting {self.model_class.__name__} {entity.id}: {e}")
            self.session.rollback()
            return False

    def commit(self) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error committing transaction: {e}")
            self.session.rollback()
            raise

    def rollback(self) -> None:
        self.session.rollback()
