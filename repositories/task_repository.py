"""
TaskRepository - Data access layer for Task entities
"""

from datetime import datetime
from typing import List, Optional, Set
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError, IntegrityError
from repositories.base_repository import BaseRepository
from crm_database import Task
from services.common.exceptions import InvalidTransitionError, PersistenceError
from services.enums import TaskStatus
from utils.datetime_utils import utc_now
import logging

logger = logging.getLogger(__name__)


class TaskRepository(BaseRepository[Task]):
    """Repository for Task data access"""

    def __init__(self, session: Session):
        """Initialize repository with database session"""
        super().__init__(session, Task)

    def get_milestone_tags(self, deal_id: int) -> Set[str]:
        """Every milestone tag already used by a task of this deal"""
        rows = self.session.query(Task.milestone_tag)\
            .filter(Task.deal_id == deal_id)\
            .filter(Task.milestone_tag.isnot(None))\
            .all()
        return {row[0] for row in rows}

    def create_if_absent(self, **kwargs) -> Optional[Task]:
        """
        Insert a task inside a savepoint.

        A clash on (deal_id, milestone_tag) means another writer got there
        first; the savepoint is rolled back and None returned. The enclosing
        transaction is left intact either way.

        Raises:
            PersistenceError: For any other database failure
        """
        task = Task(**kwargs)
        try:
            with self.session.begin_nested():
                self.session.add(task)
        except IntegrityError:
            logger.info(f"Task {kwargs.get('milestone_tag')} already exists for deal {kwargs.get('deal_id')}")
            return None
        except SQLAlchemyError as e:
            logger.error(f"Error creating task for deal {kwargs.get('deal_id')}: {e}")
            raise PersistenceError(f"Error creating task: {e}") from e
        return task

    def find_by_deal(self, deal_id: int, status: Optional[str] = None) -> List[Task]:
        """
        Tasks of a deal, soonest due first.

        Args:
            deal_id: Deal to list
            status: Optional status filter (pending, completed, dismissed)
        """
        query = self.session.query(Task).filter(Task.deal_id == deal_id)
        if status:
            query = query.filter(Task.status == status)
        return query.order_by(Task.due_date.asc(), Task.id.asc()).all()

    def find_pending(self, deal_id: int) -> List[Task]:
        return self.find_by_deal(deal_id, status=TaskStatus.PENDING.value)

    def complete(self, task_id: int, now: Optional[datetime] = None) -> Optional[Task]:
        """
        Mark a pending task completed.

        Returns:
            The task, or None if it does not exist

        Raises:
            InvalidTransitionError: If the task is not pending
        """
        task = self.get_by_id(task_id)
        if task is None:
            return None
        if task.status != TaskStatus.PENDING.value:
            raise InvalidTransitionError(f"Task {task_id} is {task.status}, not pending", task_id=task_id)
        return self.update(task, status=TaskStatus.COMPLETED.value, completed_at=now or utc_now())

    def dismiss(self, task_id: int) -> Optional[Task]:
        """
        Dismiss a pending task.

        Raises:
            InvalidTransitionError: If the task is not pending
        """
        task = self.get_by_id(task_id)
        if task is None:
            return None
        if task.status != TaskStatus.PENDING.value:
            raise InvalidTransitionError(f"Task {task_id} is {task.status}, not pending", task_id=task_id)
        return self.update(task, status=TaskStatus.DISMISSED.value, completed_at=None)
