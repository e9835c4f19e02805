"""
InteractionEventRepository - Data access layer for InteractionEvent entities
"""

from typing import List
from sqlalchemy.orm import Session
from repositories.base_repository import BaseRepository
from crm_database import InteractionEvent


class InteractionEventRepository(BaseRepository[InteractionEvent]):
    """Repository for InteractionEvent data access"""

    def __init__(self, session: Session):
        """Initialize repository with database session"""
        super().__init__(session, InteractionEvent)

    def find_by_session(self, session_id: str) -> List[InteractionEvent]:
        """Events of one browsing session in the order they happened"""
        return self.session.query(InteractionEvent)\
            .filter(InteractionEvent.session_id == session_id)\
            .order_by(InteractionEvent.occurred_at.asc(), InteractionEvent.id.asc())\
            .all()

    def count_by_action(self, session_id: str, action: str) -> int:
        return self.count(session_id=session_id, action=action)
