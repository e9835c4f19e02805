"""
DealRepository - Data access layer for Deal entities
"""

from datetime import datetime
from typing import List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from repositories.base_repository import BaseRepository
from crm_database import Deal
from services.enums import CLOSED_STATUSES
import logging

logger = logging.getLogger(__name__)


class DealRepository(BaseRepository[Deal]):
    """Repository for Deal data access"""

    def __init__(self, session: Session):
        """Initialize repository with database session"""
        super().__init__(session, Deal)

    def get_fresh(self, deal_id: int) -> Optional[Deal]:
        """
        Get a deal, overwriting any copy already held by the session.

        Used at the start of every evaluation so the version id being
        checked on write is the one in the database right now.
        """
        try:
            return self.session.get(Deal, deal_id, populate_existing=True)
        except SQLAlchemyError as e:
            logger.error(f"Error reloading deal {deal_id}: {e}")
            return None

    def get_by_link_id(self, link_id: str) -> Optional[Deal]:
        return self.session.query(Deal).filter(Deal.link_id == link_id).first()

    def find_inactive(self, cutoff: datetime, limit: Optional[int] = None) -> List[Deal]:
        """
        Find open deals whose last activity (or creation, if there was none)
        is at or before cutoff.

        Args:
            cutoff: Latest activity time that still counts as inactive
            limit: Optional cap on the number of deals returned

        Returns:
            Deals ordered oldest activity first
        """
        closed = [status.value for status in CLOSED_STATUSES]
        activity = func.coalesce(Deal.last_activity_at, Deal.created_at)
        query = self.session.query(Deal)\
            .filter(~Deal.deal_status.in_(closed))\
            .filter(activity <= cutoff)\
            .order_by(activity.asc(), Deal.id.asc())
        if limit:
            query = query.limit(limit)
        return query.all()

    def find_by_agent(self, agent_id: str) -> List[Deal]:
        return self.session.query(Deal)\
            .filter(Deal.agent_id == agent_id)\
            .order_by(Deal.created_at.desc())\
            .all()
