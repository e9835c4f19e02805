"""
BrowsingSessionRepository - Data access layer for BrowsingSession entities
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from repositories.base_repository import BaseRepository
from crm_database import BrowsingSession
from utils.datetime_utils import ensure_utc
import logging

logger = logging.getLogger(__name__)


class BrowsingSessionRepository(BaseRepository[BrowsingSession]):
    """Repository for BrowsingSession data access"""

    def __init__(self, session: Session):
        """Initialize repository with database session"""
        super().__init__(session, BrowsingSession)

    def find_by_link(self, link_id: str) -> List[BrowsingSession]:
        """All sessions for a link, oldest first"""
        return self.session.query(BrowsingSession)\
            .filter(BrowsingSession.link_id == link_id)\
            .order_by(BrowsingSession.started_at.asc())\
            .all()

    def find_by_deal(self, deal_id: int) -> List[BrowsingSession]:
        return self.session.query(BrowsingSession)\
            .filter(BrowsingSession.deal_id == deal_id)\
            .order_by(BrowsingSession.started_at.asc())\
            .all()

    def count_for_link(self, link_id: str) -> int:
        return self.count(link_id=link_id)

    def find_idle_open(self, cutoff: datetime, limit: Optional[int] = None) -> List[BrowsingSession]:
        """
        Find open sessions with no activity since cutoff.

        Args:
            cutoff: Sessions last active at or before this time are idle
            limit: Optional cap on the number of sessions returned

        Returns:
            Idle sessions, longest idle first
        """
        query = self.session.query(BrowsingSession)\
            .filter(BrowsingSession.ended_at.is_(None))\
            .filter(BrowsingSession.last_active_at <= cutoff)\
            .order_by(BrowsingSession.last_active_at.asc())
        if limit:
            query = query.limit(limit)
        return query.all()

    def touch(self, browsing_session: BrowsingSession, at: datetime) -> BrowsingSession:
        """Move last_active_at forward; it never moves back"""
        last_active = ensure_utc(browsing_session.last_active_at)
        if last_active is None or ensure_utc(at) > last_active:
            return self.update(browsing_session, last_active_at=at)
        return browsing_session

    def finalize(self, session_id: str, ended_at: datetime,
                 feedback: Optional[Dict[str, Any]] = None) -> bool:
        """
        Close a session if, and only if, it is still open.

        The conditional UPDATE makes this safe to race: of several concurrent
        finalizers exactly one sees a row count of one.

        Returns:
            True if this call closed the session, False if it was already closed
            or does not exist
        """
        values = {'ended_at': ended_at}
        if feedback is not None:
            values['feedback'] = feedback
        try:
            count = self.session.query(BrowsingSession)\
                .filter(BrowsingSession.id == session_id)\
                .filter(BrowsingSession.ended_at.is_(None))\
                .update(values, synchronize_session='fetch')
            self.session.flush()
        except SQLAlchemyError as e:
            self._write_failed("finalizing", e)
        if count:
            logger.debug(f"Finalized browsing session {session_id}")
        return count == 1
