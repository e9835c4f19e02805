"""
DealMilestoneRepository - Data access layer for DealMilestone entities
"""

from datetime import datetime
from typing import List, Set
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from repositories.base_repository import BaseRepository
from crm_database import DealMilestone
from services.common.exceptions import ConcurrencyConflictError, PersistenceError


class DealMilestoneRepository(BaseRepository[DealMilestone]):
    """Repository for DealMilestone data access"""

    def __init__(self, session: Session):
        """Initialize repository with database session"""
        super().__init__(session, DealMilestone)

    def get_names(self, deal_id: int) -> Set[str]:
        rows = self.session.query(DealMilestone.name)\
            .filter(DealMilestone.deal_id == deal_id)\
            .all()
        return {row[0] for row in rows}

    def record(self, deal_id: int, name: str, score: int, reached_at: datetime) -> DealMilestone:
        """
        Record a milestone reached by a deal.

        Raises:
            ConcurrencyConflictError: If another writer recorded the same
                milestone for the deal first
            PersistenceError: If database operation fails
        """
        try:
            return self.create(deal_id=deal_id, name=name, score=score, reached_at=reached_at)
        except PersistenceError as e:
            if isinstance(e.__cause__, IntegrityError):
                raise ConcurrencyConflictError(
                    f"Milestone {name} already recorded for deal {deal_id}",
                    deal_id=deal_id, milestone=name) from e.__cause__
            raise

    def find_by_deal(self, deal_id: int) -> List[DealMilestone]:
        return self.session.query(DealMilestone)\
            .filter(DealMilestone.deal_id == deal_id)\
            .order_by(DealMilestone.reached_at.asc(), DealMilestone.id.asc())\
            .all()
