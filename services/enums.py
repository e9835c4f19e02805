"""
Service layer enums
These enums are used by services and match the string values stored in the
database, so services can work without importing database models
"""

from enum import Enum


class DealStage(str, Enum):
    """Deal pipeline stages, in forward order"""
    CREATED = 'created'
    SHARED = 'shared'
    ACCESSED = 'accessed'
    ENGAGED = 'engaged'
    QUALIFIED = 'qualified'
    ADVANCED = 'advanced'
    CLOSED = 'closed'

    @property
    def rank(self) -> int:
        return STAGE_ORDER.index(self)


STAGE_ORDER = (
    DealStage.CREATED,
    DealStage.SHARED,
    DealStage.ACCESSED,
    DealStage.ENGAGED,
    DealStage.QUALIFIED,
    DealStage.ADVANCED,
    DealStage.CLOSED,
)


class DealStatus(str, Enum):
    """Commercial status of a deal, independent of its pipeline stage"""
    ACTIVE = 'active'
    QUALIFIED = 'qualified'
    NURTURING = 'nurturing'
    CLOSED_WON = 'closed-won'
    CLOSED_LOST = 'closed-lost'


CLOSED_STATUSES = frozenset({DealStatus.CLOSED_WON, DealStatus.CLOSED_LOST})


class ClientTemperature(str, Enum):
    """Coarse engagement bucket"""
    HOT = 'hot'     # 80-100
    WARM = 'warm'   # 50-79
    COLD = 'cold'   # 0-49


class InteractionAction(str, Enum):
    """Client actions recorded against a property while browsing a link"""
    VIEW = 'view'
    LIKE = 'like'
    DISLIKE = 'dislike'
    CONSIDER = 'consider'
    DETAIL = 'detail'


class TaskPriority(str, Enum):
    URGENT = 'urgent'
    HIGH = 'high'
    MEDIUM = 'medium'
    LOW = 'low'


class TaskStatus(str, Enum):
    PENDING = 'pending'
    COMPLETED = 'completed'
    DISMISSED = 'dismissed'


class TriggerType(str, Enum):
    """How an automated task came to exist"""
    EVENT = 'event'
    RULE_BASED = 'rule_based'
    STATUS_CHANGE = 'status_change'
    SCORE_THRESHOLD = 'score_threshold'
    MANUAL = 'manual'


class Milestone(str, Enum):
    """First-time upward crossings of the deal score"""
    FIRST_ENGAGEMENT = 'first_engagement'
    MODERATE_ENGAGEMENT = 'moderate_engagement'
    HIGH_ENGAGEMENT = 'high_engagement'


# Ascending; each threshold is crossed when high-water mark < threshold <= score
MILESTONE_THRESHOLDS = (
    (25, Milestone.FIRST_ENGAGEMENT),
    (50, Milestone.MODERATE_ENGAGEMENT),
    (80, Milestone.HIGH_ENGAGEMENT),
)


class DealEvent(str, Enum):
    """Named lifecycle events that can fire trigger tasks or move a deal forward"""
    LINK_CREATED = 'link_created'
    LINK_SHARED = 'link_shared'
    LINK_ACCESSED = 'link_accessed'
    PROPERTY_LIKED = 'property_liked'
    HIGH_ENGAGEMENT = 'high_engagement'
    MODERATE_ENGAGEMENT = 'moderate_engagement'
    FIRST_ENGAGEMENT = 'first_engagement'
    SESSION_COMPLETED = 'session_completed'
    INACTIVITY_3_DAYS = 'inactivity_3_days'
    INACTIVITY_1_WEEK = 'inactivity_1_week'
    SHOWING_SCHEDULED = 'showing_scheduled'
    SHOWING_COMPLETED = 'showing_completed'
    OFFER_INTEREST = 'offer_interest'
    FINANCING_NEEDED = 'financing_needed'


# Events an agent may report directly through the orchestrator
AGENT_EVENTS = frozenset({
    DealEvent.SHOWING_SCHEDULED,
    DealEvent.SHOWING_COMPLETED,
    DealEvent.OFFER_INTEREST,
    DealEvent.FINANCING_NEEDED,
})
