"""
DealStageMachine - forward-only progression through the deal pipeline

    created -> shared -> accessed -> engaged -> qualified -> advanced -> closed

Automatic transitions come from lifecycle events and score thresholds and only
ever move a deal forward. Status changes (active, qualified, nurturing,
closed-won, closed-lost) are validated separately.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple, Union

from services.common.result import ErrorCode, Result
from services.enums import (
    CLOSED_STATUSES, DealEvent, DealStage, DealStatus
)

logger = logging.getLogger(__name__)


ENGAGED_SCORE_THRESHOLD = 50
QUALIFIED_SCORE_THRESHOLD = 80

EVENT_TARGETS: Dict[DealEvent, DealStage] = {
    DealEvent.LINK_CREATED: DealStage.CREATED,
    DealEvent.LINK_SHARED: DealStage.SHARED,
    DealEvent.LINK_ACCESSED: DealStage.ACCESSED,
    DealEvent.PROPERTY_LIKED: DealStage.ENGAGED,
    DealEvent.SHOWING_COMPLETED: DealStage.ADVANCED,
    DealEvent.OFFER_INTEREST: DealStage.ADVANCED,
}

STATUS_TRANSITIONS: Dict[DealStatus, FrozenSet[DealStatus]] = {
    DealStatus.ACTIVE: frozenset({DealStatus.QUALIFIED, DealStatus.NURTURING, DealStatus.CLOSED_LOST}),
    DealStatus.QUALIFIED: frozenset({DealStatus.NURTURING, DealStatus.CLOSED_WON, DealStatus.CLOSED_LOST}),
    DealStatus.NURTURING: frozenset({DealStatus.QUALIFIED, DealStatus.CLOSED_WON, DealStatus.CLOSED_LOST}),
    DealStatus.CLOSED_WON: frozenset(),
    # Lost deals can be reactivated
    DealStatus.CLOSED_LOST: frozenset({DealStatus.ACTIVE}),
}

STAGE_REQUIREMENTS: Dict[DealStage, Tuple[str, ...]] = {
    DealStage.CREATED: ('Property collection prepared', 'Link generated'),
    DealStage.SHARED: ('Link shared with client', 'Initial contact made'),
    DealStage.ACCESSED: ('Client accessed link', 'Properties viewed'),
    DealStage.ENGAGED: ('Client engagement detected', 'Properties liked/considered'),
    DealStage.QUALIFIED: ('Client qualification confirmed', 'Budget verified'),
    DealStage.ADVANCED: ('Property showing completed', 'Offer interest expressed'),
    DealStage.CLOSED: ('Deal finalized', 'Commission secured'),
}


@dataclass(frozen=True)
class StageTransition:
    previous: DealStage
    current: DealStage
    reasons: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def changed(self) -> bool:
        return self.previous != self.current


def coerce_stage(stage: Union[str, DealStage]) -> DealStage:
    return stage if isinstance(stage, DealStage) else DealStage(stage)


class DealStageMachine:
    """Evaluates automatic stage transitions for deals"""

    def __init__(self, deal_repository=None):
        """
        Args:
            deal_repository: Only needed by progress_deal; the pure evaluation
                methods work without any backing store
        """
        self.deal_repository = deal_repository

    @staticmethod
    def target_for_score(score: Optional[float]) -> Optional[DealStage]:
        if score is None:
            return None
        if score >= QUALIFIED_SCORE_THRESHOLD:
            return DealStage.QUALIFIED
        if score >= ENGAGED_SCORE_THRESHOLD:
            return DealStage.ENGAGED
        return None

    @staticmethod
    def target_for_event(event: Union[str, DealEvent]) -> Optional[DealStage]:
        try:
            return EVENT_TARGETS.get(DealEvent(event))
        except ValueError:
            return None

    @staticmethod
    def advance(current: Union[str, DealStage], target: Optional[DealStage]) -> DealStage:
        """Move to target only when it lies ahead of current"""
        current = coerce_stage(current)
        if target is None or target.rank <= current.rank:
            return current
        return target

    def evaluate(self,
                 current: Union[str, DealStage],
                 score: Optional[float] = None,
                 events: Iterable[Union[str, DealEvent]] = ()) -> StageTransition:
        """
        Work out where a deal should stand after a score change and/or events.

        Every score and event target is considered and the furthest one wins,
        but never at the expense of moving backwards.

        Args:
            current: Current stage of the deal
            score: Latest deal-level engagement score
            events: Lifecycle events observed in this evaluation

        Returns:
            StageTransition; `changed` is False when the deal stays put
        """
        previous = coerce_stage(current)
        stage = previous
        reasons: List[str] = []

        score_target = self.target_for_score(score)
        if score_target is not None and score_target.rank > stage.rank:
            stage = score_target
            reasons.append(f"score:{score}")

        for event in events:
            event_target = self.target_for_event(event)
            if event_target is not None and event_target.rank > stage.rank:
                stage = event_target
                reasons.append(f"event:{DealEvent(event).value}")

        return StageTransition(previous=previous, current=stage, reasons=tuple(reasons))

    def progress_deal(self, deal_id: int, score: Optional[float] = None,
                      events: Iterable[Union[str, DealEvent]] = ()) -> Result[StageTransition]:
        """
        Load a deal, evaluate it and persist a forward move.

        A missing deal is reported as DATA_MISSING and nothing is written.
        """
        if self.deal_repository is None:
            raise RuntimeError("progress_deal requires a deal repository")

        deal = self.deal_repository.get_by_id(deal_id)
        if deal is None:
            logger.warning(f"Deal {deal_id} not found, stage left untouched")
            return Result.failure(f"Deal {deal_id} not found", code=ErrorCode.DATA_MISSING)

        transition = self.evaluate(deal.deal_stage, score=score, events=events)
        if transition.changed:
            self.deal_repository.update(deal, deal_stage=transition.current.value)
            self.deal_repository.commit()
            logger.info(f"Deal {deal_id} advanced {transition.previous.value} -> "
                        f"{transition.current.value}")
        return Result.success(transition)

    @staticmethod
    def is_valid_status_change(current: Union[str, DealStatus], new: Union[str, DealStatus]) -> bool:
        current, new = DealStatus(current), DealStatus(new)
        return current == new or new in STATUS_TRANSITIONS[current]

    @staticmethod
    def stage_for_status(stage: Union[str, DealStage], status: Union[str, DealStatus]) -> DealStage:
        """Closing a deal either way puts it in the closed stage"""
        if DealStatus(status) in CLOSED_STATUSES:
            return DealStage.CLOSED
        return coerce_stage(stage)

    @staticmethod
    def next_suggested_stage(stage: Union[str, DealStage], score: float) -> Optional[DealStage]:
        stage = coerce_stage(stage)
        if stage == DealStage.CREATED:
            return DealStage.SHARED
        if stage == DealStage.SHARED:
            return DealStage.ACCESSED if score > 0 else None
        if stage == DealStage.ACCESSED:
            return DealStage.ENGAGED if score >= 30 else None
        if stage == DealStage.ENGAGED:
            return DealStage.QUALIFIED if score >= 60 else None
        if stage == DealStage.QUALIFIED:
            return DealStage.ADVANCED
        if stage == DealStage.ADVANCED:
            return DealStage.CLOSED
        return None

    @staticmethod
    def stage_requirements(stage: Union[str, DealStage]) -> List[str]:
        return list(STAGE_REQUIREMENTS.get(coerce_stage(stage), ()))
