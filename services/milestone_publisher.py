"""
Milestone notifications

The engine hands every first-time threshold crossing to a publisher after the
deal's unit of work has committed. Transport is the publisher's business; the
default one writes a structured log line.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List

from logging_config import get_logger
from services.enums import Milestone

logger = get_logger(__name__)


@dataclass(frozen=True)
class MilestoneEvent:
    deal_id: int
    milestone: Milestone
    score: int
    reached_at: datetime

    def to_dict(self) -> dict:
        return {
            'deal_id': self.deal_id,
            'milestone': self.milestone.value,
            'score': self.score,
            'timestamp': self.reached_at.isoformat(),
        }


class MilestonePublisher:
    """Logs milestones and fans them out to any registered listeners"""

    def __init__(self):
        self._listeners: List[Callable[[MilestoneEvent], None]] = []

    def subscribe(self, listener: Callable[[MilestoneEvent], None]) -> None:
        self._listeners.append(listener)

    def publish(self, event: MilestoneEvent) -> None:
        logger.info("Milestone reached",
                    deal_id=event.deal_id,
                    milestone=event.milestone.value,
                    score=event.score,
                    reached_at=event.reached_at.isoformat())
        for listener in self._listeners:
            try:
                listener(event)
            except Exception as e:
                # A failing listener must not undo a committed evaluation
                logger.error("Milestone listener failed",
                             deal_id=event.deal_id,
                             milestone=event.milestone.value,
                             error=str(e))
