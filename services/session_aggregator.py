"""
SessionAggregator - reduces a client's browsing activity into a SessionSummary

Interaction events are validated before they are allowed anywhere near a
summary: a rejected event leaves the summary exactly as it was.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Iterable, Optional, Set, Union

from services.common.exceptions import InvalidInteractionError
from services.enums import InteractionAction
from utils.datetime_utils import ensure_utc, parse_utc_iso, seconds_between

logger = logging.getLogger(__name__)

Scalar = Union[str, int, float, bool, None]
SCALAR_TYPES = (str, int, float, bool, type(None))


@dataclass(frozen=True)
class InteractionRecord:
    """A validated client action against one property"""
    session_id: str
    link_id: str
    property_id: str
    action: InteractionAction
    timestamp: datetime
    metadata: Dict[str, Scalar] = field(default_factory=dict)


@dataclass(frozen=True)
class SessionSummary:
    """One browsing session for one client against one link"""
    session_id: str
    link_id: str
    start_time: datetime
    end_time: Optional[datetime]
    duration_seconds: int
    total_properties_in_collection: int
    properties_viewed: int = 0
    properties_liked: int = 0
    properties_considered: int = 0
    properties_passed: int = 0
    detail_views_opened: int = 0
    average_seconds_per_property: float = 0.0
    is_completed: bool = False
    is_return_visit: bool = False

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    @property
    def completion_rate(self) -> float:
        if self.total_properties_in_collection <= 0:
            return 0.0
        return self.properties_viewed / self.total_properties_in_collection


class SessionAccumulator:
    """
    Running state for one session.

    Every accepted interaction counts its property as viewed; likes, considers,
    dislikes and detail opens are counted per action, as the client emits them.
    """

    def __init__(self, session_id: str, link_id: str, start_time: datetime,
                 total_properties: int, is_return_visit: bool = False):
        if total_properties < 0:
            raise InvalidInteractionError("Collection size cannot be negative",
                                          total_properties=total_properties)
        self.session_id = session_id
        self.link_id = link_id
        self.start_time = ensure_utc(start_time)
        self.total_properties = total_properties
        self.is_return_visit = is_return_visit
        self.viewed: Set[str] = set()
        self.liked = 0
        self.considered = 0
        self.passed = 0
        self.detail_views = 0
        self.last_activity_at: datetime = self.start_time

    def apply(self, record: InteractionRecord) -> None:
        if record.session_id != self.session_id:
            raise InvalidInteractionError(
                f"Event for session {record.session_id} applied to session {self.session_id}")
        self.viewed.add(record.property_id)
        if record.action == InteractionAction.LIKE:
            self.liked += 1
        elif record.action == InteractionAction.CONSIDER:
            self.considered += 1
        elif record.action == InteractionAction.DISLIKE:
            self.passed += 1
        elif record.action == InteractionAction.DETAIL:
            self.detail_views += 1
        if record.timestamp > self.last_activity_at:
            self.last_activity_at = record.timestamp

    def summary(self, end_time: Optional[datetime] = None,
                last_active_at: Optional[datetime] = None) -> SessionSummary:
        """
        Snapshot the accumulated state.

        Duration runs from the session start to its end, or to the latest known
        activity while the session is still open.
        """
        end_time = ensure_utc(end_time)
        last_seen = self.last_activity_at
        if last_active_at is not None and ensure_utc(last_active_at) > last_seen:
            last_seen = ensure_utc(last_active_at)
        duration = seconds_between(self.start_time, end_time or last_seen)
        viewed = len(self.viewed)
        if self.total_properties > 0:
            viewed = min(viewed, self.total_properties)
        return SessionSummary(
            session_id=self.session_id,
            link_id=self.link_id,
            start_time=self.start_time,
            end_time=end_time,
            duration_seconds=duration,
            total_properties_in_collection=self.total_properties,
            properties_viewed=viewed,
            properties_liked=self.liked,
            properties_considered=self.considered,
            properties_passed=self.passed,
            detail_views_opened=self.detail_views,
            average_seconds_per_property=(duration / viewed) if viewed > 0 else 0.0,
            is_completed=viewed >= self.total_properties,
            is_return_visit=self.is_return_visit,
        )


class SessionAggregator:
    """Validates interaction events and folds them into session summaries"""

    def validate_interaction(self,
                             session_id: str,
                             link_id: str,
                             property_id: str,
                             action: Union[str, InteractionAction],
                             timestamp: Union[str, datetime],
                             metadata: Optional[Dict[str, Any]] = None,
                             collection: Optional[Iterable[str]] = None,
                             session_start: Optional[datetime] = None) -> InteractionRecord:
        """
        Turn raw event fields into an InteractionRecord.

        Args:
            session_id: Browsing session the event belongs to
            link_id: Link being browsed
            property_id: Property acted upon
            action: One of view/like/dislike/consider/detail
            timestamp: When the client acted (ISO string or datetime)
            metadata: Optional string-keyed map of scalar values, passed through untouched
            collection: Property ids of the link; when non-empty the property must be one of them
            session_start: Events older than the session start are rejected

        Raises:
            InvalidInteractionError: If any field is malformed
        """
        if not session_id or not link_id:
            raise InvalidInteractionError("session_id and link_id are required")
        if not property_id or not isinstance(property_id, str):
            raise InvalidInteractionError("property_id is required", session_id=session_id)

        try:
            parsed_action = InteractionAction(action)
        except ValueError:
            raise InvalidInteractionError(f"Unknown interaction action: {action!r}",
                                          session_id=session_id)

        try:
            parsed_timestamp = parse_utc_iso(timestamp)
        except (TypeError, ValueError) as e:
            raise InvalidInteractionError(f"Malformed timestamp {timestamp!r}: {e}",
                                          session_id=session_id)

        if session_start is not None and parsed_timestamp < ensure_utc(session_start):
            raise InvalidInteractionError("Interaction precedes the start of its session",
                                          session_id=session_id)

        allowed = set(collection or ())
        if allowed and property_id not in allowed:
            raise InvalidInteractionError(
                f"Property {property_id} is not part of link {link_id}", session_id=session_id)

        return InteractionRecord(
            session_id=session_id,
            link_id=link_id,
            property_id=property_id,
            action=parsed_action,
            timestamp=parsed_timestamp,
            metadata=self.validate_metadata(metadata),
        )

    @staticmethod
    def validate_metadata(metadata: Optional[Dict[str, Any]]) -> Dict[str, Scalar]:
        if metadata is None:
            return {}
        if not isinstance(metadata, dict):
            raise InvalidInteractionError("metadata must be a mapping")
        for key, value in metadata.items():
            if not isinstance(key, str):
                raise InvalidInteractionError(f"metadata key {key!r} is not a string")
            if not isinstance(value, SCALAR_TYPES):
                raise InvalidInteractionError(f"metadata value for {key!r} is not a scalar")
        return dict(metadata)

    def summarize(self,
                  session_id: str,
                  link_id: str,
                  start_time: datetime,
                  events: Iterable[InteractionRecord],
                  total_properties: int,
                  is_return_visit: bool = False,
                  end_time: Optional[datetime] = None,
                  last_active_at: Optional[datetime] = None) -> SessionSummary:
        """Replay a session's accepted events into a fresh summary."""
        accumulator = SessionAccumulator(session_id, link_id, start_time,
                                         total_properties, is_return_visit)
        for record in sorted(events, key=lambda r: r.timestamp):
            accumulator.apply(record)
        return accumulator.summary(end_time=end_time, last_active_at=last_active_at)

    @staticmethod
    def close(summary: SessionSummary, end_time: datetime) -> SessionSummary:
        """Return the summary finalized at end_time; an already-closed summary is unchanged."""
        if summary.end_time is not None:
            return summary
        end_time = ensure_utc(end_time)
        duration = max(summary.duration_seconds, seconds_between(summary.start_time, end_time))
        viewed = summary.properties_viewed
        return replace(
            summary,
            end_time=end_time,
            duration_seconds=duration,
            average_seconds_per_property=(duration / viewed) if viewed > 0 else 0.0,
        )
