"""
EngagementOrchestrator - entry point of the engagement engine

Every public operation runs one read-evaluate-commit cycle for one deal:

    load deal -> update session -> score -> classify -> advance stage
    -> generate tasks -> commit -> publish milestones

The cycle holds the deal's lock for its whole duration and is retried from
scratch when the deal row turns out to have changed underneath it. Public
operations never raise; they return a Result.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from logging_config import get_logger, performance_logger
from services.common.exceptions import (
    DealNotFoundError, EngineError, InvalidInteractionError, InvalidTransitionError, PersistenceError
)
from services.common.result import ErrorCode, Result
from services.deal_stage_service import DealStageMachine, StageTransition
from services.enums import (
    AGENT_EVENTS, CLOSED_STATUSES, MILESTONE_THRESHOLDS, ClientTemperature, DealEvent,
    DealStage, DealStatus, InteractionAction
)
from services.milestone_publisher import MilestoneEvent, MilestonePublisher
from services.scoring_service import EngagementInsights, EngagementMetrics, ScoringEngine
from services.session_aggregator import InteractionRecord, SessionAggregator, SessionSummary
from services.task_automation_service import AutomationRuleEngine, DealState, TaskDraft
from services.temperature_service import classify_temperature
from utils.datetime_utils import ensure_utc, parse_utc_iso, utc_now
from utils.keyed_lock import KeyedLock, LockTimeout

logger = get_logger(__name__)

INACTIVITY_THRESHOLDS = (
    (timedelta(days=7), DealEvent.INACTIVITY_1_WEEK),
    (timedelta(days=3), DealEvent.INACTIVITY_3_DAYS),
)


@dataclass
class EngagementUpdate:
    """What one orchestrator invocation produced"""
    deal: Dict[str, Any]
    metrics: Optional[EngagementMetrics] = None
    transition: Optional[StageTransition] = None
    tasks: List[Dict[str, Any]] = field(default_factory=list)
    milestones: List[MilestoneEvent] = field(default_factory=list)
    insights: Optional[EngagementInsights] = None
    session_finalized: Optional[bool] = None
    unsaved_tasks: List[TaskDraft] = field(default_factory=list)
    task_persistence_error: Optional[str] = None

    @property
    def deal_id(self) -> Optional[int]:
        return self.deal.get('id')


class EngagementOrchestrator:
    """Coordinates aggregation, scoring, stage progression and task automation"""

    def __init__(self,
                 deal_repository,
                 session_repository,
                 event_repository,
                 task_repository,
                 milestone_repository,
                 rule_engine: Optional[AutomationRuleEngine] = None,
                 scoring_engine: Optional[ScoringEngine] = None,
                 stage_machine: Optional[DealStageMachine] = None,
                 aggregator: Optional[SessionAggregator] = None,
                 publisher: Optional[MilestonePublisher] = None,
                 clock: Callable[[], datetime] = utc_now,
                 locks: Optional[KeyedLock] = None,
                 conflict_retry_limit: int = 3,
                 lock_timeout: Optional[float] = 10,
                 inactivity_minutes: int = 30):
        """
        Args:
            deal_repository: DealRepository; also owns commit/rollback of the unit of work
            session_repository: BrowsingSessionRepository
            event_repository: InteractionEventRepository
            task_repository: TaskRepository
            milestone_repository: DealMilestoneRepository
            rule_engine: AutomationRuleEngine built on the same task repository
            clock: Returns the current UTC time
            locks: Per-deal locks; share one instance between orchestrators
                serving the same deals
            conflict_retry_limit: Evaluations attempted before giving up on a
                deal that keeps changing
            lock_timeout: Seconds to wait for a deal's lock
            inactivity_minutes: Idle time after which an open session is finalized
        """
        self.deal_repository = deal_repository
        self.session_repository = session_repository
        self.event_repository = event_repository
        self.task_repository = task_repository
        self.milestone_repository = milestone_repository
        self.clock = clock
        self.rule_engine = rule_engine if rule_engine is not None else AutomationRuleEngine(
            task_repository=task_repository, clock=clock)
        self.scoring_engine = scoring_engine if scoring_engine is not None else ScoringEngine()
        self.stage_machine = stage_machine if stage_machine is not None else DealStageMachine()
        self.aggregator = aggregator if aggregator is not None else SessionAggregator()
        self.publisher = publisher if publisher is not None else MilestonePublisher()
        self.locks = locks if locks is not None else KeyedLock()
        self.conflict_retry_limit = max(1, conflict_retry_limit)
        self.lock_timeout = lock_timeout
        self.inactivity_minutes = inactivity_minutes

    # Unit of work

    def _execute(self, operation: str, lock_key, work: Callable[[], EngagementUpdate],
                 deal_id: Optional[int] = None) -> Result[EngagementUpdate]:
        """
        Run work under the lock for lock_key and commit it.

        A concurrency conflict discards everything and re-runs work from the
        start, up to conflict_retry_limit times.
        """
        started = time.perf_counter()
        attempts = 0
        result = None
        try:
            with self.locks.hold(lock_key, timeout=self.lock_timeout):
                while result is None:
                    attempts += 1
                    try:
                        update = work()
                        self.deal_repository.commit()
                        result = Result.success(update, metadata={'attempts': attempts})
                    except EngineError as e:
                        self.deal_repository.rollback()
                        if e.code != ErrorCode.CONCURRENCY_CONFLICT:
                            raise
                        if attempts >= self.conflict_retry_limit:
                            logger.error("Giving up after repeated concurrency conflicts",
                                         operation=operation, deal_id=deal_id, attempts=attempts)
                            result = Result.failure(
                                f"Deal {deal_id} kept changing during {operation}",
                                code=ErrorCode.CONCURRENCY_CONFLICT,
                                metadata={'attempts': attempts})
                        else:
                            performance_logger.log_conflict_retry(
                                operation, deal_id, attempts, self.conflict_retry_limit)
        except LockTimeout as e:
            logger.warning("Timed out waiting for deal lock", operation=operation, deal_id=deal_id)
            result = Result.failure(str(e), code=ErrorCode.TIMEOUT)
        except DealNotFoundError as e:
            logger.warning("Referenced record not found", operation=operation, error=e.message, **e.context)
            result = Result.failure(e.message, code=e.code)
        except (InvalidInteractionError, InvalidTransitionError) as e:
            logger.warning("Rejected invalid input", operation=operation, error=e.message, **e.context)
            result = Result.failure(e.message, code=e.code)
        except EngineError as e:
            logger.error("Engine operation failed", operation=operation, deal_id=deal_id, error=e.message)
            result = Result.failure(e.message, code=e.code)
        except SQLAlchemyError as e:
            self.deal_repository.rollback()
            logger.error("Database error", operation=operation, deal_id=deal_id, error=str(e))
            result = Result.failure(f"Database error: {e}", code=ErrorCode.PERSISTENCE_FAILURE)
        except Exception as e:
            self.deal_repository.rollback()
            logger.exception("Unexpected engine failure", operation=operation, deal_id=deal_id)
            result = Result.failure(f"Unexpected error during {operation}: {e}")

        if result.is_success:
            for milestone in result.data.milestones:
                self.publisher.publish(milestone)

        performance_logger.log_evaluation(
            operation, (time.perf_counter() - started) * 1000,
            deal_id=deal_id, attempts=attempts, success=result.is_success)
        return result

    def _load_deal(self, deal_id: int):
        deal = self.deal_repository.get_fresh(deal_id)
        if deal is None:
            raise DealNotFoundError(f"Deal {deal_id} not found", deal_id=deal_id)
        return deal

    def _records_for(self, browsing_session) -> List[InteractionRecord]:
        return [
            InteractionRecord(
                session_id=event.session_id,
                link_id=event.link_id,
                property_id=event.property_id,
                action=InteractionAction(event.action),
                timestamp=ensure_utc(event.occurred_at),
                metadata=event.event_metadata or {},
            )
            for event in self.event_repository.find_by_session(browsing_session.id)
        ]

    def _summary_for(self, deal, browsing_session) -> SessionSummary:
        return self.aggregator.summarize(
            session_id=browsing_session.id,
            link_id=browsing_session.link_id,
            start_time=ensure_utc(browsing_session.started_at),
            events=self._records_for(browsing_session),
            total_properties=deal.property_count,
            is_return_visit=bool(browsing_session.is_return_visit),
            end_time=ensure_utc(browsing_session.ended_at),
            last_active_at=ensure_utc(browsing_session.last_active_at),
        )

    def _apply_score(self, deal, score: int, now: datetime) -> List[MilestoneEvent]:
        """
        Store a new deal score and record thresholds crossed for the first time.

        The versioned deal row is written before any milestone row, so a
        writer working from a stale deal fails its version check first.
        """
        high_water_mark = deal.score_high_water_mark or 0
        self.deal_repository.update(
            deal,
            engagement_score=score,
            client_temperature=classify_temperature(score).value,
            score_high_water_mark=max(high_water_mark, score),
        )
        reached = []
        for threshold, milestone in MILESTONE_THRESHOLDS:
            if high_water_mark < threshold <= score:
                self.milestone_repository.record(deal.id, milestone.value, score, now)
                reached.append(MilestoneEvent(deal_id=deal.id, milestone=milestone, score=score, reached_at=now))
        return reached

    def _evaluate(self, deal, now: datetime, triggers: Sequence[DealEvent] = (),
                  score: Optional[int] = None,
                  metrics: Optional[EngagementMetrics] = None) -> EngagementUpdate:
        """Score, stage and automation for a deal already loaded in this unit of work"""
        milestones = self._apply_score(deal, score, now) if score is not None else []
        triggers = list(triggers) + [DealEvent(m.milestone.value) for m in milestones]

        transition = self.stage_machine.evaluate(deal.deal_stage, score=deal.engagement_score, events=triggers)
        if transition.changed:
            self.deal_repository.update(deal, deal_stage=transition.current.value)
            logger.info("Deal stage advanced", deal_id=deal.id,
                        from_stage=transition.previous.value, to_stage=transition.current.value,
                        reasons=list(transition.reasons))
        else:
            self.deal_repository.flush()

        update = EngagementUpdate(deal=deal.to_dict(), metrics=metrics, transition=transition,
                                  milestones=milestones)

        drafts = self.rule_engine.evaluate(DealState.from_deal(deal), triggers, now=now)
        persisted = self.rule_engine.persist(drafts)
        outcome = persisted.data if persisted.is_success else persisted.metadata['outcome']
        update.tasks = [task.to_dict() for task in outcome.saved]
        if persisted.is_failure:
            # Tasks are best-effort: the score and stage still commit
            update.unsaved_tasks = outcome.unsaved
            update.task_persistence_error = persisted.error
            logger.error("Automated task persistence failed", deal_id=deal.id,
                         unsaved=[d.milestone_tag for d in outcome.unsaved], error=persisted.error)
        return update

    def _close_session(self, deal_id: int, session_id: str, ended_at: datetime,
                       feedback: Optional[Dict[str, Any]] = None) -> EngagementUpdate:
        deal = self._load_deal(deal_id)
        if not self.session_repository.finalize(session_id, ended_at, feedback):
            # Someone else finalized it first
            return EngagementUpdate(deal=deal.to_dict(), session_finalized=False)

        now = self.clock()
        summaries = [self._summary_for(deal, s) for s in self.session_repository.find_by_deal(deal.id)]
        closed = next(s for s in summaries if s.session_id == session_id)
        session_metrics = self.scoring_engine.score_session(closed, now)
        self.session_repository.update(self.session_repository.get_by_id(session_id),
                                       final_score=session_metrics.total_score)

        metrics = self.scoring_engine.score_deal(summaries, now)
        last_activity = max(filter(None, [ensure_utc(deal.last_activity_at), closed.end_time]))
        self.deal_repository.update(
            deal,
            total_time_spent=sum(s.duration_seconds for s in summaries),
            last_activity_at=last_activity,
        )

        triggers = [DealEvent.SESSION_COMPLETED] if closed.is_completed else []
        update = self._evaluate(deal, now, triggers, score=metrics.total_score, metrics=metrics)
        update.insights = self.scoring_engine.generate_insights(metrics)
        update.session_finalized = True
        logger.info("Session finalized", deal_id=deal.id, session_id=session_id,
                    session_score=session_metrics.total_score, deal_score=metrics.total_score,
                    temperature=update.insights.temperature.value)
        return update

    # Link lifecycle

    def on_link_created(self, link_id: str, agent_id: str, property_ids: Iterable[str],
                        client_id: Optional[str] = None,
                        deal_name: Optional[str] = None) -> Result[EngagementUpdate]:
        """
        Open a deal for a newly created link.

        Creating a deal for a link that already has one returns the existing
        deal with metadata created=False.
        """
        if not link_id or not agent_id:
            return Result.failure("link_id and agent_id are required", code=ErrorCode.INVALID_INPUT)
        property_ids = list(property_ids or [])
        if not all(isinstance(p, str) and p for p in property_ids):
            return Result.failure("property_ids must be non-empty strings", code=ErrorCode.INVALID_INPUT)

        existing = self.deal_repository.get_by_link_id(link_id)
        if existing is not None:
            return Result.success(EngagementUpdate(deal=existing.to_dict()), metadata={'created': False})

        created = True

        def work():
            nonlocal created
            existing = self.deal_repository.get_by_link_id(link_id)
            if existing is not None:
                created = False
                return EngagementUpdate(deal=existing.to_dict())

            now = self.clock()
            try:
                deal = self.deal_repository.create(
                    link_id=link_id,
                    agent_id=agent_id,
                    client_id=client_id,
                    deal_name=deal_name or f"Property Collection - {len(property_ids)} properties",
                    property_ids=property_ids,
                    deal_stage=DealStage.CREATED.value,
                    deal_status=DealStatus.ACTIVE.value,
                    engagement_score=0,
                    score_high_water_mark=0,
                    client_temperature=ClientTemperature.COLD.value,
                    session_count=0,
                    total_time_spent=0,
                    created_at=now,
                )
            except PersistenceError as e:
                if not isinstance(e.__cause__, IntegrityError):
                    raise
                # Another process created the deal for this link first
                existing = self.deal_repository.get_by_link_id(link_id)
                if existing is None:
                    raise
                logger.info("Deal already created elsewhere", deal_id=existing.id, link_id=link_id)
                created = False
                return EngagementUpdate(deal=existing.to_dict())

            logger.info("Deal created", deal_id=deal.id, link_id=link_id, agent_id=agent_id)
            return self._evaluate(deal, now, [DealEvent.LINK_CREATED])

        result = self._execute('on_link_created', ('link', link_id), work)
        if result.is_success:
            result.metadata['created'] = created
        return result

    def on_link_shared(self, link_id: str) -> Result[EngagementUpdate]:
        deal = self.deal_repository.get_by_link_id(link_id)
        if deal is None:
            logger.warning("No deal for shared link", link_id=link_id)
            return Result.failure(f"No deal for link {link_id}", code=ErrorCode.DATA_MISSING)
        deal_id = deal.id

        def work():
            return self._evaluate(self._load_deal(deal_id), self.clock(), [DealEvent.LINK_SHARED])

        return self._execute('on_link_shared', deal_id, work, deal_id=deal_id)

    def record_deal_event(self, deal_id: int, event_name: Union[str, DealEvent]) -> Result[EngagementUpdate]:
        """
        Record an agent-side lifecycle event (showing scheduled or completed,
        offer interest, financing needed).
        """
        try:
            event = DealEvent(event_name)
        except ValueError:
            event = None
        if event not in AGENT_EVENTS:
            logger.warning("Rejected unknown deal event", deal_id=deal_id, event_name=str(event_name))
            return Result.failure(f"Unsupported deal event: {event_name}", code=ErrorCode.INVALID_INPUT)

        def work():
            return self._evaluate(self._load_deal(deal_id), self.clock(), [event])

        return self._execute('record_deal_event', deal_id, work, deal_id=deal_id)

    def change_deal_status(self, deal_id: int, new_status: Union[str, DealStatus]) -> Result[EngagementUpdate]:
        """
        Validated status change. Closing a deal, won or lost, moves it to the
        closed stage; setting the current status again changes nothing.
        """
        try:
            status = DealStatus(new_status)
        except ValueError:
            return Result.failure(f"Unknown deal status: {new_status}", code=ErrorCode.INVALID_INPUT)

        def work():
            deal = self._load_deal(deal_id)
            current = DealStatus(deal.deal_status)
            if current == status:
                return EngagementUpdate(deal=deal.to_dict())
            if not self.stage_machine.is_valid_status_change(current, status):
                raise InvalidTransitionError(
                    f"Invalid status change from {current.value} to {status.value}", deal_id=deal_id)

            previous_stage = DealStage(deal.deal_stage)
            stage = self.stage_machine.stage_for_status(previous_stage, status)
            self.deal_repository.update(deal, deal_status=status.value, deal_stage=stage.value)
            logger.info("Deal status changed", deal_id=deal_id,
                        from_status=current.value, to_status=status.value)

            update = self._evaluate(deal, self.clock())
            update.transition = StageTransition(previous=previous_stage, current=DealStage(deal.deal_stage),
                                                reasons=(f"status:{status.value}",))
            return update

        return self._execute('change_deal_status', deal_id, work, deal_id=deal_id)

    # Sessions

    def start_session(self, link_id: str, session_id: str,
                      client_context: Optional[Dict[str, Any]] = None,
                      started_at: Optional[Union[str, datetime]] = None) -> Result[EngagementUpdate]:
        """
        Open a browsing session. Starting a session id that already exists
        for the same link is a no-op.
        """
        if not link_id or not session_id:
            return Result.failure("link_id and session_id are required", code=ErrorCode.INVALID_INPUT)
        if client_context is not None and not isinstance(client_context, dict):
            return Result.failure("client_context must be a mapping", code=ErrorCode.INVALID_INPUT)
        try:
            started = parse_utc_iso(started_at) if started_at is not None else None
        except (TypeError, ValueError) as e:
            return Result.failure(f"Malformed started_at: {e}", code=ErrorCode.INVALID_INPUT)

        deal = self.deal_repository.get_by_link_id(link_id)
        if deal is None:
            logger.warning("No deal for link", link_id=link_id, session_id=session_id)
            return Result.failure(f"No deal for link {link_id}", code=ErrorCode.DATA_MISSING)
        deal_id = deal.id

        def work():
            deal = self._load_deal(deal_id)
            existing = self.session_repository.get_by_id(session_id)
            if existing is not None:
                if existing.link_id != link_id:
                    raise InvalidInteractionError(
                        f"Session {session_id} belongs to link {existing.link_id}", session_id=session_id)
                return EngagementUpdate(deal=deal.to_dict())

            now = self.clock()
            start = started or now
            is_return_visit = self.session_repository.count_for_link(link_id) > 0
            self.session_repository.create(
                id=session_id,
                link_id=link_id,
                deal_id=deal_id,
                is_return_visit=is_return_visit,
                started_at=start,
                last_active_at=start,
                client_context=client_context,
            )
            last_activity = ensure_utc(deal.last_activity_at)
            self.deal_repository.update(
                deal,
                session_count=(deal.session_count or 0) + 1,
                last_activity_at=start if last_activity is None else max(last_activity, start),
            )
            logger.info("Session started", deal_id=deal_id, session_id=session_id,
                        return_visit=is_return_visit)
            return self._evaluate(deal, now, [DealEvent.LINK_ACCESSED])

        return self._execute('start_session', deal_id, work, deal_id=deal_id)

    def record_interaction(self,
                           session_id: str,
                           link_id: str,
                           property_id: str,
                           action: Union[str, InteractionAction],
                           timestamp: Union[str, datetime],
                           metadata: Optional[Dict[str, Any]] = None) -> Result[EngagementUpdate]:
        """
        Apply one client interaction and re-score the deal from its session.

        Args:
            session_id: Open browsing session
            link_id: Link the session belongs to
            property_id: Property acted upon; must be part of the link
            action: view, like, dislike, consider or detail
            timestamp: When the client acted
            metadata: Optional string-keyed scalars stored with the event

        Returns:
            Result with the EngagementUpdate; INVALID_INPUT leaves everything untouched
        """
        deal = self.deal_repository.get_by_link_id(link_id) if link_id else None
        if deal is None:
            logger.warning("No deal for link", link_id=link_id, session_id=session_id)
            return Result.failure(f"No deal for link {link_id}", code=ErrorCode.DATA_MISSING)
        deal_id = deal.id

        def work():
            deal = self._load_deal(deal_id)
            browsing_session = self.session_repository.get_by_id(session_id)
            if browsing_session is None:
                raise DealNotFoundError(f"Session {session_id} not found", session_id=session_id)
            if browsing_session.link_id != link_id:
                raise InvalidInteractionError(
                    f"Session {session_id} belongs to link {browsing_session.link_id}", session_id=session_id)
            if not browsing_session.is_open:
                raise InvalidInteractionError(f"Session {session_id} is already closed", session_id=session_id)

            record = self.aggregator.validate_interaction(
                session_id, link_id, property_id, action, timestamp,
                metadata=metadata,
                collection=deal.property_ids,
                session_start=ensure_utc(browsing_session.started_at),
            )
            self.event_repository.create(
                session_id=session_id,
                link_id=link_id,
                property_id=record.property_id,
                action=record.action.value,
                occurred_at=record.timestamp,
                event_metadata=record.metadata or None,
            )
            self.session_repository.touch(browsing_session, record.timestamp)
            last_activity = ensure_utc(deal.last_activity_at)
            if last_activity is None or record.timestamp > last_activity:
                self.deal_repository.update(deal, last_activity_at=record.timestamp)

            now = self.clock()
            metrics = self.scoring_engine.score_session(self._summary_for(deal, browsing_session), now)
            triggers = [DealEvent.PROPERTY_LIKED] if record.action == InteractionAction.LIKE else []
            return self._evaluate(deal, now, triggers, score=metrics.total_score, metrics=metrics)

        return self._execute('record_interaction', deal_id, work, deal_id=deal_id)

    def end_session(self, session_id: str, link_id: str,
                    feedback: Optional[Dict[str, Any]] = None) -> Result[EngagementUpdate]:
        """
        Close a session and re-score its deal across every session.

        Ending a session that is already closed succeeds with
        session_finalized=False and no metrics.
        """
        if feedback is not None and not isinstance(feedback, dict):
            return Result.failure("feedback must be a mapping", code=ErrorCode.INVALID_INPUT)
        browsing_session = self.session_repository.get_by_id(session_id) if session_id else None
        if browsing_session is None:
            logger.warning("Session not found", session_id=session_id, link_id=link_id)
            return Result.failure(f"Session {session_id} not found", code=ErrorCode.DATA_MISSING)
        if browsing_session.link_id != link_id:
            return Result.failure(f"Session {session_id} belongs to link {browsing_session.link_id}",
                                  code=ErrorCode.INVALID_INPUT)
        deal_id = browsing_session.deal_id

        def work():
            return self._close_session(deal_id, session_id, self.clock(), feedback)

        return self._execute('end_session', deal_id, work, deal_id=deal_id)

    # Maintenance

    def finalize_inactive_sessions(self, now: Optional[datetime] = None) -> Result[Dict[str, List[str]]]:
        """
        Finalize every open session idle for longer than the inactivity
        threshold. Each session is closed at its last activity, in its own
        unit of work; one failure does not stop the batch.
        """
        started = time.perf_counter()
        now = ensure_utc(now) if now is not None else self.clock()
        cutoff = now - timedelta(minutes=self.inactivity_minutes)
        idle = [(s.id, s.deal_id, ensure_utc(s.last_active_at))
                for s in self.session_repository.find_idle_open(cutoff)]

        finalized, failed = [], []
        for session_id, deal_id, ended_at in idle:
            result = self._execute(
                'finalize_session', deal_id,
                lambda: self._close_session(deal_id, session_id, ended_at),
                deal_id=deal_id)
            if result.is_failure:
                failed.append(session_id)
            elif result.data.session_finalized:
                finalized.append(session_id)

        performance_logger.log_batch('finalize_inactive_sessions', len(finalized), len(failed),
                                     (time.perf_counter() - started) * 1000)
        return Result.success({'finalized': finalized, 'failed': failed}, metadata={'checked': len(idle)})

    def sweep_inactive_deals(self, now: Optional[datetime] = None) -> Result[Dict[str, List[int]]]:
        """
        Fire inactivity triggers for open deals without client activity for
        three days (inactivity_3_days) or a week (inactivity_1_week).
        """
        started = time.perf_counter()
        now = ensure_utc(now) if now is not None else self.clock()
        shortest = INACTIVITY_THRESHOLDS[-1][0]
        deal_ids = [deal.id for deal in self.deal_repository.find_inactive(now - shortest)]

        def work(deal_id):
            deal = self._load_deal(deal_id)
            if DealStatus(deal.deal_status) in CLOSED_STATUSES:
                return EngagementUpdate(deal=deal.to_dict())
            idle_for = now - ensure_utc(deal.last_activity_at or deal.created_at)
            trigger = next((event for threshold, event in INACTIVITY_THRESHOLDS if idle_for >= threshold), None)
            return self._evaluate(deal, now, [trigger] if trigger else [])

        swept, failed = [], []
        for deal_id in deal_ids:
            result = self._execute('sweep_inactive_deal', deal_id, lambda: work(deal_id), deal_id=deal_id)
            (swept if result.is_success else failed).append(deal_id)

        performance_logger.log_batch('sweep_inactive_deals', len(swept), len(failed),
                                     (time.perf_counter() - started) * 1000)
        return Result.success({'swept': swept, 'failed': failed})

    # Reads

    def get_deal(self, deal_id: int) -> Result[Dict[str, Any]]:
        deal = self.deal_repository.get_by_id(deal_id)
        if deal is None:
            logger.warning("Deal not found", deal_id=deal_id)
            return Result.failure(f"Deal {deal_id} not found", code=ErrorCode.DATA_MISSING)
        return Result.success(deal.to_dict())

    def get_session_history(self, link_id: str) -> Result[List[SessionSummary]]:
        """Summaries of every session of a link, oldest first"""
        deal = self.deal_repository.get_by_link_id(link_id)
        if deal is None:
            logger.warning("No deal for link", link_id=link_id)
            return Result.failure(f"No deal for link {link_id}", code=ErrorCode.DATA_MISSING)
        try:
            summaries = [self._summary_for(deal, s) for s in self.session_repository.find_by_link(link_id)]
        except SQLAlchemyError as e:
            logger.error("Database error", operation='get_session_history', link_id=link_id, error=str(e))
            return Result.failure(f"Database error: {e}", code=ErrorCode.PERSISTENCE_FAILURE)
        return Result.success(summaries)
