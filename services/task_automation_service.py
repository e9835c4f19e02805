"""
AutomationRuleEngine - Automated Task Generation

Turns the current state of a deal into agent follow-up tasks from four
sources, all evaluated on every run:
- discrete triggers (link_created, property_liked, inactivity_3_days, ...)
- declarative rules (conjunctive, every matching active rule fires)
- the deal's current stage
- the deal's engagement tier

Each draft carries a milestone tag and at most one task ever exists per
(deal, milestone tag).
"""

import logging
from dataclasses import dataclass, asdict, field
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional, Sequence, Set, Union

from services.automation_rules import AutomationConfig, AutomationRule, TaskTemplate
from services.common.exceptions import PersistenceError
from services.common.result import ErrorCode, Result
from services.enums import (
    CLOSED_STATUSES, DealEvent, DealStage, DealStatus, TaskPriority, TaskStatus, TriggerType
)
from utils.datetime_utils import ensure_utc, utc_now, whole_days_between

logger = logging.getLogger(__name__)


def trigger_tag(event: DealEvent) -> str:
    return f"trigger:{event.value}"


def rule_tag(rule: AutomationRule) -> str:
    return f"rule:{rule.id}"


def stage_tag(stage: DealStage) -> str:
    return f"stage:{stage.value}"


def tier_tag(temperature) -> str:
    return f"tier:{temperature.value}"


@dataclass(frozen=True)
class DealState:
    """The slice of a deal that rules are evaluated against"""
    deal_id: int
    deal_stage: DealStage
    deal_status: DealStatus
    engagement_score: int
    last_activity_at: Optional[datetime] = None

    @classmethod
    def from_deal(cls, deal) -> 'DealState':
        return cls(
            deal_id=deal.id,
            deal_stage=DealStage(deal.deal_stage),
            deal_status=DealStatus(deal.deal_status),
            engagement_score=deal.engagement_score or 0,
            last_activity_at=ensure_utc(deal.last_activity_at),
        )


@dataclass(frozen=True)
class TaskDraft:
    """An automated task that has not been written yet"""
    deal_id: int
    title: str
    description: str
    task_type: str
    priority: TaskPriority
    due_date: datetime
    trigger_type: TriggerType
    milestone_tag: str
    created_at: datetime
    is_automated: bool = True

    def to_record(self) -> dict:
        """Column values for a new pending Task row"""
        data = asdict(self)
        data['priority'] = self.priority.value
        data['trigger_type'] = self.trigger_type.value
        data['status'] = TaskStatus.PENDING.value
        return data

    def to_dict(self) -> dict:
        data = self.to_record()
        data['due_date'] = self.due_date.isoformat()
        data['created_at'] = self.created_at.isoformat()
        return data


@dataclass
class PersistOutcome:
    saved: List = field(default_factory=list)
    skipped: List[TaskDraft] = field(default_factory=list)
    unsaved: List[TaskDraft] = field(default_factory=list)
    error: Optional[str] = None


class AutomationRuleEngine:
    """Evaluates automation rules and templates against a deal"""

    def __init__(self,
                 config: Optional[AutomationConfig] = None,
                 task_repository=None,
                 clock: Callable[[], datetime] = utc_now):
        """
        Args:
            config: Rule tables; AutomationConfig.default() when omitted
            task_repository: Source of already-persisted milestone tags and
                target for new tasks
            clock: Returns the current UTC time
        """
        self.config = config if config is not None else AutomationConfig.default()
        self.task_repository = task_repository
        self.clock = clock

    def _draft(self, state: DealState, template: TaskTemplate, trigger_type: TriggerType,
               milestone_tag: str, now: datetime, **title_values) -> TaskDraft:
        return TaskDraft(
            deal_id=state.deal_id,
            title=template.render_title(**title_values),
            description=template.description,
            task_type=template.task_type,
            priority=template.priority,
            due_date=now + timedelta(hours=template.delay_hours),
            trigger_type=trigger_type,
            milestone_tag=milestone_tag,
            created_at=now,
        )

    def evaluate_rule(self, rule: AutomationRule, state: DealState, now: datetime) -> bool:
        """True when every condition the rule specifies holds"""
        conditions = rule.conditions
        if conditions.deal_stages is not None and state.deal_stage not in conditions.deal_stages:
            return False
        if conditions.deal_statuses is not None and state.deal_status not in conditions.deal_statuses:
            return False
        if conditions.engagement_score is not None:
            if not conditions.engagement_score.contains(state.engagement_score):
                return False
        # A deal with no recorded activity is not held back by an activity window
        if conditions.days_since_activity is not None and state.last_activity_at is not None:
            days = whole_days_between(state.last_activity_at, now)
            if not conditions.days_since_activity.contains(days):
                return False
        return True

    def trigger_drafts(self, state: DealState, trigger: Union[str, DealEvent],
                       now: datetime) -> List[TaskDraft]:
        event = DealEvent(trigger)
        template = self.config.trigger_templates.get(event)
        if template is None:
            return []
        return [self._draft(state, template, TriggerType.EVENT, trigger_tag(event), now)]

    def rule_drafts(self, state: DealState, now: datetime) -> List[TaskDraft]:
        return [
            self._draft(state, rule.action, TriggerType.RULE_BASED, rule_tag(rule), now)
            for rule in self.config.active_rules
            if self.evaluate_rule(rule, state, now)
        ]

    def stage_drafts(self, state: DealState, now: datetime) -> List[TaskDraft]:
        template = self.config.stage_templates.get(state.deal_stage)
        if template is None:
            return []
        return [self._draft(state, template, TriggerType.STATUS_CHANGE, stage_tag(state.deal_stage), now)]

    def tier_drafts(self, state: DealState, now: datetime) -> List[TaskDraft]:
        tier = self.config.tier_for(state.engagement_score)
        if tier is None:
            return []
        return [self._draft(state, tier.template, TriggerType.SCORE_THRESHOLD,
                            tier_tag(tier.temperature), now, score=state.engagement_score)]

    def generate(self, state: DealState, triggers: Sequence[Union[str, DealEvent]] = (),
                 now: Optional[datetime] = None) -> List[TaskDraft]:
        """
        Union of the drafts from every source, before deduplication.

        Closed deals generate nothing.
        """
        if state.deal_status in CLOSED_STATUSES or state.deal_stage == DealStage.CLOSED:
            return []
        now = ensure_utc(now) if now is not None else self.clock()

        drafts: List[TaskDraft] = []
        for trigger in triggers:
            drafts.extend(self.trigger_drafts(state, trigger, now))
        drafts.extend(self.rule_drafts(state, now))
        drafts.extend(self.stage_drafts(state, now))
        drafts.extend(self.tier_drafts(state, now))
        return drafts

    @staticmethod
    def deduplicate(drafts: Iterable[TaskDraft], existing_tags: Iterable[str]) -> List[TaskDraft]:
        """Drop drafts whose milestone tag is already taken, keeping the first of any repeats"""
        seen: Set[str] = set(existing_tags)
        unique = []
        for draft in drafts:
            if draft.milestone_tag in seen:
                continue
            seen.add(draft.milestone_tag)
            unique.append(draft)
        return unique

    def evaluate(self, state: DealState, triggers: Sequence[Union[str, DealEvent]] = (),
                 existing_tags: Optional[Iterable[str]] = None,
                 now: Optional[datetime] = None) -> List[TaskDraft]:
        """
        Generate the new drafts for a deal.

        Args:
            state: Current deal state, already reflecting any stage change
            triggers: Discrete events observed in this evaluation
            existing_tags: Milestone tags already persisted for the deal; read
                from the task repository when not given
            now: Evaluation time; the clock is used when omitted

        Returns:
            Drafts whose milestone tags have never been emitted for this deal
        """
        if existing_tags is None:
            existing_tags = self.task_repository.get_milestone_tags(state.deal_id) \
                if self.task_repository is not None else ()
        drafts = self.deduplicate(self.generate(state, triggers, now), existing_tags)
        if drafts:
            logger.debug(f"Deal {state.deal_id}: {len(drafts)} new automated tasks "
                         f"{[d.milestone_tag for d in drafts]}")
        return drafts

    def persist(self, drafts: Sequence[TaskDraft]) -> Result[PersistOutcome]:
        """
        Write drafts one at a time.

        A draft whose tag was taken concurrently is skipped. Any other write
        error is reported with the unsaved drafts so the caller can retry;
        drafts already written stay written.
        """
        outcome = PersistOutcome()
        if not drafts:
            return Result.success(outcome)
        if self.task_repository is None:
            raise RuntimeError("persist requires a task repository")

        for index, draft in enumerate(drafts):
            try:
                task = self.task_repository.create_if_absent(**draft.to_record())
            except PersistenceError as e:
                outcome.unsaved = list(drafts[index:])
                outcome.error = e.message
                logger.error(f"Failed to persist automated tasks for deal {draft.deal_id}: {e}")
                return Result.failure(
                    f"Task persistence failed: {e.message}",
                    code=ErrorCode.PERSISTENCE_FAILURE,
                    metadata={'outcome': outcome},
                )
            if task is None:
                outcome.skipped.append(draft)
            else:
                outcome.saved.append(task)

        return Result.success(outcome)
