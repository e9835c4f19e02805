"""
Rule tables for automated task generation

Everything the AutomationRuleEngine fires from lives in an AutomationConfig
handed to it at construction. AutomationConfig.default() is the production
rule set; tests build their own.
"""

from dataclasses import dataclass, field, replace
from typing import Dict, FrozenSet, Mapping, Optional, Tuple

from services.enums import (
    ClientTemperature, DealEvent, DealStage, DealStatus, TaskPriority
)


@dataclass(frozen=True)
class ValueRange:
    """Inclusive numeric range"""
    min: float
    max: float

    def contains(self, value: float) -> bool:
        return self.min <= value <= self.max


@dataclass(frozen=True)
class TaskTemplate:
    """What to create when a rule or trigger fires"""
    title: str
    description: str
    task_type: str
    priority: TaskPriority
    delay_hours: float = 0

    def render_title(self, **values) -> str:
        return self.title.format(**values) if values else self.title


@dataclass(frozen=True)
class RuleConditions:
    """
    Conjunction of optional conditions. A condition left as None is not
    checked at all.
    """
    deal_stages: Optional[FrozenSet[DealStage]] = None
    deal_statuses: Optional[FrozenSet[DealStatus]] = None
    engagement_score: Optional[ValueRange] = None
    days_since_activity: Optional[ValueRange] = None


@dataclass(frozen=True)
class AutomationRule:
    id: str
    name: str
    conditions: RuleConditions
    action: TaskTemplate
    description: str = ''
    is_active: bool = True


@dataclass(frozen=True)
class EngagementTier:
    """Score band that yields one task, keyed by client temperature"""
    temperature: ClientTemperature
    score_range: ValueRange
    template: TaskTemplate


DEFAULT_RULES = (
    AutomationRule(
        id='hot-lead-immediate',
        name='Hot Lead Immediate Contact',
        description='Automatically create urgent task for high engagement scores',
        conditions=RuleConditions(engagement_score=ValueRange(80, 100)),
        action=TaskTemplate(
            title='Hot Lead - Call Now',
            description='High engagement score requires immediate contact',
            task_type='urgent_call',
            priority=TaskPriority.URGENT,
            delay_hours=0,
        ),
    ),
    AutomationRule(
        id='qualified-followup',
        name='Qualified Lead Follow-up',
        description='Follow up with qualified leads after some activity',
        conditions=RuleConditions(
            deal_stages=frozenset({DealStage.QUALIFIED}),
            days_since_activity=ValueRange(1, 3),
        ),
        action=TaskTemplate(
            title='Qualified lead check-in',
            description='Follow up with qualified lead who has been inactive',
            task_type='follow_up',
            priority=TaskPriority.HIGH,
            delay_hours=2,
        ),
    ),
    AutomationRule(
        id='warm-lead-followup',
        name='Warm Lead Follow-up',
        description='Schedule follow-up for moderately engaged clients',
        conditions=RuleConditions(engagement_score=ValueRange(50, 79)),
        action=TaskTemplate(
            title='Warm Lead - Follow up within 48 hours',
            description='Moderate engagement detected, schedule follow-up call',
            task_type='follow_up',
            priority=TaskPriority.HIGH,
            delay_hours=24,
        ),
    ),
    AutomationRule(
        id='cold-lead-nurture',
        name='Cold Lead Nurture',
        description='Add low-engagement clients to nurture campaign',
        conditions=RuleConditions(engagement_score=ValueRange(1, 49)),
        action=TaskTemplate(
            title='Cold Lead - Add to nurture campaign',
            description='Low engagement score, consider nurture sequence',
            task_type='email',
            priority=TaskPriority.LOW,
            delay_hours=168,  # 7 days
        ),
    ),
)

DEFAULT_TRIGGER_TEMPLATES: Dict[DealEvent, TaskTemplate] = {
    DealEvent.LINK_CREATED: TaskTemplate(
        'Follow up on shared property link',
        'Check if client has accessed the property collection',
        'follow_up', TaskPriority.MEDIUM, 24),
    DealEvent.LINK_ACCESSED: TaskTemplate(
        'Client viewed properties - Follow up',
        'Reach out to discuss property preferences and questions',
        'follow_up', TaskPriority.HIGH, 2),
    DealEvent.HIGH_ENGAGEMENT: TaskTemplate(
        'HOT LEAD - Call immediately',
        'Client showed high engagement. Priority contact required.',
        'call', TaskPriority.URGENT, 1),
    DealEvent.PROPERTY_LIKED: TaskTemplate(
        'Client liked properties - Schedule showing',
        'Client has shown interest. Offer property viewing.',
        'schedule_showing', TaskPriority.HIGH, 4),
    DealEvent.INACTIVITY_3_DAYS: TaskTemplate(
        'Re-engagement needed',
        'No activity in 3 days. Send follow-up message.',
        'follow_up', TaskPriority.MEDIUM, 0),
    DealEvent.INACTIVITY_1_WEEK: TaskTemplate(
        'Nurture lead with new properties',
        'Share new properties matching client preferences',
        'nurture', TaskPriority.LOW, 0),
    DealEvent.SHOWING_SCHEDULED: TaskTemplate(
        'Prepare for property showing',
        'Review property details and prepare showing materials',
        'preparation', TaskPriority.HIGH, 2),
    DealEvent.SHOWING_COMPLETED: TaskTemplate(
        'Post-showing follow-up',
        'Get feedback and next steps from client after showing',
        'follow_up', TaskPriority.HIGH, 4),
    DealEvent.OFFER_INTEREST: TaskTemplate(
        'Prepare offer documentation',
        'Client expressed offer interest. Prepare paperwork.',
        'documentation', TaskPriority.URGENT, 1),
    DealEvent.FINANCING_NEEDED: TaskTemplate(
        'Connect with lender',
        'Help client with mortgage pre-approval process',
        'financing', TaskPriority.HIGH, 24),
}

DEFAULT_STAGE_TEMPLATES: Dict[DealStage, TaskTemplate] = {
    DealStage.CREATED: TaskTemplate(
        'Prepare property collection',
        'Review and optimize property selection for client',
        'preparation', TaskPriority.MEDIUM, 1),
    DealStage.SHARED: TaskTemplate(
        'Monitor link activity',
        'Track client engagement with property collection',
        'monitoring', TaskPriority.LOW, 24),
    DealStage.ACCESSED: TaskTemplate(
        'Analyze browsing behavior',
        'Review which properties caught client interest',
        'analysis', TaskPriority.MEDIUM, 6),
    DealStage.ENGAGED: TaskTemplate(
        'Schedule consultation call',
        'Set up call to discuss property preferences in detail',
        'consultation', TaskPriority.HIGH, 24),
    DealStage.QUALIFIED: TaskTemplate(
        'Prepare property showings',
        'Coordinate viewing schedules for interested properties',
        'schedule_showing', TaskPriority.HIGH, 48),
    DealStage.ADVANCED: TaskTemplate(
        'Prepare offer documentation',
        'Get ready for potential offer submission',
        'documentation', TaskPriority.HIGH, 24),
}

# Scores are whole numbers, so the cold band starting at 1 means "above zero"
DEFAULT_ENGAGEMENT_TIERS = (
    EngagementTier(ClientTemperature.HOT, ValueRange(80, 100), TaskTemplate(
        'HOT LEAD ({score}/100) - Priority contact',
        'Client is highly engaged. Immediate follow-up required.',
        'urgent_follow_up', TaskPriority.URGENT, 0.5)),
    EngagementTier(ClientTemperature.WARM, ValueRange(50, 79), TaskTemplate(
        'Warm lead ({score}/100) - Follow up today',
        'Client showing moderate interest. Follow up within 24 hours.',
        'follow_up', TaskPriority.HIGH, 24)),
    EngagementTier(ClientTemperature.COLD, ValueRange(1, 49), TaskTemplate(
        'Cold lead ({score}/100) - Nurture',
        'Client showed minimal engagement. Add to nurture sequence.',
        'nurture', TaskPriority.LOW, 72)),
)


@dataclass(frozen=True)
class AutomationConfig:
    """Complete, swappable rule set for the AutomationRuleEngine"""
    rules: Tuple[AutomationRule, ...] = ()
    trigger_templates: Mapping[DealEvent, TaskTemplate] = field(default_factory=dict)
    stage_templates: Mapping[DealStage, TaskTemplate] = field(default_factory=dict)
    engagement_tiers: Tuple[EngagementTier, ...] = ()

    @classmethod
    def default(cls) -> 'AutomationConfig':
        return cls(
            rules=DEFAULT_RULES,
            trigger_templates=dict(DEFAULT_TRIGGER_TEMPLATES),
            stage_templates=dict(DEFAULT_STAGE_TEMPLATES),
            engagement_tiers=DEFAULT_ENGAGEMENT_TIERS,
        )

    @property
    def active_rules(self) -> Tuple[AutomationRule, ...]:
        return tuple(rule for rule in self.rules if rule.is_active)

    def with_rules(self, *rules: AutomationRule) -> 'AutomationConfig':
        return replace(self, rules=tuple(rules))

    def tier_for(self, score: float) -> Optional[EngagementTier]:
        for tier in self.engagement_tiers:
            if tier.score_range.contains(score):
                return tier
        return None
