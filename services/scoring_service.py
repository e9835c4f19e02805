"""
ScoringEngine - Client Engagement Scoring

Converts a SessionSummary into a 0-100 engagement score made of four
independently capped components:
- Session Completion (0-25 points)
- Property Interaction (0-35 points)
- Behavioral Indicators (0-25 points)
- Recency Factor (0-15 points)

Pure and deterministic: the caller supplies "now".
"""

import logging
import math
from dataclasses import dataclass, asdict, field
from datetime import datetime
from typing import Dict, List, Sequence

from services.enums import ClientTemperature
from services.session_aggregator import SessionSummary
from services.temperature_service import classify_temperature
from utils.datetime_utils import ensure_utc, hours_between

logger = logging.getLogger(__name__)


MAX_SESSION_COMPLETION = 25
MAX_PROPERTY_INTERACTION = 35
MAX_BEHAVIORAL_INDICATORS = 25
MAX_RECENCY_FACTOR = 15
MAX_TOTAL_SCORE = 100

RETURN_VISIT_COMPLETION_BONUS = 5
LONG_SESSION_SECONDS = 300
HIGH_LIKE_RATIO = 0.20
QUALITY_SESSION_SECONDS = 600


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 always rounding up"""
    return int(math.floor(value + 0.5))


def _clamp(value: float, upper: int, lower: int = 0) -> int:
    return int(max(lower, min(upper, value)))


@dataclass(frozen=True)
class EngagementMetrics:
    """Scoring result for one session, or the blended result for a deal"""
    session_completion: int = 0
    property_interaction: int = 0
    behavioral_indicators: int = 0
    recency_factor: int = 0
    total_score: int = 0

    @classmethod
    def empty(cls) -> 'EngagementMetrics':
        return cls()

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class EngagementInsights:
    temperature: ClientTemperature
    insights: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)


class ScoringEngine:
    """Computes engagement metrics from session summaries"""

    def score_session(self, summary: SessionSummary, now: datetime) -> EngagementMetrics:
        """
        Calculate the full engagement breakdown for one session.

        Args:
            summary: Session to score
            now: Reference time for the recency component

        Returns:
            EngagementMetrics whose total is the clamped sum of the four components
        """
        if summary.total_properties_in_collection <= 0:
            # Nothing to browse means nothing to score
            return EngagementMetrics.empty()

        session_completion = self.session_completion(summary)
        property_interaction = self.property_interaction(summary)
        behavioral_indicators = self.behavioral_indicators(summary)
        recency_factor = self.recency_factor(summary, now)

        total = _clamp(
            session_completion + property_interaction + behavioral_indicators + recency_factor,
            MAX_TOTAL_SCORE,
        )
        return EngagementMetrics(
            session_completion=session_completion,
            property_interaction=property_interaction,
            behavioral_indicators=behavioral_indicators,
            recency_factor=recency_factor,
            total_score=total,
        )

    def session_completion(self, summary: SessionSummary) -> int:
        """
        How much of the collection was viewed: 5-15 points up to half of it,
        16-25 beyond that, plus a flat return-visit bonus.
        """
        total = summary.total_properties_in_collection
        if total <= 0:
            return 0

        rate = summary.properties_viewed / total
        score = 0
        if 0 < rate <= 0.5:
            score = round_half_up(5 + rate * 20)
        elif rate > 0.5:
            score = round_half_up(16 + (rate - 0.5) * 18)

        # Flat bonus however many times the client has come back
        if summary.is_return_visit:
            score += RETURN_VISIT_COMPLETION_BONUS

        return _clamp(score, MAX_SESSION_COMPLETION)

    def property_interaction(self, summary: SessionSummary) -> int:
        score = (
            summary.properties_liked * 2
            + summary.properties_considered * 1
            + summary.detail_views_opened * 3
            + math.floor(summary.average_seconds_per_property / 30)
        )
        return _clamp(score, MAX_PROPERTY_INTERACTION)

    def behavioral_indicators(self, summary: SessionSummary) -> int:
        """
        Session quality signals. The four bonuses can add up to 45; the
        component is capped at 25 all the same.
        """
        score = 0
        if summary.is_return_visit:
            score += 10
        if summary.duration_seconds > LONG_SESSION_SECONDS:
            score += 10
        if summary.properties_viewed > 0:
            like_ratio = summary.properties_liked / summary.properties_viewed
            if like_ratio > HIGH_LIKE_RATIO:
                score += 15
        if self.has_consistent_preferences(summary):
            score += 10
        return _clamp(score, MAX_BEHAVIORAL_INDICATORS)

    def recency_factor(self, summary: SessionSummary, now: datetime) -> int:
        # A session without any interaction has nothing recent to reward
        if summary.properties_viewed <= 0:
            return 0
        reference = summary.end_time if summary.end_time is not None else now
        hours = hours_between(reference, now)
        if hours <= 24:
            return 15
        if hours <= 168:
            return 10
        if hours <= 720:
            return 5
        return 0

    @staticmethod
    def has_consistent_preferences(summary: SessionSummary) -> bool:
        # Liked more than passed on
        return summary.properties_liked > summary.properties_passed

    def session_weight(self, summary: SessionSummary, session_count: int, now: datetime) -> float:
        """Weight of one session in a deal-level blend: 70% recency, 30% quality."""
        if session_count == 1:
            return 1.0
        recency_weight = self.recency_factor(summary, now) / MAX_RECENCY_FACTOR
        quality_weight = min(1.0, summary.duration_seconds / QUALITY_SESSION_SECONDS)
        return recency_weight * 0.7 + quality_weight * 0.3

    def score_deal(self, sessions: Sequence[SessionSummary], now: datetime) -> EngagementMetrics:
        """
        Blend every session of a deal into one score.

        The total is the weighted average of the per-session totals, while the
        component breakdown is taken from the most recently started session.
        """
        if not sessions:
            return EngagementMetrics.empty()

        weighted_total = 0.0
        total_weight = 0.0
        for summary in sessions:
            metrics = self.score_session(summary, now)
            weight = self.session_weight(summary, len(sessions), now)
            weighted_total += metrics.total_score * weight
            total_weight += weight

        aggregate = weighted_total / total_weight if total_weight > 0 else 0.0

        latest = max(sessions, key=lambda s: ensure_utc(s.start_time))
        latest_metrics = self.score_session(latest, now)

        logger.debug(f"Deal score blended from {len(sessions)} sessions: {aggregate:.2f}")
        return EngagementMetrics(
            session_completion=latest_metrics.session_completion,
            property_interaction=latest_metrics.property_interaction,
            behavioral_indicators=latest_metrics.behavioral_indicators,
            recency_factor=latest_metrics.recency_factor,
            total_score=_clamp(round_half_up(aggregate), MAX_TOTAL_SCORE),
        )

    def generate_insights(self, metrics: EngagementMetrics) -> EngagementInsights:
        """Plain-language reading of a score breakdown for the agent."""
        result = EngagementInsights(temperature=classify_temperature(metrics.total_score))
        insights, recommendations = result.insights, result.recommendations

        if metrics.session_completion >= 20:
            insights.append('Client thoroughly reviewed property collection')
            recommendations.append('Follow up with detailed property information')
        elif metrics.session_completion >= 10:
            insights.append('Client showed moderate interest in properties')
            recommendations.append('Send curated selection of similar properties')
        else:
            insights.append('Client browsed briefly through collection')
            recommendations.append('Re-engage with more targeted property options')

        if metrics.property_interaction >= 25:
            insights.append('High engagement with individual properties')
            recommendations.append('Schedule property viewings immediately')
        elif metrics.property_interaction >= 15:
            insights.append('Solid interest in specific properties')
            recommendations.append('Provide additional property details and arrange viewings')

        if metrics.behavioral_indicators >= 20:
            insights.append('Strong behavioral signals indicate serious buyer intent')
            recommendations.append('Prioritize immediate personal contact')
        elif metrics.behavioral_indicators >= 10:
            insights.append('Positive behavioral patterns detected')
            recommendations.append('Schedule follow-up call within 24 hours')

        if metrics.recency_factor >= 10:
            insights.append('Recent activity indicates active property search')
            recommendations.append('Contact while the search is active')
        elif metrics.recency_factor >= 5:
            insights.append('Some recent activity, interest may still be active')
            recommendations.append('Follow up with gentle re-engagement')
        else:
            insights.append('Activity was some time ago')
            recommendations.append('Consider nurture campaign to rekindle interest')

        return result
