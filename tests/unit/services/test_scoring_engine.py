"""
Tests for ScoringEngine - session and deal engagement scoring
"""

import pytest
from datetime import datetime, timedelta, timezone

from services.enums import ClientTemperature
from services.scoring_service import EngagementMetrics, ScoringEngine, round_half_up
from services.session_aggregator import SessionSummary

NOW = datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)


def make_summary(**overrides):
    defaults = dict(
        session_id='s-1',
        link_id='link-1',
        start_time=NOW - timedelta(minutes=30),
        end_time=None,
        duration_seconds=0,
        total_properties_in_collection=10,
    )
    defaults.update(overrides)
    return SessionSummary(**defaults)


class TestScoringEngine:
    """Test ScoringEngine components and totals"""

    @pytest.fixture
    def engine(self):
        return ScoringEngine()

    def test_fully_engaged_return_visit_scores_100(self, engine):
        """Every component saturates for a thorough, long, positive return visit"""
        summary = make_summary(
            properties_viewed=10,
            properties_liked=5,
            properties_considered=3,
            detail_views_opened=8,
            average_seconds_per_property=180,
            is_return_visit=True,
            duration_seconds=1800,
        )

        metrics = engine.score_session(summary, NOW)

        assert metrics.session_completion == 25
        assert metrics.property_interaction == 35
        assert metrics.behavioral_indicators == 25
        assert metrics.recency_factor == 15
        assert metrics.total_score == 100

    def test_empty_collection_scores_zero(self, engine):
        summary = make_summary(
            total_properties_in_collection=0,
            properties_viewed=10,
            properties_liked=10,
            detail_views_opened=10,
            average_seconds_per_property=300,
            is_return_visit=True,
            duration_seconds=3600,
        )

        assert engine.score_session(summary, NOW) == EngagementMetrics.empty()

    @pytest.mark.parametrize('viewed,total,expected', [
        (0, 10, 0),
        (1, 10, 7),     # 5 + 0.1 * 20
        (5, 10, 15),    # 5 + 0.5 * 20
        (6, 10, 18),    # 16 + 0.1 * 18 = 17.8
        (10, 10, 25),
        (3, 8, 13),     # 12.5 rounds up
    ])
    def test_session_completion(self, engine, viewed, total, expected):
        summary = make_summary(properties_viewed=viewed, total_properties_in_collection=total)
        assert engine.session_completion(summary) == expected

    def test_return_visit_bonus_is_flat_and_capped(self, engine):
        partial = make_summary(properties_viewed=5, is_return_visit=True)
        full = make_summary(properties_viewed=10, is_return_visit=True)

        assert engine.session_completion(partial) == 20
        assert engine.session_completion(full) == 25

    def test_property_interaction_weights(self, engine):
        summary = make_summary(properties_liked=2, properties_considered=3,
                               detail_views_opened=1, average_seconds_per_property=65)
        # 2*2 + 3*1 + 1*3 + floor(65/30)
        assert engine.property_interaction(summary) == 12

    def test_property_interaction_capped(self, engine):
        summary = make_summary(detail_views_opened=20)
        assert engine.property_interaction(summary) == 35

    def test_behavioral_like_ratio_must_exceed_twenty_percent(self, engine):
        at_threshold = make_summary(properties_viewed=10, properties_liked=2)
        above = make_summary(properties_viewed=10, properties_liked=3)

        # consistency bonus only (liked > passed)
        assert engine.behavioral_indicators(at_threshold) == 10
        assert engine.behavioral_indicators(above) == 25

    def test_behavioral_long_session_must_exceed_five_minutes(self, engine):
        assert engine.behavioral_indicators(make_summary(duration_seconds=300)) == 0
        assert engine.behavioral_indicators(make_summary(duration_seconds=301)) == 10

    def test_behavioral_capped_at_25(self, engine):
        summary = make_summary(properties_viewed=4, properties_liked=4, is_return_visit=True,
                               duration_seconds=900)
        assert engine.behavioral_indicators(summary) == 25

    @pytest.mark.parametrize('hours_ago,expected', [
        (0, 15),
        (24, 15),
        (25, 10),
        (168, 10),
        (169, 5),
        (720, 5),
        (721, 0),
    ])
    def test_recency_factor_from_session_end(self, engine, hours_ago, expected):
        summary = make_summary(properties_viewed=1, end_time=NOW - timedelta(hours=hours_ago))
        assert engine.recency_factor(summary, NOW) == expected

    def test_open_session_is_recent(self, engine):
        summary = make_summary(properties_viewed=1, start_time=NOW - timedelta(days=40), end_time=None)
        assert engine.recency_factor(summary, NOW) == 15

    @pytest.mark.parametrize('end_time', [None, NOW, NOW - timedelta(days=2)])
    def test_session_without_activity_scores_zero(self, engine, end_time):
        summary = make_summary(end_time=end_time)

        metrics = engine.score_session(summary, NOW)

        assert metrics.recency_factor == 0
        assert metrics == EngagementMetrics.empty()

    def test_total_stays_in_bounds(self, engine):
        for viewed in range(0, 11):
            summary = make_summary(properties_viewed=viewed, properties_liked=viewed,
                                   detail_views_opened=viewed, duration_seconds=viewed * 100,
                                   average_seconds_per_property=100)
            metrics = engine.score_session(summary, NOW)
            assert 0 <= metrics.total_score <= 100
            assert metrics.total_score == min(100, metrics.session_completion
                                              + metrics.property_interaction
                                              + metrics.behavioral_indicators
                                              + metrics.recency_factor)

    def test_score_is_deterministic(self, engine):
        summary = make_summary(properties_viewed=4, properties_liked=1, duration_seconds=400)
        assert engine.score_session(summary, NOW) == engine.score_session(summary, NOW)


class TestDealScoring:
    """Weighted blending of several sessions"""

    @pytest.fixture
    def engine(self):
        return ScoringEngine()

    @pytest.fixture
    def older_session(self):
        # completion 15 + behavioral 10 + recency 5 = 30
        return make_summary(
            session_id='s-old',
            start_time=NOW - timedelta(days=10, minutes=10),
            end_time=NOW - timedelta(days=10),
            duration_seconds=600,
            properties_viewed=5,
        )

    @pytest.fixture
    def latest_session(self):
        # completion 25 + behavioral 10 + recency 15 = 50
        return make_summary(
            session_id='s-new',
            start_time=NOW - timedelta(hours=1, minutes=5),
            end_time=NOW - timedelta(hours=1),
            duration_seconds=300,
            properties_viewed=10,
            is_return_visit=True,
        )

    def test_single_session_weight_is_one(self, engine, latest_session):
        assert engine.session_weight(latest_session, 1, NOW) == 1.0

    def test_session_weight_blends_recency_and_quality(self, engine, older_session, latest_session):
        assert engine.session_weight(older_session, 2, NOW) == pytest.approx(5 / 15 * 0.7 + 0.3)
        assert engine.session_weight(latest_session, 2, NOW) == pytest.approx(0.7 + 0.15)

    def test_weighted_average_of_session_totals(self, engine, older_session, latest_session):
        metrics = engine.score_deal([older_session, latest_session], NOW)

        # (30 * 0.5333 + 50 * 0.85) / 1.3833 = 42.29
        assert metrics.total_score == 42

    def test_breakdown_comes_from_latest_session(self, engine, older_session, latest_session):
        metrics = engine.score_deal([latest_session, older_session], NOW)

        assert metrics.session_completion == 25
        assert metrics.behavioral_indicators == 10
        assert metrics.recency_factor == 15

    def test_single_session_deal_matches_session_score(self, engine, latest_session):
        assert engine.score_deal([latest_session], NOW) == engine.score_session(latest_session, NOW)

    def test_no_sessions(self, engine):
        assert engine.score_deal([], NOW).total_score == 0


class TestInsights:

    def test_hot_breakdown(self):
        insights = ScoringEngine().generate_insights(EngagementMetrics(25, 35, 25, 15, 100))

        assert insights.temperature == ClientTemperature.HOT
        assert 'Client thoroughly reviewed property collection' in insights.insights
        assert 'Schedule property viewings immediately' in insights.recommendations
        assert 'Prioritize immediate personal contact' in insights.recommendations

    def test_cold_breakdown(self):
        insights = ScoringEngine().generate_insights(EngagementMetrics.empty())

        assert insights.temperature == ClientTemperature.COLD
        assert 'Client browsed briefly through collection' in insights.insights
        assert 'Consider nurture campaign to rekindle interest' in insights.recommendations


@pytest.mark.parametrize('value,expected', [(0.5, 1), (1.5, 2), (2.5, 3), (2.49, 2), (0, 0)])
def test_round_half_up(value, expected):
    assert round_half_up(value) == expected
