"""
Tests for EngagementOrchestrator, run against the in-memory repositories
"""

import threading
from collections import Counter
from datetime import timedelta

import pytest

from services.common.exceptions import ConcurrencyConflictError
from services.common.result import ErrorCode
from services.engagement_orchestrator import EngagementOrchestrator
from services.enums import ClientTemperature, DealStage, Milestone
from tests.fixtures.engine_fakes import NOW, PROPERTY_IDS, FakeTaskRepository, create_test_deal
from utils.keyed_lock import KeyedLock

T0 = NOW - timedelta(seconds=1800)


@pytest.fixture
def repos(engine_store):
    return engine_store.repositories()


@pytest.fixture
def orchestrator(repos):
    return EngagementOrchestrator(**repos, clock=lambda: NOW)


@pytest.fixture
def deal_id(orchestrator):
    result = orchestrator.on_link_created('link-1', 'agent-1', PROPERTY_IDS)
    assert result.is_success
    return result.data.deal_id


@pytest.fixture
def open_session(orchestrator, deal_id):
    result = orchestrator.start_session('link-1', 'sess-1', started_at=T0)
    assert result.is_success
    return 'sess-1'


def browse_everything(orchestrator, session_id='sess-1', link_id='link-1'):
    """View and open every property, liking the first five"""
    results = []
    for i, property_id in enumerate(PROPERTY_IDS, start=1):
        at = T0 + timedelta(seconds=100 * i)
        results.append(orchestrator.record_interaction(session_id, link_id, property_id, 'view', at))
        results.append(orchestrator.record_interaction(
            session_id, link_id, property_id, 'detail', at + timedelta(seconds=10)))
        if i <= 5:
            results.append(orchestrator.record_interaction(
                session_id, link_id, property_id, 'like', at + timedelta(seconds=20)))
    return results


class TestLinkLifecycle:

    def test_link_created_opens_deal(self, orchestrator, engine_store):
        result = orchestrator.on_link_created('link-1', 'agent-1', PROPERTY_IDS, client_id='client-9')

        assert result.is_success
        assert result.metadata == {'attempts': 1, 'created': True}
        deal = result.data.deal
        assert deal['deal_stage'] == 'created'
        assert deal['deal_status'] == 'active'
        assert deal['engagement_score'] == 0
        assert deal['client_temperature'] == 'cold'
        assert deal['deal_name'] == 'Property Collection - 10 properties'
        assert sorted(engine_store.tags_for(deal['id'])) == ['stage:created', 'trigger:link_created']
        assert engine_store.commits == 1

    def test_link_created_twice_returns_existing_deal(self, orchestrator, deal_id, engine_store):
        result = orchestrator.on_link_created('link-1', 'agent-1', PROPERTY_IDS)

        assert result.is_success
        assert result.metadata == {'created': False}
        assert result.data.deal_id == deal_id
        assert len(engine_store.tables['deals']) == 1

    def test_link_created_rechecks_under_lock(self, orchestrator, repos, deal_id, engine_store, mocker):
        deal_repository = repos['deal_repository']
        existing = deal_repository.get_by_id(deal_id)
        # The unlocked lookup misses a deal created in the meantime
        mocker.patch.object(deal_repository, 'get_by_link_id', side_effect=[None, existing])

        result = orchestrator.on_link_created('link-1', 'agent-1', PROPERTY_IDS)

        assert result.is_success
        assert result.metadata['created'] is False
        assert result.data.deal_id == deal_id
        assert len(engine_store.tables['deals']) == 1

    def test_parallel_link_creation_opens_one_deal(self, orchestrator, engine_store):
        start = threading.Barrier(4)
        results = []

        def create():
            start.wait(5)
            results.append(orchestrator.on_link_created('link-1', 'agent-1', PROPERTY_IDS))

        threads = [threading.Thread(target=create) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert all(result.is_success for result in results)
        assert [result.metadata['created'] for result in results].count(True) == 1
        assert len(engine_store.tables['deals']) == 1
        assert len({result.data.deal_id for result in results}) == 1

    @pytest.mark.parametrize('link_id,agent_id,property_ids', [
        ('', 'agent-1', PROPERTY_IDS),
        ('link-1', None, PROPERTY_IDS),
        ('link-1', 'agent-1', ['prop-1', '']),
    ])
    def test_link_created_rejects_bad_input(self, orchestrator, engine_store, link_id, agent_id, property_ids):
        result = orchestrator.on_link_created(link_id, agent_id, property_ids)

        assert result.error_code == ErrorCode.INVALID_INPUT
        assert engine_store.tables['deals'] == {}

    def test_link_shared_advances_stage(self, orchestrator, deal_id, engine_store):
        result = orchestrator.on_link_shared('link-1')

        assert result.is_success
        assert result.data.deal['deal_stage'] == 'shared'
        assert result.data.transition.changed
        assert {'trigger:link_created', 'stage:shared'} <= set(engine_store.tags_for(deal_id))

    def test_link_shared_unknown_link(self, orchestrator):
        assert orchestrator.on_link_shared('nope').error_code == ErrorCode.DATA_MISSING


class TestEngagementFlow:

    def test_session_start_marks_deal_accessed(self, orchestrator, deal_id, engine_store):
        result = orchestrator.start_session('link-1', 'sess-1', client_context={'device': 'mobile'},
                                            started_at=T0)

        assert result.is_success
        deal = result.data.deal
        assert deal['deal_stage'] == 'accessed'
        assert deal['session_count'] == 1
        assert deal['engagement_score'] == 0
        assert {'trigger:link_accessed', 'stage:accessed'} <= set(engine_store.tags_for(deal_id))
        assert engine_store.tables['sessions']['sess-1'].is_return_visit is False

    def test_restarting_same_session_is_a_noop(self, orchestrator, deal_id, open_session, engine_store):
        result = orchestrator.start_session('link-1', 'sess-1')

        assert result.is_success
        assert result.data.deal['session_count'] == 1
        assert len(engine_store.tables['sessions']) == 1

    def test_second_session_is_return_visit(self, orchestrator, open_session, engine_store):
        orchestrator.start_session('link-1', 'sess-2', started_at=NOW)

        assert engine_store.tables['sessions']['sess-2'].is_return_visit is True

    def test_full_browse_reaches_hot(self, orchestrator, deal_id, open_session, engine_store):
        results = browse_everything(orchestrator)

        assert all(result.is_success for result in results)
        final = results[-1].data
        assert final.metrics.to_dict() == {
            'session_completion': 25,
            'property_interaction': 35,
            'behavioral_indicators': 25,
            'recency_factor': 15,
            'total_score': 100,
        }
        deal = engine_store.tables['deals'][deal_id]
        assert deal.engagement_score == 100
        assert deal.score_high_water_mark == 100
        assert deal.client_temperature == 'hot'
        assert deal.deal_stage == 'qualified'

        milestones = Counter(m.name for m in engine_store.milestones_for(deal_id))
        assert milestones == Counter({m.value: 1 for m in Milestone})

        tags = Counter(engine_store.tags_for(deal_id))
        for tag in ('trigger:high_engagement', 'trigger:property_liked',
                    'rule:hot-lead-immediate', 'tier:hot', 'stage:engaged', 'stage:qualified'):
            assert tags[tag] == 1
        assert max(tags.values()) == 1

    def test_milestones_published_once(self, orchestrator, deal_id, open_session):
        published = []
        orchestrator.publisher.subscribe(published.append)

        browse_everything(orchestrator)

        assert [event.milestone for event in published] == [
            Milestone.FIRST_ENGAGEMENT, Milestone.MODERATE_ENGAGEMENT, Milestone.HIGH_ENGAGEMENT]
        assert all(event.deal_id == deal_id for event in published)

    def test_end_session_finalizes_and_rescoring(self, orchestrator, deal_id, open_session, engine_store):
        browse_everything(orchestrator)

        result = orchestrator.end_session('sess-1', 'link-1', feedback={'rating': 5})

        assert result.is_success
        update = result.data
        assert update.session_finalized is True
        assert update.metrics.total_score == 100
        assert update.insights.temperature == ClientTemperature.HOT
        assert update.deal['total_time_spent'] == 1800
        browsing_session = engine_store.tables['sessions']['sess-1']
        assert browsing_session.ended_at == NOW
        assert browsing_session.final_score == 100
        assert browsing_session.feedback == {'rating': 5}

    def test_ending_idle_session_keeps_deal_at_zero(self, orchestrator, deal_id, open_session, engine_store):
        result = orchestrator.end_session('sess-1', 'link-1')

        assert result.is_success
        assert result.data.metrics.total_score == 0
        assert result.data.deal['engagement_score'] == 0
        assert engine_store.tables['sessions']['sess-1'].final_score == 0
        tags = engine_store.tags_for(deal_id)
        assert 'rule:cold-lead-nurture' not in tags
        assert 'tier:cold' not in tags

    def test_end_session_twice(self, orchestrator, open_session):
        orchestrator.end_session('sess-1', 'link-1')

        result = orchestrator.end_session('sess-1', 'link-1')

        assert result.is_success
        assert result.data.session_finalized is False
        assert result.data.metrics is None

    def test_session_history(self, orchestrator, open_session):
        orchestrator.record_interaction('sess-1', 'link-1', 'prop-1', 'view', T0 + timedelta(seconds=60))

        result = orchestrator.get_session_history('link-1')

        assert result.is_success
        assert [s.session_id for s in result.data] == ['sess-1']
        assert result.data[0].properties_viewed == 1
        assert result.data[0].is_open

    def test_get_deal(self, orchestrator, deal_id):
        result = orchestrator.get_deal(deal_id)

        assert result.is_success
        assert result.data['link_id'] == 'link-1'


class TestFailures:

    def test_missing_records(self, orchestrator, deal_id, open_session):
        assert orchestrator.get_deal(999).error_code == ErrorCode.DATA_MISSING
        assert orchestrator.get_session_history('nope').error_code == ErrorCode.DATA_MISSING
        assert orchestrator.start_session('nope', 'sess-9').error_code == ErrorCode.DATA_MISSING
        assert orchestrator.end_session('sess-9', 'link-1').error_code == ErrorCode.DATA_MISSING
        assert orchestrator.record_deal_event(999, 'offer_interest').error_code == ErrorCode.DATA_MISSING
        assert orchestrator.record_interaction(
            'sess-1', 'nope', 'prop-1', 'view', NOW).error_code == ErrorCode.DATA_MISSING
        assert orchestrator.record_interaction(
            'sess-9', 'link-1', 'prop-1', 'view', NOW).error_code == ErrorCode.DATA_MISSING

    @pytest.mark.parametrize('property_id,action,timestamp', [
        ('prop-99', 'view', NOW),
        ('prop-1', 'share', NOW),
        ('prop-1', 'view', T0 - timedelta(seconds=1)),
        ('prop-1', 'view', 'yesterday'),
    ])
    def test_invalid_interaction_leaves_state_untouched(self, orchestrator, deal_id, open_session,
                                                        engine_store, property_id, action, timestamp):
        before = engine_store.tables['deals'][deal_id].to_dict()

        result = orchestrator.record_interaction('sess-1', 'link-1', property_id, action, timestamp)

        assert result.error_code == ErrorCode.INVALID_INPUT
        assert engine_store.tables['events'] == {}
        assert engine_store.tables['deals'][deal_id].to_dict() == before

    def test_interaction_on_closed_session(self, orchestrator, open_session, engine_store):
        orchestrator.end_session('sess-1', 'link-1')

        result = orchestrator.record_interaction('sess-1', 'link-1', 'prop-1', 'view', NOW)

        assert result.error_code == ErrorCode.INVALID_INPUT
        assert engine_store.tables['events'] == {}

    def test_interaction_on_wrong_link(self, orchestrator, open_session, engine_store):
        orchestrator.on_link_created('link-2', 'agent-1', PROPERTY_IDS)

        result = orchestrator.record_interaction('sess-1', 'link-2', 'prop-1', 'view', NOW)

        assert result.error_code == ErrorCode.INVALID_INPUT
        assert engine_store.tables['events'] == {}
        assert orchestrator.end_session('sess-1', 'link-2').error_code == ErrorCode.INVALID_INPUT

    def test_task_persistence_failure_still_commits_deal(self, engine_store):
        repos = engine_store.repositories()
        repos['task_repository'] = FakeTaskRepository(engine_store, fail_after=0)
        orchestrator = EngagementOrchestrator(**repos, clock=lambda: NOW)

        result = orchestrator.on_link_created('link-1', 'agent-1', PROPERTY_IDS)

        assert result.is_success
        assert result.data.tasks == []
        assert result.data.task_persistence_error is not None
        assert sorted(d.milestone_tag for d in result.data.unsaved_tasks) == [
            'stage:created', 'trigger:link_created']
        assert len(engine_store.tables['deals']) == 1
        assert engine_store.commits == 1


class TestDealEventsAndStatus:

    def test_agent_event_advances_and_creates_task(self, orchestrator, deal_id, engine_store):
        result = orchestrator.record_deal_event(deal_id, 'offer_interest')

        assert result.is_success
        assert result.data.deal['deal_stage'] == 'advanced'
        assert 'trigger:offer_interest' in engine_store.tags_for(deal_id)

    def test_non_agent_event_rejected(self, orchestrator, deal_id):
        assert orchestrator.record_deal_event(deal_id, 'link_created').error_code == ErrorCode.INVALID_INPUT
        assert orchestrator.record_deal_event(deal_id, 'bogus').error_code == ErrorCode.INVALID_INPUT

    def test_invalid_status_change(self, orchestrator, deal_id, engine_store):
        result = orchestrator.change_deal_status(deal_id, 'closed-won')

        assert result.error_code == ErrorCode.INVALID_INPUT
        assert engine_store.tables['deals'][deal_id].deal_status == 'active'

    def test_unknown_status(self, orchestrator, deal_id):
        assert orchestrator.change_deal_status(deal_id, 'won').error_code == ErrorCode.INVALID_INPUT

    def test_closing_deal_moves_to_closed_stage(self, orchestrator, deal_id, engine_store):
        assert orchestrator.change_deal_status(deal_id, 'qualified').is_success
        tags_before = engine_store.tags_for(deal_id)

        result = orchestrator.change_deal_status(deal_id, 'closed-won')

        assert result.is_success
        assert result.data.deal['deal_status'] == 'closed-won'
        assert result.data.deal['deal_stage'] == 'closed'
        assert result.data.transition.current == DealStage.CLOSED
        assert result.data.tasks == []
        assert engine_store.tags_for(deal_id) == tags_before

    def test_same_status_is_noop(self, orchestrator, deal_id):
        result = orchestrator.change_deal_status(deal_id, 'active')

        assert result.is_success
        assert result.data.transition is None


class TestConcurrencyHandling:

    def test_conflict_is_retried(self, orchestrator, repos, deal_id, engine_store, mocker):
        mocker.patch.object(repos['deal_repository'], 'commit',
                            side_effect=[ConcurrencyConflictError("stale deal"), None])

        result = orchestrator.record_deal_event(deal_id, 'showing_scheduled')

        assert result.is_success
        assert result.metadata == {'attempts': 2}
        assert engine_store.rollbacks == 1
        assert engine_store.tags_for(deal_id).count('trigger:showing_scheduled') == 1

    def test_conflict_gives_up_after_limit(self, orchestrator, repos, deal_id, engine_store, mocker):
        mocker.patch.object(repos['deal_repository'], 'commit',
                            side_effect=ConcurrencyConflictError("stale deal"))

        result = orchestrator.record_deal_event(deal_id, 'showing_scheduled')

        assert result.error_code == ErrorCode.CONCURRENCY_CONFLICT
        assert result.metadata == {'attempts': orchestrator.conflict_retry_limit}
        assert engine_store.rollbacks == orchestrator.conflict_retry_limit

    def test_lock_timeout(self, repos, engine_store):
        locks = KeyedLock()
        orchestrator = EngagementOrchestrator(**repos, clock=lambda: NOW, locks=locks, lock_timeout=0.05)
        deal_id = orchestrator.on_link_created('link-1', 'agent-1', PROPERTY_IDS).data.deal_id
        held = threading.Event()
        release = threading.Event()

        def hold_lock():
            with locks.hold(deal_id):
                held.set()
                release.wait(5)

        holder = threading.Thread(target=hold_lock)
        holder.start()
        try:
            held.wait(5)
            result = orchestrator.record_deal_event(deal_id, 'showing_scheduled')
        finally:
            release.set()
            holder.join()

        assert result.error_code == ErrorCode.TIMEOUT
        assert 'trigger:showing_scheduled' not in engine_store.tags_for(deal_id)

    def test_orchestrators_share_injected_locks(self, repos, engine_store):
        locks = KeyedLock()
        first = EngagementOrchestrator(**repos, clock=lambda: NOW, locks=locks, lock_timeout=0.05)
        second = EngagementOrchestrator(**repos, clock=lambda: NOW, locks=locks, lock_timeout=0.05)
        deal_id = first.on_link_created('link-1', 'agent-1', PROPERTY_IDS).data.deal_id

        assert first.locks is locks
        assert second.locks is locks
        with locks.hold(deal_id):
            result = second.record_deal_event(deal_id, 'showing_scheduled')

        assert result.error_code == ErrorCode.TIMEOUT


class TestMaintenance:

    def test_sweep_fires_highest_inactivity_threshold(self, orchestrator, repos, engine_store):
        deal_repository = repos['deal_repository']
        week = create_test_deal(deal_repository, link_id='link-a', last_activity_at=NOW - timedelta(days=8))
        days = create_test_deal(deal_repository, link_id='link-b', last_activity_at=NOW - timedelta(days=4))
        recent = create_test_deal(deal_repository, link_id='link-c', last_activity_at=NOW - timedelta(days=1))
        closed = create_test_deal(deal_repository, link_id='link-d', deal_status='closed-lost',
                                  deal_stage='closed', last_activity_at=NOW - timedelta(days=30))

        result = orchestrator.sweep_inactive_deals(now=NOW)

        assert result.is_success
        assert sorted(result.data['swept']) == sorted([week.id, days.id])
        assert result.data['failed'] == []
        week_tags = engine_store.tags_for(week.id)
        assert 'trigger:inactivity_1_week' in week_tags
        assert 'trigger:inactivity_3_days' not in week_tags
        assert 'trigger:inactivity_3_days' in engine_store.tags_for(days.id)
        assert engine_store.tags_for(recent.id) == []
        assert engine_store.tags_for(closed.id) == []

    def test_sweep_twice_creates_no_duplicates(self, orchestrator, repos, engine_store):
        deal = create_test_deal(repos['deal_repository'], last_activity_at=NOW - timedelta(days=4))

        orchestrator.sweep_inactive_deals(now=NOW)
        first = sorted(engine_store.tags_for(deal.id))
        orchestrator.sweep_inactive_deals(now=NOW)

        assert sorted(engine_store.tags_for(deal.id)) == first

    def test_finalize_inactive_sessions(self, orchestrator, engine_store):
        orchestrator.on_link_created('link-1', 'agent-1', PROPERTY_IDS)
        orchestrator.on_link_created('link-2', 'agent-1', PROPERTY_IDS)
        orchestrator.start_session('link-1', 'sess-idle', started_at=NOW - timedelta(minutes=40))
        orchestrator.start_session('link-2', 'sess-active', started_at=NOW - timedelta(minutes=5))

        result = orchestrator.finalize_inactive_sessions(now=NOW)

        assert result.is_success
        assert result.data == {'finalized': ['sess-idle'], 'failed': []}
        assert result.metadata == {'checked': 1}
        sessions = engine_store.tables['sessions']
        assert sessions['sess-idle'].ended_at == NOW - timedelta(minutes=40)
        assert sessions['sess-active'].ended_at is None
