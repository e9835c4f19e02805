"""
Tests for DealStageMachine - forward-only stage progression and status rules
"""

import pytest
from unittest.mock import Mock

from services.common.result import ErrorCode
from services.deal_stage_service import DealStageMachine, StageTransition
from services.enums import STAGE_ORDER, DealEvent, DealStage, DealStatus


class TestStageEvaluation:
    """Automatic transitions from scores and events"""

    @pytest.fixture
    def machine(self):
        return DealStageMachine()

    @pytest.mark.parametrize('event,expected', [
        (DealEvent.LINK_SHARED, DealStage.SHARED),
        (DealEvent.LINK_ACCESSED, DealStage.ACCESSED),
        (DealEvent.PROPERTY_LIKED, DealStage.ENGAGED),
        (DealEvent.SHOWING_COMPLETED, DealStage.ADVANCED),
        (DealEvent.OFFER_INTEREST, DealStage.ADVANCED),
    ])
    def test_event_targets_from_created(self, machine, event, expected):
        transition = machine.evaluate(DealStage.CREATED, events=[event])

        assert transition.current == expected
        assert transition.changed is True
        assert transition.reasons == (f"event:{event.value}",)

    @pytest.mark.parametrize('score,expected', [
        (0, DealStage.ACCESSED),
        (49, DealStage.ACCESSED),
        (50, DealStage.ENGAGED),
        (79, DealStage.ENGAGED),
        (80, DealStage.QUALIFIED),
        (100, DealStage.QUALIFIED),
    ])
    def test_score_thresholds(self, machine, score, expected):
        assert machine.evaluate('accessed', score=score).current == expected

    def test_like_forces_engaged_regardless_of_score(self, machine):
        transition = machine.evaluate(DealStage.ACCESSED, score=10, events=['property_liked'])
        assert transition.current == DealStage.ENGAGED

    def test_furthest_target_wins(self, machine):
        transition = machine.evaluate(DealStage.ACCESSED, score=85, events=[DealEvent.PROPERTY_LIKED])

        assert transition.current == DealStage.QUALIFIED
        assert transition.reasons == ('score:85',)

    @pytest.mark.parametrize('current', [DealStage.QUALIFIED, DealStage.ADVANCED, DealStage.CLOSED])
    def test_never_moves_backwards(self, machine, current):
        transition = machine.evaluate(current, score=0, events=[DealEvent.LINK_SHARED,
                                                                DealEvent.PROPERTY_LIKED])

        assert transition.current == current
        assert transition.changed is False
        assert transition.reasons == ()

    def test_falling_score_keeps_stage(self, machine):
        assert machine.evaluate(DealStage.QUALIFIED, score=20).current == DealStage.QUALIFIED

    def test_events_without_stage_target_are_ignored(self, machine):
        transition = machine.evaluate(DealStage.SHARED, events=[DealEvent.FINANCING_NEEDED,
                                                                DealEvent.INACTIVITY_1_WEEK])
        assert transition.changed is False

    def test_unknown_event_names_have_no_target(self, machine):
        assert machine.target_for_event('interested') is None

    def test_stage_order_is_strictly_increasing(self):
        assert [stage.rank for stage in STAGE_ORDER] == list(range(len(STAGE_ORDER)))


class TestStatusChanges:

    @pytest.mark.parametrize('current,new,valid', [
        ('active', 'qualified', True),
        ('active', 'nurturing', True),
        ('active', 'closed-lost', True),
        ('active', 'closed-won', False),
        ('qualified', 'closed-won', True),
        ('nurturing', 'qualified', True),
        ('closed-won', 'active', False),
        ('closed-lost', 'active', True),
        ('active', 'active', True),
    ])
    def test_is_valid_status_change(self, current, new, valid):
        assert DealStageMachine.is_valid_status_change(current, new) is valid

    @pytest.mark.parametrize('status', [DealStatus.CLOSED_WON, DealStatus.CLOSED_LOST])
    def test_closing_moves_to_closed_stage(self, status):
        assert DealStageMachine.stage_for_status(DealStage.ENGAGED, status) == DealStage.CLOSED

    def test_other_statuses_keep_stage(self):
        assert DealStageMachine.stage_for_status('engaged', 'nurturing') == DealStage.ENGAGED


class TestStageHelpers:

    @pytest.mark.parametrize('stage,score,expected', [
        ('created', 0, DealStage.SHARED),
        ('shared', 0, None),
        ('shared', 5, DealStage.ACCESSED),
        ('accessed', 29, None),
        ('accessed', 30, DealStage.ENGAGED),
        ('engaged', 60, DealStage.QUALIFIED),
        ('qualified', 0, DealStage.ADVANCED),
        ('advanced', 0, DealStage.CLOSED),
        ('closed', 100, None),
    ])
    def test_next_suggested_stage(self, stage, score, expected):
        assert DealStageMachine.next_suggested_stage(stage, score) == expected

    def test_stage_requirements(self):
        assert DealStageMachine.stage_requirements('qualified') == [
            'Client qualification confirmed', 'Budget verified']


class TestProgressDeal:
    """Persisting a transition through the deal repository"""

    @pytest.fixture
    def mock_deal_repository(self):
        return Mock()

    def test_forward_move_is_saved(self, mock_deal_repository):
        deal = Mock(id=7, deal_stage='accessed')
        mock_deal_repository.get_by_id.return_value = deal
        machine = DealStageMachine(deal_repository=mock_deal_repository)

        result = machine.progress_deal(7, score=82)

        assert result.is_success
        assert result.data == StageTransition(DealStage.ACCESSED, DealStage.QUALIFIED, ('score:82',))
        mock_deal_repository.update.assert_called_once_with(deal, deal_stage='qualified')
        mock_deal_repository.commit.assert_called_once()

    def test_no_move_writes_nothing(self, mock_deal_repository):
        mock_deal_repository.get_by_id.return_value = Mock(id=7, deal_stage='qualified')
        machine = DealStageMachine(deal_repository=mock_deal_repository)

        result = machine.progress_deal(7, score=55)

        assert result.is_success
        assert result.data.changed is False
        mock_deal_repository.update.assert_not_called()

    def test_missing_deal(self, mock_deal_repository):
        mock_deal_repository.get_by_id.return_value = None
        machine = DealStageMachine(deal_repository=mock_deal_repository)

        result = machine.progress_deal(404, score=90)

        assert result.is_failure
        assert result.error_code == ErrorCode.DATA_MISSING
        mock_deal_repository.update.assert_not_called()
