"""
Unit tests for CampaignStateMachine

Covers the versioned status vocabulary, local transition guards and the
Gateway-driven apply path used by callbacks and refreshes.
"""

import pytest
from types import SimpleNamespace

from services.campaign_state_machine import (
    ApplyOutcome, CampaignStateMachine, STATUS_TABLES, StatusCode, UNKNOWN_STATUS
)
from services.common.errors import StateConflict, ValidationError


def make_campaign(status_code=StatusCode.DRAFT, status='draft', remote_id=None):
    return SimpleNamespace(id='c1', status_code=status_code, status=status, remote_id=remote_id)


class TestStatusVocabulary:
    """Lookup of codes and labels in the active contract"""

    @pytest.fixture
    def machine(self):
        return CampaignStateMachine()

    def test_default_contract_is_v2(self, machine):
        assert machine.contract_version == 'v2'
        assert machine.code_for('cancelled') == 25
        assert machine.code_for('stopped') == 35

    def test_v1_uses_legacy_codes(self):
        machine = CampaignStateMachine('v1')
        assert machine.code_for('cancelled') == 90
        assert machine.code_for('stopped') == 91
        assert machine.status_for(1) == 'inspection_requested'

    def test_unknown_contract_version_rejected(self):
        with pytest.raises(ValidationError):
            CampaignStateMachine('v9')

    def test_unknown_code_maps_to_unknown_status(self, machine):
        info = machine.describe(99)
        assert info.status == UNKNOWN_STATUS
        assert info.code == 99
        assert info.terminal is False

    @pytest.mark.parametrize('code', [25, 35, 40])
    def test_terminal_codes(self, machine, code):
        assert machine.is_terminal(code)

    @pytest.mark.parametrize('code', [0, 5, 10, 11, 17, 20, 30, 99])
    def test_non_terminal_codes(self, machine, code):
        assert not machine.is_terminal(code)

    def test_every_table_has_a_status_for_each_code(self):
        for table in STATUS_TABLES.values():
            for code, info in table.items():
                assert info.code == code
                assert info.status and info.label

    def test_code_for_missing_status_raises(self, machine):
        with pytest.raises(ValidationError):
            machine.code_for('inspection_requested')


class TestLocalTransitions:
    """Guards for actions the broker initiates"""

    @pytest.fixture
    def machine(self):
        return CampaignStateMachine()

    def test_mark_registered_moves_draft_to_temp_registered(self, machine):
        campaign = make_campaign()

        machine.mark_registered(campaign, 'C100')

        assert campaign.remote_id == 'C100'
        assert campaign.status_code == StatusCode.TEMP_REGISTERED
        assert campaign.status == 'temp_registered'

    def test_mark_registered_requires_remote_id(self, machine):
        campaign = make_campaign()
        with pytest.raises(ValidationError):
            machine.mark_registered(campaign, None)
        assert campaign.status_code == StatusCode.DRAFT

    def test_cannot_register_twice(self, machine):
        campaign = make_campaign(StatusCode.TEMP_REGISTERED, 'temp_registered', remote_id='C100')
        with pytest.raises(StateConflict):
            machine.mark_registered(campaign, 'C200')
        assert campaign.remote_id == 'C100'

    def test_request_approval_requires_registration(self, machine):
        with pytest.raises(StateConflict):
            machine.request_approval(make_campaign())

    def test_request_approval_from_temp_registered(self, machine):
        campaign = make_campaign(StatusCode.TEMP_REGISTERED, 'temp_registered', remote_id='C100')
        machine.request_approval(campaign)
        assert campaign.status_code == StatusCode.APPROVAL_REQUESTED
        assert campaign.status == 'approval_requested'

    def test_remote_action_refused_on_terminal_campaign(self, machine):
        campaign = make_campaign(StatusCode.COMPLETED, 'completed', remote_id='C100')
        with pytest.raises(StateConflict):
            machine.assert_remote_action_allowed(campaign, 'test-send')

    @pytest.mark.parametrize('code,status', [(10, 'approval_requested'), (11, 'approved'),
                                             (17, 'rejected'), (20, 'send_ready')])
    def test_cancel_from_cancellable_statuses(self, machine, code, status):
        campaign = make_campaign(code, status, remote_id='C100')
        machine.cancel(campaign)
        assert campaign.status_code == StatusCode.CANCELLED
        assert campaign.status == 'cancelled'

    def test_cannot_cancel_running_campaign(self, machine):
        campaign = make_campaign(StatusCode.RUNNING, 'running', remote_id='C100')
        with pytest.raises(StateConflict):
            machine.cancel(campaign)

    def test_stop_only_from_running(self, machine):
        campaign = make_campaign(StatusCode.RUNNING, 'running', remote_id='C100')
        machine.stop(campaign)
        assert campaign.status_code == StatusCode.STOPPED

        with pytest.raises(StateConflict):
            machine.stop(make_campaign(StatusCode.APPROVED, 'approved', remote_id='C200'))

    def test_deletable_before_registration_and_when_temp_registered(self, machine):
        machine.assert_deletable(make_campaign())
        machine.assert_deletable(make_campaign(StatusCode.TEMP_REGISTERED, 'temp_registered', remote_id='C1'))

    def test_registered_campaign_not_deletable(self, machine):
        with pytest.raises(StateConflict):
            machine.assert_deletable(make_campaign(StatusCode.APPROVED, 'approved', remote_id='C1'))

    def test_targeting_editable_only_before_registration(self, machine):
        machine.assert_targeting_editable(make_campaign())
        with pytest.raises(StateConflict):
            machine.assert_targeting_editable(
                make_campaign(StatusCode.TEMP_REGISTERED, 'temp_registered', remote_id='C1'))


class TestApplyRemote:
    """The Gateway is authoritative, except over terminal campaigns"""

    @pytest.fixture
    def machine(self):
        return CampaignStateMachine()

    def test_forward_move_applied(self, machine):
        campaign = make_campaign(StatusCode.APPROVED, 'approved', remote_id='C1')
        assert machine.apply_remote(campaign, StatusCode.SEND_READY) == ApplyOutcome.APPLIED
        assert campaign.status == 'send_ready'

    def test_backward_move_applied(self, machine):
        campaign = make_campaign(StatusCode.APPROVED, 'approved', remote_id='C1')
        assert machine.apply_remote(campaign, StatusCode.APPROVAL_REQUESTED) == ApplyOutcome.APPLIED
        assert campaign.status_code == StatusCode.APPROVAL_REQUESTED

    def test_same_code_is_duplicate(self, machine):
        campaign = make_campaign(StatusCode.RUNNING, 'running', remote_id='C1')
        assert machine.apply_remote(campaign, StatusCode.RUNNING) == ApplyOutcome.NOOP_DUPLICATE

    @pytest.mark.parametrize('terminal', [25, 35, 40])
    @pytest.mark.parametrize('incoming', [0, 10, 30, 40, 99])
    def test_terminal_campaign_never_changes(self, machine, terminal, incoming):
        status = machine.status_for(terminal)
        campaign = make_campaign(terminal, status, remote_id='C1')

        assert machine.apply_remote(campaign, incoming) == ApplyOutcome.NOOP_TERMINAL
        assert campaign.status_code == terminal
        assert campaign.status == status

    def test_unknown_code_is_recorded_as_unknown(self, machine):
        campaign = make_campaign(StatusCode.RUNNING, 'running', remote_id='C1')
        assert machine.apply_remote(campaign, 77) == ApplyOutcome.APPLIED
        assert campaign.status_code == 77
        assert campaign.status == UNKNOWN_STATUS

    def test_status_always_matches_code(self, machine):
        campaign = make_campaign(StatusCode.TEMP_REGISTERED, 'temp_registered', remote_id='C1')
        for code in (10, 11, 20, 30, 40):
            machine.apply_remote(campaign, code)
            assert campaign.status == machine.status_for(campaign.status_code)
