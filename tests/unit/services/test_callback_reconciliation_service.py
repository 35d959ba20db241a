"""
Unit tests for CallbackReconciliationService

Repository is mocked; the state machine is the real one so the tests exercise
the same vocabulary the application runs with.
"""

import pytest
from types import SimpleNamespace
from unittest.mock import Mock

from services.callback_reconciliation_service import (
    CallbackEvent, CallbackReconciliationService, NOT_FOUND_MESSAGE
)
from services.campaign_state_machine import ApplyOutcome, CampaignStateMachine
from services.common.errors import RecordConflict, RecordNotFound, ValidationError

AUTH_KEY = 'callback-secret'


def make_campaign(status_code=11, status='approved', **kwargs):
    fields = dict(id='local-1', remote_id='C100', status_code=status_code, status=status,
                  sent_count=None, success_count=None, fail_count=None, status_reason=None,
                  last_callback_at=None)
    fields.update(kwargs)
    return SimpleNamespace(**fields)


class TestCallbackEventParsing:

    def test_current_shape(self):
        event = CallbackEvent.from_payload({'id': 'C100', 'state': 20})
        assert event.remote_id == 'C100'
        assert event.status_code == 20

    def test_legacy_shape(self):
        event = CallbackEvent.from_payload({'campaignId': 'C100', 'statusCode': '30'})
        assert event.remote_id == 'C100'
        assert event.status_code == 30

    def test_state_zero_is_valid(self):
        assert CallbackEvent.from_payload({'id': 'C1', 'state': 0}).status_code == 0

    def test_counts_and_reason_carried(self):
        event = CallbackEvent.from_payload({'id': 'C1', 'state': 40, 'sentCount': 10,
                                            'successCount': '9', 'failCount': 1, 'reason': 'done'})
        assert event.counts == {'sent_count': 10, 'success_count': 9, 'fail_count': 1}
        assert event.reason == 'done'

    @pytest.mark.parametrize('payload', [
        None, [], {}, {'id': 'C1'}, {'state': 20}, {'id': '', 'state': 20},
        {'id': 'C1', 'state': 'running'}, {'id': 'C1', 'state': True},
    ])
    def test_malformed_payloads(self, payload):
        with pytest.raises(ValidationError):
            CallbackEvent.from_payload(payload)


class TestHandleCallback:

    @pytest.fixture
    def campaign(self):
        return make_campaign()

    @pytest.fixture
    def mock_campaign_repository(self, campaign):
        mock = Mock()
        mock.get_campaign_by_remote_id = Mock(return_value=campaign)
        mock.save_campaign = Mock(side_effect=lambda c: c)
        return mock

    @pytest.fixture
    def service(self, mock_campaign_repository):
        return CallbackReconciliationService(
            campaign_repository=mock_campaign_repository,
            state_machine=CampaignStateMachine(),
            callback_auth_key=AUTH_KEY,
        )

    def test_valid_callback_applied(self, service, campaign, mock_campaign_repository):
        response = service.handle_callback({'X-Auth-Key': AUTH_KEY}, {'id': 'C100', 'state': 20})

        assert response.status_code == 200
        assert response.body['success'] is True
        assert response.body['status'] == 'send_ready'
        assert response.body['applied'] is True
        assert campaign.status_code == 20
        assert campaign.last_callback_at is not None
        mock_campaign_repository.save_campaign.assert_called_once_with(campaign)

    def test_missing_auth_is_401_and_nothing_read(self, service, mock_campaign_repository):
        response = service.handle_callback({}, {'id': 'C100', 'state': 20})

        assert response.status_code == 401
        assert response.body == {'error': 'Unauthorized'}
        mock_campaign_repository.get_campaign_by_remote_id.assert_not_called()

    def test_wrong_key_is_401(self, service):
        assert service.handle_callback({'X-Auth-Key': 'nope'}, {'id': 'C100', 'state': 20}).status_code == 401

    @pytest.mark.parametrize('headers,query', [
        ({'x-auth-key': AUTH_KEY}, {}),
        ({'X-Callback-Auth': AUTH_KEY}, {}),
        ({'Authorization': AUTH_KEY}, {}),
        ({'Authorization': f'Bearer {AUTH_KEY}'}, {}),
        ({}, {'authKey': AUTH_KEY}),
        ({'X-Auth-Key': 'stale', 'X-Callback-Auth': AUTH_KEY}, {}),
    ])
    def test_accepted_credential_locations(self, service, headers, query):
        response = service.handle_callback(headers, {'id': 'C100', 'state': 20}, query_args=query)
        assert response.status_code == 200

    def test_no_configured_key_accepts_callbacks(self, mock_campaign_repository):
        service = CallbackReconciliationService(mock_campaign_repository, CampaignStateMachine(), None)
        assert service.handle_callback({}, {'id': 'C100', 'state': 20}).status_code == 200

    def test_malformed_payload_is_400(self, service):
        response = service.handle_callback({'X-Auth-Key': AUTH_KEY}, {'state': 20})

        assert response.status_code == 400
        assert response.body['error'] == 'Invalid payload'
        assert response.body['required'] == ['id', 'state']

    def test_known_campaign_without_state_is_400(self, service, mock_campaign_repository):
        response = service.handle_callback({'X-Auth-Key': AUTH_KEY}, {'id': 'C100'})

        assert response.status_code == 400
        mock_campaign_repository.save_campaign.assert_not_called()

    def test_unknown_campaign_without_state_still_acknowledged(self, service, mock_campaign_repository):
        mock_campaign_repository.get_campaign_by_remote_id.side_effect = RecordNotFound('missing')

        response = service.handle_callback({'X-Auth-Key': AUTH_KEY}, {'id': 'UNKNOWN'})

        assert response.status_code == 200
        assert response.body['success'] is False
        assert response.body['message'].startswith('Campaign not found')

    def test_unknown_campaign_acknowledged_with_200(self, service, mock_campaign_repository):
        mock_campaign_repository.get_campaign_by_remote_id.side_effect = RecordNotFound('missing')

        response = service.handle_callback({'X-Auth-Key': AUTH_KEY}, {'id': 'C999', 'state': 20})

        assert response.status_code == 200
        assert response.body == {'success': False, 'message': NOT_FOUND_MESSAGE, 'campaignId': 'C999'}
        mock_campaign_repository.save_campaign.assert_not_called()

    def test_terminal_campaign_ignores_callback(self, service, mock_campaign_repository):
        campaign = make_campaign(40, 'completed')
        mock_campaign_repository.get_campaign_by_remote_id.return_value = campaign

        response = service.handle_callback({'X-Auth-Key': AUTH_KEY}, {'id': 'C100', 'state': 10})

        assert response.status_code == 200
        assert response.body['applied'] is False
        assert response.body['outcome'] == 'noop_terminal'
        assert campaign.status_code == 40
        mock_campaign_repository.save_campaign.assert_not_called()

    def test_duplicate_callback_writes_nothing(self, service, campaign, mock_campaign_repository):
        service.handle_callback({'X-Auth-Key': AUTH_KEY}, {'id': 'C100', 'state': 20})
        first_seen = campaign.last_callback_at

        response = service.handle_callback({'X-Auth-Key': AUTH_KEY}, {'id': 'C100', 'state': 20})

        assert response.body['outcome'] == 'noop_duplicate'
        assert mock_campaign_repository.save_campaign.call_count == 1
        assert campaign.last_callback_at == first_seen

    def test_duplicate_code_with_new_counts_saves_counts(self, service, mock_campaign_repository):
        campaign = make_campaign(30, 'running')
        mock_campaign_repository.get_campaign_by_remote_id.return_value = campaign

        response = service.handle_callback({'X-Auth-Key': AUTH_KEY},
                                           {'id': 'C100', 'state': 30, 'sentCount': 500})

        assert response.body['outcome'] == 'noop_duplicate'
        assert campaign.sent_count == 500
        mock_campaign_repository.save_campaign.assert_called_once_with(campaign)

    def test_record_conflict_is_500_for_retry(self, service, mock_campaign_repository):
        mock_campaign_repository.save_campaign.side_effect = RecordConflict('changed')

        response = service.handle_callback({'X-Auth-Key': AUTH_KEY}, {'id': 'C100', 'state': 20})

        assert response.status_code == 500
        assert response.body['success'] is False

    def test_unexpected_failure_is_500(self, service, mock_campaign_repository):
        mock_campaign_repository.save_campaign.side_effect = RuntimeError('db down')

        response = service.handle_callback({'X-Auth-Key': AUTH_KEY}, {'id': 'C100', 'state': 20})

        assert response.status_code == 500
        assert response.body == {'success': False, 'error': 'Internal server error'}


class TestOutOfOrderDelivery:
    """Any arrival order of the same callbacks ends in the same stored status"""

    @pytest.mark.parametrize('sequence', [
        [20, 30, 40], [40, 30, 20], [30, 40, 20], [20, 40, 30], [40, 40, 20, 30],
    ])
    def test_terminal_status_wins_regardless_of_order(self, sequence):
        campaign = make_campaign()
        repository = Mock(get_campaign_by_remote_id=Mock(return_value=campaign))
        service = CallbackReconciliationService(repository, CampaignStateMachine(), AUTH_KEY)

        for code in sequence:
            service.handle_callback({'X-Auth-Key': AUTH_KEY}, {'id': 'C100', 'state': code})

        assert campaign.status_code == 40
        assert campaign.status == 'completed'


class TestApplyStatus:

    def test_refresh_does_not_touch_last_callback_at(self):
        campaign = make_campaign()
        repository = Mock()
        service = CallbackReconciliationService(repository, CampaignStateMachine(), AUTH_KEY)

        outcome = service.apply_status(campaign, CallbackEvent('C100', 20), from_callback=False)

        assert outcome == ApplyOutcome.APPLIED
        assert campaign.last_callback_at is None
        repository.save_campaign.assert_called_once_with(campaign)
