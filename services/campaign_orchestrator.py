"""
Campaign Orchestrator - lifecycle actions against the Gateway

Composes the filter compiler, the send-time scheduler, the gateway client and
the campaign state machine, and persists every outcome through the campaign
repository. Public methods return Result objects; routes and CLI commands map
the error codes to their own surface.

Every outbound call tied to a lifecycle transition runs under the campaign's
in-flight flag, released on every exit path.
"""

import logging
import math
import re
from contextlib import contextmanager
from functools import wraps
from typing import Any, Dict, List, Optional

from campaign_database import Campaign
from repositories.campaign_repository import CampaignRepository
from services.callback_reconciliation_service import CallbackEvent, CallbackReconciliationService
from services.campaign_state_machine import CampaignStateMachine
from services.common.errors import (
    BrokerError, BusinessError, ConfigurationError, RecordConflict, StateConflict, TransportError,
    ValidationError
)
from services.common.result import Result
from services.filter_compiler import FilterCompiler, serialize_filter
from services.gateway_api_client import GatewayAPIClient
from services.gateway_environment import GatewayEnvironmentResolver
from services.send_time_scheduler import SendTimeScheduler
from utils.datetime_utils import ensure_utc, format_local, parse_iso_datetime, to_unix_timestamp

logger = logging.getLogger(__name__)

MESSAGE_TYPES = ('LMS', 'MMS', 'RCS')
RCV_TYPES = (0, 10)
DEFAULT_TARGET_COUNT = 1000
MAX_POPULATION = 400000
POPULATION_FACTOR = 1.5
MAX_TEST_RECIPIENTS = 5
AD_DENY_NUMBER = '1504'
REGISTRATION_UNCONFIRMED = 'REGISTRATION_UNCONFIRMED'
CALLBACK_PATH = '/api/gateway/callback/state'


def returns_result(operation: str):
    """Convert broker exceptions raised by an orchestration method into Results"""
    def decorator(func):
        @wraps(func)
        def wrapper(self, *args, **kwargs):
            try:
                return func(self, *args, **kwargs)
            except BrokerError as e:
                logger.warning(f"Campaign {operation} failed: {e.message}", extra={'error_code': e.code})
                return Result.from_error(e)
            except Exception as e:
                logger.error(f"Unexpected error during campaign {operation}: {e}", exc_info=True)
                return Result.failure(f"Unexpected error during {operation}", code='INTERNAL_ERROR')
        return wrapper
    return decorator


def billing_type_for(message_type: str, rcs_type: Optional[int] = None) -> int:
    """Gateway billing type: 0 LMS, 2 MMS, 1 RCS slide, 3 any other RCS"""
    if message_type == 'RCS':
        return 1 if rcs_type == 2 else 3
    if message_type == 'MMS':
        return 2
    return 0


def population_for(target_count: int) -> int:
    return min(math.ceil(target_count * POPULATION_FACTOR), MAX_POPULATION)


def normalize_numbers(numbers: Any) -> List[str]:
    """Digits-only, de-duplicated recipient numbers for a test send"""
    if not isinstance(numbers, list) or not numbers:
        raise ValidationError("At least one test recipient number is required")
    normalized = []
    for number in numbers:
        digits = re.sub(r'\D', '', str(number))
        if len(digits) < 10 or len(digits) > 11:
            raise ValidationError(f"Invalid recipient number: {number}", details={'number': number})
        if digits not in normalized:
            normalized.append(digits)
    if len(normalized) > MAX_TEST_RECIPIENTS:
        raise ValidationError(f"A test send accepts at most {MAX_TEST_RECIPIENTS} numbers",
                              details={'count': len(normalized)})
    return normalized


class CampaignOrchestrator:
    """Runs campaign lifecycle actions and keeps the local record in step with the Gateway"""

    def __init__(self,
                 campaign_repository: CampaignRepository,
                 gateway_client: GatewayAPIClient,
                 state_machine: CampaignStateMachine,
                 filter_compiler: FilterCompiler,
                 scheduler: SendTimeScheduler,
                 reconciliation_service: CallbackReconciliationService,
                 environment_resolver: GatewayEnvironmentResolver,
                 callback_base_url: str = '',
                 company_name: str = ''):
        """
        Initialize with injected dependencies.

        Args:
            campaign_repository: Record store for campaigns
            gateway_client: Gateway request/response adapter
            state_machine: Status vocabulary and transition guards
            filter_compiler: Targeting -> Gateway filter compiler
            scheduler: Send-time legalization with an injectable clock
            reconciliation_service: Shared apply path for Gateway-reported status
            environment_resolver: Used once per campaign to pin its environment
            callback_base_url: Public base URL the Gateway posts state changes to
            company_name: Target company name sent with registrations
        """
        self.campaign_repository = campaign_repository
        self.gateway_client = gateway_client
        self.state_machine = state_machine
        self.filter_compiler = filter_compiler
        self.scheduler = scheduler
        self.reconciliation_service = reconciliation_service
        self.environment_resolver = environment_resolver
        self.callback_base_url = callback_base_url
        self.company_name = company_name

    # Creation and editing

    @returns_result('creation')
    def create_campaign(self, data: Dict[str, Any], user_id: Optional[str] = None,
                        env_override: Optional[str] = None) -> Result[Dict[str, Any]]:
        """
        Create a draft campaign and, unless asked not to, register it.

        A failed registration still returns the saved draft, with the Gateway's
        error attached, so the user can fix and retry.
        """
        fields = self._validate_campaign_fields(data)
        compiled = self.filter_compiler.compile(data.get('targeting') or {})
        environment = self.environment_resolver.select(override=env_override)

        campaign = Campaign(
            user_id=user_id,
            environment=environment.value,
            status_code=self.state_machine.code_for('draft'),
            status='draft',
            targeting=data.get('targeting') or {},
            **fields,
        )
        self._store_compiled(campaign, compiled)
        self.campaign_repository.save_campaign(campaign)
        logger.info("Campaign draft created", extra={'campaign_id': campaign.id,
                                                     'environment': campaign.environment})

        if data.get('register', True) is False:
            return Result.success(self.serialize(campaign), metadata={'registered': False})

        registration = self.register_campaign(campaign.id)
        campaign = self.campaign_repository.get_campaign(campaign.id)
        if registration.is_failure:
            return Result.success(self.serialize(campaign), metadata={
                'registered': False,
                'warning': registration.error,
                'error_code': registration.error_code,
            })
        return Result.success(self.serialize(campaign), metadata={'registered': True})

    @returns_result('targeting update')
    def update_targeting(self, campaign_id: str, targeting: Dict[str, Any]) -> Result[Dict[str, Any]]:
        with self._in_flight(campaign_id):
            campaign = self.campaign_repository.get_campaign(campaign_id)
            self.state_machine.assert_targeting_editable(campaign)
            compiled = self.filter_compiler.compile(targeting or {})
            campaign.targeting = targeting or {}
            self._store_compiled(campaign, compiled)
            self.campaign_repository.save_campaign(campaign)
            return Result.success(self.serialize(campaign))

    # Gateway lifecycle

    @returns_result('registration')
    def register_campaign(self, campaign_id: str, confirm_unregistered: bool = False) -> Result[Dict[str, Any]]:
        """
        Register a draft campaign at the Gateway (draft -> temp_registered).

        The create call is never retried automatically. After a transport
        failure the outcome is unknown, so a new attempt is refused until the
        caller confirms the Gateway has no copy (or links one via refresh).
        """
        with self._in_flight(campaign_id):
            campaign = self.campaign_repository.get_campaign(campaign_id)
            self.state_machine.assert_registrable(campaign)
            if campaign.last_error_code == REGISTRATION_UNCONFIRMED and not confirm_unregistered:
                raise StateConflict(
                    "The previous registration attempt may have reached the gateway; "
                    "refresh with its remote id or confirm it was not created before retrying",
                    details={'campaign_id': campaign.id, 'reason': REGISTRATION_UNCONFIRMED},
                )

            campaign.scheduled_send_at = self.scheduler.schedule(campaign.requested_send_at,
                                                                 stored=campaign.scheduled_send_at)
            self.campaign_repository.save_campaign(campaign)

            payload = self.build_registration_payload(campaign)
            try:
                result = self.gateway_client.create_campaign(payload, environment=campaign.environment)
            except TransportError as e:
                self._record_error(campaign, REGISTRATION_UNCONFIRMED, e.message)
                raise
            except BusinessError as e:
                self._record_error(campaign, e.gateway_code or e.code, e.gateway_message or e.message)
                raise
            except ConfigurationError as e:
                self._record_error(campaign, e.code, e.message)
                raise

            campaign = self._store_registration(campaign, result.data.get('id'))

            logger.info("Campaign registered at gateway", extra={
                'campaign_id': campaign.id,
                'remote_id': campaign.remote_id,
                'correlation_id': result.correlation_id,
                'simulated': result.simulated,
            })
            return Result.success(self.serialize(campaign), metadata={'gateway': result.to_dict()})

    @returns_result('approval request')
    def request_approval(self, campaign_id: str) -> Result[Dict[str, Any]]:
        with self._in_flight(campaign_id):
            campaign = self.campaign_repository.get_campaign(campaign_id)
            self.state_machine.assert_remote_action_allowed(campaign, 'request approval for')
            result = self._call_recording_errors(
                campaign, self.gateway_client.request_approval, campaign.remote_id,
                environment=campaign.environment)
            self.state_machine.request_approval(campaign)
            campaign.last_error_code = None
            campaign.last_error_message = None
            self.campaign_repository.save_campaign(campaign)
            return Result.success(self.serialize(campaign), metadata={'gateway': result.to_dict()})

    def submit_campaign(self, campaign_id: str, confirm_unregistered: bool = False) -> Result[Dict[str, Any]]:
        """Register if needed, then request approval"""
        campaign_result = self.get_campaign(campaign_id)
        if campaign_result.is_failure:
            return campaign_result
        if campaign_result.data['remote_id'] is None:
            registration = self.register_campaign(campaign_id, confirm_unregistered=confirm_unregistered)
            if registration.is_failure:
                return registration
        return self.request_approval(campaign_id)

    @returns_result('test send')
    def send_test(self, campaign_id: str, numbers: List[str]) -> Result[Dict[str, Any]]:
        recipients = normalize_numbers(numbers)
        with self._in_flight(campaign_id):
            campaign = self.campaign_repository.get_campaign(campaign_id)
            self.state_machine.assert_remote_action_allowed(campaign, 'test-send')
            result = self._call_recording_errors(
                campaign, self.gateway_client.send_test, campaign.remote_id, recipients,
                environment=campaign.environment)
            return Result.success({'campaign_id': campaign.id, 'recipients': recipients},
                                  metadata={'gateway': result.to_dict()})

    @returns_result('cancellation')
    def cancel_campaign(self, campaign_id: str) -> Result[Dict[str, Any]]:
        with self._in_flight(campaign_id):
            campaign = self.campaign_repository.get_campaign(campaign_id)
            self.state_machine.assert_cancellable(campaign)
            metadata = {}
            if campaign.remote_id:
                result = self._call_recording_errors(
                    campaign, self.gateway_client.cancel_campaign, campaign.remote_id,
                    environment=campaign.environment)
                metadata['gateway'] = result.to_dict()
            self.state_machine.cancel(campaign)
            self.campaign_repository.save_campaign(campaign)
            return Result.success(self.serialize(campaign), metadata=metadata)

    @returns_result('stop')
    def stop_campaign(self, campaign_id: str) -> Result[Dict[str, Any]]:
        with self._in_flight(campaign_id):
            campaign = self.campaign_repository.get_campaign(campaign_id)
            self.state_machine.assert_stoppable(campaign)
            result = self._call_recording_errors(
                campaign, self.gateway_client.stop_campaign, campaign.remote_id,
                environment=campaign.environment)
            self.state_machine.stop(campaign)
            self.campaign_repository.save_campaign(campaign)
            return Result.success(self.serialize(campaign), metadata={'gateway': result.to_dict()})

    @returns_result('status refresh')
    def refresh_status(self, campaign_id: str, remote_id: Optional[str] = None) -> Result[Dict[str, Any]]:
        """
        Reconciling GET: read the campaign from the Gateway and apply its state.

        For a campaign whose registration outcome is unknown, pass the remote id
        found at the Gateway to link it; the status then flows through the same
        apply path as callbacks.
        """
        with self._in_flight(campaign_id):
            campaign = self.campaign_repository.get_campaign(campaign_id)
            linking = campaign.remote_id is None
            if linking and not remote_id:
                raise StateConflict("Campaign is not registered at the gateway; pass its remote id to link it",
                                    details={'campaign_id': campaign.id})
            if not linking and remote_id and remote_id != campaign.remote_id:
                raise StateConflict("Campaign is already linked to a different remote id",
                                    details={'campaign_id': campaign.id, 'remote_id': campaign.remote_id})
            if linking and self.campaign_repository.find_one_by(remote_id=remote_id) is not None:
                raise StateConflict("Remote id is already linked to another campaign",
                                    details={'remote_id': remote_id})

            result = self.gateway_client.get_campaign(remote_id or campaign.remote_id,
                                                      environment=campaign.environment)

            if linking:
                self.state_machine.mark_registered(campaign, remote_id)
                campaign.last_error_code = None
                campaign.last_error_message = None
                self.campaign_repository.save_campaign(campaign)
                logger.info("Campaign linked to existing gateway registration",
                            extra={'campaign_id': campaign.id, 'remote_id': remote_id})

            state = result.data.get('state')
            outcome = None
            if state is not None:
                event_payload = dict(result.data, id=campaign.remote_id, state=state)
                event = CallbackEvent.from_payload(event_payload)
                outcome = self.reconciliation_service.apply_status(campaign, event, from_callback=False)

            return Result.success(self.serialize(campaign), metadata={
                'gateway': result.to_dict(),
                'outcome': outcome.value if outcome else None,
                'linked': linking,
            })

    @returns_result('deletion')
    def delete_campaign(self, campaign_id: str) -> Result[Dict[str, Any]]:
        campaign = self.campaign_repository.get_campaign(campaign_id)
        if campaign.in_flight:
            raise StateConflict("A gateway call is in progress for this campaign", code='IN_FLIGHT',
                                details={'campaign_id': campaign.id})
        self.state_machine.assert_deletable(campaign)
        self.campaign_repository.delete_campaign(campaign)
        logger.info("Campaign deleted", extra={'campaign_id': campaign_id})
        return Result.success({'campaign_id': campaign_id, 'deleted': True})

    # Read-only Gateway calls

    @returns_result('stats fetch')
    def get_stats(self, campaign_id: str) -> Result[Dict[str, Any]]:
        campaign = self.campaign_repository.get_campaign(campaign_id)
        if campaign.remote_id is None:
            raise StateConflict("Campaign is not registered at the gateway", details={'campaign_id': campaign.id})
        result = self.gateway_client.get_stats(campaign.remote_id, environment=campaign.environment)
        return Result.success({
            'campaign_id': campaign.id,
            'remote_id': campaign.remote_id,
            'local': {
                'sent_count': campaign.sent_count,
                'success_count': campaign.success_count,
                'fail_count': campaign.fail_count,
            },
            'gateway': result.data,
        }, metadata={'simulated': result.simulated})

    @returns_result('meta fetch')
    def fetch_meta(self, meta_type: str, body: Optional[Dict[str, Any]] = None,
                   env_override: Optional[str] = None) -> Result[Dict[str, Any]]:
        result = self.gateway_client.fetch_meta(meta_type, body=body, override=env_override)
        return Result.success(result.data, metadata={'simulated': result.simulated,
                                                     'environment': result.environment})

    @returns_result('targeting preview')
    def preview_targeting(self, targeting: Dict[str, Any], estimate: bool = False,
                          env_override: Optional[str] = None) -> Result[Dict[str, Any]]:
        """Compile a selection and optionally ask the Gateway for the audience size"""
        compiled = self.filter_compiler.compile(targeting or {})
        data = {
            'filter': compiled.expression,
            'filter_json': compiled.to_json(),
            'description': compiled.description,
            'diagnostics': compiled.diagnostics,
            'estimated_audience': None,
        }
        metadata = {}
        if estimate:
            try:
                count, result = self.gateway_client.estimate_audience(compiled.expression, override=env_override)
                data['estimated_audience'] = count
                metadata['simulated'] = result.simulated
            except (BusinessError, TransportError) as e:
                logger.warning("Audience estimate unavailable", extra={'error_code': e.code})
                metadata['estimate_error'] = e.message
        return Result.success(data, metadata=metadata or None)

    @returns_result('lookup')
    def get_campaign(self, campaign_id: str) -> Result[Dict[str, Any]]:
        return Result.success(self.serialize(self.campaign_repository.get_campaign(campaign_id)))

    # Helpers

    @contextmanager
    def _in_flight(self, campaign_id: str):
        if not self.campaign_repository.acquire_in_flight(campaign_id):
            # Distinguish a missing campaign from a busy one
            self.campaign_repository.get_campaign(campaign_id)
            raise StateConflict("Another gateway call is already in progress for this campaign",
                                code='IN_FLIGHT', details={'campaign_id': campaign_id})
        try:
            yield
        finally:
            self.campaign_repository.release_in_flight(campaign_id)

    def _store_registration(self, campaign: Campaign, remote_id: Optional[str]) -> Campaign:
        """
        Persist an accepted create on the campaign.

        The Gateway already holds the campaign at this point, so a version
        conflict retries once on a freshly read copy instead of dropping the
        remote id. If that also fails the id is kept in the error message.
        """
        self.state_machine.mark_registered(campaign, remote_id)
        campaign.last_error_code = None
        campaign.last_error_message = None
        try:
            return self.campaign_repository.save_campaign(campaign)
        except RecordConflict:
            logger.warning("Campaign changed while its registration was in progress; re-reading",
                           extra={'campaign_id': campaign.id, 'remote_id': remote_id})

        fresh = self.campaign_repository.get_campaign(campaign.id)
        if fresh.remote_id != remote_id:
            self.state_machine.mark_registered(fresh, remote_id)
        fresh.last_error_code = None
        fresh.last_error_message = None
        try:
            return self.campaign_repository.save_campaign(fresh)
        except RecordConflict:
            logger.error("Could not store gateway remote id after registration",
                         extra={'campaign_id': campaign.id, 'remote_id': remote_id})
            fresh = self.campaign_repository.get_campaign(campaign.id)
            self._record_error(fresh, REGISTRATION_UNCONFIRMED,
                               f"Gateway accepted the campaign as {remote_id} but the local record "
                               f"could not be updated; refresh with that remote id to link it")
            raise

    def _call_recording_errors(self, campaign: Campaign, call, *args, **kwargs):
        """Run a Gateway call; on failure keep the error on the campaign and re-raise"""
        try:
            return call(*args, **kwargs)
        except BusinessError as e:
            self._record_error(campaign, e.gateway_code or e.code, e.gateway_message or e.message)
            raise
        except (TransportError, ConfigurationError) as e:
            self._record_error(campaign, e.code, e.message)
            raise

    def _record_error(self, campaign: Campaign, code: str, message: str) -> None:
        campaign.last_error_code = code
        campaign.last_error_message = message
        self.campaign_repository.save_campaign(campaign)

    @staticmethod
    def _store_compiled(campaign: Campaign, compiled) -> None:
        campaign.compiled_filter = compiled.expression
        campaign.filter_description = compiled.description
        campaign.filter_diagnostics = compiled.diagnostics

    def _validate_campaign_fields(self, data: Dict[str, Any]) -> Dict[str, Any]:
        if not isinstance(data, dict):
            raise ValidationError("Campaign data must be an object")

        name = (data.get('name') or '').strip()
        if not name:
            raise ValidationError("Campaign name is required", details={'field': 'name'})

        message_type = (data.get('message_type') or 'LMS').upper()
        if message_type not in MESSAGE_TYPES:
            raise ValidationError(f"message_type must be one of {', '.join(MESSAGE_TYPES)}",
                                  details={'field': 'message_type'})

        content = data.get('content')
        if not content and message_type != 'RCS':
            raise ValidationError("Message content is required", details={'field': 'content'})

        try:
            rcv_type = int(data.get('rcv_type', 0))
            target_count = int(data.get('target_count') or DEFAULT_TARGET_COUNT)
            rcs_type = int(data['rcs_type']) if data.get('rcs_type') is not None else None
        except (TypeError, ValueError):
            raise ValidationError("rcv_type, target_count and rcs_type must be integers")
        if rcv_type not in RCV_TYPES:
            raise ValidationError("rcv_type must be 0 (targeted) or 10 (recipient file)",
                                  details={'field': 'rcv_type'})
        if target_count <= 0:
            raise ValidationError("target_count must be positive", details={'field': 'target_count'})

        try:
            requested_send_at = parse_iso_datetime(data.get('send_at'))
        except ValueError:
            raise ValidationError("send_at must be an ISO 8601 timestamp", details={'field': 'send_at'})

        return {
            'name': name,
            'message_type': message_type,
            'title': data.get('title'),
            'content': content,
            'image_url': data.get('image_url'),
            'url_link': data.get('url_link'),
            'rcs_type': rcs_type,
            'rcs_slides': data.get('rcs_slides'),
            'sender_number': data.get('sender_number'),
            'rcv_type': rcv_type,
            'target_count': target_count,
            'requested_send_at': requested_send_at,
        }

    def build_registration_payload(self, campaign: Campaign) -> Dict[str, Any]:
        """The Gateway create body for a draft campaign"""
        goal = campaign.target_count or DEFAULT_TARGET_COUNT
        compiled = campaign.compiled_filter or {'$and': []}
        payload = {
            'tgtCompanyName': self.company_name,
            'name': campaign.name,
            'sndNum': campaign.sender_number,
            'rcvType': campaign.rcv_type,
            'sndGoalCnt': goal,
            'billingType': billing_type_for(campaign.message_type, campaign.rcs_type),
            'isTmp': 0,
            'settleCnt': goal,
            'sndMosu': population_for(goal),
            'sndMosuFlag': 0,
            'adverDeny': AD_DENY_NUMBER,
            'atsSndStartDate': to_unix_timestamp(campaign.scheduled_send_at),
            'cb': {'state': f"{self.callback_base_url.rstrip('/')}{CALLBACK_PATH}"},
            'sndMosuQuery': serialize_filter(compiled),
            'sndMosuDesc': campaign.filter_description or '',
        }
        if campaign.message_type == 'RCS':
            payload['rcsType'] = campaign.rcs_type
            payload['rcs'] = campaign.rcs_slides or [{
                'title': campaign.title or '',
                'msg': campaign.content or '',
                'imgUrl': campaign.image_url or '',
                'urlLink': campaign.url_link or '',
            }]
        else:
            payload['mms'] = {
                'title': campaign.title or '',
                'msg': campaign.content or '',
                'fileInfo': {'url': campaign.image_url} if campaign.image_url else {},
                'urlLink': campaign.url_link or '',
            }
        return payload

    def serialize(self, campaign: Campaign) -> Dict[str, Any]:
        info = self.state_machine.describe(campaign.status_code)
        scheduled = ensure_utc(campaign.scheduled_send_at) if campaign.scheduled_send_at else None
        requested = ensure_utc(campaign.requested_send_at) if campaign.requested_send_at else None
        return {
            'id': campaign.id,
            'name': campaign.name,
            'message_type': campaign.message_type,
            'remote_id': campaign.remote_id,
            'status_code': campaign.status_code,
            'status': info.status,
            'status_label': info.label,
            'environment': campaign.environment,
            'targeting': campaign.targeting,
            'compiled_filter': campaign.compiled_filter,
            'filter_description': campaign.filter_description,
            'filter_diagnostics': campaign.filter_diagnostics or [],
            'requested_send_at': requested.isoformat() if requested else None,
            'scheduled_send_at': scheduled.isoformat() if scheduled else None,
            'scheduled_send_at_local': format_local(scheduled),
            'sent_count': campaign.sent_count,
            'success_count': campaign.success_count,
            'fail_count': campaign.fail_count,
            'status_reason': campaign.status_reason,
            'last_error_code': campaign.last_error_code,
            'last_error_message': campaign.last_error_message,
        }
