"""
Callback Reconciliation Service

Absorbs the Gateway's asynchronous campaign state notifications:
- Authenticates the shared secret (several header names are accepted)
- Validates the payload shape (current and legacy field names)
- Matches the campaign by its remote id
- Applies the status through the campaign state machine exactly once

Delivery is at-least-once and may be reordered. Terminal statuses and
duplicate detection in the state machine make every apply idempotent, so the
only response that asks the Gateway to retry is a 500 for a local failure.
"""

import hmac
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from logging_config import security_logger
from repositories.campaign_repository import CampaignRepository
from services.campaign_state_machine import ApplyOutcome, CampaignStateMachine
from services.common.errors import (
    RecordConflict, RecordNotFound, ReconciliationMismatch, ValidationError
)
from utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = 'Campaign not found in local database'

# Checked in order; the Gateway renamed its header between contract versions
AUTH_HEADER_NAMES = ('X-Auth-Key', 'X-Callback-Auth', 'Authorization')
AUTH_QUERY_PARAM = 'authKey'

CARRIED_COUNTS = {
    'sentCount': 'sent_count',
    'successCount': 'success_count',
    'failCount': 'fail_count',
}


@dataclass
class CallbackEvent:
    """An inbound, untrusted status notification"""
    remote_id: str
    status_code: int
    reason: Optional[str] = None
    counts: Dict[str, int] = field(default_factory=dict)
    observed_at: datetime = field(default_factory=utc_now)

    @staticmethod
    def remote_id_from(payload: Any) -> str:
        """
        The remote id of a callback body, current {id} or legacy {campaignId}.

        Raises:
            ValidationError: If the body is not an object or carries no remote id
        """
        if not isinstance(payload, dict):
            raise ValidationError("Callback body must be a JSON object", details={'required': ['id', 'state']})
        remote_id = payload.get('id') or payload.get('campaignId')
        if not remote_id:
            raise ValidationError("Invalid payload", details={'required': ['id', 'state']})
        return str(remote_id)

    @classmethod
    def from_payload(cls, payload: Any) -> 'CallbackEvent':
        """
        Parse a callback body in either the current {id, state} shape or the
        legacy {campaignId, statusCode} shape.

        Raises:
            ValidationError: If the remote id or the status code is missing or malformed
        """
        remote_id = cls.remote_id_from(payload)
        state = payload.get('state') if payload.get('state') is not None else payload.get('statusCode')
        if state is None:
            raise ValidationError("Invalid payload", details={'required': ['id', 'state']})

        counts = {}
        for key, attribute in CARRIED_COUNTS.items():
            if payload.get(key) is not None:
                counts[attribute] = _as_int(payload[key], key)

        reason = payload.get('reason') or payload.get('message') or payload.get('msg')
        return cls(
            remote_id=remote_id,
            status_code=_as_int(state, 'state'),
            reason=str(reason) if reason else None,
            counts=counts,
        )


@dataclass
class CallbackResponse:
    """The HTTP status and JSON body to return to the Gateway"""
    status_code: int
    body: Dict[str, Any]


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer", details={name: value})
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer", details={name: value})


class CallbackReconciliationService:
    """Turns Gateway callbacks into campaign state changes"""

    def __init__(self,
                 campaign_repository: CampaignRepository,
                 state_machine: CampaignStateMachine,
                 callback_auth_key: Optional[str] = None):
        """
        Initialize with injected dependencies.

        Args:
            campaign_repository: Record store for campaigns
            state_machine: Status vocabulary of the active contract version
            callback_auth_key: Shared secret; None enables the development bypass
        """
        self.campaign_repository = campaign_repository
        self.state_machine = state_machine
        self.callback_auth_key = callback_auth_key

    def handle_callback(self, headers: Mapping[str, str], payload: Any,
                        query_args: Optional[Mapping[str, str]] = None,
                        remote_addr: Optional[str] = None) -> CallbackResponse:
        """
        Process one state callback end to end.

        Returns:
            CallbackResponse: 200 for applied, ignored or unknown campaigns,
            400 for malformed payloads, 401 for bad credentials and 500 only for
            local failures worth a retry
        """
        if not self.authenticate(headers, query_args or {}, remote_addr):
            return CallbackResponse(401, {'error': 'Unauthorized'})

        # Unknown remote ids get a 200 even when the rest of the body is unusable
        try:
            remote_id = CallbackEvent.remote_id_from(payload)
        except ValidationError as e:
            return self._malformed(e)

        try:
            campaign = self.campaign_repository.get_campaign_by_remote_id(remote_id)
        except RecordNotFound:
            mismatch = ReconciliationMismatch(NOT_FOUND_MESSAGE, details={'remote_id': remote_id})
            logger.warning("Callback for unknown campaign acknowledged", extra=mismatch.to_dict())
            return CallbackResponse(200, {
                'success': False,
                'message': NOT_FOUND_MESSAGE,
                'campaignId': remote_id,
            })

        try:
            event = CallbackEvent.from_payload(payload)
        except ValidationError as e:
            return self._malformed(e)

        logger.info("Received campaign state callback", extra={
            'remote_id': event.remote_id,
            'status_code': event.status_code,
        })

        try:
            outcome = self.apply_status(campaign, event)
        except RecordConflict as e:
            logger.warning("Callback apply lost a concurrent write", extra={'remote_id': event.remote_id})
            return CallbackResponse(500, {'success': False, 'error': e.message})
        except Exception as e:
            logger.error(f"Error applying callback: {e}", exc_info=True,
                         extra={'remote_id': event.remote_id})
            return CallbackResponse(500, {'success': False, 'error': 'Internal server error'})

        info = self.state_machine.describe(campaign.status_code)
        return CallbackResponse(200, {
            'success': True,
            'campaignId': campaign.id,
            'remoteId': event.remote_id,
            'statusCode': campaign.status_code,
            'status': info.status,
            'label': info.label,
            'applied': outcome == ApplyOutcome.APPLIED,
            'outcome': outcome.value,
        })

    @staticmethod
    def _malformed(error: ValidationError) -> CallbackResponse:
        logger.warning("Rejected malformed callback", extra={'error': error.message})
        body = {'error': error.message}
        body.update(error.details)
        return CallbackResponse(400, body)

    def authenticate(self, headers: Mapping[str, str], query_args: Mapping[str, str],
                     remote_addr: Optional[str] = None) -> bool:
        if not self.callback_auth_key:
            logger.warning("GATEWAY_CALLBACK_AUTH_KEY not configured; callback accepted unauthenticated")
            security_logger.log_callback_auth_bypass(ip_address=remote_addr)
            return True

        lowered = {str(name).lower(): value for name, value in headers.items()}
        candidates = [(name, lowered.get(name.lower())) for name in AUTH_HEADER_NAMES]
        candidates.append((f'query:{AUTH_QUERY_PARAM}', query_args.get(AUTH_QUERY_PARAM)))

        for name, provided in candidates:
            if not provided:
                continue
            if name == 'Authorization' and provided.startswith('Bearer '):
                provided = provided[len('Bearer '):]
            if hmac.compare_digest(str(provided).encode(), self.callback_auth_key.encode()):
                security_logger.log_callback_authentication(True, name, ip_address=remote_addr)
                return True

        logger.warning("Callback auth key mismatch")
        security_logger.log_callback_authentication(False, None, ip_address=remote_addr)
        return False

    def apply_status(self, campaign, event: CallbackEvent, from_callback: bool = True) -> ApplyOutcome:
        """
        Apply a Gateway-reported status and carried fields in one save.

        Shared by callbacks and the explicit status refresh. Nothing is written
        when the campaign is terminal or when the event repeats what is stored.

        Raises:
            RecordConflict: If the campaign changed underneath this apply
        """
        outcome = self.state_machine.apply_remote(campaign, event.status_code)
        if outcome == ApplyOutcome.NOOP_TERMINAL:
            logger.info("Callback ignored: campaign is terminal", extra={
                'campaign_id': campaign.id,
                'current_code': campaign.status_code,
                'incoming_code': event.status_code,
            })
            return outcome

        changed = outcome == ApplyOutcome.APPLIED
        for attribute, value in event.counts.items():
            if getattr(campaign, attribute) != value:
                setattr(campaign, attribute, value)
                changed = True
        if event.reason and campaign.status_reason != event.reason:
            campaign.status_reason = event.reason
            changed = True

        if not changed:
            logger.info("Duplicate status ignored", extra={'campaign_id': campaign.id,
                                                           'status_code': event.status_code})
            return outcome

        if from_callback:
            campaign.last_callback_at = event.observed_at
        self.campaign_repository.save_campaign(campaign)
        logger.info("Campaign status reconciled", extra={
            'campaign_id': campaign.id,
            'remote_id': campaign.remote_id,
            'status_code': campaign.status_code,
            'outcome': outcome.value,
        })
        return outcome
