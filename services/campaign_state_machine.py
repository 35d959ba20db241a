"""
Campaign status vocabulary and legal transitions.

The Gateway owns the status codes. Its vocabulary has drifted between contract
versions, so the tables are keyed by version and one of them is selected when the
application starts. Codes the Gateway sends that are not in the active table are
accepted and mapped to the local 'unknown' status.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional
import logging

from services.common.errors import StateConflict, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_CONTRACT_VERSION = 'v2'


@dataclass(frozen=True)
class StatusInfo:
    code: int
    status: str
    label: str
    terminal: bool = False


class StatusCode:
    """Codes of the current contract, for readable call sites"""
    TEMP_REGISTERED = 0
    DRAFT = 5
    APPROVAL_REQUESTED = 10
    APPROVED = 11
    REJECTED = 17
    SEND_READY = 20
    CANCELLED = 25
    RUNNING = 30
    STOPPED = 35
    COMPLETED = 40


UNKNOWN_STATUS = 'unknown'


def _table(*entries: StatusInfo) -> Dict[int, StatusInfo]:
    return {entry.code: entry for entry in entries}


STATUS_TABLES: Dict[str, Dict[int, StatusInfo]] = {
    'v2': _table(
        StatusInfo(0, 'temp_registered', '임시등록'),
        StatusInfo(5, 'draft', '작성중'),
        StatusInfo(10, 'approval_requested', '승인요청'),
        StatusInfo(11, 'approved', '승인완료'),
        StatusInfo(17, 'rejected', '반려'),
        StatusInfo(20, 'send_ready', '발송준비'),
        StatusInfo(25, 'cancelled', '취소', terminal=True),
        StatusInfo(30, 'running', '진행중'),
        StatusInfo(35, 'stopped', '중단', terminal=True),
        StatusInfo(40, 'completed', '종료', terminal=True),
    ),
    'v1': _table(
        StatusInfo(0, 'temp_registered', '임시등록'),
        StatusInfo(1, 'inspection_requested', '검수요청'),
        StatusInfo(2, 'inspection_completed', '검수완료'),
        StatusInfo(5, 'draft', '작성중'),
        StatusInfo(10, 'approval_requested', '승인요청'),
        StatusInfo(11, 'approved', '승인완료'),
        StatusInfo(17, 'rejected', '반려'),
        StatusInfo(20, 'send_ready', '발송준비'),
        StatusInfo(30, 'running', '진행중'),
        StatusInfo(40, 'completed', '종료', terminal=True),
        StatusInfo(90, 'cancelled', '취소', terminal=True),
        StatusInfo(91, 'stopped', '중단', terminal=True),
    ),
}

# Local status names, shared by every contract version
CANCELLABLE_STATUSES: FrozenSet[str] = frozenset({
    'approval_requested', 'approved', 'rejected', 'send_ready',
    'inspection_requested', 'inspection_completed',
})
STOPPABLE_STATUSES: FrozenSet[str] = frozenset({'running'})


class ApplyOutcome(Enum):
    APPLIED = 'applied'
    NOOP_TERMINAL = 'noop_terminal'
    NOOP_DUPLICATE = 'noop_duplicate'


class CampaignStateMachine:
    """Pure transition functions over a campaign's status_code/status pair.

    Every transition writes both fields together so status is always the label
    of status_code in the active table.
    """

    def __init__(self, contract_version: str = DEFAULT_CONTRACT_VERSION):
        if contract_version not in STATUS_TABLES:
            raise ValidationError(f"Unsupported gateway contract version: {contract_version}",
                                  details={'supported': sorted(STATUS_TABLES)})
        self.contract_version = contract_version
        self.table = STATUS_TABLES[contract_version]
        self._codes_by_status = {info.status: code for code, info in self.table.items()}

    # Vocabulary

    def describe(self, code: Optional[int]) -> StatusInfo:
        info = self.table.get(code) if code is not None else None
        if info is None:
            return StatusInfo(code if code is not None else -1, UNKNOWN_STATUS, '알 수 없음')
        return info

    def status_for(self, code: Optional[int]) -> str:
        return self.describe(code).status

    def code_for(self, status: str) -> int:
        """Code of a local status name in the active contract version"""
        try:
            return self._codes_by_status[status]
        except KeyError:
            raise ValidationError(f"Status '{status}' does not exist in contract {self.contract_version}")

    def is_terminal(self, code: Optional[int]) -> bool:
        return self.describe(code).terminal

    def is_pre_registration(self, campaign) -> bool:
        return campaign.remote_id is None and campaign.status_code == self.code_for('draft')

    # Guards

    def assert_deletable(self, campaign) -> None:
        if campaign.remote_id is None or campaign.status_code == self.code_for('temp_registered'):
            return
        raise StateConflict(
            f"Campaign in status '{campaign.status}' must be cancelled at the gateway before deletion",
            details={'campaign_id': campaign.id, 'status_code': campaign.status_code},
        )

    def assert_targeting_editable(self, campaign) -> None:
        if not self.is_pre_registration(campaign):
            raise StateConflict(
                "Targeting can only be changed before the campaign is registered",
                details={'campaign_id': campaign.id, 'status_code': campaign.status_code},
            )

    def assert_registrable(self, campaign) -> None:
        if campaign.remote_id is not None:
            raise StateConflict("Campaign is already registered at the gateway",
                                details={'campaign_id': campaign.id, 'remote_id': campaign.remote_id})
        if campaign.status_code != self.code_for('draft'):
            raise StateConflict(f"Only draft campaigns can be registered, not '{campaign.status}'",
                                details={'campaign_id': campaign.id, 'status_code': campaign.status_code})

    def assert_remote_action_allowed(self, campaign, action: str) -> None:
        """Approval and test-send need a registered, non-terminal campaign"""
        if campaign.remote_id is None:
            raise StateConflict(f"Cannot {action} a campaign that is not registered at the gateway",
                                details={'campaign_id': campaign.id})
        if self.is_terminal(campaign.status_code):
            raise StateConflict(f"Cannot {action} a campaign in terminal status '{campaign.status}'",
                                details={'campaign_id': campaign.id, 'status_code': campaign.status_code})

    def assert_cancellable(self, campaign) -> None:
        if campaign.status not in CANCELLABLE_STATUSES:
            raise StateConflict(f"Cannot cancel a campaign in status '{campaign.status}'",
                                details={'campaign_id': campaign.id, 'status_code': campaign.status_code})

    def assert_stoppable(self, campaign) -> None:
        if campaign.status not in STOPPABLE_STATUSES:
            raise StateConflict(f"Cannot stop a campaign in status '{campaign.status}'",
                                details={'campaign_id': campaign.id, 'status_code': campaign.status_code})

    # Local transitions

    def mark_registered(self, campaign, remote_id: str) -> None:
        """draft -> temp_registered after the Gateway accepted the create call"""
        self.assert_registrable(campaign)
        if not remote_id:
            raise ValidationError("Gateway did not return a campaign id")
        campaign.remote_id = remote_id
        self._set(campaign, self.code_for('temp_registered'))

    def request_approval(self, campaign) -> None:
        self.assert_remote_action_allowed(campaign, 'request approval for')
        self._set(campaign, self.code_for('approval_requested'))

    def cancel(self, campaign) -> None:
        self.assert_cancellable(campaign)
        self._set(campaign, self.code_for('cancelled'))

    def stop(self, campaign) -> None:
        self.assert_stoppable(campaign)
        self._set(campaign, self.code_for('stopped'))

    # Gateway-initiated transitions

    def apply_remote(self, campaign, code: int) -> ApplyOutcome:
        """
        Apply a status reported by the Gateway.

        The Gateway is authoritative, so any code moves a non-terminal campaign,
        backward moves included. A terminal campaign never changes again.
        """
        if self.is_terminal(campaign.status_code):
            return ApplyOutcome.NOOP_TERMINAL
        if campaign.status_code == code:
            return ApplyOutcome.NOOP_DUPLICATE
        if code not in self.table:
            logger.warning("Unknown gateway status code mapped to unknown",
                           extra={'campaign_id': campaign.id, 'status_code': code,
                                  'contract_version': self.contract_version})
        self._set(campaign, code)
        return ApplyOutcome.APPLIED

    def _set(self, campaign, code: int) -> None:
        previous = campaign.status_code
        campaign.status_code = code
        campaign.status = self.status_for(code)
        logger.info("Campaign status changed",
                    extra={'campaign_id': campaign.id, 'from_code': previous, 'to_code': code})
