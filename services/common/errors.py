"""
Error taxonomy for the campaign broker.

Pure components (filter compiler, send-time scheduler, state machine) only raise
ValidationError and StateConflict. Everything that classifies I/O failures lives in
the gateway client and the callback reconciliation service.
"""

from typing import Any, Dict, Optional


class BrokerError(Exception):
    """Base class for every error the broker raises on purpose"""

    code = 'BROKER_ERROR'
    retryable = False

    def __init__(self, message: str, code: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload = {'error': self.message, 'code': self.code}
        if self.details:
            payload['details'] = self.details
        return payload


class ConfigurationError(BrokerError):
    """Missing credential or configuration. Fatal, never retried."""
    code = 'CONFIGURATION_ERROR'


class ValidationError(BrokerError):
    """Malformed local input"""
    code = 'VALIDATION_ERROR'


class TransportError(BrokerError):
    """Network failure or timeout talking to the Gateway.

    The caller may retry with backoff; nothing in the broker retries on its own.
    """
    code = 'TRANSPORT_ERROR'
    retryable = True


class BusinessError(BrokerError):
    """The Gateway answered but its embedded result code signals failure"""

    code = 'BUSINESS_ERROR'

    def __init__(self, message: str, gateway_code: Optional[str] = None,
                 gateway_message: Optional[str] = None, correlation_id: Optional[str] = None,
                 http_status: Optional[int] = None):
        super().__init__(message, details={
            'gateway_code': gateway_code,
            'gateway_message': gateway_message,
            'correlation_id': correlation_id,
            'http_status': http_status,
        })
        self.gateway_code = gateway_code
        self.gateway_message = gateway_message
        self.correlation_id = correlation_id
        self.http_status = http_status


class ReconciliationMismatch(BrokerError):
    """A callback referenced a remote id that has no local campaign"""
    code = 'RECONCILIATION_MISMATCH'


class StateConflict(BrokerError):
    """A requested transition violates the campaign state machine"""
    code = 'STATE_CONFLICT'


PreconditionFailed = StateConflict


class RecordNotFound(BrokerError):
    code = 'NOT_FOUND'


class RecordConflict(BrokerError):
    """The record store rejected a save because the row changed underneath us"""
    code = 'RECORD_CONFLICT'
    retryable = True
