"""
BizChat Gateway API Client

Handles all direct API communication with the Gateway, including:
- Environment and credential selection (through the injected resolver)
- Correlation ids on every request
- Envelope parsing and error classification
- Simulated responses for safe operations in non-production contexts
"""

import json
import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from logging_config import performance_logger, truncate_for_log
from services.common.errors import BusinessError, ConfigurationError, TransportError, ValidationError
from services.gateway_environment import GatewayEnvironmentResolver, ResolvedEnvironment
from services.gateway_transport import TransportRequest, TransportResponse
from utils.datetime_utils import generate_correlation_id

logger = logging.getLogger(__name__)

SUCCESS_CODE = 'S000001'
META_TYPES = ('filter', '11st', 'webapp', 'loc')


@dataclass(frozen=True)
class GatewayOperation:
    name: str
    method: str
    path: str
    # Destructive operations are never simulated
    simulatable: bool = True


OPERATIONS: Dict[str, GatewayOperation] = {
    'create': GatewayOperation('create', 'POST', '/api/v1/cmpn/create'),
    'approve': GatewayOperation('approve', 'POST', '/api/v1/cmpn/appr/req'),
    'test_send': GatewayOperation('test_send', 'POST', '/api/v1/cmpn/test/send'),
    'cancel': GatewayOperation('cancel', 'POST', '/api/v1/cmpn/cancel', simulatable=False),
    'stop': GatewayOperation('stop', 'POST', '/api/v1/cmpn/stop', simulatable=False),
    'read': GatewayOperation('read', 'GET', '/api/v1/cmpn'),
    'stats': GatewayOperation('stats', 'GET', '/api/v1/cmpn/stat/read'),
    'meta': GatewayOperation('meta', 'POST', '/api/v1/ats/meta/{meta_type}'),
    'estimate': GatewayOperation('estimate', 'POST', '/api/v1/ats/mosu'),
}


@dataclass
class GatewayResult:
    """A successful (or simulated) Gateway response"""
    code: str
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    http_status: Optional[int] = None
    correlation_id: Optional[str] = None
    environment: Optional[str] = None
    simulated: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'code': self.code,
            'msg': self.message,
            'data': self.data,
            'correlation_id': self.correlation_id,
            'environment': self.environment,
            'simulated': self.simulated,
        }


class GatewayAPIClient:
    """Stateless request/response adapter for the Gateway"""

    def __init__(self, resolver: GatewayEnvironmentResolver, transport, body_log_limit: int = 500):
        """
        Initialize the Gateway client.

        Args:
            resolver: Environment/credential resolver built at startup
            transport: Object with send(TransportRequest) -> TransportResponse
            body_log_limit: Maximum characters of any body written to the logs
        """
        self.resolver = resolver
        self.transport = transport
        self.body_log_limit = body_log_limit

    # Campaign lifecycle

    def create_campaign(self, payload: Dict[str, Any], environment: Optional[str] = None) -> GatewayResult:
        return self._call(OPERATIONS['create'], environment=environment, body=payload)

    def request_approval(self, remote_id: str, environment: Optional[str] = None) -> GatewayResult:
        return self._call(OPERATIONS['approve'], environment=environment, params={'id': remote_id}, body={})

    def send_test(self, remote_id: str, numbers: List[str], environment: Optional[str] = None) -> GatewayResult:
        return self._call(OPERATIONS['test_send'], environment=environment,
                          params={'id': remote_id}, body={'mdn': numbers})

    def cancel_campaign(self, remote_id: str, environment: Optional[str] = None) -> GatewayResult:
        return self._call(OPERATIONS['cancel'], environment=environment, params={'id': remote_id}, body={})

    def stop_campaign(self, remote_id: str, environment: Optional[str] = None) -> GatewayResult:
        return self._call(OPERATIONS['stop'], environment=environment, params={'id': remote_id}, body={})

    def get_campaign(self, remote_id: str, environment: Optional[str] = None) -> GatewayResult:
        return self._call(OPERATIONS['read'], environment=environment, params={'id': remote_id})

    def get_stats(self, remote_id: str, environment: Optional[str] = None) -> GatewayResult:
        return self._call(OPERATIONS['stats'], environment=environment, params={'id': remote_id})

    # Audience tooling

    def fetch_meta(self, meta_type: str, body: Optional[Dict[str, Any]] = None,
                   override: Optional[str] = None) -> GatewayResult:
        if meta_type not in META_TYPES:
            raise ValidationError(f"Unknown meta type: {meta_type}", details={'allowed': list(META_TYPES)})
        return self._call(OPERATIONS['meta'], override=override, body=body or {},
                          path_args={'meta_type': meta_type})

    def estimate_audience(self, filter_expression: Dict[str, Any],
                          override: Optional[str] = None) -> Tuple[Optional[int], GatewayResult]:
        """
        Ask the Gateway for the population matching a compiled filter.

        Returns:
            (estimated count or None when the Gateway gave none, raw result)
        """
        result = self._call(OPERATIONS['estimate'], override=override, body=filter_expression)
        count = result.data.get('sndMosu')
        if count is None:
            count = result.data.get('cnt')
        if count is None:
            return None, result
        try:
            return int(count), result
        except (TypeError, ValueError):
            logger.warning("Gateway returned a non-numeric audience estimate",
                           extra={'estimate': truncate_for_log(count), 'correlation_id': result.correlation_id})
            return None, result

    # Request plumbing

    def _call(self, operation: GatewayOperation, environment: Optional[str] = None,
              override: Optional[str] = None, params: Optional[Dict[str, Any]] = None,
              body: Optional[Any] = None, path_args: Optional[Dict[str, str]] = None) -> GatewayResult:
        resolved = self.resolver.resolve(override=override, pinned=environment)
        correlation_id = generate_correlation_id()

        if not resolved.has_credential:
            if resolved.simulation_allowed and operation.simulatable:
                return self._simulate(operation, resolved, correlation_id, params)
            raise ConfigurationError(
                f"No gateway API key configured for {resolved.environment.value}",
                details={'environment': resolved.environment.value, 'operation': operation.name},
            )

        path = operation.path.format(**(path_args or {}))
        request = TransportRequest(
            method=operation.method,
            url=f"{resolved.base_url}{path}",
            params={'tid': correlation_id, **(params or {})},
            headers={'Authorization': resolved.api_key, 'Content-Type': 'application/json'},
            json_body=body if operation.method != 'GET' else None,
        )

        logger.info(f"Gateway {operation.name} request", extra={
            'correlation_id': correlation_id,
            'environment': resolved.environment.value,
            'method': request.method,
            'path': path,
            'params': request.params,
            'body': truncate_for_log(request.json_body, self.body_log_limit),
        })

        started = time.monotonic()
        try:
            response = self.transport.send(request)
        except TransportError:
            self._log_timing(operation, path, started, None, correlation_id, resolved)
            raise
        self._log_timing(operation, path, started, response.status_code, correlation_id, resolved)

        return self._classify(operation, response, correlation_id, resolved)

    def _classify(self, operation: GatewayOperation, response: TransportResponse,
                  correlation_id: str, resolved: ResolvedEnvironment) -> GatewayResult:
        envelope, is_envelope = self._parse_envelope(response)
        code = str(envelope.get('code')) if envelope.get('code') is not None else ''
        message = envelope.get('msg') or envelope.get('message') or ''

        logger.info(f"Gateway {operation.name} response", extra={
            'correlation_id': correlation_id,
            'http_status': response.status_code,
            'gateway_code': code,
            'body': truncate_for_log(response.text, self.body_log_limit),
        })

        if response.ok and code == SUCCESS_CODE:
            data = envelope.get('data')
            if data is not None and not isinstance(data, dict):
                data = {'value': data}
            return GatewayResult(
                code=code,
                message=message,
                data=data or {},
                http_status=response.status_code,
                correlation_id=correlation_id,
                environment=resolved.environment.value,
            )

        if response.status_code >= 500 and not is_envelope:
            raise TransportError(
                f"Gateway {operation.name} failed with HTTP {response.status_code}",
                details={'http_status': response.status_code, 'correlation_id': correlation_id},
            )

        logger.warning(f"Gateway {operation.name} rejected", extra={
            'correlation_id': correlation_id,
            'http_status': response.status_code,
            'gateway_code': code,
            'gateway_message': message,
        })
        raise BusinessError(
            f"Gateway {operation.name} failed: [{code}] {message}".strip(),
            gateway_code=code,
            gateway_message=message,
            correlation_id=correlation_id,
            http_status=response.status_code,
        )

    @staticmethod
    def _parse_envelope(response: TransportResponse) -> Tuple[Dict[str, Any], bool]:
        """The {code, msg, data} envelope, or a stand-in built from a non-JSON body"""
        try:
            parsed = json.loads(response.text) if response.text else None
        except ValueError:
            parsed = None
        if isinstance(parsed, dict) and 'code' in parsed:
            return parsed, True
        return {'code': str(response.status_code), 'msg': response.text or ''}, False

    def _simulate(self, operation: GatewayOperation, resolved: ResolvedEnvironment,
                  correlation_id: str, params: Optional[Dict[str, Any]]) -> GatewayResult:
        logger.warning(f"Gateway {operation.name} simulated: no API key configured", extra={
            'correlation_id': correlation_id,
            'environment': resolved.environment.value,
        })
        data: Dict[str, Any] = {}
        if operation.name == 'create':
            data['id'] = f"SIM_{correlation_id}_{secrets.token_hex(3)}"
        elif params and 'id' in params:
            data['id'] = params['id']
        return GatewayResult(
            code=SUCCESS_CODE,
            message='simulated',
            data=data,
            correlation_id=correlation_id,
            environment=resolved.environment.value,
            simulated=True,
        )

    def _log_timing(self, operation: GatewayOperation, path: str, started: float,
                    status_code: Optional[int], correlation_id: str, resolved: ResolvedEnvironment) -> None:
        performance_logger.log_api_call(
            service='bizchat_gateway',
            endpoint=f"{operation.method} {path}",
            duration_ms=round((time.monotonic() - started) * 1000, 1),
            status_code=status_code,
            correlation_id=correlation_id,
            environment=resolved.environment.value,
        )
