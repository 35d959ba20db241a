"""
Outbound HTTP transport for the Gateway.

The transport knows nothing about the Gateway envelope or credentials; it moves
one request and returns the raw response, or raises TransportError.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple
import logging

import requests

from services.common.errors import TransportError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = (5, 30)  # Connection timeout, read timeout


@dataclass
class TransportRequest:
    method: str
    url: str
    params: Dict[str, Any] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)
    json_body: Optional[Any] = None


@dataclass
class TransportResponse:
    status_code: int
    text: str
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class RequestsTransport:
    """requests-based transport with a bounded timeout on every call"""

    def __init__(self, timeout: Tuple[float, float] = DEFAULT_TIMEOUT,
                 session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()

    def send(self, request: TransportRequest) -> TransportResponse:
        try:
            response = self.session.request(
                method=request.method,
                url=request.url,
                params=request.params,
                headers=request.headers,
                json=request.json_body,
                timeout=self.timeout,
                verify=True
            )
        except requests.exceptions.Timeout as e:
            logger.error("Gateway request timed out", extra={'url': request.url, 'error': str(e)})
            raise TransportError(f"Gateway request timed out: {e}",
                                 details={'url': request.url, 'timeout': list(self.timeout)}) from e
        except requests.exceptions.RequestException as e:
            logger.error("Gateway request failed", extra={'url': request.url, 'error': str(e)})
            raise TransportError(f"Gateway request failed: {e}", details={'url': request.url}) from e

        return TransportResponse(
            status_code=response.status_code,
            text=response.text,
            headers=dict(response.headers),
        )
