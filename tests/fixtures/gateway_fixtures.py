"""Gateway test doubles.

FakeTransport stands in for RequestsTransport: tests queue the raw responses
the Gateway would send and inspect the requests the client built.
"""

import json
from typing import Any, Dict, List, Optional, Union

from services.gateway_transport import TransportRequest, TransportResponse

SUCCESS_CODE = 'S000001'


def gateway_envelope(data: Optional[Any] = None, code: str = SUCCESS_CODE, msg: str = 'success') -> str:
    """JSON body in the Gateway's {code, msg, data} envelope"""
    body: Dict[str, Any] = {'code': code, 'msg': msg}
    if data is not None:
        body['data'] = data
    return json.dumps(body, ensure_ascii=False)


class FakeTransport:
    """Queue-driven transport. Raises if the client sends more requests than queued."""

    def __init__(self):
        self.requests: List[TransportRequest] = []
        self._responses: List[Union[TransportResponse, Exception]] = []

    def queue(self, data: Optional[Any] = None, code: str = SUCCESS_CODE, msg: str = 'success',
              status_code: int = 200) -> 'FakeTransport':
        self._responses.append(TransportResponse(status_code, gateway_envelope(data, code, msg)))
        return self

    def queue_raw(self, text: str, status_code: int) -> 'FakeTransport':
        self._responses.append(TransportResponse(status_code, text))
        return self

    def queue_error(self, error: Exception) -> 'FakeTransport':
        self._responses.append(error)
        return self

    def send(self, request: TransportRequest) -> TransportResponse:
        self.requests.append(request)
        if not self._responses:
            raise AssertionError(f"Unexpected gateway request: {request.method} {request.url}")
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def last_request(self) -> TransportRequest:
        return self.requests[-1]

    @property
    def pending(self) -> int:
        return len(self._responses)
