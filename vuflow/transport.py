"""HTTP transport capability consumed by workload steps."""

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

import httpx

from vuflow.metrics import (
    HTTP_REQ_DURATION,
    HTTP_REQ_FAILED,
    HTTP_REQS,
    MetricRegistry,
)

logger = logging.getLogger(__name__)

Body = Union[str, bytes, None]


class TransportError(Exception):
    """Raised when a request fails before any HTTP response is received."""


@dataclass
class Response:
    status: int
    body: str = ""
    headers: Dict[str, str] = field(default_factory=dict)

    def json(self) -> Any:
        return json.loads(self.body)


class HttpxTransport:
    """Transport backed by a shared ``httpx.AsyncClient``.

    Relative URLs resolve against ``base_url``. Pass ``transport`` (for
    example ``httpx.ASGITransport``) to route requests in-process.
    """

    def __init__(
        self,
        base_url: str = "",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url, timeout=timeout, transport=transport
        )

    async def post(self, url: str, body: Body = None, headers: Optional[Dict[str, str]] = None) -> Response:
        return await self._send("POST", url, body, headers)

    async def get(self, url: str, headers: Optional[Dict[str, str]] = None) -> Response:
        return await self._send("GET", url, None, headers)

    async def _send(self, method, url, body, headers) -> Response:
        try:
            resp = await self._client.request(method, url, content=body, headers=headers)
        except httpx.TransportError as exc:
            raise TransportError(f"{method} {url}: {exc!r}") from exc
        return Response(status=resp.status_code, body=resp.text, headers=dict(resp.headers))

    async def aclose(self) -> None:
        await self._client.aclose()


class InstrumentedTransport:
    """Wrap a transport and record the built-in HTTP metrics for each call.

    A request counts as failed when it raises ``TransportError`` or returns
    a status of 400 or above.
    """

    def __init__(self, inner, registry: MetricRegistry):
        self._inner = inner
        self._reqs = registry.counter(HTTP_REQS)
        self._duration = registry.trend(HTTP_REQ_DURATION)
        self._failed = registry.rate(HTTP_REQ_FAILED)

    async def post(self, url: str, body: Body = None, headers: Optional[Dict[str, str]] = None) -> Response:
        return await self._timed(self._inner.post(url, body, headers))

    async def get(self, url: str, headers: Optional[Dict[str, str]] = None) -> Response:
        return await self._timed(self._inner.get(url, headers))

    async def _timed(self, call) -> Response:
        started = time.perf_counter()
        try:
            resp = await call
        except TransportError:
            self._reqs.add(1)
            self._failed.add(True)
            raise
        self._duration.add((time.perf_counter() - started) * 1000.0)
        self._reqs.add(1)
        self._failed.add(resp.status >= 400)
        return resp
