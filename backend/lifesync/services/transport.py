"""
LifeSync Backend: Outbound HTTP Transport
===========================================

What:  The narrow "send one HTTP request" capability ResilientApiClient is
       built on, and its httpx implementation.
How:   HttpTransport.request() performs exactly one network exchange. It does
       not retry, does not classify and does not add credentials; all of that
       belongs to the caller.
Who:   HttpxTransport is created once in the application lifespan and closed
       on shutdown. Tests substitute a scripted fake.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

import httpx

logger = logging.getLogger(__name__)


@dataclass
class TransportResponse:
    """Raw outcome of one exchange. `body` is undecoded."""

    status_code: int
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)
    duration_ms: float = 0.0


class HttpTransport(ABC):
    @abstractmethod
    async def request(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: Optional[Any] = None,
    ) -> TransportResponse:
        """
        Send one request.

        `body`, when given, is JSON-encoded. Network failures surface as
        exceptions (httpx.TransportError and subclasses for the httpx
        implementation); any HTTP status, including 4xx/5xx, is a response.
        """
        ...

    async def aclose(self) -> None:
        return None


class HttpxTransport(HttpTransport):
    """
    httpx-backed transport sharing one connection pool for the process.

    The client-level timeout is a backstop; ResilientApiClient enforces the
    per-attempt wall-clock timeout itself.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=min(timeout, 10.0)),
            limits=httpx.Limits(max_connections=50, max_keepalive_connections=10),
        )

    async def request(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: Optional[Any] = None,
    ) -> TransportResponse:
        started = time.perf_counter()
        response = await self._client.request(
            method,
            url,
            headers=dict(headers),
            json=body,
        )
        return TransportResponse(
            status_code=response.status_code,
            body=response.content,
            headers={k.lower(): v for k, v in response.headers.items()},
            duration_ms=(time.perf_counter() - started) * 1000,
        )

    async def aclose(self) -> None:
        await self._client.aclose()
        logger.info("HTTP transport closed")
