"""HTTP transport over httpx.

The only place httpx exceptions are seen; everything above this module deals
in TransportError / InvalidConfiguration.
"""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from switchyard.core.errors import InvalidConfiguration, MalformedResponse, TransportError
from switchyard.logging_setup import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 60.0


@dataclass(frozen=True)
class TransportResponse:
    status: int
    body: bytes

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        try:
            return json.loads(self.body)
        except ValueError as e:
            raise MalformedResponse("Failed to parse response") from e


class StreamHandle:
    """An open streaming response: status first, then lines as they arrive."""

    def __init__(self, response: httpx.Response):
        self._response = response

    @property
    def status(self) -> int:
        return self._response.status_code

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    async def read(self) -> str:
        body = await self._response.aread()
        return body.decode("utf-8", errors="replace")

    def lines(self) -> AsyncIterator[str]:
        return self._response.aiter_lines()


def _encode(body: Optional[Dict[str, Any]]) -> Optional[bytes]:
    if body is None:
        return None
    try:
        return json.dumps(body).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise InvalidConfiguration("Failed to serialize request") from e


class HttpTransport:
    """
    Generic request/stream client. TLS, pooling and DNS are httpx's business.
    """

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        body: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> TransportResponse:
        content = _encode(body)
        try:
            response = await self._client.request(
                method,
                url,
                headers=self._headers(headers, content),
                content=content,
                timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
            )
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as e:
            raise InvalidConfiguration(f"Invalid API endpoint: {url}") from e
        except httpx.TimeoutException as e:
            raise TransportError(f"Request timed out: {url}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"Request failed: {e}") from e
        return TransportResponse(status=response.status_code, body=response.content)

    @asynccontextmanager
    async def open_stream(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        body: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> AsyncIterator[StreamHandle]:
        """
        Open a streaming request. Leaving the `async with` block (normally,
        on error, or because the consumer stopped early) closes the response.
        """
        content = _encode(body)
        try:
            async with self._client.stream(
                method,
                url,
                headers=self._headers(headers, content),
                content=content,
                timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
            ) as response:
                yield StreamHandle(response)
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as e:
            raise InvalidConfiguration(f"Invalid API endpoint: {url}") from e
        except httpx.TimeoutException as e:
            raise TransportError(f"Stream timed out: {url}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"Stream failed: {e}") from e

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _headers(headers: Optional[Dict[str, str]], content: Optional[bytes]) -> Dict[str, str]:
        merged = dict(headers or {})
        if content is not None:
            merged.setdefault("Content-Type", "application/json")
        return merged
