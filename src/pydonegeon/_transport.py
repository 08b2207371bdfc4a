"""HTTP transport for the Task Donegeon API."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from typing import Any, Protocol

import aiohttp

from pydonegeon._constants import USER_AGENT
from pydonegeon.config import DonegeonConfig
from pydonegeon.exceptions import DonegeonNetworkError, DonegeonParseError, DonegeonProtocolError

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Structural transport interface used by the ingestion modules.

    Having a protocol here makes it easy to pass test doubles/mocks while
    keeping the production implementation (`HttpTransport`) concrete.
    """

    async def get_json(self, endpoint: str, params: Mapping[str, str] | None = None) -> Any: ...


class HttpTransport:
    """aiohttp-backed transport mapping failures onto the sync error taxonomy."""

    def __init__(self, config: DonegeonConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session

    @property
    def config(self) -> DonegeonConfig:
        return self._config

    async def get_json(self, endpoint: str, params: Mapping[str, str] | None = None) -> Any:
        """GET an endpoint and return the decoded JSON body.

        Raises
        ------
        DonegeonNetworkError
            The server could not be reached or the request timed out.
        DonegeonProtocolError
            The server answered with a non-2xx status.
        DonegeonParseError
            The body is not valid JSON.
        """
        url = self._config.url(endpoint)
        headers = {"accept": "application/json", "user-agent": USER_AGENT}
        timeout = aiohttp.ClientTimeout(total=self._config.request_timeout)

        _logger.debug("GET %s params=%s", url, dict(params) if params else {})

        try:
            async with self._http.get(url, params=params, headers=headers, timeout=timeout) as resp:
                text = await resp.text()
                if not 200 <= resp.status < 300:
                    raise DonegeonProtocolError(
                        f"Server responded with status {resp.status} from {endpoint}: {text[:200]}",
                        status_code=resp.status,
                        endpoint=endpoint,
                    )
        except DonegeonProtocolError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise DonegeonNetworkError(
                f"Request to {endpoint} failed: {str(exc) or type(exc).__name__}",
                endpoint=endpoint,
            ) from exc

        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise DonegeonParseError(
                f"Invalid JSON from {endpoint}: {text[:200]}",
                endpoint=endpoint,
            ) from exc

    @asynccontextmanager
    async def open_stream(self, endpoint: str) -> AsyncIterator[aiohttp.ClientResponse]:
        """Open a long-lived ``text/event-stream`` response.

        The stream has no total timeout; only the connect phase is bounded.
        """
        url = self._config.url(endpoint)
        headers = {
            "accept": "text/event-stream",
            "cache-control": "no-cache",
            "user-agent": USER_AGENT,
        }
        timeout = aiohttp.ClientTimeout(total=None, sock_connect=self._config.request_timeout)

        _logger.debug("STREAM %s", url)

        try:
            resp = await self._http.get(url, headers=headers, timeout=timeout)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise DonegeonNetworkError(
                f"Stream to {endpoint} failed: {str(exc) or type(exc).__name__}",
                endpoint=endpoint,
            ) from exc
        try:
            if resp.status != 200:
                raise DonegeonProtocolError(
                    f"Server responded with status {resp.status} from {endpoint}",
                    status_code=resp.status,
                    endpoint=endpoint,
                )
            yield resp
        finally:
            resp.close()
