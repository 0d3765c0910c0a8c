"""HTTP transport for the controller and the remote watering record."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol
from urllib.parse import urlsplit

import aiohttp

from pybudbox._constants import INSECURE_SCHEMES, NO_CACHE_HEADERS
from pybudbox.config import BudboxConfig
from pybudbox.exceptions import BudboxBlockedError, BudboxError, BudboxTransportError

_logger = logging.getLogger(__name__)


class ControllerTransport(Protocol):
    """Structural transport interface used by :class:`~pybudbox.link.DeviceLink`.

    Having a protocol here makes it easy to pass test doubles while
    keeping the production implementation (`HttpControllerTransport`)
    concrete.
    """

    async def fetch_status(self) -> str:
        ...

    async def send_command(self, wire_name: str, value: str) -> str:
        ...


def ensure_reachable(url: str, *, secure_context: bool) -> None:
    """Raise :class:`BudboxBlockedError` for a mixed security context."""
    scheme = urlsplit(url).scheme.lower()
    if secure_context and scheme in INSECURE_SCHEMES:
        raise BudboxBlockedError(
            f"Cannot reach insecure {scheme}:// endpoint from a secure context: {url}",
            endpoint=url,
        )


async def request_text(
    http: aiohttp.ClientSession,
    method: str,
    url: str,
    *,
    timeout: float,
    headers: Mapping[str, str] | None = None,
    data: Any = None,
    json_body: Any = None,
    errors: str = "strict",
) -> str:
    """Perform one request and return the body text of a 2xx response.

    Network errors, timeouts, undecodable bodies and non-2xx statuses
    become :class:`BudboxTransportError`.  *errors* is the codec error
    handler used to decode the body.
    """
    request_headers = dict(NO_CACHE_HEADERS)
    if headers:
        request_headers.update(headers)

    _logger.debug("%s %s", method, url)

    try:
        async with http.request(
            method,
            url,
            headers=request_headers,
            data=data,
            json=json_body,
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as resp:
            text = await resp.text(errors=errors)
            if not 200 <= resp.status < 300:
                raise BudboxTransportError(
                    f"HTTP {resp.status} from {url}: {text[:200]}",
                    status_code=resp.status,
                    endpoint=url,
                )
    except BudboxError:
        raise
    except TimeoutError as exc:
        raise BudboxTransportError(f"Request to {url} timed out after {timeout}s", endpoint=url) from exc
    except UnicodeDecodeError as exc:
        raise BudboxTransportError(f"Undecodable response body from {url}: {exc}", endpoint=url) from exc
    except aiohttp.ClientError as exc:
        raise BudboxTransportError(f"Request to {url} failed: {exc}", endpoint=url) from exc

    return text


async def request_json(
    http: aiohttp.ClientSession,
    method: str,
    url: str,
    *,
    timeout: float,
    json_body: Any = None,
) -> dict[str, Any]:
    """Like :func:`request_text` but decodes a JSON object body."""
    text = await request_text(
        http,
        method,
        url,
        timeout=timeout,
        headers={"accept": "application/json"},
        json_body=json_body,
    )
    try:
        body = json.loads(text)
    except json.JSONDecodeError as exc:
        raise BudboxTransportError(f"Invalid JSON from {url}: {text[:200]}", endpoint=url) from exc
    if not isinstance(body, dict):
        raise BudboxTransportError(f"Expected a JSON object from {url}", endpoint=url)
    return body


class HttpControllerTransport:
    """aiohttp transport for the controller's CSV feed and command endpoint."""

    def __init__(self, config: BudboxConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session

    async def fetch_status(self) -> str:
        url = self._config.status_url
        ensure_reachable(url, secure_context=self._config.secure_context)
        # Malformed bytes only spoil their own feed line, which the parser skips.
        text = await request_text(self._http, "GET", url, timeout=self._config.request_timeout, errors="replace")
        _logger.debug("Status feed received, length=%d", len(text))
        return text

    async def send_command(self, wire_name: str, value: str) -> str:
        url = self._config.command_url
        ensure_reachable(url, secure_context=self._config.secure_context)
        text = await request_text(
            self._http,
            "POST",
            url,
            timeout=self._config.request_timeout,
            headers={"content-type": "application/x-www-form-urlencoded"},
            data={wire_name: value},
        )
        return text.strip()
