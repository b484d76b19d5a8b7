"""
MCP transports.

A transport moves one MCPRequest to the assistance collaborator and brings
back its MCPResponse. Timeouts are enforced by the gateway, not here.
"""

import asyncio
import inspect
import ipaddress
import logging
import ssl
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, List, Optional, Union
from urllib.parse import urlsplit

import aiohttp

from ..errors import MCPGatewayError
from .types import MCPRequest, MCPResponse

logger = logging.getLogger(__name__)

_LOOPBACK_HOSTS = {"localhost"}


class MCPTransport(ABC):
    """Transport interface for the assistance collaborator."""

    name: str = "transport"

    @abstractmethod
    async def send(self, request: MCPRequest) -> MCPResponse:
        """Deliver a request and wait for its correlated response."""
        pass

    async def cancel(self, request_id: str) -> None:
        """Tell the collaborator to drop an outstanding request."""
        return None

    async def close(self) -> None:
        return None


MCPHandler = Callable[[MCPRequest], Union[MCPResponse, dict, Awaitable[Any]]]


class CallbackMCPTransport(MCPTransport):
    """
    In-process collaborator.

    The handler receives the MCPRequest and returns an MCPResponse or a
    plain dict with the wire fields; it may be sync or async.

    Example:
        async def assistant(request):
            return {"id": request.id, "status": "ok", "value": fixed(request)}

        gateway = MCPGateway(CallbackMCPTransport(assistant))
    """

    name = "callback"

    def __init__(self, handler: MCPHandler):
        self._handler = handler
        self.cancelled: List[str] = []

    async def send(self, request: MCPRequest) -> MCPResponse:
        result = self._handler(request)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, MCPResponse):
            return result
        if isinstance(result, dict):
            return MCPResponse.model_validate({"id": request.id, **result})
        raise MCPGatewayError(
            f"Handler returned {type(result).__name__}, expected MCPResponse or dict",
            request_id=request.id,
            kind=request.kind.value,
        )

    async def cancel(self, request_id: str) -> None:
        self.cancelled.append(request_id)


class HttpMCPTransport(MCPTransport):
    """
    HTTP(S) transport with connection pooling.

    Requests are POSTed as JSON to `{base_url}/requests`; cancellation goes
    to `{base_url}/requests/{id}/cancel`. Plain http is only accepted for
    loopback hosts; everything else must be https with TLS 1.2 or newer.
    """

    name = "http"

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        connect_timeout: float = 10.0,
        cancel_timeout: float = 5.0,
        allow_insecure_loopback: bool = True,
        ssl_context: Optional[ssl.SSLContext] = None,
    ):
        """
        Args:
            base_url: Collaborator endpoint, e.g. https://mcp.internal/v1
            api_key: Sent as a bearer token when set
            connect_timeout: TCP connect timeout in seconds
            cancel_timeout: Total timeout in seconds for a cancellation POST
            allow_insecure_loopback: Accept http:// for localhost/127.0.0.1
            ssl_context: Custom SSL context (minimum version is still forced to TLS 1.2)

        Raises:
            ValueError: If the URL would send requests unencrypted over a network
        """
        parts = urlsplit(base_url)
        if parts.scheme not in ("http", "https"):
            raise ValueError(f"Unsupported MCP URL scheme: {parts.scheme or '(none)'}")
        if parts.scheme == "http" and not (allow_insecure_loopback and _is_loopback(parts.hostname)):
            raise ValueError("MCP transport must use https when crossing a network boundary")

        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = aiohttp.ClientTimeout(total=None, connect=connect_timeout)
        self.cancel_timeout = aiohttp.ClientTimeout(total=cancel_timeout)
        self._secure = parts.scheme == "https"
        self._ssl_context = ssl_context or ssl.create_default_context()
        self._ssl_context.minimum_version = ssl.TLSVersion.TLSv1_2
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Reuse one pooled session."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=20,
                limit_per_host=10,
                ssl=self._ssl_context if self._secure else False,
            )
            self._session = aiohttp.ClientSession(connector=connector, timeout=self.timeout)
        return self._session

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def send(self, request: MCPRequest) -> MCPResponse:
        session = await self._get_session()
        url = f"{self.base_url}/requests"
        try:
            async with session.post(url, json=request.to_wire(), headers=self._headers()) as response:
                if response.status != 200:
                    text = await response.text()
                    raise MCPGatewayError(
                        f"MCP collaborator returned HTTP {response.status}: {text[:200]}",
                        request_id=request.id,
                        kind=request.kind.value,
                    )
                data = await response.json()
        except aiohttp.ClientError as e:
            raise MCPGatewayError(
                f"MCP collaborator unreachable: {e}",
                request_id=request.id,
                kind=request.kind.value,
            ) from e

        return MCPResponse.model_validate(data)

    async def cancel(self, request_id: str) -> None:
        session = await self._get_session()
        url = f"{self.base_url}/requests/{request_id}/cancel"
        try:
            async with session.post(url, headers=self._headers(), timeout=self.cancel_timeout) as response:
                if response.status >= 400:
                    logger.warning(f"Cancel of MCP request {request_id} returned HTTP {response.status}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Cancel of MCP request {request_id} failed: {e!r}")

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None


def _is_loopback(host: Optional[str]) -> bool:
    if not host:
        return False
    if host in _LOOPBACK_HOSTS:
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False
