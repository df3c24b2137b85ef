"""HTTP / webhook executor.

Used by integration nodes (webhook, api_call, external_service) to call
external APIs. Supports every method, custom headers, pluggable auth
schemes and an SSRF guard for private hosts.

Never raises for transport or HTTP errors: the outcome is reported in the
returned HttpResponse so the calling handler decides what FAILED means.
"""

import base64
import ipaddress
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urlparse

import httpx
import structlog

from core.constants import AuthType

logger = structlog.get_logger(__name__)

FORBIDDEN_PORTS = (5432, 6379, 9000)  # postgres, redis, internal services
BODY_METHODS = ("POST", "PUT", "PATCH", "DELETE")


def _is_private_ip(ip_str: str) -> bool:
    """Check if an IP address is private, loopback or reserved."""
    try:
        ip = ipaddress.ip_address(ip_str)
    except ValueError:
        return False
    return ip.is_private or ip.is_loopback or ip.is_reserved or ip.is_link_local


def validate_url_safety(url: str, block_private_hosts: bool = True) -> None:
    """Validate URL for SSRF protection.

    Blocks:
    - Non-HTTP(S) schemes
    - Missing hostnames
    - Localhost and private/loopback IP literals (when block_private_hosts)
    - Internal ports (when block_private_hosts)

    Raises:
        ValueError: If URL is unsafe
    """
    parsed = urlparse(url or "")
    if parsed.scheme.lower() not in ("http", "https"):
        raise ValueError(f"Unsupported scheme: {parsed.scheme or '(none)'}. Only HTTP and HTTPS allowed.")

    hostname = parsed.hostname
    if not hostname:
        raise ValueError("URL must have a valid hostname")

    if not block_private_hosts:
        return

    if hostname.lower() in ("localhost", "127.0.0.1", "::1"):
        raise ValueError("Connections to localhost are not allowed")
    # Domain names are not resolved here; only IP literals are checked
    if _is_private_ip(hostname):
        raise ValueError(f"Connections to private IP {hostname} are not allowed")
    if parsed.port in FORBIDDEN_PORTS:
        raise ValueError(f"Connections to internal port {parsed.port} are not allowed")


def apply_auth(headers: dict[str, str], auth_type: Any, auth_config: Optional[dict]) -> None:
    """Add authentication headers in place for the given scheme."""
    name = str(auth_type.value if isinstance(auth_type, AuthType) else (auth_type or "NONE")).upper()
    if name == AuthType.NONE.value:
        return
    if not auth_config:
        logger.warning("Authentication type specified but no config provided", auth_type=name)
        return

    if name == AuthType.BASIC.value:
        username, password = auth_config.get("username"), auth_config.get("password")
        if username is not None and password is not None:
            creds = base64.b64encode(f"{username}:{password}".encode()).decode()
            headers["Authorization"] = f"Basic {creds}"
    elif name == AuthType.BEARER.value:
        if auth_config.get("token"):
            headers["Authorization"] = f"Bearer {auth_config['token']}"
    elif name == AuthType.API_KEY.value:
        if auth_config.get("apiKey"):
            headers[auth_config.get("headerName") or "X-API-Key"] = str(auth_config["apiKey"])
    elif name == AuthType.CUSTOM.value:
        header, value = auth_config.get("headerName"), auth_config.get("headerValue")
        if header and value is not None:
            headers[header] = str(value)
    else:
        logger.warning("Unknown authentication type", auth_type=name)


@dataclass
class HttpResponse:
    """Outcome of one HTTP call."""
    status_code: int
    body: Any = None
    success: bool = False
    headers: dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "statusCode": self.status_code,
            "body": self.body,
            "success": self.success,
            "headers": self.headers,
            "error": self.error,
        }


class HttpExecutor:
    """Thin async wrapper around httpx.AsyncClient."""

    def __init__(
        self,
        timeout: float = 30.0,
        block_private_hosts: bool = True,
        transport: httpx.AsyncBaseTransport = None,
    ):
        self.timeout = timeout
        self.block_private_hosts = block_private_hosts
        self._transport = transport

    async def request(
        self,
        url: str,
        method: str = "GET",
        body: Any = None,
        headers: Optional[dict] = None,
        auth_type: Any = AuthType.NONE,
        auth_config: Optional[dict] = None,
        timeout: Optional[float] = None,
    ) -> HttpResponse:
        """Execute one request; transport errors yield ``success=False`` with status 0."""
        method = (method or "GET").upper()
        try:
            validate_url_safety(url, self.block_private_hosts)
        except ValueError as e:
            logger.warning("Blocked unsafe URL", url=url, error=str(e))
            return HttpResponse(status_code=0, success=False, error=str(e))

        request_headers = {str(k): str(v) for k, v in (headers or {}).items()}
        apply_auth(request_headers, auth_type, auth_config)

        kwargs: dict[str, Any] = {"headers": request_headers}
        if body is not None and method in BODY_METHODS:
            if isinstance(body, (dict, list)):
                kwargs["json"] = body
            else:
                kwargs["content"] = str(body)

        logger.info("HTTP request", method=method, url=url)
        try:
            async with httpx.AsyncClient(
                timeout=timeout or self.timeout, transport=self._transport, follow_redirects=True
            ) as client:
                response = await client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.error("HTTP request failed", method=method, url=url, error=str(e))
            return HttpResponse(status_code=0, success=False, error=f"{type(e).__name__}: {e}")

        try:
            response_body = response.json()
        except ValueError:
            response_body = response.text

        result = HttpResponse(
            status_code=response.status_code,
            body=response_body,
            success=response.is_success,
            headers=dict(response.headers),
            error=None if response.is_success else f"HTTP {response.status_code}",
        )
        logger.info("HTTP request completed", method=method, url=url, status=response.status_code)
        return result


# ─── Singleton ─────────────────────────────────────────────────

_executor: Optional[HttpExecutor] = None


def get_http_executor() -> HttpExecutor:
    """Get or create the singleton HttpExecutor from settings."""
    global _executor
    if _executor is None:
        from app.config import get_settings

        settings = get_settings()
        _executor = HttpExecutor(
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            block_private_hosts=settings.HTTP_BLOCK_PRIVATE_HOSTS,
        )
    return _executor
