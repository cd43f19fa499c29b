"""
Public IP Resolver.

Discovers the machine's public IPv4 address by asking a list of IP echo
services in order. Results are cached for a fixed window; when every
provider fails, the last known address is served even if stale.
"""

import asyncio
import ipaddress
import re
import time
from typing import Callable, Optional

import httpx

from .config import IPProvider, PublicIPConfig
from .enums import LogLevel
from .exceptions import PublicIPError
from .retry_manager import RetryManager
from .sync_logger import StructuredLogger

IPV4_PATTERN = re.compile(r"^\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}$")

REQUEST_HEADERS = {
    "Accept": "application/json, text/plain, */*",
    "User-Agent": "npm-cloudflare-sync/1.0",
}


def is_valid_ipv4(value: object) -> bool:
    """True for a dotted-quad IPv4 address with octets in range."""
    if not isinstance(value, str) or not IPV4_PATTERN.match(value):
        return False
    try:
        ipaddress.IPv4Address(value)
    except ValueError:
        return False
    return True


class PublicIPResolver:
    """
    Resolves the public IPv4 address with caching and provider failover.
    """

    COMPONENT = "PublicIP"

    def __init__(
        self,
        config: Optional[PublicIPConfig] = None,
        logger: Optional[StructuredLogger] = None,
        client: Optional[httpx.AsyncClient] = None,
        retry_manager: Optional[RetryManager] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the resolver.

        Args:
            config: Providers, cache window, timeout and retry settings
            logger: Optional logger
            client: Optional pre-built httpx.AsyncClient
            retry_manager: Optional retry policy (defaults to config.retry)
            clock: Monotonic clock in seconds, used for cache age
        """
        self._config = config or PublicIPConfig()
        self._logger = logger
        self._client = client
        self._owns_client = client is None
        self._retry_manager = retry_manager or RetryManager(self._config.retry)
        self._clock = clock
        self._cached_ip: Optional[str] = None
        self._fetched_at: Optional[float] = None

    @property
    def cached_ip(self) -> Optional[str]:
        return self._cached_ip

    @property
    def cache_age(self) -> Optional[float]:
        """Seconds since the last successful resolution, or None."""
        if self._fetched_at is None:
            return None
        return self._clock() - self._fetched_at

    def _cache_is_fresh(self) -> bool:
        age = self.cache_age
        return (
            self._cached_ip is not None
            and age is not None
            and age < self._config.cache_ttl_seconds
        )

    async def resolve(self) -> str:
        """
        Return the current public IPv4 address.

        Raises:
            PublicIPError: If every provider failed and nothing was ever cached
        """
        if self._cache_is_fresh():
            self._log(LogLevel.DEBUG, "Using cached public IP", {"ip": self._cached_ip})
            return self._cached_ip

        providers = self._config.providers
        last_error: Optional[Exception] = None

        for index, provider in enumerate(providers):
            remaining = len(providers) - index - 1
            result = await self._retry_manager.execute_with_retry(
                lambda provider=provider: self._query(provider),
                on_retry=self._on_retry(provider, remaining),
            )
            if result.success:
                ip = result.result
                self._cached_ip = ip
                self._fetched_at = self._clock()
                self._log(LogLevel.DEBUG, "Successfully retrieved public IP", {
                    "ip": ip,
                    "service": provider.url,
                    "attempt": result.attempts,
                })
                return ip

            last_error = result.last_error
            self._log(LogLevel.WARN, f"Failed to get IP from {provider.url}", {
                "attempts": result.attempts,
                "error": str(last_error),
                "remaining_services": remaining,
            })

        age = self.cache_age
        self._log(LogLevel.ERROR, "All IP services failed", {
            "last_error": str(last_error) if last_error else None,
            "total_services": len(providers),
            "last_cached_ip": self._cached_ip,
            "last_check_age": f"{int(age)}s ago" if age is not None else "never",
        })

        if self._cached_ip is not None:
            self._log(LogLevel.WARN, "Using expired cached IP as fallback", {
                "ip": self._cached_ip,
                "age": f"{int(age)}s" if age is not None else None,
            })
            return self._cached_ip

        raise PublicIPError(
            code="all_providers_exhausted",
            message="Failed to retrieve public IP from all services",
            details={"last_error": str(last_error) if last_error else None},
        )

    async def _query(self, provider: IPProvider) -> str:
        self._log(LogLevel.DEBUG, "Trying IP service", {"service": provider.url})
        try:
            response = await asyncio.wait_for(
                self._get_client().get(provider.url, headers=REQUEST_HEADERS),
                timeout=self._config.request_timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise PublicIPError(
                code="timeout",
                message=f"Request timed out after {self._config.request_timeout_seconds}s",
                details={"service": provider.url},
            )

        if not response.is_success:
            raise PublicIPError(
                code=f"http_{response.status_code}",
                message=f"HTTP {response.status_code}: {response.reason_phrase}",
                details={"service": provider.url},
            )

        ip = self._extract(provider, response)
        if not is_valid_ipv4(ip):
            raise PublicIPError(
                code="invalid_format",
                message="Invalid IP format received",
                details={"service": provider.url, "value": str(ip)[:64]},
            )
        return ip

    @staticmethod
    def _extract(provider: IPProvider, response: httpx.Response) -> Optional[str]:
        if provider.json_field is None:
            return response.text.strip()
        try:
            data = response.json()
        except ValueError:
            return None
        if not isinstance(data, dict):
            return None
        value = data.get(provider.json_field)
        return value.strip() if isinstance(value, str) else None

    def _on_retry(self, provider: IPProvider, remaining: int):
        def hook(attempt: int, error: Exception, delay: float) -> None:
            self._log(LogLevel.WARN, f"Failed to get IP from {provider.url}", {
                "attempt": attempt + 1,
                "error": str(error) or type(error).__name__,
                "remaining_services": remaining,
                "retry_in_seconds": delay,
            })

        return hook

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                follow_redirects=True,
                timeout=httpx.Timeout(self._config.request_timeout_seconds),
            )
        return self._client

    def _log(self, level: LogLevel, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
