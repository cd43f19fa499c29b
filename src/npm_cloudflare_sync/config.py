"""
Configuration dataclasses for the sync service.

This module defines all configuration structures used throughout the system,
including API credentials, retry policy, public IP providers, and logging.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class CloudflareConfig:
    """Cloudflare API access."""

    api_token: str
    email: str
    base_url: str = "https://api.cloudflare.com/client/v4"
    request_timeout_seconds: float = 10.0
    page_size: int = 50


@dataclass
class NPMConfig:
    """Nginx Proxy Manager API access."""

    api_url: str
    email: str
    password: str
    request_timeout_seconds: float = 10.0
    max_consecutive_failures: int = 5


@dataclass
class RetryConfig:
    """Retry behavior configuration."""

    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 10.0
    exponential: bool = True


@dataclass
class IPProvider:
    """A public IP echo service and how to read its answer."""

    url: str
    json_field: Optional[str] = None  # None means plain-text body


DEFAULT_IP_PROVIDERS = [
    IPProvider(url="https://api64.ipify.org?format=json", json_field="ip"),
    IPProvider(url="https://ip.seeip.org/jsonip", json_field="ip"),
    IPProvider(url="https://api.myip.com", json_field="ip"),
    IPProvider(url="https://ifconfig.me/ip"),
    IPProvider(url="https://icanhazip.com"),
]


@dataclass
class PublicIPConfig:
    """Public IP discovery configuration."""

    providers: list[IPProvider] = field(
        default_factory=lambda: list(DEFAULT_IP_PROVIDERS)
    )
    cache_ttl_seconds: float = 300.0
    request_timeout_seconds: float = 15.0
    retry: RetryConfig = field(
        default_factory=lambda: RetryConfig(
            max_attempts=3,
            base_delay_seconds=2.0,
            max_delay_seconds=2.0,
            exponential=False,
        )
    )


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "info"
    output_format: str = "text"  # 'json', 'text', 'both'


@dataclass
class SyncConfig:
    """Main service configuration combining all sub-configurations."""

    cloudflare: CloudflareConfig
    npm: NPMConfig
    check_interval_seconds: float = 10.0
    auto_create_root_records: bool = False
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    cloudflare_retry: RetryConfig = field(default_factory=RetryConfig)
    npm_retry: RetryConfig = field(
        default_factory=lambda: RetryConfig(
            max_attempts=3,
            base_delay_seconds=5.0,
            max_delay_seconds=60.0,
        )
    )
    public_ip: PublicIPConfig = field(default_factory=PublicIPConfig)
