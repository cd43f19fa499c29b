"""
NPM Cloudflare Sync - keeps Cloudflare DNS in step with Nginx Proxy Manager.

This package polls the proxy-host list of a Nginx Proxy Manager instance and
mirrors it into Cloudflare DNS (CNAME records for subdomains, A records for
zone roots), and keeps every zone's root A record on the machine's current
public IPv4 address.
"""

__version__ = "0.1.0"
__author__ = "NPM Cloudflare Sync Team"

from npm_cloudflare_sync.exceptions import (
    SyncError,
    ConfigurationError,
    NetworkError,
    ProtocolError,
    APIError,
    AuthenticationError,
    AuthorizationError,
    RateLimitError,
    ServerError,
    PublicIPError,
    MonitorHaltedError,
)
from npm_cloudflare_sync.enums import (
    LogLevel,
    RecordType,
    RetryDecision,
)
from npm_cloudflare_sync.config import (
    CloudflareConfig,
    NPMConfig,
    RetryConfig,
    IPProvider,
    DEFAULT_IP_PROVIDERS,
    PublicIPConfig,
    LoggingConfig,
    SyncConfig,
)
from npm_cloudflare_sync.models import (
    ProxyHost,
    Zone,
    DNSRecord,
    HostChanges,
    normalize_hostname,
    normalize_domain_names,
)
from npm_cloudflare_sync.sync_logger import (
    StructuredLogger,
    LogEntry,
)
from npm_cloudflare_sync.retry_manager import (
    Attempt,
    RetryManager,
    RetryResult,
)
from npm_cloudflare_sync.http_client import (
    RetryingHTTPClient,
    StatusPolicy,
    policy_for_status,
)
from npm_cloudflare_sync.public_ip import (
    PublicIPResolver,
    is_valid_ipv4,
)
from npm_cloudflare_sync.cloudflare_client import (
    CloudflareClient,
    find_record,
)
from npm_cloudflare_sync.npm_monitor import (
    NPMMonitor,
)
from npm_cloudflare_sync.scheduler import (
    PeriodicTask,
)
from npm_cloudflare_sync.orchestrator import (
    SyncOrchestrator,
)
from npm_cloudflare_sync.cli import (
    main as cli_main,
    create_parser,
    load_config_from_env,
)

__all__ = [
    # Exceptions
    "SyncError",
    "ConfigurationError",
    "NetworkError",
    "ProtocolError",
    "APIError",
    "AuthenticationError",
    "AuthorizationError",
    "RateLimitError",
    "ServerError",
    "PublicIPError",
    "MonitorHaltedError",
    # Enums
    "LogLevel",
    "RecordType",
    "RetryDecision",
    # Configuration
    "CloudflareConfig",
    "NPMConfig",
    "RetryConfig",
    "IPProvider",
    "DEFAULT_IP_PROVIDERS",
    "PublicIPConfig",
    "LoggingConfig",
    "SyncConfig",
    # Models
    "ProxyHost",
    "Zone",
    "DNSRecord",
    "HostChanges",
    "normalize_hostname",
    "normalize_domain_names",
    # Logger
    "StructuredLogger",
    "LogEntry",
    # Retry Manager
    "Attempt",
    "RetryManager",
    "RetryResult",
    # HTTP Client
    "RetryingHTTPClient",
    "StatusPolicy",
    "policy_for_status",
    # Public IP
    "PublicIPResolver",
    "is_valid_ipv4",
    # Cloudflare
    "CloudflareClient",
    "find_record",
    # NPM Monitor
    "NPMMonitor",
    # Scheduler
    "PeriodicTask",
    # Orchestrator
    "SyncOrchestrator",
    # CLI
    "cli_main",
    "create_parser",
    "load_config_from_env",
]
