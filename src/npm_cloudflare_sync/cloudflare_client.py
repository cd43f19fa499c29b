"""
Cloudflare DNS Client.

This module wraps the Cloudflare v4 API for zone discovery and DNS record
management. All record operations degrade to "log and return None/False/[]"
instead of raising, so a failed mutation is simply retried on the next
reconciliation cycle.

A CNAME is never created or updated for a name whose zone has a wildcard
A record (*.<zone>), since the wildcard would take unwanted precedence.
"""

from typing import Any, Optional

from .config import CloudflareConfig, RetryConfig
from .enums import LogLevel, RecordType
from .exceptions import APIError, ConfigurationError, SyncError
from .http_client import RetryingHTTPClient
from .models import DNSRecord, Zone, normalize_hostname
from .public_ip import PublicIPResolver
from .retry_manager import RetryManager
from .sync_logger import StructuredLogger


class CloudflareClient:
    """
    Handles all interactions with the Cloudflare API.

    Holds a zone map (zone name -> zone id) that is rebuilt wholesale by
    init_zones().
    """

    COMPONENT = "Cloudflare"

    def __init__(
        self,
        config: CloudflareConfig,
        ip_resolver: Optional[PublicIPResolver] = None,
        logger: Optional[StructuredLogger] = None,
        http_client: Optional[RetryingHTTPClient] = None,
        retry_config: Optional[RetryConfig] = None,
    ) -> None:
        """
        Initialize the Cloudflare client.

        Args:
            config: Cloudflare credentials and endpoint settings
            ip_resolver: Public IP source for root record reconciliation
            logger: Optional logger
            http_client: Optional pre-built retrying HTTP client
            retry_config: Retry policy used when http_client is not given

        Raises:
            ConfigurationError: If no API token is configured
        """
        if not config.api_token:
            raise ConfigurationError(
                code="missing_api_token",
                message="Cloudflare API token is required",
            )

        self._config = config
        self._base_url = config.base_url.rstrip("/")
        self._ip_resolver = ip_resolver
        self._logger = logger
        self._zones: dict[str, str] = {}
        self._http = http_client or RetryingHTTPClient(
            headers={
                "Authorization": f"Bearer {config.api_token}",
                "Content-Type": "application/json",
            },
            timeout=config.request_timeout_seconds,
            retry_manager=RetryManager(retry_config or RetryConfig()),
            logger=logger,
        )

        self._log(LogLevel.INFO, "Cloudflare client initialized", {
            "base_url": self._base_url,
            "token_length": len(config.api_token),
        })

    async def __aenter__(self) -> "CloudflareClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def zones(self) -> dict[str, str]:
        """Copy of the zone map (zone name -> zone id)."""
        return dict(self._zones)

    async def _get_all(self, path: str, context: str) -> list[dict[str, Any]]:
        """GET a paginated list endpoint and return every result."""
        results: list[dict[str, Any]] = []
        page = 1
        while True:
            payload = await self._http.execute(
                "GET",
                f"{self._base_url}{path}",
                context,
                params={"page": page, "per_page": self._config.page_size},
            )
            results.extend(payload.get("result") or [])

            result_info = payload.get("result_info") or {}
            total_pages = result_info.get("total_pages") or 1
            if page >= total_pages:
                break
            page += 1
        return results

    async def list_zones(self) -> list[Zone]:
        """
        Fetch all zones available to the token.

        Returns:
            The zones, or an empty list on any error
        """
        try:
            zones = [Zone.from_api(z) for z in await self._get_all("/zones", "Fetching zones")]
        except SyncError as e:
            self._log_api_error("Error fetching zones", e)
            return []

        self._log(LogLevel.INFO, f"Found {len(zones)} Cloudflare zones", {})
        return zones

    async def init_zones(self) -> None:
        """
        Rebuild the zone map, then reconcile every zone's root A record
        against the current public IP.
        """
        zones = await self.list_zones()
        self._zones = {zone.name: zone.id for zone in zones}
        for zone in zones:
            self._log(LogLevel.DEBUG, f"Mapped zone: {zone.name} -> {zone.id}", {})
        self._log(LogLevel.INFO, f"Initialized {len(zones)} Cloudflare zones", {})

        await self._update_root_domain_records()

    async def _update_root_domain_records(self) -> None:
        if self._ip_resolver is None:
            return

        try:
            public_ip = await self._ip_resolver.resolve()
        except SyncError as e:
            self._log(LogLevel.ERROR, "Error updating root domain records", {
                "error": e.message,
            })
            return

        self._log(LogLevel.DEBUG, "Checking root domain A records with current public IP", {
            "public_ip": public_ip,
        })

        for domain in list(self._zones):
            records = await self.list_records(domain)
            a_record = find_record(records, domain, RecordType.A.value)

            if a_record is None:
                self._log(LogLevel.INFO, f"Creating root domain A record for {domain}", {
                    "ip": public_ip,
                })
                await self.create_record(domain, {
                    "name": domain,
                    "type": RecordType.A.value,
                    "content": public_ip,
                    "proxied": True,
                })
            elif a_record.content != public_ip:
                self._log(LogLevel.INFO, f"Updating root domain A record for {domain}", {
                    "old_ip": a_record.content,
                    "new_ip": public_ip,
                })
                payload = a_record.to_payload()
                payload["content"] = public_ip
                await self.update_record(domain, a_record.id, payload)
            else:
                self._log(LogLevel.DEBUG, f"Root domain {domain} already has correct IP", {
                    "ip": public_ip,
                })

    def root_domain(self, hostname: str) -> str:
        """
        Return the longest known zone name that is a suffix of hostname.

        A zone matches when hostname equals it or ends with "." + zone.

        Returns:
            The zone name, or an empty string if no zone matches
        """
        name = normalize_hostname(hostname)
        best_match = ""
        for zone_name in self._zones:
            if (name == zone_name or name.endswith("." + zone_name)) and len(
                zone_name
            ) > len(best_match):
                best_match = zone_name
        return best_match

    def zone_id(self, hostname: str) -> Optional[str]:
        """Zone id for the zone containing hostname, if known."""
        return self._zones.get(self.root_domain(hostname))

    async def list_records(self, hostname: str) -> list[DNSRecord]:
        """
        Fetch all DNS records in hostname's zone.

        Returns:
            The records, or an empty list if the zone is unknown or the
            request failed
        """
        zone_id = self.zone_id(hostname)
        if not zone_id:
            self._log(LogLevel.WARN, f"No matching zone found for domain: {hostname}", {})
            return []

        try:
            raw = await self._get_all(
                f"/zones/{zone_id}/dns_records", "Fetching DNS records"
            )
        except SyncError as e:
            self._log_api_error("Error fetching DNS records", e, {"domain": hostname})
            return []
        return [DNSRecord.from_api(r) for r in raw]

    async def has_wildcard_conflict(self, hostname: str) -> bool:
        """True iff hostname's zone has an A record named *.<zone>."""
        root = self.root_domain(hostname)
        if not root:
            return False

        wildcard_name = f"*.{root}"
        records = await self.list_records(root)
        wildcard = find_record(records, wildcard_name, RecordType.A.value)
        if wildcard is not None:
            self._log(LogLevel.WARN, f"Found wildcard A record for {root}", {
                "record_name": wildcard.name,
                "content": wildcard.content,
            })
            return True
        return False

    async def create_record(
        self, hostname: str, data: dict[str, Any]
    ) -> Optional[DNSRecord]:
        """
        Create a DNS record in hostname's zone.

        Returns:
            The created record, or None if refused or failed
        """
        zone_id = self.zone_id(hostname)
        if not zone_id:
            self._log(LogLevel.ERROR, f"No matching zone found for domain: {hostname}", {})
            return None

        if data.get("type") == RecordType.CNAME.value and await self.has_wildcard_conflict(
            hostname
        ):
            self._log(
                LogLevel.ERROR,
                f"Cannot create CNAME record for {hostname} due to existing wildcard A record",
                {"domain": hostname, "record_type": data.get("type"), "content": data.get("content")},
            )
            return None

        try:
            payload = await self._http.execute(
                "POST",
                f"{self._base_url}/zones/{zone_id}/dns_records",
                "Creating DNS record",
                json=data,
            )
        except SyncError as e:
            self._log_api_error("Error creating DNS record", e, {
                "domain": hostname,
                "record_type": data.get("type"),
            })
            return None

        self._log(LogLevel.INFO, f"Successfully created DNS record for {hostname}", {
            "type": data.get("type"),
            "content": data.get("content"),
        })
        return DNSRecord.from_api(payload.get("result") or {})

    async def update_record(
        self, hostname: str, record_id: str, data: dict[str, Any]
    ) -> Optional[DNSRecord]:
        """
        Update (PUT) an existing DNS record.

        Returns:
            The updated record, or None if refused or failed
        """
        zone_id = self.zone_id(hostname)
        if not zone_id:
            self._log(LogLevel.ERROR, f"No matching zone found for domain: {hostname}", {})
            return None

        if data.get("type") == RecordType.CNAME.value and await self.has_wildcard_conflict(
            hostname
        ):
            self._log(
                LogLevel.ERROR,
                f"Cannot update to CNAME record for {hostname} due to existing wildcard A record",
                {"domain": hostname, "record_type": data.get("type"), "content": data.get("content")},
            )
            return None

        try:
            payload = await self._http.execute(
                "PUT",
                f"{self._base_url}/zones/{zone_id}/dns_records/{record_id}",
                "Updating DNS record",
                json=data,
            )
        except SyncError as e:
            self._log_api_error("Error updating DNS record", e, {
                "domain": hostname,
                "record_id": record_id,
            })
            return None

        self._log(LogLevel.INFO, f"Successfully updated DNS record for {hostname}", {
            "type": data.get("type"),
            "content": data.get("content"),
        })
        return DNSRecord.from_api(payload.get("result") or {})

    async def delete_record(self, hostname: str, record_id: str) -> bool:
        """
        Delete a DNS record.

        Returns:
            True if Cloudflare confirmed the deletion
        """
        zone_id = self.zone_id(hostname)
        if not zone_id:
            self._log(LogLevel.ERROR, f"No matching zone found for domain: {hostname}", {})
            return False

        try:
            await self._http.execute(
                "DELETE",
                f"{self._base_url}/zones/{zone_id}/dns_records/{record_id}",
                "Deleting DNS record",
            )
        except SyncError as e:
            self._log_api_error("Error deleting DNS record", e, {
                "domain": hostname,
                "record_id": record_id,
            })
            return False

        self._log(LogLevel.INFO, f"Successfully deleted DNS record for {hostname}", {
            "record_id": record_id,
        })
        return True

    def _log_api_error(
        self, message: str, error: SyncError, data: Optional[dict] = None
    ) -> None:
        if not self._logger:
            return
        self._logger.log_error(
            self.COMPONENT,
            message,
            error=error,
            response_status_code=error.status_code if isinstance(error, APIError) else None,
            additional_data=data,
        )

    def _log(self, level: LogLevel, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)

    async def close(self) -> None:
        await self._http.close()


def find_record(
    records: list[DNSRecord], name: str, record_type: Optional[str] = None
) -> Optional[DNSRecord]:
    """First record with the given name (and type, when given)."""
    for record in records:
        if record.name == name and (record_type is None or record.type == record_type):
            return record
    return None
