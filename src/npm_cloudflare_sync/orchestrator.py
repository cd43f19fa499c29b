"""
Sync Orchestrator for the NPM to Cloudflare service.

This module provides the glue layer that coordinates all components:
- Reconciling DNS records when NPM proxy hosts change
- Keeping every zone's root A record on the current public IP
- Owning the lifecycle of the host poller and the IP-check timer

Deleted hosts are processed before changed ones in the same callback. The
host-change path only creates records; existing records are corrected by
the public IP check alone.
"""

import asyncio
from typing import Optional

from .cloudflare_client import CloudflareClient, find_record
from .config import SyncConfig
from .enums import LogLevel, RecordType
from .exceptions import MonitorHaltedError, SyncError
from .models import ProxyHost
from .npm_monitor import NPMMonitor
from .public_ip import PublicIPResolver
from .retry_manager import RetryManager
from .scheduler import PeriodicTask
from .sync_logger import StructuredLogger


class SyncOrchestrator:
    """
    Main orchestrator for the sync service.

    Holds the last known public IP and the periodic task handles; all
    other state lives in the components it owns.
    """

    COMPONENT = "Orchestrator"

    def __init__(
        self,
        config: SyncConfig,
        cloudflare: CloudflareClient,
        monitor: NPMMonitor,
        ip_resolver: PublicIPResolver,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            config: Service configuration
            cloudflare: Cloudflare DNS client
            monitor: NPM host monitor
            ip_resolver: Public IP resolver shared with the Cloudflare client
            logger: Optional logger
        """
        self._config = config
        self._cloudflare = cloudflare
        self._monitor = monitor
        self._ip_resolver = ip_resolver
        self._logger = logger
        self._current_public_ip: Optional[str] = None
        self._ip_check_task: Optional[PeriodicTask] = None
        self._running = False

    @classmethod
    def from_config(
        cls, config: SyncConfig, logger: Optional[StructuredLogger] = None
    ) -> "SyncOrchestrator":
        """Build the orchestrator and all of its components from configuration."""
        ip_resolver = PublicIPResolver(config.public_ip, logger=logger)
        cloudflare = CloudflareClient(
            config.cloudflare,
            ip_resolver=ip_resolver,
            logger=logger,
            retry_config=config.cloudflare_retry,
        )
        monitor = NPMMonitor(
            config.npm,
            config.check_interval_seconds,
            logger=logger,
            retry_manager=RetryManager(config.npm_retry),
        )
        return cls(config, cloudflare, monitor, ip_resolver, logger=logger)

    async def __aenter__(self) -> "SyncOrchestrator":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def current_public_ip(self) -> Optional[str]:
        """Public IP recorded by the last IP check."""
        return self._current_public_ip

    @property
    def auto_create_root_records(self) -> bool:
        return self._config.auto_create_root_records

    async def ensure_root_record(self, domain: str) -> bool:
        """
        Make sure the zone of a subdomain has a root A record.

        Creates one pointing at the public IP when it is missing and
        auto-creation is enabled.

        Args:
            domain: Hostname whose root domain should be checked

        Returns:
            True if the root A record exists (or was created)
        """
        root = self._cloudflare.root_domain(domain)
        if not root:
            self._log(LogLevel.ERROR, f"Could not determine root domain for {domain}", {})
            return False

        if domain == root:
            return True

        self._log(LogLevel.DEBUG, "Checking root domain record", {
            "subdomain": domain,
            "root_domain": root,
        })

        records = await self._cloudflare.list_records(root)
        a_record = find_record(records, root, RecordType.A.value)
        if a_record is not None:
            self._log(LogLevel.DEBUG, f"Root domain {root} already has an A record", {
                "ip": a_record.content,
            })
            return True

        if not self.auto_create_root_records:
            self._log(
                LogLevel.ERROR,
                f"Missing root A record for {root} and auto-creation is disabled",
                {},
            )
            return False

        self._log(LogLevel.INFO, f"Creating missing A record for root domain {root}", {})
        try:
            public_ip = await self._ip_resolver.resolve()
        except SyncError as e:
            self._log(LogLevel.ERROR, f"Failed to create A record for root domain {root}", {
                "error": e.message,
            })
            return False

        created = await self._cloudflare.create_record(root, {
            "name": root,
            "type": RecordType.A.value,
            "content": public_ip,
            "proxied": True,
        })
        if created is None:
            self._log(LogLevel.ERROR, f"Failed to create A record for root domain {root}", {})
            return False

        self._log(LogLevel.INFO, f"Successfully created A record for root domain {root}", {
            "ip": public_ip,
        })
        return True

    async def update_domain_ip(self, domain: str, new_ip: str) -> None:
        """
        Point a root domain's A record at new_ip.

        Records already holding new_ip are left untouched. A missing record
        is created only when auto-creation is enabled.
        """
        records = await self._cloudflare.list_records(domain)
        a_record = find_record(records, domain, RecordType.A.value)

        self._log(LogLevel.DEBUG, f"IP comparison for {domain}", {
            "current_ip": a_record.content if a_record else None,
            "new_ip": new_ip,
            "needs_update": a_record is None or a_record.content != new_ip,
        })

        if a_record is not None:
            if a_record.content == new_ip:
                self._log(LogLevel.DEBUG, f"A record for {domain} already has correct IP", {
                    "ip": new_ip,
                })
                return

            self._log(LogLevel.INFO, f"Updating A record IP for {domain}", {
                "old_ip": a_record.content,
                "new_ip": new_ip,
                "record_id": a_record.id,
            })
            payload = a_record.to_payload()
            payload["content"] = new_ip
            updated = await self._cloudflare.update_record(domain, a_record.id, payload)
            if updated is not None:
                self._log(LogLevel.INFO, "Successfully updated A record", {"domain": domain})
            else:
                self._log(LogLevel.ERROR, "Failed to update A record", {"domain": domain})
            return

        if not self.auto_create_root_records:
            self._log(
                LogLevel.ERROR,
                f"Missing A record for {domain} and auto-creation is disabled",
                {},
            )
            return

        self._log(LogLevel.INFO, f"Creating new A record for {domain} with IP {new_ip}", {})
        created = await self._cloudflare.create_record(domain, {
            "name": domain,
            "type": RecordType.A.value,
            "content": new_ip,
            "proxied": True,
        })
        if created is not None:
            self._log(LogLevel.INFO, "Successfully created A record", {"domain": domain})
        else:
            self._log(LogLevel.ERROR, "Failed to create A record", {"domain": domain})

    async def check_public_ip_change(self) -> None:
        """
        Resolve the public IP and, when it changed, move every zone's root
        A record to it.

        The first call only records the baseline. Failures are logged and
        the baseline stays as it was.
        """
        self._log(LogLevel.DEBUG, "Starting public IP check", {})
        try:
            new_ip = await self._ip_resolver.resolve()
        except SyncError as e:
            self._log(LogLevel.ERROR, "Failed to check/update public IP", {
                "error": e.message,
                "code": e.code,
            })
            return

        if self._current_public_ip is None:
            self._current_public_ip = new_ip
            self._log(LogLevel.INFO, "Initial public IP set", {"ip": new_ip})
            return

        if new_ip == self._current_public_ip:
            self._log(LogLevel.DEBUG, "Public IP unchanged", {"ip": new_ip})
            return

        self._log(LogLevel.INFO, "Public IP changed", {
            "old_ip": self._current_public_ip,
            "new_ip": new_ip,
        })

        zones = await self._cloudflare.list_zones()
        self._log(LogLevel.DEBUG, "Updating IP for zones", {
            "zone_count": len(zones),
            "zones": [zone.name for zone in zones],
        })
        for zone in zones:
            await self.update_domain_ip(zone.name, new_ip)

        self._current_public_ip = new_ip
        self._log(LogLevel.INFO, "Completed updating all zones with new IP", {})

    async def handle_host_changes(
        self,
        current: list[ProxyHost],
        changed: list[ProxyHost],
        deleted: list[ProxyHost],
    ) -> None:
        """
        Reconcile DNS records with a host diff reported by the monitor.

        Args:
            current: All hosts NPM reported in this poll
            changed: New or modified hosts
            deleted: Hosts that disappeared since the previous poll
        """
        await self._cloudflare.init_zones()

        for host in deleted:
            for domain in host.domain_names:
                await self._delete_domain_record(domain)

        for host in changed:
            for domain in host.domain_names:
                await self._sync_domain(domain)

    async def _delete_domain_record(self, domain: str) -> None:
        records = await self._cloudflare.list_records(domain)
        record = find_record(records, domain)
        if record is None:
            self._log(LogLevel.DEBUG, f"No DNS record to delete for {domain}", {})
            return

        self._log(LogLevel.INFO, f"Deleting DNS record for {domain}", {
            "record_id": record.id,
            "type": record.type,
        })
        await self._cloudflare.delete_record(domain, record.id)

    async def _sync_domain(self, domain: str) -> None:
        root = self._cloudflare.root_domain(domain)
        if not root:
            self._log(LogLevel.ERROR, f"Could not determine root domain for {domain}", {})
            return

        is_subdomain = domain != root
        if is_subdomain and not await self.ensure_root_record(domain):
            self._log(
                LogLevel.ERROR,
                f"Cannot proceed with {domain} due to root domain A record issues",
                {},
            )
            return

        records = await self._cloudflare.list_records(domain)
        if find_record(records, domain) is not None:
            self._log(LogLevel.INFO, f"DNS record for {domain} already exists. Skipping update.", {})
            return

        if is_subdomain:
            self._log(LogLevel.INFO, f"Creating new CNAME record for {domain} -> {root}", {})
            await self._cloudflare.create_record(domain, {
                "name": domain,
                "type": RecordType.CNAME.value,
                "content": root,
                "proxied": True,
            })
            return

        if not self.auto_create_root_records:
            self._log(
                LogLevel.WARN,
                f"Skipping A record creation for {domain} - auto-creation is disabled "
                "and record does not exist",
                {},
            )
            return

        try:
            public_ip = await self._ip_resolver.resolve()
        except SyncError as e:
            self._log(LogLevel.ERROR, f"Cannot create A record for {domain}", {
                "error": e.message,
            })
            return

        self._log(LogLevel.INFO, f"Creating new A record for {domain}", {"ip": public_ip})
        await self._cloudflare.create_record(domain, {
            "name": domain,
            "type": RecordType.A.value,
            "content": public_ip,
            "proxied": True,
        })

    async def start(self) -> None:
        """
        Initialize zones, start the IP-check timer and begin monitoring NPM.

        Raises:
            MonitorHaltedError: If NPM was unreachable from the start
        """
        self._running = True
        await self._cloudflare.init_zones()

        self._log(LogLevel.INFO, "Starting IP check interval", {})
        await self.check_public_ip_change()
        self._ip_check_task = PeriodicTask(
            "ip-check",
            self._config.check_interval_seconds,
            self.check_public_ip_change,
            logger=self._logger,
        )
        self._ip_check_task.start()

        self._log(LogLevel.INFO, "Starting Nginx Proxy Manager to Cloudflare DNS sync service", {})
        await self._monitor.start_monitoring(self.handle_host_changes)

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> int:
        """
        Run the service until stop_event is set or the monitor halts.

        Returns:
            Exit code (0 for graceful shutdown, 1 if monitoring halted)
        """
        stop_event = stop_event or asyncio.Event()

        try:
            await self.start()
        except MonitorHaltedError as e:
            self._log(LogLevel.ERROR, "An error occurred", e.to_dict())
            self.stop()
            return 1

        monitor_task = asyncio.ensure_future(self._monitor.wait())
        stop_task = asyncio.ensure_future(stop_event.wait())
        try:
            done, _ = await asyncio.wait(
                {monitor_task, stop_task}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (monitor_task, stop_task):
                if not task.done():
                    task.cancel()
            self.stop()

        if monitor_task in done and not monitor_task.cancelled():
            error = monitor_task.exception()
            if error is not None:
                details = error.to_dict() if isinstance(error, SyncError) else {
                    "error": str(error),
                    "error_type": type(error).__name__,
                }
                self._log(LogLevel.ERROR, "An error occurred", details)
                return 1
        return 0

    def stop(self) -> None:
        """Stop both periodic tasks. Safe to call more than once."""
        if not self._running:
            return
        self._running = False
        if self._ip_check_task is not None:
            self._ip_check_task.stop()
        self._monitor.stop_monitoring()
        self._log(LogLevel.INFO, "Shutting down gracefully...", {})

    def _log(self, level: LogLevel, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)

    async def close(self) -> None:
        self.stop()
        await self._monitor.close()
        await self._cloudflare.close()
        await self._ip_resolver.close()
