"""
NPM Host Monitor.

Polls the Nginx Proxy Manager proxy-host list on a fixed interval and diffs
it against the previous snapshot to report new/changed and deleted hosts.

- The first poll after (re)start reports every host as changed.
- A 401 clears the bearer token and re-authenticates once per attempt.
- After max_consecutive_failures failed fetch cycles the monitor stops
  itself and raises MonitorHaltedError.
"""

from typing import Any, Awaitable, Callable, Optional

import httpx

from .config import NPMConfig, RetryConfig
from .enums import LogLevel
from .exceptions import (
    AuthenticationError,
    MonitorHaltedError,
    NetworkError,
    ProtocolError,
)
from .models import HostChanges, ProxyHost
from .retry_manager import RetryManager
from .scheduler import PeriodicTask
from .sync_logger import StructuredLogger

ChangeCallback = Callable[
    [list[ProxyHost], list[ProxyHost], list[ProxyHost]], Awaitable[None]
]


def is_unreachable(error: Exception) -> bool:
    """True for errors meaning the NPM API could not be reached at all."""
    return isinstance(error, (httpx.ConnectError, httpx.TimeoutException))


class NPMMonitor:
    """
    Monitors Nginx Proxy Manager for changes in proxy hosts.
    """

    COMPONENT = "NPMMonitor"

    def __init__(
        self,
        config: NPMConfig,
        check_interval_seconds: float,
        logger: Optional[StructuredLogger] = None,
        client: Optional[httpx.AsyncClient] = None,
        retry_manager: Optional[RetryManager] = None,
    ) -> None:
        """
        Initialize the monitor.

        Args:
            config: NPM URL, credentials, timeout and failure threshold
            check_interval_seconds: Delay between polls
            logger: Optional logger
            client: Optional pre-built httpx.AsyncClient
            retry_manager: Retry policy (defaults to 3 attempts, 5 s base backoff)
        """
        self._config = config
        self._api_url = config.api_url.rstrip("/")
        self._check_interval = check_interval_seconds
        self._logger = logger
        self._client = client
        self._owns_client = client is None
        self._retry_manager = retry_manager or RetryManager(
            RetryConfig(max_attempts=3, base_delay_seconds=5.0, max_delay_seconds=60.0)
        )

        self._token: Optional[str] = None
        self._last_known_hosts: list[ProxyHost] = []
        self._initialized = False
        self._monitoring = False
        self._consecutive_failures = 0
        self._poll_task: Optional[PeriodicTask] = None

    @property
    def is_monitoring(self) -> bool:
        return self._monitoring

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def last_known_hosts(self) -> list[ProxyHost]:
        return list(self._last_known_hosts)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._config.request_timeout_seconds),
            )
        return self._client

    async def login(self) -> bool:
        """
        Obtain a bearer token from NPM.

        Returns:
            True on success, False after all attempts failed
        """

        async def do_login() -> str:
            self._log(LogLevel.INFO, f"Attempting to login to NPM at {self._api_url}", {})
            response = await self._get_client().post(
                f"{self._api_url}/api/tokens",
                json={"identity": self._config.email, "secret": self._config.password},
                timeout=self._config.request_timeout_seconds,
            )
            if not response.is_success:
                raise AuthenticationError(
                    code="login_failed",
                    message=f"Login failed: {response.reason_phrase} - {response.text}",
                    status_code=response.status_code,
                )
            token = self._parse_json(response).get("token")
            if not token:
                raise ProtocolError(
                    code="missing_token",
                    message="Login response did not contain a token",
                )
            return token

        result = await self._retry_manager.execute_with_retry(
            do_login, on_retry=self._on_retry("Login attempt failed", "Retrying login")
        )
        if result.success:
            self._token = result.result
            self._consecutive_failures = 0
            self._log(LogLevel.INFO, "Successfully logged in to NPM", {})
            return True

        self._log_attempt_error("Login attempt failed", result.attempts, result.last_error)
        self._log(LogLevel.ERROR, "All login attempts failed", {
            "attempts": result.attempts,
        })
        return False

    async def _request_hosts(self) -> httpx.Response:
        if not self._token and not await self.login():
            raise AuthenticationError(
                code="not_authenticated",
                message="Unable to authenticate with NPM",
                status_code=401,
            )
        return await self._get_client().get(
            f"{self._api_url}/api/nginx/proxy-hosts",
            headers={
                "Authorization": f"Bearer {self._token}",
                "Accept": "application/json",
            },
            timeout=self._config.request_timeout_seconds,
        )

    async def fetch_hosts(self) -> list[ProxyHost]:
        """
        Fetch the current proxy-host list.

        Raises:
            NetworkError: The fetch failed this cycle
            MonitorHaltedError: The consecutive-failure threshold was reached
        """

        async def do_fetch() -> list[ProxyHost]:
            self._log(LogLevel.DEBUG, "Fetching proxy hosts from NPM", {})
            response = await self._request_hosts()
            if response.status_code == 401:
                self._token = None
                self._log(LogLevel.INFO, "Token expired, retrying with new token", {})
                response = await self._request_hosts()

            if not response.is_success:
                raise NetworkError(
                    code=f"http_{response.status_code}",
                    message=(
                        f"Failed to fetch proxy hosts: {response.reason_phrase}"
                        f" - {response.text}"
                    ),
                )

            data = self._parse_json(response)
            if not isinstance(data, list):
                raise ProtocolError(
                    code="unexpected_payload",
                    message="Proxy host list is not a JSON array",
                )
            return [ProxyHost.from_api(item) for item in data]

        result = await self._retry_manager.execute_with_retry(
            do_fetch,
            on_retry=self._on_retry("Error fetching proxy hosts", "Retrying"),
        )
        if result.success:
            self._consecutive_failures = 0
            self._log(LogLevel.DEBUG, f"Retrieved {len(result.result)} proxy hosts from NPM", {})
            return result.result

        self._log_attempt_error("Error fetching proxy hosts", result.attempts, result.last_error)
        self._consecutive_failures += 1
        self._log(LogLevel.ERROR, "All attempts to fetch proxy hosts failed", {
            "consecutive_failures": self._consecutive_failures,
            "max_consecutive_failures": self._config.max_consecutive_failures,
        })

        if self._consecutive_failures >= self._config.max_consecutive_failures:
            self._log(LogLevel.ERROR, "Maximum consecutive failures reached. Stopping monitoring...", {})
            self.stop_monitoring()
            raise MonitorHaltedError(
                code="npm_unreachable",
                message="NPM API is unreachable after multiple attempts. Monitoring stopped.",
                details={"consecutive_failures": self._consecutive_failures},
            )

        raise NetworkError(
            code="fetch_failed",
            message="Failed to fetch proxy hosts from NPM",
            details={"last_error": str(result.last_error)},
        )

    def diff(self, current: list[ProxyHost]) -> HostChanges:
        """
        Diff the current host list against the previous snapshot and adopt
        it as the new baseline.
        """
        if not self._initialized:
            self._last_known_hosts = list(current)
            self._initialized = True
            self._log(LogLevel.INFO, "Initial hosts loaded, processing all hosts as new", {
                "host_count": len(current),
                "hosts": [{"id": h.id, "domains": h.domain_names} for h in current],
            })
            return HostChanges(current=list(current), changed=list(current), deleted=[])

        previous_by_id = {host.id: host for host in self._last_known_hosts}
        current_ids = {host.id for host in current}

        changed = []
        for host in current:
            previous = previous_by_id.get(host.id)
            if previous is None:
                self._log(LogLevel.DEBUG, f"New host detected: {', '.join(host.domain_names)}", {})
                changed.append(host)
            elif host.differs_from(previous):
                self._log(LogLevel.DEBUG, f"Modified host detected: {', '.join(host.domain_names)}", {
                    "id": host.id,
                })
                changed.append(host)

        deleted = [h for h in self._last_known_hosts if h.id not in current_ids]

        if deleted:
            self._log(LogLevel.DEBUG, "Deleted hosts detected", {
                "hosts": [{"id": h.id, "domains": h.domain_names} for h in deleted],
            })
        if changed:
            self._log(LogLevel.INFO, f"Detected {len(changed)} changed/new hosts", {
                "hosts": [
                    {"id": h.id, "domains": h.domain_names, "modified_on": h.modified_on}
                    for h in changed
                ],
            })

        self._last_known_hosts = list(current)
        return HostChanges(current=list(current), changed=changed, deleted=deleted)

    async def check_for_changes(self) -> HostChanges:
        """Fetch the host list and diff it against the baseline."""
        current = await self.fetch_hosts()
        self._log(LogLevel.DEBUG, f"Current check: Found {len(current)} hosts", {})
        return self.diff(current)

    async def start_monitoring(self, callback: ChangeCallback) -> None:
        """
        Run one check immediately, then keep polling on the interval.

        callback(current, changed, deleted) is awaited whenever a poll finds
        changed or deleted hosts.

        Raises:
            MonitorHaltedError: If the initial check already hit the
                                failure threshold
        """
        if self._monitoring:
            self._log(LogLevel.WARN, "Monitoring is already running", {})
            return

        self._monitoring = True
        self._initialized = False
        self._log(LogLevel.INFO, f"Starting NPM monitoring with {self._check_interval}s interval", {})

        async def poll() -> None:
            changes = await self.check_for_changes()
            if changes.has_changes:
                self._log(LogLevel.INFO, "Processing changes", {
                    "changed_count": len(changes.changed),
                    "deleted_count": len(changes.deleted),
                    "total_hosts": len(changes.current),
                })
                await callback(changes.current, changes.changed, changes.deleted)
                self._log(LogLevel.INFO, "Changes processed successfully", {})
            else:
                self._log(LogLevel.DEBUG, "No changes detected in this interval", {})

        self._poll_task = PeriodicTask(
            "npm-poll",
            self._check_interval,
            poll,
            logger=self._logger,
            fatal_errors=(MonitorHaltedError,),
        )

        await self._poll_task.run_once()
        if not self._monitoring:
            return
        self._poll_task.start()
        self._log(LogLevel.INFO, "Continuous monitoring started", {})

    def stop_monitoring(self) -> None:
        """Stop polling and forget the baseline. Safe to call more than once."""
        if self._poll_task is not None:
            self._poll_task.stop()
        was_monitoring = self._monitoring
        self._monitoring = False
        self._initialized = False
        if was_monitoring:
            self._log(LogLevel.INFO, "Monitoring stopped", {})

    async def wait(self) -> None:
        """
        Wait until monitoring ends.

        Raises:
            MonitorHaltedError: If monitoring stopped itself after failures
        """
        if self._poll_task is not None:
            await self._poll_task.wait()

    @staticmethod
    def _parse_json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise ProtocolError(
                code="parse_error",
                message=f"Invalid JSON from NPM: {e}",
            )

    def _log_attempt_error(
        self, message: str, attempts: int, error: Optional[Exception]
    ) -> None:
        if error is None or not self._logger:
            return
        if is_unreachable(error):
            self._logger.log_error(
                self.COMPONENT,
                "NPM API is not accessible",
                error=error,
                additional_data={"url": self._api_url, "attempt": attempts},
            )
        else:
            self._logger.log_error(
                self.COMPONENT,
                message,
                error=error,
                response_status_code=getattr(error, "status_code", None),
                additional_data={"attempt": attempts},
            )

    def _on_retry(self, message: str, retry_message: str):
        def hook(attempt: int, error: Exception, delay: float) -> None:
            self._log_attempt_error(message, attempt + 1, error)
            self._log(LogLevel.INFO, f"{retry_message} in {delay}s...", {})

        return hook

    def _log(self, level: LogLevel, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)

    async def close(self) -> None:
        self.stop_monitoring()
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
