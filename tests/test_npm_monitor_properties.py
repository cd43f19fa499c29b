"""
Property-based tests for the NPM Host Monitor.

Covers the snapshot diff (bootstrap rule, changed/deleted partitions),
host normalization, token handling and the consecutive-failure halt.
"""

import asyncio
from io import StringIO

import httpx
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from npm_cloudflare_sync.config import NPMConfig, RetryConfig
from npm_cloudflare_sync.enums import LogLevel
from npm_cloudflare_sync.exceptions import MonitorHaltedError, NetworkError
from npm_cloudflare_sync.models import ProxyHost, same_instant
from npm_cloudflare_sync.npm_monitor import NPMMonitor
from npm_cloudflare_sync.retry_manager import RetryManager
from npm_cloudflare_sync.sync_logger import StructuredLogger

from fakes import FakeNPM, no_sleep, npm_host

NPM_CONFIG = NPMConfig(
    api_url="http://npm.local:81",
    email="admin@example.com",
    password="changeme",
)


def make_monitor(fake: FakeNPM, logger: StructuredLogger = None, config: NPMConfig = NPM_CONFIG) -> NPMMonitor:
    return NPMMonitor(
        config,
        check_interval_seconds=10.0,
        logger=logger,
        client=httpx.AsyncClient(transport=httpx.MockTransport(fake)),
        retry_manager=RetryManager(RetryConfig(max_attempts=3, base_delay_seconds=5.0), sleep=no_sleep),
    )


def run(monitor: NPMMonitor, coro_factory):
    client = monitor._client

    async def go():
        try:
            return await coro_factory()
        finally:
            await client.aclose()

    return asyncio.run(go())


@st.composite
def proxy_host_strategy(draw, host_id: int) -> ProxyHost:
    return ProxyHost(
        id=host_id,
        domain_names=draw(st.lists(
            st.sampled_from(["a.example.com", "b.example.com", "example.org", "c.example.net"]),
            min_size=1, max_size=3, unique=True,
        )),
        forward_host=draw(st.sampled_from(["10.0.0.5", "10.0.0.6", "app"])),
        forward_port=draw(st.sampled_from([80, 443, 8080])),
        modified_on=draw(st.sampled_from([
            "2024-01-01 10:00:00", "2024-01-02 10:00:00", "2024-01-03 10:00:00",
        ])),
    )


@st.composite
def host_list_strategy(draw) -> list[ProxyHost]:
    ids = draw(st.lists(st.integers(min_value=1, max_value=12), unique=True, max_size=8))
    return [draw(proxy_host_strategy(host_id)) for host_id in ids]


class TestDiffProperty:
    """
    *For any* host lists H1 and H2: diffing H1 against the empty baseline
    yields changed = H1 and deleted = []; diffing H2 against H1 yields the
    new or modified hosts as changed and the vanished ids as deleted.
    """

    @given(first=host_list_strategy(), second=host_list_strategy())
    @settings(max_examples=200)
    def test_diff_partitions(self, first: list[ProxyHost], second: list[ProxyHost]) -> None:
        monitor = NPMMonitor(NPM_CONFIG, check_interval_seconds=10.0)

        bootstrap = monitor.diff(first)
        assert bootstrap.changed == first
        assert bootstrap.deleted == []

        changes = monitor.diff(second)
        previous = {h.id: h for h in first}

        expected_changed = [
            h for h in second
            if h.id not in previous
            or (h.modified_on, h.forward_host, h.forward_port, h.domain_names)
            != (
                previous[h.id].modified_on,
                previous[h.id].forward_host,
                previous[h.id].forward_port,
                previous[h.id].domain_names,
            )
        ]
        current_ids = {h.id for h in second}
        expected_deleted = [h for h in first if h.id not in current_ids]

        assert changes.changed == expected_changed
        assert changes.deleted == expected_deleted
        assert len({h.id for h in changes.changed}) == len(changes.changed)
        assert len({h.id for h in changes.deleted}) == len(changes.deleted)
        assert monitor.last_known_hosts == second

    @given(hosts=host_list_strategy())
    @settings(max_examples=100)
    def test_identical_poll_reports_nothing(self, hosts: list[ProxyHost]) -> None:
        monitor = NPMMonitor(NPM_CONFIG, check_interval_seconds=10.0)
        monitor.diff(hosts)

        changes = monitor.diff(list(hosts))

        assert not changes.has_changes

    def test_restart_reapplies_bootstrap_rule(self) -> None:
        monitor = NPMMonitor(NPM_CONFIG, check_interval_seconds=10.0)
        hosts = [ProxyHost.from_api(npm_host(1, ["a.example.com"]))]
        monitor.diff(hosts)
        monitor.stop_monitoring()

        changes = monitor.diff(hosts)

        assert changes.changed == hosts


class TestHostNormalization:
    def test_comma_delimited_domains(self) -> None:
        host = ProxyHost.from_api(npm_host(1, " A.Example.com, b.example.com ,,"))
        assert host.domain_names == ["a.example.com", "b.example.com"]

    def test_international_domains_are_idna_encoded(self) -> None:
        host = ProxyHost.from_api(npm_host(1, ["Bücher.example"]))
        assert host.domain_names == ["xn--bcher-kva.example"]

    def test_timestamps_compared_by_instant(self) -> None:
        assert same_instant("2024-01-01T10:00:00Z", "2024-01-01T10:00:00+00:00")
        assert same_instant("2024-01-01 10:00:00", "2024-01-01T10:00:00")
        assert not same_instant("2024-01-01 10:00:00", "2024-01-01 10:00:01")
        assert not same_instant("yesterday", "today")


class TestFetchHosts:
    def test_login_then_fetch(self) -> None:
        fake = FakeNPM([npm_host(1, ["app.example.com"])])
        monitor = make_monitor(fake)

        hosts = run(monitor, monitor.fetch_hosts)

        assert [h.domain_names for h in hosts] == [["app.example.com"]]
        assert fake.login_calls == 1

    def test_expired_token_triggers_single_relogin(self) -> None:
        fake = FakeNPM([npm_host(1, ["app.example.com"])])
        monitor = make_monitor(fake)

        async def scenario():
            await monitor.fetch_hosts()
            fake.reject_next_token = True
            return await monitor.fetch_hosts()

        hosts = run(monitor, scenario)

        assert len(hosts) == 1
        assert fake.login_calls == 2
        assert fake.host_calls == 3

    def test_bad_credentials_fail_the_cycle(self) -> None:
        fake = FakeNPM()
        monitor = NPMMonitor(
            NPMConfig(api_url="http://npm.local:81", email="admin@example.com", password="wrong"),
            check_interval_seconds=10.0,
            client=httpx.AsyncClient(transport=httpx.MockTransport(fake)),
            retry_manager=RetryManager(RetryConfig(max_attempts=2), sleep=no_sleep),
        )

        async def scenario():
            assert not await monitor.login()
            with pytest.raises(NetworkError):
                await monitor.fetch_hosts()

        run(monitor, scenario)
        assert fake.host_calls == 0
        assert monitor.consecutive_failures == 1

    def test_failed_cycle_keeps_baseline(self) -> None:
        fake = FakeNPM([npm_host(1, ["app.example.com"])])
        monitor = make_monitor(fake)

        async def scenario():
            first = await monitor.check_for_changes()
            fake.hosts_status = 502
            with pytest.raises(NetworkError):
                await monitor.check_for_changes()
            fake.hosts_status = 200
            third = await monitor.check_for_changes()
            return first, third

        first, third = run(monitor, scenario)

        assert len(first.changed) == 1
        assert not third.has_changes
        assert monitor.consecutive_failures == 0

    def test_halts_after_five_failed_cycles(self) -> None:
        fake = FakeNPM()
        fake.down = True
        monitor = make_monitor(fake)

        async def scenario():
            for _ in range(4):
                with pytest.raises(NetworkError):
                    await monitor.fetch_hosts()
            with pytest.raises(MonitorHaltedError):
                await monitor.fetch_hosts()

        run(monitor, scenario)

        assert monitor.consecutive_failures == 5
        assert not monitor.is_monitoring


class TestMonitoringLifecycle:
    def test_initial_check_reports_all_hosts(self) -> None:
        fake = FakeNPM([npm_host(1, ["a.example.com"]), npm_host(2, "b.example.com")])
        monitor = make_monitor(fake)
        calls = []

        async def callback(current, changed, deleted):
            calls.append((len(current), len(changed), len(deleted)))

        async def scenario():
            await monitor.start_monitoring(callback)
            running = monitor.is_monitoring
            monitor.stop_monitoring()
            monitor.stop_monitoring()
            await monitor.wait()
            return running

        assert run(monitor, scenario) is True
        assert calls == [(2, 2, 0)]
        assert not monitor.is_monitoring

    def test_second_start_is_ignored(self) -> None:
        fake = FakeNPM([npm_host(1, ["a.example.com"])])
        monitor = make_monitor(fake)
        calls = []

        async def callback(current, changed, deleted):
            calls.append(len(changed))

        async def scenario():
            await monitor.start_monitoring(callback)
            await monitor.start_monitoring(callback)
            monitor.stop_monitoring()
            await monitor.wait()

        run(monitor, scenario)
        assert calls == [1]

    def test_halt_propagates_from_start(self) -> None:
        fake = FakeNPM()
        fake.down = True
        monitor = make_monitor(fake)
        monitor._consecutive_failures = 4

        async def callback(current, changed, deleted):
            raise AssertionError("callback must not run")

        async def scenario():
            with pytest.raises(MonitorHaltedError):
                await monitor.start_monitoring(callback)

        run(monitor, scenario)
        assert not monitor.is_monitoring

    def test_halt_ends_polling_loop(self) -> None:
        fake = FakeNPM([npm_host(1, ["a.example.com"])])
        monitor = NPMMonitor(
            NPMConfig(
                api_url="http://npm.local:81",
                email="admin@example.com",
                password="changeme",
                max_consecutive_failures=2,
            ),
            check_interval_seconds=0.01,
            client=httpx.AsyncClient(transport=httpx.MockTransport(fake)),
            retry_manager=RetryManager(RetryConfig(max_attempts=1), sleep=no_sleep),
        )

        async def callback(current, changed, deleted):
            fake.down = True

        async def scenario():
            await monitor.start_monitoring(callback)
            with pytest.raises(MonitorHaltedError):
                await asyncio.wait_for(monitor.wait(), timeout=5)

        run(monitor, scenario)
        assert not monitor.is_monitoring


def recording_logger() -> StructuredLogger:
    return StructuredLogger(level="debug", keep_entries=True, output_stream=StringIO())


class TestErrorLogging:
    """
    An unreachable NPM API is reported at error level with the NPM URL,
    separately from failures where NPM answered.
    """

    def test_unreachable_api_is_reported_with_url(self) -> None:
        fake = FakeNPM()
        fake.down = True
        logger = recording_logger()
        monitor = make_monitor(fake, logger=logger)

        assert run(monitor, monitor.login) is False

        unreachable = [e for e in logger.entries if e.message == "NPM API is not accessible"]
        assert unreachable
        assert all(e.level == LogLevel.ERROR for e in unreachable)
        assert all(e.data["url"] == "http://npm.local:81" for e in unreachable)
        assert unreachable[-1].data["error_type"] == "ConnectError"
        assert not [e for e in logger.entries if e.message == "Login attempt failed"]

    def test_rejected_credentials_are_not_reported_as_unreachable(self) -> None:
        logger = recording_logger()
        monitor = make_monitor(
            FakeNPM(),
            logger=logger,
            config=NPMConfig(api_url="http://npm.local:81", email="admin@example.com", password="wrong"),
        )

        assert run(monitor, monitor.login) is False

        failed = [e for e in logger.entries if e.message == "Login attempt failed"]
        assert failed
        assert failed[-1].level == LogLevel.ERROR
        assert failed[-1].data["response_status_code"] == 401
        assert failed[-1].data["attempt"] == 3
        assert not [e for e in logger.entries if e.message == "NPM API is not accessible"]

    def test_stop_is_logged_once(self) -> None:
        fake = FakeNPM([npm_host(1, ["a.example.com"])])
        logger = recording_logger()
        monitor = make_monitor(fake, logger=logger)

        async def callback(current, changed, deleted):
            return None

        async def scenario():
            await monitor.start_monitoring(callback)
            monitor.stop_monitoring()
            await monitor.wait()
            await monitor.close()

        run(monitor, scenario)

        stopped = [e for e in logger.entries if e.message == "Monitoring stopped"]
        assert len(stopped) == 1

    def test_close_without_monitoring_logs_nothing(self) -> None:
        logger = recording_logger()
        monitor = make_monitor(FakeNPM(), logger=logger)

        run(monitor, monitor.close)

        assert not [e for e in logger.entries if e.message == "Monitoring stopped"]
