"""
Tests for configuration loading and the command-line interface.

Environment mappings are passed explicitly, so no .env file or process
environment is consulted.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from npm_cloudflare_sync.cli import (
    REQUIRED_VARIABLES,
    create_parser,
    describe_config,
    describe_environment,
    load_config_from_env,
    main,
    validate_log_level,
)
from npm_cloudflare_sync.exceptions import ConfigurationError

BASE_ENV = {
    "CF_API_TOKEN": "cf-secret-token",
    "CF_EMAIL": "ops@example.com",
    "NPM_API_URL": "http://npm.local:81/",
    "NPM_EMAIL": "admin@example.com",
    "NPM_PASSWORD": "changeme",
}


class TestLoadConfig:
    def test_defaults(self) -> None:
        config = load_config_from_env(dict(BASE_ENV))

        assert config.cloudflare.api_token == "cf-secret-token"
        assert config.npm.api_url == "http://npm.local:81"
        assert config.check_interval_seconds == 10.0
        assert config.auto_create_root_records is False
        assert config.logging.level == "info"
        assert config.logging.output_format == "text"
        assert config.npm.max_consecutive_failures == 5

    @given(missing=st.sets(st.sampled_from(REQUIRED_VARIABLES), min_size=1))
    @settings(max_examples=50)
    def test_every_missing_variable_is_reported(self, missing: set) -> None:
        env = {k: v for k, v in BASE_ENV.items() if k not in missing}

        with pytest.raises(ConfigurationError) as exc_info:
            load_config_from_env(env)

        assert set(exc_info.value.details["missing_fields"]) == missing

    def test_empty_value_counts_as_missing(self) -> None:
        env = dict(BASE_ENV, NPM_PASSWORD="")

        with pytest.raises(ConfigurationError):
            load_config_from_env(env)

    @given(interval_ms=st.integers(min_value=1, max_value=10_000_000))
    @settings(max_examples=50)
    def test_check_interval_is_milliseconds(self, interval_ms: int) -> None:
        config = load_config_from_env(dict(BASE_ENV, CHECK_INTERVAL=str(interval_ms)))
        assert config.check_interval_seconds == interval_ms / 1000

    @pytest.mark.parametrize("value", ["abc", "0", "-5", "1.5"])
    def test_invalid_check_interval(self, value: str) -> None:
        with pytest.raises(ConfigurationError):
            load_config_from_env(dict(BASE_ENV, CHECK_INTERVAL=value))

    @pytest.mark.parametrize("value,expected", [
        ("true", True), ("TRUE", True), ("True", True),
        ("false", False), ("yes", False), ("1", False), ("", False),
    ])
    def test_auto_create_flag(self, value: str, expected: bool) -> None:
        config = load_config_from_env(dict(BASE_ENV, AUTO_CREATE_ROOT_RECORDS=value))
        assert config.auto_create_root_records is expected

    def test_invalid_log_level_falls_back_with_warning(self) -> None:
        warnings: list[str] = []

        config = load_config_from_env(dict(BASE_ENV, LOG_LEVEL="verbose"), warnings=warnings)

        assert config.logging.level == "info"
        assert warnings == ['Invalid log level "verbose", defaulting to "info"']

    @given(level=st.sampled_from(["error", "warn", "info", "debug"]), upper=st.booleans())
    @settings(max_examples=20)
    def test_valid_log_levels(self, level: str, upper: bool) -> None:
        raw = level.upper() if upper else level
        assert validate_log_level(raw) == level
        config = load_config_from_env(dict(BASE_ENV, LOG_LEVEL=raw))
        assert config.logging.level == level

    def test_validate_log_level_rejects_unknown(self) -> None:
        assert validate_log_level("warning") is None
        assert validate_log_level(None) is None


class TestMasking:
    def test_environment_description_masks_secrets(self) -> None:
        described = describe_environment(BASE_ENV)

        assert described["CF_API_TOKEN"] == {"exists": True, "value": "********"}
        assert described["NPM_PASSWORD"]["value"] == "********"
        assert described["CF_EMAIL"]["value"] == "ops@example.com"
        assert described["CHECK_INTERVAL"] == {"exists": False, "value": None}

    def test_config_description_masks_secrets(self) -> None:
        summary = describe_config(load_config_from_env(dict(BASE_ENV)))

        assert summary["cloudflare"]["api_token"] == "********"
        assert summary["npm"]["password"] == "********"
        assert "cf-secret-token" not in str(summary)


class TestCLI:
    def test_run_is_the_default_command(self) -> None:
        args = create_parser().parse_args([])
        assert args.func.__name__ == "cmd_run"

    def test_config_show(self, monkeypatch, capsys) -> None:
        for name, value in BASE_ENV.items():
            monkeypatch.setenv(name, value)
        monkeypatch.chdir("/")

        assert main(["config", "show"]) == 0

        out = capsys.readouterr().out
        assert "ops@example.com" in out
        assert "cf-secret-token" not in out
        assert "changeme" not in out

    def test_missing_configuration_exits_with_one(self, monkeypatch, tmp_path) -> None:
        for name in REQUIRED_VARIABLES:
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setenv("LOG_LEVEL", "info")
        monkeypatch.chdir(tmp_path)
        env_file = tmp_path / ".env"
        env_file.write_text("LOG_LEVEL=debug\n")

        assert main(["--env-file", str(env_file), "run"]) == 1
        assert main(["--env-file", str(env_file), "config", "show"]) == 1

    def test_version(self, capsys) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])
        assert exc_info.value.code == 0
        assert "npm-cloudflare-sync" in capsys.readouterr().out
