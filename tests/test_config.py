"""Tests for runtime configuration and environment overrides."""

from pathlib import Path

import pytest

from indi_autodetect.config import (
    DEFAULT_INDI_PORT,
    AppConfig,
    SupervisorConfig,
)


class TestDefaults:
    def test_supervisor_defaults(self):
        config = SupervisorConfig()
        assert config.port == DEFAULT_INDI_PORT == 7624
        assert config.max_retries == 3
        assert config.binary == "indiserver"

    def test_kb_cache_path_defaults_under_data_dir(self, tmp_path):
        config = AppConfig(data_dir=tmp_path)
        assert config.kb_cache_path == tmp_path / "equipment-database.json"

    def test_kb_cache_path_override(self, tmp_path):
        config = AppConfig(data_dir=tmp_path)
        config.knowledge_base.cache_path = tmp_path / "kb.json"
        assert config.kb_cache_path == tmp_path / "kb.json"

    def test_sections_are_independent_instances(self):
        first = AppConfig()
        second = AppConfig()
        first.coordinator.startup_drivers.append("indi_simulator_ccd")
        assert second.coordinator.startup_drivers == []


class TestFromEnv:
    """Tests for AppConfig.from_env."""

    def test_empty_environment_keeps_defaults(self):
        config = AppConfig.from_env({})
        assert config.supervisor.port == 7624
        assert config.dashboard.host == "127.0.0.1"

    def test_overrides(self):
        """Verifies every supported variable lands in its section.

        Arrangement:
        Mapping with port, retries, intervals, drivers, sudo, logging and
        dashboard variables.

        Action:
        Builds the configuration from the mapping.

        Assertion Strategy:
        Each field carries the parsed value; the comma list is trimmed
        and empty items dropped.

        Testing Principle:
        Deployments configure the daemon without CLI flags.
        """
        config = AppConfig.from_env(
            {
                "INDI_AUTODETECT_DATA_DIR": "/var/lib/indi-autodetect",
                "INDI_AUTODETECT_PORT": "7625",
                "INDI_AUTODETECT_MAX_RETRIES": "5",
                "INDI_AUTODETECT_POLL_INTERVAL": "2.5",
                "INDI_AUTODETECT_RESTART_DELAY": "1",
                "INDI_AUTODETECT_MONITOR_INTERVAL": "10",
                "INDI_AUTODETECT_STARTUP_DRIVERS": "indi_simulator_ccd, ,indi_eqmod_telescope",
                "INDI_AUTODETECT_USE_SUDO": "no",
                "INDI_AUTODETECT_LOG_LEVEL": "debug",
                "INDI_AUTODETECT_LOG_JSON": "true",
                "INDI_AUTODETECT_DASHBOARD_HOST": "none",
                "INDI_AUTODETECT_DASHBOARD_PORT": "9000",
                "INDI_AUTODETECT_GITHUB_TOKEN": "ghp_x",
            }
        )
        assert config.data_dir == Path("/var/lib/indi-autodetect")
        assert config.supervisor.port == 7625
        assert config.supervisor.max_retries == 5
        assert config.scanner.poll_interval == 2.5
        assert config.scanner.restart_delay == 1.0
        assert config.monitor.interval == 10.0
        assert config.coordinator.startup_drivers == [
            "indi_simulator_ccd",
            "indi_eqmod_telescope",
        ]
        assert config.resolver.use_sudo is False
        assert config.log_level == "DEBUG"
        assert config.log_json is True
        assert config.dashboard.host is None
        assert config.dashboard.port == 9000
        assert config.catalog.token == "ghp_x"

    def test_blank_values_are_ignored(self):
        config = AppConfig.from_env({"INDI_AUTODETECT_PORT": "  "})
        assert config.supervisor.port == 7624

    @pytest.mark.parametrize(
        ("name", "value"),
        [
            ("PORT", "seventy"),
            ("POLL_INTERVAL", "fast"),
            ("USE_SUDO", "maybe"),
        ],
    )
    def test_malformed_values_name_the_variable(self, name, value):
        with pytest.raises(ValueError, match=f"INDI_AUTODETECT_{name}"):
            AppConfig.from_env({f"INDI_AUTODETECT_{name}": value})
