"""Tests for settings loading."""

import pytest

from docsync.config.settings import (
    RetryConfig,
    SyncSettings,
    apply_env_overrides,
    deep_merge,
    find_config_file,
    load_settings,
)
from docsync.errors import ConfigurationError


class TestDefaults:
    """Default values"""

    def test_defaults(self):
        settings = SyncSettings()

        assert settings.fetch.timeout_ms == 30000
        assert settings.fetch.timeout_seconds == 30.0
        assert settings.retry.max_attempts == 3
        assert settings.retry.delay_ms == 5000
        assert settings.indexing.batch_size == 100
        assert settings.scheduler.refresh_batch_size == 50
        assert settings.scheduler.job("content_refresh").cron == "0 3 * * sun"
        assert "docs.spring.io" in settings.fetch.allowed_domains

    def test_default_backoff_ceiling(self):
        assert RetryConfig(delay_ms=100, multiplier=2.0, max_attempts=3).max_backoff_ms == 800
        assert RetryConfig(max_delay_ms=250).max_backoff_ms == 250


class TestValidation:
    """Invalid settings become ConfigurationError"""

    @pytest.mark.parametrize("data", [
        {"retry": {"max_attempts": 0}},
        {"scheduler": {"version_policy": "newest"}},
        {"scheduler": {"jobs": {"eol_cleanup": {"cron": "0 4 1 *"}}}},
        {"indexing": {"max_workers": 0}},
    ])
    def test_invalid(self, data):
        with pytest.raises(ConfigurationError):
            SyncSettings.from_dict(data)

    def test_domains_are_normalized(self):
        settings = SyncSettings.from_dict({"fetch": {"allowed_domains": [" Docs.Spring.IO ", ""]}})

        assert settings.fetch.allowed_domains == ["docs.spring.io"]


class TestYamlAndEnvironment:
    """File and environment sources"""

    def test_yaml_is_merged_over_defaults(self, tmp_path):
        path = tmp_path / "docsync.yaml"
        path.write_text("retry:\n  max_attempts: 5\nscheduler:\n  jobs:\n    eol_cleanup:\n"
                        "      enabled: false\n", encoding="utf-8")

        settings = SyncSettings.from_yaml(str(path))

        assert settings.retry.max_attempts == 5
        assert settings.retry.delay_ms == 5000
        assert not settings.scheduler.job("eol_cleanup").enabled
        assert settings.scheduler.job("eol_cleanup").cron == "0 4 1 * *"

    def test_yaml_must_be_a_mapping(self, tmp_path):
        path = tmp_path / "docsync.yaml"
        path.write_text("- just\n- a list\n", encoding="utf-8")

        with pytest.raises(ConfigurationError):
            SyncSettings.from_yaml(str(path))

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            find_config_file(str(tmp_path / "missing.yaml"))

    def test_env_overrides(self):
        environ = {
            "DOCSYNC_RETRY__MAX_ATTEMPTS": "7",
            "DOCSYNC_SCHEDULER__JOBS__EOL_CLEANUP__ENABLED": "false",
            "DOCSYNC_FETCH__ALLOWED_DOMAINS": "docs.spring.io, example.org",
            "DOCSYNC_CONFIG": "/nowhere.yaml",
            "OTHER_VAR": "1",
        }

        settings = SyncSettings.from_env(environ)

        assert settings.retry.max_attempts == 7
        assert not settings.scheduler.job("eol_cleanup").enabled
        assert settings.fetch.allowed_domains == ["docs.spring.io", "example.org"]

    def test_load_settings_applies_env_over_file(self, tmp_path):
        path = tmp_path / "docsync.yaml"
        path.write_text("indexing:\n  batch_size: 20\n  max_workers: 2\n", encoding="utf-8")

        settings = load_settings(str(path), environ={"DOCSYNC_INDEXING__BATCH_SIZE": "30"})

        assert settings.indexing.batch_size == 30
        assert settings.indexing.max_workers == 2

    def test_deep_merge(self):
        merged = deep_merge({"a": {"b": 1, "c": 2}, "d": 3}, {"a": {"b": 10}, "e": 4})

        assert merged == {"a": {"b": 10, "c": 2}, "d": 3, "e": 4}

    def test_apply_env_overrides_ignores_top_level_names(self):
        assert apply_env_overrides({"retry": {}}, {"DOCSYNC_DEBUG": "1"}) == {"retry": {}}
