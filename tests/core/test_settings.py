"""Tests for environment-driven settings."""

import logging

import pytest

from kestrel_delegation.core import settings as settings_module
from kestrel_delegation.core.logging import configure_logging
from kestrel_delegation.core.security import SecurityError, validate_storage_key
from kestrel_delegation.core.settings import DelegationSettings, reload_settings


@pytest.fixture
def restore_settings():
    original = settings_module.settings
    yield
    settings_module.settings = original


class TestDelegationSettings:
    """Defaults, env prefix and nested policy overrides."""

    def test_defaults(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)

        cfg = DelegationSettings()

        assert cfg.enabled is True
        assert cfg.max_depth == 3
        assert cfg.max_concurrent == 5
        assert cfg.token_budget_default == 50000
        assert cfg.token_budget_max == 200000
        assert cfg.default_timeout_ms == 300000
        assert cfg.security.allow_sub_agents is True
        assert cfg.security.allow_binary_agents is False

    def test_env_prefix(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("KESTREL_DELEGATION_MAX_DEPTH", "7")
        monkeypatch.setenv("KESTREL_DELEGATION_ENABLED", "false")

        cfg = DelegationSettings()

        assert cfg.max_depth == 7
        assert cfg.enabled is False

    def test_nested_security_policy(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("KESTREL_DELEGATION_SECURITY__ALLOW_BINARY_AGENTS", "true")
        monkeypatch.setenv("KESTREL_DELEGATION_PROVIDER__API_KEY", "sk-env")

        cfg = DelegationSettings()

        assert cfg.security.allow_binary_agents is True
        assert cfg.security.allow_sub_agents is True
        assert cfg.provider.api_key.get_secret_value() == "sk-env"

    def test_dotenv_file(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        (tmp_path / ".env").write_text("KESTREL_DELEGATION_MAX_CONCURRENT=2\n")

        assert DelegationSettings().max_concurrent == 2

    def test_invalid_value_rejected(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)

        with pytest.raises(ValueError):
            DelegationSettings(max_depth=0)

    def test_reload_settings(self, monkeypatch, tmp_path, restore_settings):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("KESTREL_DELEGATION_MODEL_DEFAULT", "local-model")

        reloaded = reload_settings()

        assert reloaded.model_default == "local-model"
        assert settings_module.get_settings() is reloaded

    def test_storage_dir_expands_user(self, tmp_path):
        cfg = DelegationSettings(storage_dir="~/delegations")

        assert "~" not in str(cfg.storage_dir_path())


class TestValidateStorageKey:
    @pytest.mark.parametrize("key", ["", "..", "a/b", "a\\b", "a\x00b"])
    def test_rejects(self, key):
        with pytest.raises(SecurityError):
            validate_storage_key(key)


def test_configure_logging_quiets_httpx():
    configure_logging("debug")

    assert logging.getLogger("httpx").level == logging.WARNING
