"""Kestrel Delegation - Configuration system with Pydantic Settings"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import pydantic_settings
from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import (
    DotEnvSettingsSource,
    EnvSettingsSource,
    PydanticBaseSettingsSource,
)
from pydantic_settings.main import SettingsConfigDict

__all__ = [
    "SecurityPolicy",
    "ProviderSettings",
    "DelegationSettings",
    "settings",
    "get_settings",
    "reload_settings",
]

ENV_PREFIX = "KESTREL_DELEGATION_"


class SecurityPolicy(BaseModel):
    """Top-level security switches that override delegation settings.

    allow_sub_agents is the global kill-switch for delegation.
    allow_binary_agents gates spawning external programs for binary profiles.
    """

    allow_sub_agents: bool = True
    allow_binary_agents: bool = False


class ProviderSettings(BaseModel):
    """Connection settings for the OpenAI-compatible reasoning backend"""

    base_url: str = "https://api.openai.com/v1"
    api_key: Optional[SecretStr] = None
    timeout_seconds: float = Field(default=600.0, gt=0)
    max_retries: int = Field(default=3, ge=0)


class DelegationSettings(pydantic_settings.BaseSettings):
    """Delegation settings with type-safe validation"""

    log_level: str = Field(default="INFO")

    # Feature flag, checked after the security kill-switch
    enabled: bool = Field(default=True)

    # Admission limits
    max_depth: int = Field(default=3, ge=1)
    max_concurrent: int = Field(default=5, ge=1)

    # Token budgets
    token_budget_default: int = Field(default=50000, ge=0)
    token_budget_max: int = Field(default=200000, ge=0)

    default_timeout_ms: int = Field(default=300000, gt=0)

    # Persist the full transcript when a reasoning delegation completes
    seal_on_complete: bool = Field(default=True)

    model_default: str = Field(default="gpt-4o-mini")

    # Seconds between SIGTERM and SIGKILL for binary profiles
    kill_grace_seconds: float = Field(default=5.0, ge=0)

    storage_dir: str = Field(default_factory=lambda: str(_resolve_app_dir("data")))

    security: SecurityPolicy = Field(default_factory=SecurityPolicy)
    provider: ProviderSettings = Field(default_factory=ProviderSettings)

    model_config = SettingsConfigDict(
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[pydantic_settings.BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        del env_settings, dotenv_settings

        model_env_nested_delimiter = settings_cls.model_config.get("env_nested_delimiter")
        env_nested_delimiter = (
            model_env_nested_delimiter if isinstance(model_env_nested_delimiter, str) else None
        )
        model_case_sensitive = settings_cls.model_config.get("case_sensitive")
        case_sensitive = model_case_sensitive if isinstance(model_case_sensitive, bool) else None

        return (
            init_settings,
            EnvSettingsSource(
                settings_cls,
                env_prefix=ENV_PREFIX,
                env_nested_delimiter=env_nested_delimiter,
                case_sensitive=case_sensitive,
            ),
            DotEnvSettingsSource(
                settings_cls,
                env_prefix=ENV_PREFIX,
                env_file=_dotenv_paths(settings_cls),
                env_nested_delimiter=env_nested_delimiter,
                case_sensitive=case_sensitive,
            ),
            file_secret_settings,
        )

    def storage_dir_path(self) -> Path:
        """
        Get the storage directory path as a Path object.

        Returns:
            The storage directory path as a Path object with ~ expanded.
        """
        return Path(self.storage_dir).expanduser()


APP_DIR_NAME = "kestrel-delegation"


def _xdg_base_dir(env_var_name: str, fallback: Path) -> Path:
    env_value = os.getenv(env_var_name)
    if env_value:
        return Path(env_value).expanduser()
    return fallback


def _resolve_app_dir(kind: str) -> Path:
    home = Path.home()
    if kind == "config":
        base = _xdg_base_dir("XDG_CONFIG_HOME", home / ".config")
    elif kind == "data":
        base = _xdg_base_dir("XDG_DATA_HOME", home / ".local" / "share")
    else:
        raise ValueError(f"Unsupported app dir kind: {kind}")

    return base / APP_DIR_NAME


def _dotenv_paths(settings_cls: type[pydantic_settings.BaseSettings]) -> tuple[Path | str, ...]:
    explicit_env_files = settings_cls.model_config.get("env_file")
    if explicit_env_files is not None:
        if isinstance(explicit_env_files, (str, Path)):
            return (explicit_env_files,)
        return tuple(explicit_env_files)

    return (".env", _resolve_app_dir("config") / ".env")


settings: DelegationSettings = DelegationSettings()


def get_settings() -> DelegationSettings:
    """
    Get the global settings singleton instance.

    Returns:
        The global DelegationSettings instance.
    """
    return settings


def reload_settings() -> DelegationSettings:
    """
    Rebuild the global settings from the current environment.

    Returns:
        The new DelegationSettings instance.
    """
    global settings
    settings = DelegationSettings()
    return settings
