"""Configuration schema for codex-bridge."""

from __future__ import annotations

from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SENTINEL = "default"


class RuntimeConfig(BaseModel):
    """Runtime options forwarded to the app-server on thread and turn start.

    Serialized with camelCase keys on the caller channel
    (``approvalPolicy``, ``webSearchMode``).
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    model: str = DEFAULT_SENTINEL
    reasoning: str = DEFAULT_SENTINEL
    approval_policy: str = "on-request"
    sandbox: str = "read-only"
    profile: str = "read_write_with_approval"
    web_search_mode: str = "cached"
    binary: str = "auto"

    def merged(self, patch: Mapping[str, Any] | None) -> "RuntimeConfig":
        """Return a copy with ``patch`` applied.

        Blank or non-string values keep the previous value; they are never
        treated as an intentional reset.
        """
        if not isinstance(patch, Mapping):
            return self
        updates: dict[str, str] = {}
        for name, field in type(self).model_fields.items():
            raw = patch.get(field.alias or name, patch.get(name))
            if isinstance(raw, str) and raw.strip():
                updates[name] = raw.strip()
        return self.model_copy(update=updates) if updates else self

    def to_wire(self) -> dict[str, str]:
        return self.model_dump(by_alias=True)


class BridgeSettings(BaseSettings):
    """Process-level settings for codex-bridge."""

    request_timeout_s: float = 120.0
    initialize_timeout_s: float = 20.0
    shutdown_timeout_s: float = 2.0
    turn_timeout_s: float = 1800.0
    mcp_list_timeout_s: float = 90.0
    log_level: str = "INFO"
    defaults: RuntimeConfig = Field(default_factory=RuntimeConfig)

    model_config = SettingsConfigDict(
        env_prefix="CODEX_BRIDGE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # Environment wins over values loaded from the config file.
        return (env_settings, init_settings, dotenv_settings, file_secret_settings)
