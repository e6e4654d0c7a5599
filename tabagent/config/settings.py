"""Agent configuration loading and validation."""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, ClassVar, Dict, Iterable, Literal

import yaml
from pydantic import AnyUrl, Field, PositiveInt, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONFIG_LOCATIONS: tuple[Path, ...] = (
    Path("/etc/tabagent/agent.yaml"),
    Path("/etc/tabagent/agent.yml"),
    Path("./config/agent.yaml"),
    Path("./config/agent.yml"),
)


class AgentSettings(BaseSettings):
    """Validated settings for the bridge agent."""

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_prefix="TABAGENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Connection + identity
    bridge_ws_url: AnyUrl = Field(
        default="ws://localhost:3024/extension-ws",
        description="Bridge server control-channel WebSocket endpoint.",
    )
    transport: Literal["dummy", "websocket"] = Field(
        default="websocket",
        description="Control-channel transport implementation to use.",
    )
    host_provider: Literal["dummy"] = Field(
        default="dummy",
        description="Host capability provider driving the target session.",
    )
    target_id: str = Field(
        default="tab-1",
        description="Identifier of the target session announced to the bridge.",
    )

    # Heartbeat & reconnection
    heartbeat_interval_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Interval between outbound ping frames.",
    )
    pong_timeout_seconds: float = Field(
        default=0.0,
        ge=0,
        description="Close the channel when no pong arrives within this window (0 disables).",
    )
    reconnect_base_delay_seconds: float = Field(
        default=1.0,
        gt=0,
        description="Base delay for control-channel reconnection backoff.",
    )
    reconnect_max_delay_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Maximum delay for control-channel reconnection backoff.",
    )
    reconnect_max_attempts: PositiveInt = Field(
        default=10,
        description="Reconnect attempts before giving up.",
    )
    reconnect_jitter: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Jitter factor applied to reconnection backoff (0.0-1.0).",
    )
    outbound_queue_size: PositiveInt = Field(
        default=100,
        description="Frames buffered while the channel is down; the oldest is dropped on overflow.",
    )

    # Operation timeouts
    navigate_timeout_seconds: float = Field(default=10.0, gt=0)
    interaction_timeout_seconds: float = Field(default=30.0, gt=0)
    wait_timeout_seconds: float = Field(default=30.0, gt=0)
    min_timeout_seconds: float = Field(default=1.0, gt=0)
    max_timeout_seconds: float = Field(default=60.0, gt=0)

    # Retry
    navigate_max_retries: int = Field(
        default=2,
        ge=0,
        description="Retries after the first navigation attempt.",
    )
    retry_base_delay_seconds: float = Field(default=1.0, gt=0)
    retry_max_delay_seconds: float = Field(default=5.0, gt=0)
    status_cooldown_seconds: float = Field(
        default=3.0,
        ge=0,
        description="Delay before a finished navigation returns to idle.",
    )

    # Listener pool
    listener_pool_max: PositiveInt = Field(default=5)
    listener_max_age_seconds: float = Field(default=300.0, gt=0)
    listener_min_idle_seconds: float = Field(default=60.0, ge=0)
    listener_never_called_age_seconds: float = Field(default=120.0, gt=0)
    listener_overflow_policy: Literal["evict_oldest", "fail"] = Field(
        default="evict_oldest",
        description="Behaviour when the pool stays full after evicting stale entries.",
    )

    # Waits
    wait_poll_interval_seconds: float = Field(default=0.5, gt=0)
    orphaned_wait_max_age_seconds: float = Field(default=120.0, gt=0)
    orphaned_wait_sweep_seconds: float = Field(default=30.0, gt=0)

    # Execution strategies
    strategy_timeout_seconds: float = Field(default=10.0, gt=0)
    strategy_retries: int = Field(default=2, ge=0)
    strategy_retry_delay_seconds: float = Field(default=0.5, ge=0)
    strategy_order: list[Literal["scripting", "devtools", "content_agent"]] = Field(
        default_factory=lambda: ["scripting", "devtools", "content_agent"],
        min_length=1,
        description="Preferred order of execution backends.",
    )
    sanitizer_max_payload_bytes: PositiveInt = Field(default=10240)

    # URL policy
    allowed_url_schemes: list[str] = Field(default_factory=lambda: ["http", "https"])
    blocked_url_schemes: list[str] = Field(
        default_factory=lambda: [
            "file",
            "chrome",
            "chrome-extension",
            "moz-extension",
            "javascript",
            "vbscript",
            "about",
            "resource",
        ]
    )
    max_url_length: PositiveInt = Field(default=2048)
    allow_devtools_urls: bool = Field(default=False)

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Minimum log level for the agent process.",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        if isinstance(value, str):
            return value.upper()
        return value

    @field_validator("allowed_url_schemes", "blocked_url_schemes", mode="after")
    @classmethod
    def _normalize_schemes(cls, value: list[str]) -> list[str]:
        return [scheme.lower().rstrip(":") for scheme in value]

    @model_validator(mode="after")
    def _check_ranges(self) -> "AgentSettings":
        if self.min_timeout_seconds > self.max_timeout_seconds:
            raise ValueError("min_timeout_seconds must not exceed max_timeout_seconds")
        if self.reconnect_base_delay_seconds > self.reconnect_max_delay_seconds:
            raise ValueError("reconnect_base_delay_seconds must not exceed reconnect_max_delay_seconds")
        if self.retry_base_delay_seconds > self.retry_max_delay_seconds:
            raise ValueError("retry_base_delay_seconds must not exceed retry_max_delay_seconds")
        return self

    config_path: Path | None = Field(
        default=None,
        description="Resolved path to the on-disk config that seeded the settings.",
        exclude=True,
    )

    def clamp_timeout(self, value: float | None, default: float) -> float:
        """Clamp a caller supplied timeout (seconds) into the allowed window."""

        if value is None:
            return default
        return max(self.min_timeout_seconds, min(float(value), self.max_timeout_seconds))

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[AgentSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            cls._yaml_settings_source,
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    @staticmethod
    def _yaml_settings_source(settings_cls: type[AgentSettings] | None = None) -> Dict[str, Any]:
        candidates: Iterable[Path] = AgentSettings._resolve_candidate_paths()

        for path in candidates:
            data = AgentSettings._load_file(path)
            if data is not None:
                data.setdefault("config_path", path)
                return data
        return {}

    @staticmethod
    def _resolve_candidate_paths() -> Iterable[Path]:
        explicit = os.getenv("TABAGENT_CONFIG_FILE")
        if explicit:
            yield Path(explicit).expanduser()
        yield from DEFAULT_CONFIG_LOCATIONS

    @staticmethod
    def _load_file(path: Path) -> Dict[str, Any] | None:
        if not path.is_file():
            return None
        suffix = path.suffix.lower()
        try:
            with path.open("r", encoding="utf-8") as handle:
                if suffix in {".yaml", ".yml"}:
                    raw = yaml.safe_load(handle)
                elif suffix == ".json":
                    raw = json.load(handle)
                else:
                    return None
        except OSError as exc:
            raise RuntimeError(f"Failed to read agent config file {path}") from exc
        except (yaml.YAMLError, json.JSONDecodeError) as exc:
            raise ValueError(f"Invalid agent config file {path}") from exc

        if raw is None:
            return {}
        if not isinstance(raw, dict):
            raise ValueError(f"Agent config file {path} must contain a mapping at top level.")
        return raw


@lru_cache()
def get_settings() -> AgentSettings:
    """Return memoized agent settings."""

    return AgentSettings()
