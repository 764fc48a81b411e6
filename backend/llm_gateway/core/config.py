"""
Gateway configuration via environment variables (12-factor).
Pydantic BaseSettings validates and coerces all values.

Two access paths:

  get_settings()   cached process-level instance. Used for values fixed when a
                   client is built (API key, base URL, attribution headers).
  load_settings()  fresh instance on every call. Lane overrides, the exacto
                   flag and the timeout override are read through this so an
                   operator can change them without a restart.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_TRUTHY = frozenset({"1", "true", "yes", "on"})
_FALSY  = frozenset({"0", "false", "no", "off"})


def parse_model_list(raw: str | None) -> list[str]:
    """Split a comma-separated model list, dropping blanks."""
    if not raw:
        return []
    return [entry.strip() for entry in raw.split(",") if entry.strip()]


class GatewaySettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Upstream aggregator
    # ------------------------------------------------------------------
    openrouter_api_key:      str = ""
    openrouter_v2_base_url:  str = "https://openrouter.ai/api/v1"
    openrouter_http_referer: str = "https://buildos.com"
    openrouter_app_name:     str = "LLM Gateway Core"

    # Milliseconds. None = use the client's built-in default.
    openrouter_v2_timeout_ms: int | None = None

    # ------------------------------------------------------------------
    # Lane model selection (comma-separated lists)
    # ------------------------------------------------------------------
    openrouter_v2_models:      str = ""   # global override, every lane
    openrouter_v2_text_models: str = ""
    openrouter_v2_json_models: str = ""
    openrouter_v2_tool_models: str = ""

    openrouter_v2_exacto_tools_enabled: bool = False

    # ------------------------------------------------------------------
    # Admission control defaults for LLMRateLimiter.from_settings()
    # ------------------------------------------------------------------
    llm_max_requests_per_minute:   int = 60
    llm_max_tokens_per_minute:     int = 100_000
    llm_circuit_breaker_threshold: int = 5
    llm_circuit_breaker_reset_ms:  int = 60_000

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------
    debug: bool = False

    @field_validator("openrouter_v2_exacto_tools_enabled", mode="before")
    @classmethod
    def _lenient_flag(cls, value: Any) -> bool:
        # Unrecognised values fall back to "off" instead of failing startup.
        if isinstance(value, bool):
            return value
        if value is None:
            return False
        normalized = str(value).strip().lower()
        if normalized in _TRUTHY:
            return True
        if normalized in _FALSY:
            return False
        return False

    @field_validator("openrouter_v2_timeout_ms", mode="before")
    @classmethod
    def _positive_timeout(cls, value: Any) -> int | None:
        if value is None or value == "":
            return None
        try:
            parsed = int(str(value).strip())
        except ValueError:
            return None
        return parsed if parsed > 0 else None

    @property
    def global_models(self) -> list[str]:
        return parse_model_list(self.openrouter_v2_models)

    def lane_models(self, lane: str) -> list[str]:
        """Configured override list for one lane ('text', 'json', 'tool_calling')."""
        raw = {
            "text":         self.openrouter_v2_text_models,
            "json":         self.openrouter_v2_json_models,
            "tool_calling": self.openrouter_v2_tool_models,
        }.get(lane, "")
        return parse_model_list(raw)

    @property
    def timeout_seconds(self) -> float | None:
        if self.openrouter_v2_timeout_ms is None:
            return None
        return self.openrouter_v2_timeout_ms / 1000.0


def load_settings() -> GatewaySettings:
    """Read the environment now; never cached."""
    return GatewaySettings()


@lru_cache(maxsize=1)
def get_settings() -> GatewaySettings:
    return GatewaySettings()
