"""
Model Lane Resolver: Candidate Models per Operation Class

The resolver answers:
  "Which models should this call try, and in what order?"

Priority (highest first):

  1. explicit primary model         ← caller's `model`
  2. explicit fallback list         ← caller's `models`, given order
  3. lane override list             ← OPENROUTER_V2_{TEXT,JSON,TOOL}_MODELS
  4. global override list           ← OPENROUTER_V2_MODELS
  5. lane built-in defaults         ← _LANE_DEFAULTS (tool_calling swaps in
                                       the exacto set when the flag is on)

The merged list keeps the first occurrence of every id. An empty result
collapses to a single hard-coded fallback model.

Design principles:
  - Pure Python, no I/O beyond reading settings. Fast and fully unit-testable.
  - Never cached: overrides are read per call so they can change live.

Adding a default model:
  Edit _LANE_DEFAULTS. Position is priority.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Sequence

from llm_gateway.core.config import GatewaySettings, load_settings
from llm_gateway.llm.types import Lane

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Built-in defaults
# ---------------------------------------------------------------------------

FALLBACK_MODEL = "openai/gpt-4o-mini"

_LANE_DEFAULTS: dict[Lane, tuple[str, ...]] = {
    Lane.TEXT: (
        "x-ai/grok-4.1-fast",
        "openai/gpt-4o-mini",
        "anthropic/claude-haiku-4.5",
    ),
    Lane.JSON: (
        "qwen/qwen3-32b",
        "openai/gpt-4o-mini",
        "deepseek/deepseek-chat",
    ),
    Lane.TOOL_CALLING: (
        "x-ai/grok-4.1-fast",
        "anthropic/claude-haiku-4.5",
        "openai/gpt-4o-mini",
    ),
}

# Tool-calling tuned provider endpoints (OpenRouter ":exacto" variants)
EXACTO_TOOL_CALLING_DEFAULTS: tuple[str, ...] = (
    "moonshotai/kimi-k2-0905:exacto",
    "z-ai/glm-4.6:exacto",
    "deepseek/deepseek-v3.1-terminus:exacto",
)

_LANE_REASONING: dict[Lane, dict[str, Any]] = {
    Lane.TEXT:         {"exclude": True},
    Lane.TOOL_CALLING: {"effort": "low"},
}


def lane_defaults(lane: Lane | str, exacto_tools_enabled: bool = False) -> list[str]:
    lane = Lane(lane)
    if lane is Lane.TOOL_CALLING and exacto_tools_enabled:
        return list(EXACTO_TOOL_CALLING_DEFAULTS)
    return list(_LANE_DEFAULTS[lane])


def _dedupe(groups: Iterable[Iterable[str | None]]) -> list[str]:
    seen:    set[str]  = set()
    ordered: list[str] = []
    for group in groups:
        for entry in group:
            if not isinstance(entry, str):
                continue
            model_id = entry.strip()
            if not model_id or model_id in seen:
                continue
            seen.add(model_id)
            ordered.append(model_id)
    return ordered


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def resolve_lane_models(
    lane:                 Lane | str,
    model:                str | None = None,
    models:               Sequence[str] | None = None,
    exacto_tools_enabled: bool | None = None,
    settings:             GatewaySettings | None = None,
) -> list[str]:
    """
    Build the ordered, de-duplicated candidate list for one call.

    Args:
        lane:                 'text', 'json' or 'tool_calling'.
        model:                Explicit primary model (position 0 if given).
        models:               Explicit fallbacks, tried in the given order.
        exacto_tools_enabled: Overrides the settings flag when not None.
        settings:             Settings snapshot; read fresh from the env if omitted.

    Returns:
        Non-empty list of model ids; priority = position.
    """
    lane = Lane(lane)
    cfg  = settings or load_settings()
    exacto = cfg.openrouter_v2_exacto_tools_enabled if exacto_tools_enabled is None else exacto_tools_enabled

    candidates = _dedupe([
        [model],
        models or [],
        cfg.lane_models(lane.value),
        cfg.global_models,
        lane_defaults(lane, exacto),
    ])

    if not candidates:
        candidates = [FALLBACK_MODEL]

    logger.debug(
        "ModelLaneResolver | lane=%s exacto=%s candidates=%s",
        lane.value, exacto, candidates,
    )
    return candidates


def resolve_lane_reasoning(lane: Lane | str) -> dict[str, Any] | None:
    """
    Reasoning policy sent with each request.

      text          → reasoning excluded from the response
      tool_calling  → low effort
      json          → provider default (None)
    """
    policy = _LANE_REASONING.get(Lane(lane))
    return dict(policy) if policy is not None else None
