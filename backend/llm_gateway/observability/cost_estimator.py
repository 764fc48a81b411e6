"""
Cost Estimator: Token, Cost and Duration Projections

Pure functions over fixed tables. Nothing here performs I/O.

Two uses:
  - projections before a bulk job runs (estimate_for_counts,
    estimate_migration_cost), rounded to 3 decimals
  - post-hoc cost of one call from its real usage (usage_cost,
    create_usage_metadata), rounded to 4 decimals

Model pricing catalogue (USD per 1 000 tokens):
  Public list prices. Update TOKEN_COSTS when rates change. Unknown model ids
  fall back to DEFAULT_MODEL's entry for projections.

Workload shapes (average tokens and processing time per entity):

    project   800 in / 400 out   3.0 s   template inference + property extraction
    task      200 in / 100 out   0.5 s   work mode classification
    phase     300 in / 150 out   1.0 s   plan type inference
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TokenCosts:
    input:  float   # USD per 1K input tokens
    output: float   # USD per 1K output tokens


TOKEN_COSTS: dict[str, TokenCosts] = {
    "gpt-4o":         TokenCosts(0.0025,  0.01),
    "gpt-4o-mini":    TokenCosts(0.00015, 0.0006),
    "gpt-4-turbo":    TokenCosts(0.01,    0.03),
    "gpt-3.5-turbo":  TokenCosts(0.0005,  0.0015),
    "deepseek-chat":  TokenCosts(0.00014, 0.00028),
    "deepseek-coder": TokenCosts(0.00014, 0.00028),
}

DEFAULT_MODEL = "deepseek-chat"

ENTITY_TYPES = ("project", "task", "phase")

# (input_tokens, output_tokens) per entity
TOKENS_PER_ENTITY: dict[str, tuple[int, int]] = {
    "project": (800, 400),
    "task":    (200, 100),
    "phase":   (300, 150),
}

PROCESSING_MS_PER_ENTITY: dict[str, int] = {
    "project": 3000,
    "task":    500,
    "phase":   1000,
}

_MODEL_NAMES: dict[str, str] = {
    "deepseek-chat": "DeepSeek Chat",
    "gpt-4o-mini":   "GPT-4o Mini",
    "gpt-4o":        "GPT-4o",
    "gpt-4-turbo":   "GPT-4 Turbo",
}


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EntityCounts:
    projects: int = 0
    tasks:    int = 0
    phases:   int = 0

    def get(self, entity_type: str) -> int:
        return {"project": self.projects, "task": self.tasks, "phase": self.phases}[entity_type]


@dataclass(frozen=True)
class CostBreakdown:
    input_tokens:  int
    output_tokens: int
    input_cost:    float
    output_cost:   float


@dataclass(frozen=True)
class CostEstimate:
    tokens:             int
    cost:               float
    breakdown:          CostBreakdown
    estimated_duration: str
    model:              str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class LLMUsageMetadata:
    provider:       str
    model:          str
    input_tokens:   int
    output_tokens:  int
    total_tokens:   int
    estimated_cost: float
    duration_ms:    int


# ---------------------------------------------------------------------------
# Pricing lookup
# ---------------------------------------------------------------------------

def lookup_pricing(model: str | None) -> TokenCosts | None:
    """
    Exact table entry for `model`, or None.

    Vendor-prefixed ids ("openai/gpt-4o-mini") and OpenRouter variant
    suffixes ("...:exacto") resolve to the bare model name.
    """
    if not model:
        return None
    if model in TOKEN_COSTS:
        return TOKEN_COSTS[model]
    bare = model.rsplit("/", 1)[-1].split(":", 1)[0]
    return TOKEN_COSTS.get(bare)


def _costs_for(model: str) -> TokenCosts:
    costs = lookup_pricing(model)
    if costs is None:
        logger.debug("CostEstimator | unknown model=%s, using %s pricing", model, DEFAULT_MODEL)
        return TOKEN_COSTS[DEFAULT_MODEL]
    return costs


def format_duration(ms: float) -> str:
    """'~2h 5m', '~12 minutes' or '~40 seconds'."""
    seconds = int(ms // 1000)
    minutes = seconds // 60
    hours   = minutes // 60
    if hours > 0:
        return f"~{hours}h {minutes % 60}m"
    if minutes > 0:
        return f"~{minutes} minutes"
    return f"~{seconds} seconds"


# ---------------------------------------------------------------------------
# Projections
# ---------------------------------------------------------------------------

def estimate_for_counts(counts: EntityCounts, model: str = DEFAULT_MODEL) -> CostEstimate:
    """
    Project tokens, cost and duration for a batch of entities.

    Costs are rounded to 3 decimal places.
    """
    costs = _costs_for(model)

    input_tokens  = sum(counts.get(t) * TOKENS_PER_ENTITY[t][0] for t in ENTITY_TYPES)
    output_tokens = sum(counts.get(t) * TOKENS_PER_ENTITY[t][1] for t in ENTITY_TYPES)
    processing_ms = sum(counts.get(t) * PROCESSING_MS_PER_ENTITY[t] for t in ENTITY_TYPES)

    input_cost  = input_tokens / 1000 * costs.input
    output_cost = output_tokens / 1000 * costs.output

    return CostEstimate(
        tokens    = input_tokens + output_tokens,
        cost      = round(input_cost + output_cost, 3),
        breakdown = CostBreakdown(
            input_tokens  = input_tokens,
            output_tokens = output_tokens,
            input_cost    = round(input_cost, 3),
            output_cost   = round(output_cost, 3),
        ),
        estimated_duration = format_duration(processing_ms),
        model              = model,
    )


def estimate_migration_cost(
    project_count:          int,
    avg_tasks_per_project:  float = 8,
    avg_phases_per_project: float = 2,
    model:                  str = DEFAULT_MODEL,
) -> CostEstimate:
    """Projection for `project_count` projects with average task/phase fan-out."""
    counts = EntityCounts(
        projects = project_count,
        tasks    = round(project_count * avg_tasks_per_project),
        phases   = round(project_count * avg_phases_per_project),
    )
    return estimate_for_counts(counts, model)


# ---------------------------------------------------------------------------
# Post-hoc usage cost
# ---------------------------------------------------------------------------

def usage_cost(model: str, input_tokens: int, output_tokens: int) -> tuple[float, float]:
    """
    (input_cost, output_cost) for one real call, 4 decimals.

    Returns (0.0, 0.0) for models with no pricing entry rather than guessing.
    """
    costs = lookup_pricing(model)
    if costs is None:
        return 0.0, 0.0
    return (
        round(input_tokens / 1000 * costs.input, 4),
        round(output_tokens / 1000 * costs.output, 4),
    )


def create_usage_metadata(
    provider:      str,
    model:         str,
    input_tokens:  int,
    output_tokens: int,
    duration_ms:   int,
) -> LLMUsageMetadata:
    costs = _costs_for(model)
    estimated = input_tokens / 1000 * costs.input + output_tokens / 1000 * costs.output
    return LLMUsageMetadata(
        provider       = provider,
        model          = model,
        input_tokens   = input_tokens,
        output_tokens  = output_tokens,
        total_tokens   = input_tokens + output_tokens,
        estimated_cost = round(estimated, 4),
        duration_ms    = duration_ms,
    )


def available_models() -> list[dict]:
    """Priced models offered to bulk jobs, default first."""
    return [
        {
            "id":          model_id,
            "name":        name,
            "costs":       TOKEN_COSTS[model_id],
            "recommended": model_id == DEFAULT_MODEL,
        }
        for model_id, name in _MODEL_NAMES.items()
    ]
