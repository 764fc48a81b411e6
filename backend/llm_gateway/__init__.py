"""
LLM Gateway Core

Model-lane resolution, fallback, streaming tool-call assembly, rate limiting
and cost estimation for OpenRouter chat completions.
"""

from llm_gateway.core.config import GatewaySettings, get_settings, load_settings
from llm_gateway.llm import LLMGateway, LLMRateLimiter, Lane, OpenRouterClient

__version__ = "0.1.0"

__all__ = [
    "GatewaySettings",
    "LLMGateway",
    "LLMRateLimiter",
    "Lane",
    "OpenRouterClient",
    "get_settings",
    "load_settings",
]
