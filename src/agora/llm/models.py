"""
Model registry and per-attempt request parameters.
"""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel

from ..agents.base import AgentRole, get_role_profile
from ..core.config import settings


class ModelTier(Enum):
    """Coarse model families with distinct latency/parameter behaviour."""

    COMPACT = "compact"
    STANDARD = "standard"
    REASONING = "reasoning"


class ModelConfig(BaseModel):
    """Static facts about a completion model."""

    model_id: str
    tier: ModelTier = ModelTier.STANDARD
    max_output_tokens: int = 4096
    supports_temperature: bool = True
    uses_completion_tokens: bool = False


MODEL_REGISTRY: Dict[str, ModelConfig] = {
    "gpt-4o-mini": ModelConfig(model_id="gpt-4o-mini", tier=ModelTier.COMPACT, max_output_tokens=16384),
    "gpt-4.1-mini": ModelConfig(model_id="gpt-4.1-mini", tier=ModelTier.COMPACT, max_output_tokens=32768),
    "gpt-4.1-nano": ModelConfig(model_id="gpt-4.1-nano", tier=ModelTier.COMPACT, max_output_tokens=32768),
    "gpt-4o": ModelConfig(model_id="gpt-4o", tier=ModelTier.STANDARD, max_output_tokens=16384),
    "gpt-4.1": ModelConfig(model_id="gpt-4.1", tier=ModelTier.STANDARD, max_output_tokens=32768),
    "o3": ModelConfig(
        model_id="o3", tier=ModelTier.REASONING, max_output_tokens=100000,
        supports_temperature=False, uses_completion_tokens=True
    ),
    "o4-mini": ModelConfig(
        model_id="o4-mini", tier=ModelTier.REASONING, max_output_tokens=100000,
        supports_temperature=False, uses_completion_tokens=True
    ),
}

_REASONING_PREFIXES = ("o1", "o3", "o4")

BASE_TOKENS = 800
COMPACT_TOKENS = 1000
COMPACT_FACILITATOR_TOKENS = 700
MIN_TOKEN_SCALE = 0.6
TOKEN_DECAY_PER_ATTEMPT = 0.15

FACILITATOR_TEMPERATURE = 0.3
ENHANCED_TEMPERATURE = 0.75
DEFAULT_TEMPERATURE = 0.7

DEFAULT_TIMEOUT = 25.0
COMPACT_TIMEOUT = 15.0
REASONING_TIMEOUT = 30.0
MIN_FALLBACK_TIMEOUT = 8.0
TIMEOUT_DECAY_PER_ATTEMPT = 3.0


def get_model_config(model_id: str) -> ModelConfig:
    """Registry lookup; unknown ids are classified by prefix."""
    config = MODEL_REGISTRY.get(model_id)
    if config:
        return config
    if model_id.startswith(_REASONING_PREFIXES):
        return ModelConfig(
            model_id=model_id, tier=ModelTier.REASONING,
            supports_temperature=False, uses_completion_tokens=True
        )
    return ModelConfig(model_id=model_id)


def build_fallback_chain(preferred: Optional[str] = None, fallbacks: Optional[List[str]] = None) -> List[str]:
    """Preferred model first, then the configured chain, without duplicates."""
    chain: List[str] = []
    for model in [preferred or settings.default_llm_model] + list(fallbacks or settings.fallback_models_list):
        if model and model not in chain:
            chain.append(model)
    return chain


def calculate_max_tokens(model: str, role: Optional[AgentRole] = None, attempt: int = 1) -> int:
    """Token allowance for a (model, role, attempt) triple.

    ``attempt`` is 1-based; allowance shrinks by 15% per fallback attempt past
    the first, never below 60% of the base.
    """
    config = get_model_config(model)
    facilitator = role is not None and get_role_profile(role).facilitator

    if config.tier == ModelTier.COMPACT:
        base = COMPACT_FACILITATOR_TOKENS if facilitator else COMPACT_TOKENS
    else:
        base = BASE_TOKENS

    if attempt > 1:
        scale = max(MIN_TOKEN_SCALE, 1 - (attempt - 1) * TOKEN_DECAY_PER_ATTEMPT)
        base = int(base * scale)

    return min(base, config.max_output_tokens)


def calculate_temperature(model: str, role: Optional[AgentRole] = None, enhanced: bool = False) -> Optional[float]:
    """Sampling temperature, or None for models that reject the parameter."""
    if not get_model_config(model).supports_temperature:
        return None
    if role is not None and get_role_profile(role).facilitator:
        return FACILITATOR_TEMPERATURE
    return ENHANCED_TEMPERATURE if enhanced else DEFAULT_TEMPERATURE


def calculate_timeout(model: str, attempt_index: int = 0, cap: Optional[float] = None) -> float:
    """Per-request timeout in seconds; later attempts fail faster."""
    tier = get_model_config(model).tier
    if tier == ModelTier.COMPACT:
        timeout = COMPACT_TIMEOUT
    elif tier == ModelTier.REASONING:
        timeout = REASONING_TIMEOUT
    else:
        timeout = DEFAULT_TIMEOUT

    if attempt_index > 0:
        timeout = max(MIN_FALLBACK_TIMEOUT, timeout - attempt_index * TIMEOUT_DECAY_PER_ATTEMPT)

    return min(timeout, cap if cap is not None else settings.max_invocation_timeout)
