"""
LLM access: providers, model parameters and the resilient invoker.
"""

from .models import (
    MODEL_REGISTRY,
    ModelConfig,
    ModelTier,
    build_fallback_chain,
    calculate_max_tokens,
    calculate_temperature,
    calculate_timeout,
    get_model_config,
)
from .provider import CompletionProvider, CompletionResult, OpenAIProvider, get_provider, to_provider_messages
from .invoker import (
    InvocationResult,
    InvocationStrategy,
    ResilientModelInvoker,
    context_reduction_factor,
    minimal_context,
    reduce_context,
)

__all__ = [
    "MODEL_REGISTRY",
    "ModelConfig",
    "ModelTier",
    "build_fallback_chain",
    "calculate_max_tokens",
    "calculate_temperature",
    "calculate_timeout",
    "get_model_config",
    "CompletionProvider",
    "CompletionResult",
    "OpenAIProvider",
    "get_provider",
    "to_provider_messages",
    "InvocationResult",
    "InvocationStrategy",
    "ResilientModelInvoker",
    "context_reduction_factor",
    "minimal_context",
    "reduce_context",
]
