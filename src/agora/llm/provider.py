"""
Completion and embedding providers.

Every call is bounded by an explicit timeout. Timeouts and provider failures
surface as TransientProviderError so callers can retry or fall back.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from langchain_core.messages import BaseMessage
from pydantic import BaseModel, Field

from ..core.config import settings
from ..core.errors import TransientProviderError, ValidationError
from ..core.logging import logger
from .models import get_model_config

_ROLE_NAMES = {
    "system": "system",
    "human": "user",
    "ai": "assistant",
}


def to_provider_messages(messages: Sequence[BaseMessage]) -> List[Dict[str, str]]:
    """Convert langchain messages to chat-completion role/content dicts."""
    return [
        {"role": _ROLE_NAMES.get(message.type, "user"), "content": str(message.content)}
        for message in messages
    ]


class CompletionResult(BaseModel):
    """Result of a single completion call."""

    content: str
    model: str
    usage: Dict[str, Any] = Field(default_factory=dict)
    finish_reason: Optional[str] = None
    elapsed_ms: float = 0.0


class CompletionProvider(ABC):
    """Base class for text-completion / embedding providers."""

    name = "base"

    @abstractmethod
    async def complete(
        self,
        model: str,
        messages: Sequence[BaseMessage],
        max_tokens: int = 800,
        temperature: Optional[float] = None,
        json_mode: bool = False,
        timeout: float = 25.0
    ) -> CompletionResult:
        """Run one chat completion. Empty content is returned as-is, not raised."""
        pass

    @abstractmethod
    async def embed(self, text: str, model: Optional[str] = None, timeout: float = 15.0) -> List[float]:
        """Embed a single text."""
        pass


class OpenAIProvider(CompletionProvider):
    """OpenAI chat completions and embeddings."""

    name = "openai"

    def __init__(self, api_key: Optional[str] = None, embedding_model: Optional[str] = None):
        self.api_key = api_key or settings.openai_api_key
        self.embedding_model = embedding_model or settings.embedding_model
        self._client = None

    def _get_client(self):
        """Create the AsyncOpenAI client on first use."""
        if self._client is None:
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(api_key=self.api_key)
            logger.info("Initialized openai provider")
        return self._client

    async def complete(
        self,
        model: str,
        messages: Sequence[BaseMessage],
        max_tokens: int = 800,
        temperature: Optional[float] = None,
        json_mode: bool = False,
        timeout: float = 25.0
    ) -> CompletionResult:
        model_config = get_model_config(model)
        request: Dict[str, Any] = {
            "model": model,
            "messages": to_provider_messages(messages),
        }
        if model_config.uses_completion_tokens:
            request["max_completion_tokens"] = max_tokens
        else:
            request["max_tokens"] = max_tokens
        if temperature is not None and model_config.supports_temperature:
            request["temperature"] = temperature
        if json_mode:
            request["response_format"] = {"type": "json_object"}

        start_time = time.time()
        try:
            client = self._get_client()
            response = await asyncio.wait_for(client.chat.completions.create(**request), timeout=timeout)
        except asyncio.TimeoutError:
            raise TransientProviderError(
                f"{model} timed out after {timeout:.0f}s", provider=self.name, model=model
            )
        except Exception as e:
            raise TransientProviderError(
                f"{model} request failed: {type(e).__name__}", provider=self.name, model=model,
                details={"error": str(e)}
            )

        choice = response.choices[0] if response.choices else None
        content = (choice.message.content or "") if choice else ""
        usage = response.usage.model_dump() if getattr(response, "usage", None) else {}

        return CompletionResult(
            content=content.strip(),
            model=getattr(response, "model", None) or model,
            usage=usage,
            finish_reason=choice.finish_reason if choice else None,
            elapsed_ms=(time.time() - start_time) * 1000
        )

    async def embed(self, text: str, model: Optional[str] = None, timeout: float = 15.0) -> List[float]:
        if not text or not text.strip():
            raise ValidationError("Cannot embed empty text")

        model = model or self.embedding_model
        try:
            client = self._get_client()
            response = await asyncio.wait_for(
                client.embeddings.create(model=model, input=text.replace("\n", " ")),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            raise TransientProviderError(f"Embedding timed out after {timeout:.0f}s", provider=self.name, model=model)
        except Exception as e:
            raise TransientProviderError(
                f"Embedding request failed: {type(e).__name__}", provider=self.name, model=model,
                details={"error": str(e)}
            )

        if not response.data:
            raise TransientProviderError("Embedding response was empty", provider=self.name, model=model)
        return list(response.data[0].embedding)


def get_provider(provider: Optional[str] = None, **kwargs) -> CompletionProvider:
    """Factory function to get a completion provider."""
    provider = provider or settings.llm_provider
    if provider == "openai":
        return OpenAIProvider(**kwargs)
    raise ValueError(f"Unsupported provider: {provider}")
