"""
Resilient Model Invoker - runs a completion across an ordered fallback chain.

Two strategies:
    parallel   - race up to N models, first non-empty completion wins,
                 losers are left to finish on their own
    sequential - walk the chain, trimming context and shortening timeouts on
                 each fallback; the primary model gets one minimal-context retry
"""

import asyncio
import math
import time
from enum import Enum
from typing import List, Optional, Sequence, Set, Tuple, Union

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from pydantic import BaseModel

from ..agents.base import AgentRole
from ..core.config import settings
from ..core.errors import ModelChainExhausted, TransientProviderError, ValidationError
from ..core.logging import audit_logger, logger
from .models import calculate_max_tokens, calculate_temperature, calculate_timeout
from .provider import CompletionProvider

MINIMAL_RETRY_TOKENS = 300
MINIMAL_RETRY_TIMEOUT = 8.0
RECENT_SHARE = 0.7


class InvocationStrategy(Enum):
    """How the fallback chain is executed."""

    PARALLEL = "parallel"
    SEQUENTIAL = "sequential"
    MINIMAL_RETRY = "minimal_retry"


class InvocationResult(BaseModel):
    """Outcome of a successful invocation."""

    content: str
    model_used: str
    strategy: InvocationStrategy
    attempts: int
    elapsed_ms: float = 0.0
    context_messages: int = 0


def context_reduction_factor(attempt_index: int) -> float:
    """Share of conversational context kept on a given chain position."""
    if attempt_index == 0:
        return 1.0
    return max(0.5, 1.0 - 0.2 * attempt_index)


def _split_preserved(messages: Sequence[BaseMessage]) -> Tuple[Optional[int], Optional[int]]:
    system_index = next((i for i, m in enumerate(messages) if isinstance(m, SystemMessage)), None)
    user_index = next(
        (i for i in range(len(messages) - 1, -1, -1) if isinstance(messages[i], HumanMessage)),
        None
    )
    return system_index, user_index


def reduce_context(messages: Sequence[BaseMessage], factor: float) -> List[BaseMessage]:
    """Trim context while keeping the first system and final user message.

    Of the remaining messages, ``factor`` of them survive: the most recent 70%
    of that budget plus the earliest ones for the rest. Original order is kept.
    """
    messages = list(messages)
    if factor >= 1.0 or len(messages) <= 2:
        return messages

    system_index, user_index = _split_preserved(messages)
    preserved = {i for i in (system_index, user_index) if i is not None}
    middle = [i for i in range(len(messages)) if i not in preserved]
    if not middle:
        return messages

    keep = max(1, math.floor(len(middle) * factor))
    recent = math.ceil(keep * RECENT_SHARE)
    early = keep - recent
    kept = set(middle[:early]) | set(middle[len(middle) - recent:])

    return [m for i, m in enumerate(messages) if i in preserved or i in kept]


def minimal_context(messages: Sequence[BaseMessage]) -> List[BaseMessage]:
    """The first system message and the final user message only."""
    messages = list(messages)
    system_index, user_index = _split_preserved(messages)
    if user_index is None:
        user_index = len(messages) - 1
    indices = sorted({i for i in (system_index, user_index) if i is not None})
    return [messages[i] for i in indices]


class ResilientModelInvoker:
    """Executes completion requests across a fallback chain of models."""

    def __init__(
        self,
        provider: CompletionProvider,
        max_parallel: Optional[int] = None,
        timeout_cap: Optional[float] = None
    ):
        self.provider = provider
        self.max_parallel = max_parallel or settings.max_parallel_models
        self.timeout_cap = timeout_cap or settings.max_invocation_timeout
        self._abandoned: Set[asyncio.Task] = set()

    async def invoke(
        self,
        chain: Sequence[str],
        messages: Sequence[BaseMessage],
        role: Optional[AgentRole] = None,
        strategy: Union[InvocationStrategy, str, None] = None,
        enhanced: bool = False,
        json_mode: bool = False
    ) -> InvocationResult:
        """Run the chain and return the first usable completion.

        Raises:
            ValidationError: empty chain or message list
            ModelChainExhausted: no model produced a usable completion
        """
        if not chain:
            raise ValidationError("Fallback chain is empty")
        if not messages:
            raise ValidationError("No messages to send")

        strategy = InvocationStrategy(strategy or settings.invocation_strategy)
        start_time = time.time()
        attempts = 0

        if strategy == InvocationStrategy.PARALLEL:
            winner, attempts = await self._invoke_parallel(chain, messages, role, enhanced, json_mode)
            if winner:
                model, content = winner
                return self._finish(model, content, strategy, attempts, start_time, len(messages))
            logger.warning("Parallel race produced no usable completion, degrading to sequential")

        try:
            model, content, used_strategy, context_size, sequential_attempts = await self._invoke_sequential(
                chain, messages, role, enhanced, json_mode
            )
        except ModelChainExhausted as e:
            total = attempts + e.attempts
            audit_logger.log_model_inference(
                model=",".join(chain), strategy=strategy.value, outcome="failure", attempts=total,
                elapsed_ms=(time.time() - start_time) * 1000
            )
            raise ModelChainExhausted(list(chain), total)

        return self._finish(model, content, used_strategy, attempts + sequential_attempts, start_time, context_size)

    def _finish(
        self,
        model: str,
        content: str,
        strategy: InvocationStrategy,
        attempts: int,
        start_time: float,
        context_size: int
    ) -> InvocationResult:
        elapsed_ms = (time.time() - start_time) * 1000
        logger.info(f"Completion from {model} via {strategy.value} after {attempts} attempt(s)")
        audit_logger.log_model_inference(
            model=model, strategy=strategy.value, attempts=attempts, elapsed_ms=elapsed_ms
        )
        return InvocationResult(
            content=content,
            model_used=model,
            strategy=strategy,
            attempts=attempts,
            elapsed_ms=elapsed_ms,
            context_messages=context_size
        )

    async def _call(
        self,
        model: str,
        messages: Sequence[BaseMessage],
        role: Optional[AgentRole],
        attempt_index: int,
        enhanced: bool,
        json_mode: bool,
        max_tokens: Optional[int] = None,
        timeout: Optional[float] = None
    ) -> str:
        max_tokens = max_tokens or calculate_max_tokens(model, role, attempt_index + 1)
        temperature = calculate_temperature(model, role, enhanced)
        timeout = timeout or calculate_timeout(model, attempt_index, self.timeout_cap)

        logger.debug(
            f"Calling {model} (attempt {attempt_index + 1}, {len(messages)} messages, "
            f"max_tokens={max_tokens}, timeout={timeout:.0f}s)"
        )
        try:
            result = await asyncio.wait_for(
                self.provider.complete(
                    model=model,
                    messages=messages,
                    max_tokens=max_tokens,
                    temperature=temperature,
                    json_mode=json_mode,
                    timeout=timeout
                ),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            raise TransientProviderError(f"{model} timed out after {timeout:.0f}s", model=model)

        return (result.content or "").strip()

    async def _invoke_parallel(
        self,
        chain: Sequence[str],
        messages: Sequence[BaseMessage],
        role: Optional[AgentRole],
        enhanced: bool,
        json_mode: bool
    ) -> Tuple[Optional[Tuple[str, str]], int]:
        racers = list(chain)[:self.max_parallel]
        order = {model: index for index, model in enumerate(racers)}
        tasks = {
            asyncio.create_task(self._call(model, messages, role, 0, enhanced, json_mode)): model
            for model in racers
        }
        logger.info(f"Racing {len(racers)} models: {', '.join(racers)}")

        pending: Set[asyncio.Task] = set(tasks)
        winner: Optional[Tuple[str, str]] = None
        while pending and winner is None:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            for task in sorted(done, key=lambda t: order[tasks[t]]):
                model = tasks[task]
                error = task.exception()
                if error is not None:
                    logger.warning(f"Parallel attempt on {model} failed: {error}")
                    continue
                content = task.result()
                if content:
                    winner = (model, content)
                    break
                logger.warning(f"Parallel attempt on {model} returned empty content")

        for task in pending:
            self._abandoned.add(task)
            task.add_done_callback(self._release)

        return winner, len(racers)

    def _release(self, task: asyncio.Task) -> None:
        self._abandoned.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Abandoned race attempt finished with error: {task.exception()}")

    async def _invoke_sequential(
        self,
        chain: Sequence[str],
        messages: Sequence[BaseMessage],
        role: Optional[AgentRole],
        enhanced: bool,
        json_mode: bool
    ) -> Tuple[str, str, InvocationStrategy, int, int]:
        attempts = 0
        for index, model in enumerate(chain):
            attempt_messages = reduce_context(messages, context_reduction_factor(index))
            if len(attempt_messages) < len(messages):
                logger.info(f"Reduced context for {model}: {len(messages)} -> {len(attempt_messages)} messages")

            attempts += 1
            try:
                content = await self._call(model, attempt_messages, role, index, enhanced, json_mode)
            except TransientProviderError as e:
                logger.warning(f"Model {model} failed: {e}")
                continue
            except Exception as e:
                logger.error(f"Unexpected error from {model}: {e}")
                continue

            if content:
                return model, content, InvocationStrategy.SEQUENTIAL, len(attempt_messages), attempts
            logger.warning(f"{model} returned empty content")

            if index == 0 and len(messages) > 2:
                minimal = minimal_context(messages)
                attempts += 1
                logger.info(f"Retrying {model} with minimal context ({len(minimal)} messages)")
                try:
                    content = await self._call(
                        model, minimal, role, index, False, json_mode,
                        max_tokens=MINIMAL_RETRY_TOKENS, timeout=MINIMAL_RETRY_TIMEOUT
                    )
                    if content:
                        return model, content, InvocationStrategy.MINIMAL_RETRY, len(minimal), attempts
                    logger.warning(f"{model} returned empty content on minimal-context retry")
                except TransientProviderError as e:
                    logger.warning(f"Minimal-context retry on {model} failed: {e}")
                except Exception as e:
                    logger.error(f"Unexpected error from {model} on minimal-context retry: {e}")

        raise ModelChainExhausted(list(chain), attempts)
