"""
Circuit breaker over a shared, persisted per-operation failure record.

The breaker itself is stateless; every decision reads the store, so several
processes pointing at the same database share one view of a failing
dependency.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from pydantic import BaseModel
from sqlalchemy import Boolean, Column, Float, Integer, String, create_engine, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ..core.config import settings
from ..core.logging import audit_logger, logger

T = TypeVar("T")

Base = declarative_base()


class CircuitState(Enum):
    """Observable breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class BreakerPolicy(BaseModel):
    """Threshold and cooldown for one operation."""

    failure_threshold: int = 3
    timeout_seconds: float = 60.0
    half_open_probe: bool = False


DEFAULT_POLICY = BreakerPolicy(failure_threshold=3, timeout_seconds=60.0)

BREAKER_POLICIES: Dict[str, BreakerPolicy] = {
    "message_analysis": BreakerPolicy(failure_threshold=5, timeout_seconds=30.0),
    "message_classification": BreakerPolicy(failure_threshold=3, timeout_seconds=60.0),
    "agent_response_generation": BreakerPolicy(failure_threshold=3, timeout_seconds=45.0),
    "knowledge_query": BreakerPolicy(failure_threshold=3, timeout_seconds=60.0),
}


class CircuitBreakerState(BaseModel):
    """Persisted failure record for one operation."""

    operation_id: str
    failure_count: int = 0
    last_failure_time: Optional[float] = None
    is_open: bool = False
    probe_started_at: Optional[float] = None


class BreakerStateStore(ABC):
    """Narrow read/increment/clear interface over shared breaker state."""

    @abstractmethod
    async def load(self, operation_id: str) -> Optional[CircuitBreakerState]:
        pass

    @abstractmethod
    async def increment_failure(self, operation_id: str, now: float, threshold: int) -> CircuitBreakerState:
        """Atomically add one failure and stamp the failure time."""
        pass

    @abstractmethod
    async def clear(self, operation_id: str) -> None:
        pass

    @abstractmethod
    async def try_acquire_probe(self, operation_id: str, now: float, lease_seconds: float) -> bool:
        """Claim the single half-open trial slot. True for exactly one caller per lease."""
        pass


class InMemoryBreakerStore(BreakerStateStore):
    """Process-local store. Each coroutine step runs to completion on the loop,
    so read-modify-write here cannot interleave."""

    def __init__(self):
        self._records: Dict[str, CircuitBreakerState] = {}

    async def load(self, operation_id: str) -> Optional[CircuitBreakerState]:
        record = self._records.get(operation_id)
        return record.model_copy() if record else None

    async def increment_failure(self, operation_id: str, now: float, threshold: int) -> CircuitBreakerState:
        record = self._records.setdefault(operation_id, CircuitBreakerState(operation_id=operation_id))
        record.failure_count += 1
        record.last_failure_time = now
        record.is_open = record.failure_count >= threshold
        record.probe_started_at = None
        return record.model_copy()

    async def clear(self, operation_id: str) -> None:
        self._records[operation_id] = CircuitBreakerState(operation_id=operation_id)

    async def try_acquire_probe(self, operation_id: str, now: float, lease_seconds: float) -> bool:
        record = self._records.get(operation_id)
        if record is None:
            return True
        if record.probe_started_at is not None and now - record.probe_started_at < lease_seconds:
            return False
        record.probe_started_at = now
        return True


class BreakerRecord(Base):
    """Database model for circuit breaker state."""

    __tablename__ = "circuit_breaker_state"

    operation_id = Column(String, primary_key=True)
    failure_count = Column(Integer, nullable=False, default=0)
    last_failure_time = Column(Float, nullable=True)
    is_open = Column(Boolean, nullable=False, default=False)
    probe_started_at = Column(Float, nullable=True)

    def to_state(self) -> CircuitBreakerState:
        return CircuitBreakerState(
            operation_id=self.operation_id,
            failure_count=self.failure_count or 0,
            last_failure_time=self.last_failure_time,
            is_open=bool(self.is_open),
            probe_started_at=self.probe_started_at
        )


class SQLBreakerStore(BreakerStateStore):
    """Shared store backed by SQLAlchemy.

    Increments take a row lock (``SELECT ... FOR UPDATE``) and probe claims are
    a conditional UPDATE, so concurrent writers do not lose updates. Session
    work runs in a worker thread to keep the event loop free.
    """

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or settings.database_url
        engine_kwargs: Dict[str, Any] = {}
        if self.database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in self.database_url or self.database_url == "sqlite://":
                engine_kwargs["poolclass"] = StaticPool
        self.engine = create_engine(self.database_url, **engine_kwargs)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine)

        logger.info("SQLBreakerStore initialized")

    async def load(self, operation_id: str) -> Optional[CircuitBreakerState]:
        return await asyncio.to_thread(self._load, operation_id)

    async def increment_failure(self, operation_id: str, now: float, threshold: int) -> CircuitBreakerState:
        return await asyncio.to_thread(self._increment, operation_id, now, threshold)

    async def clear(self, operation_id: str) -> None:
        await asyncio.to_thread(self._clear, operation_id)

    async def try_acquire_probe(self, operation_id: str, now: float, lease_seconds: float) -> bool:
        return await asyncio.to_thread(self._claim_probe, operation_id, now, lease_seconds)

    def _load(self, operation_id: str) -> Optional[CircuitBreakerState]:
        with self.Session() as session:
            record = session.get(BreakerRecord, operation_id)
            return record.to_state() if record else None

    def _increment(self, operation_id: str, now: float, threshold: int) -> CircuitBreakerState:
        try:
            return self._locked_increment(operation_id, now, threshold)
        except IntegrityError:
            # Another writer inserted the row first; the retry locks that row.
            return self._locked_increment(operation_id, now, threshold)

    def _locked_increment(self, operation_id: str, now: float, threshold: int) -> CircuitBreakerState:
        with self.Session() as session:
            try:
                record = (
                    session.query(BreakerRecord)
                    .filter(BreakerRecord.operation_id == operation_id)
                    .with_for_update()
                    .one_or_none()
                )
                if record is None:
                    record = BreakerRecord(operation_id=operation_id, failure_count=0, is_open=False)
                    session.add(record)

                record.failure_count = (record.failure_count or 0) + 1
                record.last_failure_time = now
                record.is_open = record.failure_count >= threshold
                record.probe_started_at = None
                session.commit()
                return record.to_state()

            except Exception:
                session.rollback()
                raise

    def _clear(self, operation_id: str) -> None:
        with self.Session() as session:
            try:
                record = session.get(BreakerRecord, operation_id)
                if record is None:
                    session.add(BreakerRecord(operation_id=operation_id, failure_count=0, is_open=False))
                else:
                    record.failure_count = 0
                    record.is_open = False
                    record.probe_started_at = None
                session.commit()
            except IntegrityError:
                session.rollback()

    def _claim_probe(self, operation_id: str, now: float, lease_seconds: float) -> bool:
        with self.Session() as session:
            result = session.execute(
                update(BreakerRecord)
                .where(BreakerRecord.operation_id == operation_id)
                .where(or_(
                    BreakerRecord.probe_started_at.is_(None),
                    BreakerRecord.probe_started_at < now - lease_seconds
                ))
                .values(probe_started_at=now)
            )
            session.commit()
            return result.rowcount == 1


class CircuitBreaker:
    """Per-operation circuit breaker.

    ``is_open`` is true while ``failure_count >= threshold`` and the last
    failure is younger than the cooldown. The first check after the cooldown
    clears the record (or, with ``half_open_probe``, admits a single trial
    caller). Store errors never propagate: an unreadable breaker is closed.
    """

    def __init__(
        self,
        store: Optional[BreakerStateStore] = None,
        policies: Optional[Dict[str, BreakerPolicy]] = None,
        clock: Callable[[], float] = time.time,
        half_open_probe: Optional[bool] = None,
        probe_lease_seconds: Optional[float] = None
    ):
        self.store = store or InMemoryBreakerStore()
        self.policies = dict(BREAKER_POLICIES)
        if policies:
            self.policies.update(policies)
        self.clock = clock
        self.half_open_probe = settings.breaker_half_open_probe if half_open_probe is None else half_open_probe
        self.probe_lease_seconds = probe_lease_seconds or settings.breaker_probe_lease

    def policy_for(self, operation_id: str) -> BreakerPolicy:
        return self.policies.get(operation_id, DEFAULT_POLICY)

    def _probe_enabled(self, policy: BreakerPolicy) -> bool:
        return policy.half_open_probe or self.half_open_probe

    async def is_open(self, operation_id: str) -> bool:
        """Check whether calls for an operation should be short-circuited."""
        policy = self.policy_for(operation_id)
        try:
            state = await self.store.load(operation_id)
            if state is None or state.failure_count < policy.failure_threshold:
                return False

            now = self.clock()
            if state.last_failure_time is not None and now - state.last_failure_time < policy.timeout_seconds:
                return True

            if self._probe_enabled(policy):
                admitted = await self.store.try_acquire_probe(operation_id, now, self.probe_lease_seconds)
                if admitted:
                    logger.info(f"Circuit breaker {operation_id}: admitting half-open probe")
                    audit_logger.log_breaker_transition(operation_id, CircuitState.HALF_OPEN.name, state.failure_count)
                return not admitted

            await self.reset(operation_id)
            logger.info(f"Circuit breaker {operation_id}: cooldown elapsed, closing")
            return False

        except Exception as e:
            logger.error(f"Circuit breaker check failed for {operation_id}: {e}")
            return False

    async def record_failure(self, operation_id: str) -> None:
        """Record a failed call. Opens the breaker once the threshold is reached."""
        policy = self.policy_for(operation_id)
        try:
            state = await self.store.increment_failure(operation_id, self.clock(), policy.failure_threshold)
            logger.warning(
                f"Circuit breaker {operation_id}: failure {state.failure_count}/{policy.failure_threshold}"
            )
            if state.failure_count == policy.failure_threshold:
                logger.error(f"Circuit breaker {operation_id} opened")
                audit_logger.log_breaker_transition(operation_id, CircuitState.OPEN.name, state.failure_count)
        except Exception as e:
            logger.error(f"Failed to record breaker failure for {operation_id}: {e}")

    async def record_success(self, operation_id: str) -> None:
        """A successful call closes the breaker and zeroes its counter."""
        await self.reset(operation_id)

    async def reset(self, operation_id: str) -> None:
        """Zero the failure counter. Safe to call repeatedly."""
        try:
            await self.store.clear(operation_id)
        except Exception as e:
            logger.error(f"Failed to reset circuit breaker {operation_id}: {e}")

    async def get_state(self, operation_id: str) -> Dict[str, Any]:
        """Snapshot of an operation's breaker for health reporting."""
        policy = self.policy_for(operation_id)
        try:
            state = await self.store.load(operation_id) or CircuitBreakerState(operation_id=operation_id)
        except Exception as e:
            logger.error(f"Failed to load breaker state for {operation_id}: {e}")
            state = CircuitBreakerState(operation_id=operation_id)

        now = self.clock()
        if state.failure_count < policy.failure_threshold:
            current = CircuitState.CLOSED
        elif state.last_failure_time is not None and now - state.last_failure_time < policy.timeout_seconds:
            current = CircuitState.OPEN
        elif state.probe_started_at is not None:
            current = CircuitState.HALF_OPEN
        else:
            current = CircuitState.CLOSED

        return {
            "operation_id": operation_id,
            "state": current.value,
            "failure_count": state.failure_count,
            "failure_threshold": policy.failure_threshold,
            "timeout_seconds": policy.timeout_seconds,
            "last_failure_time": state.last_failure_time,
        }

    async def execute(
        self,
        operation_id: str,
        func: Callable[[], Awaitable[T]],
        fallback: Callable[[], T]
    ) -> T:
        """Run ``func`` under the breaker, returning ``fallback()`` when open or on failure."""
        if await self.is_open(operation_id):
            logger.warning(f"Circuit breaker open for {operation_id}, using fallback")
            return fallback()

        try:
            result = await func()
        except Exception as e:
            logger.error(f"{operation_id} failed: {e}")
            await self.record_failure(operation_id)
            return fallback()

        await self.record_success(operation_id)
        return result


def get_breaker_store(backend: Optional[str] = None) -> BreakerStateStore:
    """Build the configured breaker state store."""
    backend = (backend or settings.breaker_store).lower()
    if backend == "sql":
        return SQLBreakerStore()
    if backend == "memory":
        return InMemoryBreakerStore()
    raise ValueError(f"Unsupported breaker store: {backend}")
