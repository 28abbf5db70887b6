"""
Uniform response envelope returned by every exposed operation.
"""

import time
import uuid
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ServiceResult(BaseModel):
    """Envelope: success flag, payload (real or fallback), optional error, metadata."""

    success: bool
    data: Any = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def degraded(self) -> bool:
        return bool(self.metadata.get("degraded", False))


class OperationTimer:
    """Tracks request id and elapsed time for an operation."""

    def __init__(self, request_id: Optional[str] = None):
        self.request_id = request_id or str(uuid.uuid4())
        self.started = time.perf_counter()

    @property
    def elapsed_ms(self) -> float:
        return round((time.perf_counter() - self.started) * 1000, 2)

    def ok(self, data: Any, **metadata) -> ServiceResult:
        """Wrap a real result."""
        return ServiceResult(success=True, data=data, metadata=self._metadata(degraded=False, **metadata))

    def fallback(self, data: Any, reason: str, **metadata) -> ServiceResult:
        """Wrap a static fallback payload. Still a usable, successful result."""
        return ServiceResult(
            success=True,
            data=data,
            metadata=self._metadata(degraded=True, fallback_reason=reason, **metadata)
        )

    def rejected(self, error: str, **metadata) -> ServiceResult:
        """Wrap an input validation failure."""
        return ServiceResult(success=False, error=error, metadata=self._metadata(degraded=False, **metadata))

    def _metadata(self, **extra) -> Dict[str, Any]:
        return {
            "processing_time_ms": self.elapsed_ms,
            "request_id": self.request_id,
            **extra
        }
