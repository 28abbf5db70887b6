"""
Logging configuration for Agora with structured audit logging support.
"""

import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Literal, Optional

from loguru import logger

from .config import settings


# Audit log levels
AuditLevel = Literal["info", "warning", "error", "critical"]

# Audit event types
AuditEventType = Literal[
    "api_access", "model_inference", "agent_selection", "circuit_breaker",
    "knowledge_query", "message_persistence", "orchestration"
]


def _is_audit(record: Dict[str, Any]) -> bool:
    return record["extra"].get("audit", False)


class AuditLogger:
    """
    Structured audit logger for orchestration decisions.

    Generates JSON-formatted audit lines so routing, inference and breaker
    transitions can be replayed after the fact.
    """

    def __init__(self, log_dir: Optional[str] = None):
        """Initialize audit logger, attaching a JSON sink when file logging is on."""
        self.audit_logger = logger.bind(audit=True)
        self._handler_id: Optional[int] = None

        if settings.log_to_file:
            audit_log_dir = Path(log_dir or settings.log_dir) / "audit"
            audit_log_dir.mkdir(parents=True, exist_ok=True)

            self._handler_id = logger.add(
                str(audit_log_dir / "audit_{time:YYYY-MM-DD}.jsonl"),
                level="INFO",
                format=self._json_formatter,
                rotation="1 day",
                retention="90 days",
                compression="gz",
                filter=_is_audit,
            )

    def _json_formatter(self, record: Dict[str, Any]) -> str:
        """
        Format log record as a single JSON line.

        Args:
            record: Loguru record dictionary

        Returns:
            Format string for loguru with the serialized entry pre-rendered
        """
        audit_data = record["extra"].get("audit_data", {})

        log_entry = {
            "@timestamp": record["time"].isoformat(),
            "level": record["level"].name.lower(),
            "logger": "agora-audit",
            "message": record["message"],
            "service": "agora",
            "environment": settings.environment,
            **audit_data
        }

        record["extra"]["serialized"] = json.dumps(log_entry, ensure_ascii=False, default=str)
        return "{extra[serialized]}\n"

    def log_event(
        self,
        event_type: AuditEventType,
        action: str,
        level: AuditLevel = "info",
        resource: Optional[str] = None,
        resource_id: Optional[str] = None,
        request_id: Optional[str] = None,
        outcome: Optional[Literal["success", "failure", "degraded"]] = "success",
        error_message: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        **kwargs
    ) -> None:
        """
        Log a structured audit event.

        Args:
            event_type: Type of audit event
            action: Specific action performed
            level: Log level for the event
            resource: Resource the action concerns (model, agent role, operation id)
            resource_id: ID of the specific resource
            request_id: Unique request identifier
            outcome: Result of the action
            error_message: Error message if action failed
            metadata: Additional metadata
            **kwargs: Additional fields
        """
        audit_data = {
            "event_type": event_type,
            "action": action,
            "outcome": outcome,
            "timestamp": datetime.utcnow().isoformat(),
        }

        if resource:
            audit_data["resource"] = resource
        if resource_id:
            audit_data["resource_id"] = resource_id
        if request_id:
            audit_data["request_id"] = request_id
        if error_message:
            audit_data["error_message"] = error_message
        if metadata:
            audit_data["metadata"] = metadata

        audit_data.update(kwargs)

        message = f"{event_type.upper()}: {action}"
        if outcome != "success":
            message += f" - {outcome.upper()}"
        if error_message:
            message += f" - {error_message}"

        self.audit_logger.bind(audit_data=audit_data).log(level.upper(), message)

    def log_model_inference(
        self,
        model: str,
        strategy: str,
        outcome: Literal["success", "failure", "degraded"] = "success",
        attempts: int = 1,
        elapsed_ms: Optional[float] = None,
        **kwargs
    ) -> None:
        """Log a completion run across the fallback chain."""
        metadata = {"strategy": strategy, "attempts": attempts}
        if elapsed_ms is not None:
            metadata["elapsed_ms"] = round(elapsed_ms, 1)

        self.log_event(
            event_type="model_inference",
            action="complete",
            resource=model,
            outcome=outcome,
            metadata=metadata,
            level="warning" if outcome != "success" else "info",
            **kwargs
        )

    def log_agent_selection(
        self,
        role: str,
        intent: str,
        scores: Dict[str, float],
        tie_break: bool = False,
        **kwargs
    ) -> None:
        """Log which responder role won the selection round."""
        self.log_event(
            event_type="agent_selection",
            action="select_agent",
            resource=role,
            metadata={"intent": intent, "scores": scores, "tie_break": tie_break},
            **kwargs
        )

    def log_breaker_transition(
        self,
        operation_id: str,
        state: str,
        failure_count: int,
        **kwargs
    ) -> None:
        """Log a circuit breaker state change."""
        self.log_event(
            event_type="circuit_breaker",
            action=f"transition_{state.lower()}",
            resource=operation_id,
            metadata={"failure_count": failure_count},
            level="warning" if state.upper() == "OPEN" else "info",
            **kwargs
        )

    def log_knowledge_query(
        self,
        agent_id: str,
        query: str,
        method: str,
        documents: int,
        elapsed_ms: Optional[float] = None,
        **kwargs
    ) -> None:
        """Log a knowledge retrieval run."""
        metadata = {"method": method, "documents": documents, "query": query[:100]}
        if elapsed_ms is not None:
            metadata["elapsed_ms"] = round(elapsed_ms, 1)

        self.log_event(
            event_type="knowledge_query",
            action="retrieve",
            resource="agent",
            resource_id=agent_id,
            outcome="degraded" if method != "vector_match" else "success",
            metadata=metadata,
            **kwargs
        )

    def log_api_access(
        self,
        method: str,
        endpoint: str,
        ip_address: Optional[str] = None,
        status_code: Optional[int] = None,
        response_time_ms: Optional[float] = None,
        request_id: Optional[str] = None,
        **kwargs
    ) -> None:
        """Log API access events."""
        metadata = {
            "http_method": method,
            "endpoint": endpoint,
        }
        if status_code:
            metadata["status_code"] = status_code
        if response_time_ms:
            metadata["response_time_ms"] = response_time_ms
        if ip_address:
            metadata["ip_address"] = ip_address

        outcome = "success" if status_code and 200 <= status_code < 400 else "failure"

        self.log_event(
            event_type="api_access",
            action=f"{method} {endpoint}",
            request_id=request_id,
            outcome=outcome,
            metadata=metadata,
            **kwargs
        )


def configure_logging():
    """Configure logging with Loguru."""
    logger.remove()

    logger.add(
        sys.stderr,
        level=settings.log_level,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
               "<level>{level: <8}</level> | "
               "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
               "<level>{message}</level>",
        colorize=True,
        filter=lambda record: not _is_audit(record)
    )

    if not settings.log_to_file:
        return

    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    logger.add(
        str(log_dir / "application_{time:YYYY-MM-DD}.log"),
        level="INFO",
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message}",
        rotation="1 day",
        retention="30 days",
        compression="gz",
        filter=lambda record: not _is_audit(record)
    )

    logger.add(
        str(log_dir / "errors_{time:YYYY-MM-DD}.log"),
        level="ERROR",
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message}\n{exception}",
        rotation="1 day",
        retention="90 days",
        compression="gz",
        filter=lambda record: not _is_audit(record)
    )


# Configure logging on import
configure_logging()

# Create global audit logger instance
audit_logger = AuditLogger()

__all__ = ["logger", "audit_logger", "AuditLogger", "configure_logging"]
