"""
Structured logging for the IdentityClaim operator.

Log lines are emitted as JSON objects so the fields of a reconcile pass
(claim, namespace, phase, requested requeue delay) can be queried in a
log store. A short correlation ID is bound to every pass and carried by a
context variable, so it follows the pass across awaits and worker threads.
"""

import json
import logging
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

_pass_id: ContextVar[str] = ContextVar("identity_claim_pass_id", default="")

# Endpoints polled by kubelet and Prometheus
PROBE_PATHS = ("/healthz", "/metrics")

# LogRecord attributes promoted to top-level JSON keys when present
CONTEXT_FIELDS = (
    "resource_type",
    "resource_name",
    "namespace",
    "operation",
    "duration",
    "error_type",
    "phase",
    "requeue_after",
    "certificate",
    "handler_type",
    "event_type",
    "owner",
)


def new_correlation_id() -> str:
    """Return a fresh 8-character correlation ID."""
    return uuid.uuid4().hex[:8]


def set_correlation_id(value: str) -> str:
    """Bind a correlation ID to the current context and return it."""
    _pass_id.set(value)
    return value


def get_correlation_id() -> str:
    """Correlation ID bound to the current context, "" when unbound."""
    return _pass_id.get()


class CorrelationIDFilter(logging.Filter):
    """Stamp each record with the correlation ID of the current pass."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = _pass_id.get() or "-"
        return True


class HealthProbeFilter(logging.Filter):
    """Drop access log lines for the probe and scrape endpoints."""

    def __init__(self, suppress_health_logs: bool = True):
        super().__init__()
        self.suppress_health_logs = suppress_health_logs

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.suppress_health_logs:
            return True
        text = record.getMessage()
        return not any(path in text for path in PROBE_PATHS)


class StructuredFormatter(logging.Formatter):
    """Render records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", ""),
        }
        entry.update(
            (name, getattr(record, name))
            for name in CONTEXT_FIELDS
            if hasattr(record, name)
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_structured_logging(
    log_level: str = "INFO",
    enable_json_formatting: bool = True,
    correlation_id_enabled: bool = True,
    log_health_probes: bool = False,
) -> None:
    """
    Install the operator's log handler on the root logger.

    Args:
        log_level: Name of the root log level
        enable_json_formatting: Emit JSON instead of plain text lines
        correlation_id_enabled: Stamp records with the pass correlation ID
        log_health_probes: Keep access log lines for /healthz and /metrics
    """
    if enable_json_formatting:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        pattern = "%(asctime)s %(levelname)s %(name)s: %(message)s"
        if correlation_id_enabled:
            pattern = "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s: %(message)s"
        formatter = logging.Formatter(pattern)

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    if correlation_id_enabled:
        handler.addFilter(CorrelationIDFilter())
    if not log_health_probes:
        handler.addFilter(HealthProbeFilter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(logging.getLevelName(log_level.upper()) if log_level else logging.INFO)

    # Library chatter stays at WARNING regardless of the operator level
    for noisy in ("kopf", "kubernetes", "urllib3", "aiohttp.access", "aiohttp.server"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


class OperatorLogger:
    """
    Logger wrapper for reconcilers.

    Keyword arguments passed to the level methods become structured fields
    of the record.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def log_reconciliation_start(
        self,
        resource_type: str,
        resource_name: str,
        namespace: str,
        correlation_id: str | None = None,
    ) -> str:
        """
        Bind a correlation ID to the pass and log its start.

        Returns:
            The correlation ID of the pass
        """
        pass_id = set_correlation_id(correlation_id or new_correlation_id())
        self.logger.info(
            f"Reconciling {resource_type} {namespace}/{resource_name}",
            extra={
                "resource_type": resource_type,
                "resource_name": resource_name,
                "namespace": namespace,
                "operation": "reconcile_start",
            },
        )
        return pass_id

    def log_reconciliation_success(
        self,
        resource_type: str,
        resource_name: str,
        namespace: str,
        duration: float,
        requeue_after: float | None = None,
    ) -> None:
        next_pass = "none" if requeue_after is None else f"in {requeue_after:.0f}s"
        self.logger.info(
            f"Reconciled {resource_type} {namespace}/{resource_name} "
            f"in {duration:.3f}s, next pass {next_pass}",
            extra={
                "resource_type": resource_type,
                "resource_name": resource_name,
                "namespace": namespace,
                "operation": "reconcile_success",
                "duration": duration,
                "requeue_after": requeue_after,
            },
        )

    def log_reconciliation_error(
        self,
        resource_type: str,
        resource_name: str,
        namespace: str,
        error: Exception,
        duration: float,
    ) -> None:
        self.logger.error(
            f"Reconcile of {resource_type} {namespace}/{resource_name} failed: {error}",
            extra={
                "resource_type": resource_type,
                "resource_name": resource_name,
                "namespace": namespace,
                "operation": "reconcile_error",
                "error_type": type(error).__name__,
                "duration": duration,
            },
            exc_info=error.__cause__ is not None,
        )

    def debug(self, message: str, **fields: Any) -> None:
        self.logger.debug(message, extra=fields)

    def info(self, message: str, **fields: Any) -> None:
        self.logger.info(message, extra=fields)

    def warning(self, message: str, **fields: Any) -> None:
        self.logger.warning(message, extra=fields)

    def error(self, message: str, exc_info: bool = False, **fields: Any) -> None:
        self.logger.error(message, exc_info=exc_info, extra=fields)
