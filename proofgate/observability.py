"""
proofgate Observability

Structured logging for the registry, the attestation store and the gate.

    GateLogger ──(layer, operation, error_code, context)──► logging
                                                              │
    correlation_scope / @correlated ──► correlation_id_var ───┤
                                                              ▼
                                         StructuredHandler: one JSON object per line

Every gate call (submit_proof, authorize_read, get_record) runs under a
correlation id, so the rejection line, the audit line and the timing line of
one call can be joined. A caller that already opened a scope keeps its id.

Log context must stay audit-minimal: record ids, pseudonyms, reason codes and
hashes only. Witness values, claim contents and cleartext requester identities
never go into a log line.
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import time
import traceback
import uuid
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from functools import wraps
from typing import Any, Callable, Dict, Iterator, Optional, TypeVar

T = TypeVar("T")

correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "proofgate_correlation_id", default=""
)


class GateLayer(Enum):
    """Component a log line comes from."""
    REGISTRY = "registry"
    ATTESTATION = "attestation"
    GATE = "gate"
    EVENTS = "events"
    CONFIG = "config"
    CLI = "cli"


@dataclass
class LogEvent:
    """One structured log line."""
    timestamp: str
    level: str
    logger: str
    message: str
    correlation_id: str = ""
    layer: str = ""
    operation: str = ""
    duration_ms: Optional[float] = None
    error_code: str = ""
    context: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Fields with a value; empty strings, None and empty context are dropped."""
        return {k: v for k, v in asdict(self).items() if v not in (None, "", {})}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str, sort_keys=True)


class StructuredHandler(logging.Handler):
    """Writes each record as a JSON line."""

    def __init__(self, stream: Any = None):
        super().__init__()
        self.stream = stream or sys.stderr

    def _event(self, record: logging.LogRecord) -> LogEvent:
        event = LogEvent(
            timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            level=record.levelname.lower(),
            logger=record.name,
            message=record.getMessage(),
            correlation_id=correlation_id_var.get(),
            layer=getattr(record, "layer", ""),
            operation=getattr(record, "operation", ""),
            duration_ms=getattr(record, "duration_ms", None),
            error_code=getattr(record, "error_code", ""),
            context=getattr(record, "context", {}),
        )
        if record.exc_info:
            event.exception = "".join(traceback.format_exception(*record.exc_info))
        return event

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.stream.write(self._event(record).to_json() + "\n")
            self.stream.flush()
        except Exception:
            self.handleError(record)


class GateLogger:
    """Logger bound to one component; keyword arguments become structured context."""

    def __init__(self, name: str, layer: GateLayer):
        self.name = name
        self.layer = layer
        self._logger = logging.getLogger(f"proofgate.{layer.value}.{name}")

    def _log(
        self,
        level: int,
        message: str,
        operation: str = "",
        error_code: str = "",
        duration_ms: Optional[float] = None,
        exc_info: bool = False,
        **context: Any,
    ) -> None:
        if not self._logger.isEnabledFor(level):
            return
        self._logger.log(
            level,
            message,
            exc_info=exc_info,
            extra={
                "layer": self.layer.value,
                "operation": operation,
                "error_code": error_code,
                "duration_ms": duration_ms,
                "context": context,
            },
        )

    def debug(self, message: str, **context: Any) -> None:
        self._log(logging.DEBUG, message, **context)

    def info(self, message: str, **context: Any) -> None:
        self._log(logging.INFO, message, **context)

    def warning(self, message: str, **context: Any) -> None:
        self._log(logging.WARNING, message, **context)

    def error(self, message: str, exc_info: bool = False, **context: Any) -> None:
        self._log(logging.ERROR, message, exc_info=exc_info, **context)

    def operation(self, name: str, duration_ms: float, success: bool = True) -> None:
        """Timing line for a finished operation; failures are logged one level up."""
        self._log(
            logging.DEBUG if success else logging.INFO,
            f"{name} {'completed' if success else 'failed'}",
            operation=name,
            duration_ms=round(duration_ms, 3),
        )


def get_logger(name: str, layer: GateLayer) -> GateLogger:
    return GateLogger(name, layer)


def generate_correlation_id() -> str:
    return f"corr-{uuid.uuid4().hex[:12]}"


@contextmanager
def correlation_scope(correlation_id: Optional[str] = None) -> Iterator[str]:
    """
    Run a block under a correlation id.

    An explicit id wins; otherwise an enclosing scope's id is reused, and a
    fresh one is generated only at the outermost level.
    """
    cid = correlation_id or correlation_id_var.get() or generate_correlation_id()
    token = correlation_id_var.set(cid)
    try:
        yield cid
    finally:
        correlation_id_var.reset(token)


def correlated(func: Callable[..., T]) -> Callable[..., T]:
    """Decorator form of correlation_scope()."""
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> T:
        with correlation_scope():
            return func(*args, **kwargs)
    return wrapper


def timed_operation(
    logger: GateLogger,
    operation_name: str,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Log the wall-clock duration of each call, and whether it raised."""
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            start = time.monotonic()
            ok = False
            try:
                result = func(*args, **kwargs)
                ok = True
                return result
            finally:
                logger.operation(operation_name, (time.monotonic() - start) * 1000, ok)
        return wrapper
    return decorator


def configure_logging(level: str = "info", fmt: str = "json", stream: Any = None) -> logging.Logger:
    """Install a single handler on the ``proofgate`` root logger."""
    root = logging.getLogger("proofgate")
    root.setLevel(getattr(logging, level.upper()))
    for handler in list(root.handlers):
        root.removeHandler(handler)
    if fmt == "json":
        handler: logging.Handler = StructuredHandler(stream)
    else:
        handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.addHandler(handler)
    return root
