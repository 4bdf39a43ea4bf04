from __future__ import annotations

import functools
import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol, TypeVar

logger = logging.getLogger(__name__)

"""Audit trail: record-of-fact events for imports.

The sink is fire-and-forget. A failing sink is logged at WARNING and never
changes what the audited call returns.
"""

__all__ = [
    "AuditEvent",
    "AuditSink",
    "LoggingAuditSink",
    "emit",
    "audited",
]

F = TypeVar("F", bound=Callable[..., Any])


@dataclass(frozen=True)
class AuditEvent:
    action: str
    team_id: str
    actor: str | None = None
    request_id: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)
    timestamp: str = field(
        default_factory=lambda: datetime.now(UTC).isoformat().replace("+00:00", "Z")
    )


class AuditSink(Protocol):
    def record(self, event: AuditEvent) -> None: ...


class LoggingAuditSink:
    """Writes each event as one INFO line on the ``cashflow_import.audit`` logger."""

    def __init__(self, logger_name: str = "cashflow_import.audit") -> None:
        self._logger = logging.getLogger(logger_name)

    def record(self, event: AuditEvent) -> None:
        self._logger.info(
            "audit action=%s team=%s actor=%s request=%s meta=%s",
            event.action,
            event.team_id,
            event.actor or "-",
            event.request_id or "-",
            json.dumps(dict(event.metadata), ensure_ascii=False, sort_keys=True, default=str),
        )


def emit(sink: AuditSink | None, event: AuditEvent) -> None:
    if sink is None:
        return
    try:
        sink.record(event)
    except Exception as e:
        logger.warning("audit sink failed for action=%s: %s", event.action, e)


def _find_context(args: tuple, kwargs: dict) -> Any:
    ctx = kwargs.get("ctx")
    if ctx is not None:
        return ctx
    for arg in args:
        if hasattr(arg, "audit") and hasattr(arg, "team_id"):
            return arg
    return None


def audited(action: str, describe: Callable[[Any], Mapping[str, Any]] | None = None) -> Callable[[F], F]:
    """Decorator emitting ``action`` after the wrapped call returns.

    The wrapped function must receive a request context (``ctx`` keyword or a
    positional argument with ``audit`` and ``team_id``). ``describe`` turns
    the return value into event metadata.
    """

    def decorator(fn: F) -> F:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            result = fn(*args, **kwargs)
            ctx = _find_context(args, kwargs)
            if ctx is not None and ctx.audit is not None:
                try:
                    metadata = dict(describe(result)) if describe else {}
                except Exception as e:
                    logger.warning("audit metadata for action=%s failed: %s", action, e)
                    metadata = {}
                emit(ctx.audit, AuditEvent(
                    action=action,
                    team_id=ctx.team_id,
                    actor=getattr(ctx, "actor", None),
                    request_id=getattr(ctx, "request_id", None),
                    metadata=metadata,
                ))
            return result

        return wrapper  # type: ignore[return-value]

    return decorator
