"""
Langfuse tracing wrapper – no-op friendly.

If ``LANGFUSE_ENABLED`` is false or keys are missing, every method
silently does nothing (``NoOpTracer``).  When enabled the real
``LangfuseTracer`` records one trace per dialog turn with child spans
for the analysis query.

Safety: passwords, DSNs and raw result rows are never sent.  Only the
SQL text, row counts, timings, step names and field ids.
"""

from __future__ import annotations

from typing import Any

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


_REDACT_KEYS = {
    "password", "db_password", "dsn", "database_url",
    "secret", "token", "api_key",
    "langfuse_secret_key", "langfuse_public_key",
}


def _sanitise(data: dict | None) -> dict | None:
    """Strip sensitive keys and truncate large values."""
    if data is None:
        return None
    clean: dict[str, Any] = {}
    for k, v in data.items():
        if k.lower() in _REDACT_KEYS:
            continue
        if isinstance(v, str) and len(v) > 4_000:
            clean[k] = v[:4_000] + "…[truncated]"
        elif isinstance(v, list) and len(v) > 50:
            clean[k] = v[:50]
        else:
            clean[k] = v
    return clean


# ═══════════════════════════════════════════════════════════════════
# No-Op implementations — used when Langfuse is disabled
# ═══════════════════════════════════════════════════════════════════


class _NoOpSpan:
    """Placeholder that silently absorbs all method calls."""

    def end(self, **_kw: Any) -> None:
        pass

    def event(self, **_kw: Any) -> None:
        pass

    def span(self, **_kw: Any) -> "_NoOpSpan":
        return self

    def update(self, **_kw: Any) -> None:
        pass


class NoOpTracer:
    """Tracer that does nothing — returned when Langfuse is disabled."""

    def start_trace(
        self,
        *,
        name: str,
        session_id: str,
        request_id: str | None = None,
        metadata: dict | None = None,
    ) -> _NoOpSpan:
        return _NoOpSpan()

    def start_span(
        self,
        trace: Any,
        *,
        name: str,
        input: dict | str | None = None,
        metadata: dict | None = None,
    ) -> _NoOpSpan:
        return _NoOpSpan()

    def end_span(
        self,
        span: Any,
        *,
        output: dict | str | None = None,
        metadata: dict | None = None,
        level: str | None = None,
    ) -> None:
        pass

    def log_event(
        self,
        trace_or_span: Any,
        *,
        name: str,
        metadata: dict | None = None,
        level: str | None = None,
    ) -> None:
        pass

    def finalize_trace(
        self,
        trace: Any,
        *,
        output: dict | str | None = None,
        level: str | None = None,
        status_message: str | None = None,
    ) -> None:
        pass

    def flush(self) -> None:
        pass


# ═══════════════════════════════════════════════════════════════════
# Real Langfuse tracer
# ═══════════════════════════════════════════════════════════════════


class LangfuseTracer:
    """Thin wrapper around the Langfuse Python SDK."""

    def __init__(self) -> None:
        from langfuse import Langfuse  # lazy import

        self._lf = Langfuse(
            public_key=settings.LANGFUSE_PUBLIC_KEY,
            secret_key=settings.LANGFUSE_SECRET_KEY,
            host=settings.LANGFUSE_HOST,
        )
        logger.info("Langfuse tracer initialised (host=%s)", settings.LANGFUSE_HOST)

    def start_trace(
        self,
        *,
        name: str,
        session_id: str,
        request_id: str | None = None,
        metadata: dict | None = None,
    ) -> Any:
        """Create a trace for one dialog turn."""
        return self._lf.trace(
            id=request_id,
            name=name,
            session_id=session_id,
            metadata=_sanitise(metadata),
        )

    def start_span(
        self,
        trace: Any,
        *,
        name: str,
        input: dict | str | None = None,
        metadata: dict | None = None,
    ) -> Any:
        return trace.span(
            name=name,
            input=_sanitise(input) if isinstance(input, dict) else input,
            metadata=_sanitise(metadata),
        )

    def end_span(
        self,
        span: Any,
        *,
        output: dict | str | None = None,
        metadata: dict | None = None,
        level: str | None = None,
    ) -> None:
        kw: dict[str, Any] = {}
        if output is not None:
            kw["output"] = _sanitise(output) if isinstance(output, dict) else output
        if metadata is not None:
            kw["metadata"] = _sanitise(metadata)
        if level:
            kw["level"] = level
        span.end(**kw)

    def log_event(
        self,
        trace_or_span: Any,
        *,
        name: str,
        metadata: dict | None = None,
        level: str | None = None,
    ) -> None:
        """Log a discrete event (prompt issued, reply rejected, …)."""
        kw: dict[str, Any] = {"name": name}
        if metadata:
            kw["metadata"] = _sanitise(metadata)
        if level:
            kw["level"] = level
        trace_or_span.event(**kw)

    def finalize_trace(
        self,
        trace: Any,
        *,
        output: dict | str | None = None,
        level: str | None = None,
        status_message: str | None = None,
    ) -> None:
        kw: dict[str, Any] = {}
        if output is not None:
            kw["output"] = _sanitise(output) if isinstance(output, dict) else output
        if level:
            kw["level"] = level
        if status_message:
            kw["status_message"] = status_message
        trace.update(**kw)

    def flush(self) -> None:
        """Flush pending events to Langfuse (call before process exit)."""
        try:
            self._lf.flush()
        except Exception:
            logger.warning("Langfuse flush failed", exc_info=True)


# ═══════════════════════════════════════════════════════════════════
# Factory – returns the correct tracer based on config
# ═══════════════════════════════════════════════════════════════════

_tracer_instance: NoOpTracer | LangfuseTracer | None = None


def get_tracer() -> NoOpTracer | LangfuseTracer:
    """
    Return a singleton tracer.

    • Langfuse enabled + keys present → ``LangfuseTracer``
    • Otherwise → ``NoOpTracer``
    """
    global _tracer_instance
    if _tracer_instance is not None:
        return _tracer_instance

    if (
        settings.LANGFUSE_ENABLED
        and settings.LANGFUSE_PUBLIC_KEY
        and settings.LANGFUSE_SECRET_KEY
    ):
        try:
            _tracer_instance = LangfuseTracer()
        except Exception:
            logger.warning("Failed to init Langfuse, falling back to NoOp", exc_info=True)
            _tracer_instance = NoOpTracer()
    else:
        logger.info("Langfuse disabled — using NoOp tracer")
        _tracer_instance = NoOpTracer()

    return _tracer_instance
