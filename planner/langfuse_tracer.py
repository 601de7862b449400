"""
Planner Langfuse Tracer (Langfuse SDK v3)

Every conversation turn gets a Langfuse trace.

Trace structure per turn:
  Trace root span: planner.turn   (wraps the whole turn)
    Span: extractor                (planner agent call)
    Span: materialize              (if the plan was committed)
    Score: plan_materialized       (1.0 when a plan was committed this turn)

Gracefully disabled when Langfuse is unavailable. Never blocks a turn.
"""

import logging
from typing import Any, Dict, Optional

from planner.config import config

logger = logging.getLogger("planner.langfuse")


class PlannerTracer:
    """Wraps Langfuse v3 for per-turn instrumentation of the planning engine."""

    def __init__(self, connect: bool = True):
        self._lf = None
        self._TraceContext = None
        self._enabled = False
        self._traces_created = 0
        if connect:
            self._connect()

    def _connect(self):
        """Initialize Langfuse client. Non-fatal if unavailable."""
        try:
            from langfuse import Langfuse
            from langfuse.types import TraceContext
            self._lf = Langfuse(
                host=config.LANGFUSE_HOST,
                public_key=config.LANGFUSE_PUBLIC_KEY,
                secret_key=config.LANGFUSE_SECRET_KEY,
            )
            self._lf.auth_check()
            self._TraceContext = TraceContext
            self._enabled = True
            logger.info(f"✅ Langfuse tracer connected: {config.LANGFUSE_HOST}")
        except Exception as e:
            logger.warning(f"⚠️ Langfuse unavailable (tracing disabled): {e}")
            self._enabled = False

    @property
    def is_enabled(self) -> bool:
        return self._enabled

    # ── Trace lifecycle ────────────────────────────────────────────────────────

    def start_trace(
        self,
        request_id: str,
        owner_id: str,
        mode: str,
        message_preview: str,
    ) -> Optional[Dict[str, Any]]:
        """Open a trace for one turn. Returns None if tracing is disabled."""
        if not self._enabled:
            return None
        try:
            trace_id = self._lf.create_trace_id()
            ctx = self._TraceContext(trace_id=trace_id)
            root_span = self._lf.start_span(
                trace_context=ctx,
                name="planner.turn",
                input={"message": message_preview[:200], "mode": mode},
                metadata={
                    "service": config.SERVICE_NAME,
                    "version": config.VERSION,
                    "request_id": request_id,
                    "user_id": owner_id,
                },
            )
            self._traces_created += 1
            logger.debug(f"[LANGFUSE] Trace started: {trace_id} for request {request_id}")
            return {"trace_id": trace_id, "ctx": ctx, "root_span": root_span, "request_id": request_id}
        except Exception as e:
            logger.warning(f"[LANGFUSE] Failed to start trace {request_id}: {e}")
            return None

    def end_trace(self, trace: Optional[Dict[str, Any]], response: Dict[str, Any]):
        """Close the turn's trace with its outcome and the plan_materialized score."""
        if not trace or not self._enabled:
            return
        try:
            materialized = bool(response.get("activityCreated") or response.get("activityUpdated"))
            root_span = trace["root_span"]
            root_span.update(
                output={
                    "session_id": response.get("sessionId"),
                    "plan_generated": response.get("planGenerated"),
                    "materialized": materialized,
                    "error": response.get("error"),
                },
            )
            root_span.end()
            self._lf.create_score(
                trace_id=trace["trace_id"],
                name="plan_materialized",
                value=1.0 if materialized else 0.0,
            )
            self._lf.flush()
        except Exception as e:
            logger.warning(f"[LANGFUSE] Failed to end trace {trace.get('request_id')}: {e}")

    # ── Span creation ──────────────────────────────────────────────────────────

    def span_extractor(
        self,
        trace: Optional[Dict[str, Any]],
        mode: str,
        ready: bool,
        task_count: int,
        duration_ms: float,
        error: Optional[str] = None,
    ):
        """Span for the planner agent call."""
        if not trace or not self._enabled:
            return
        try:
            span = trace["root_span"].start_span(
                name="extractor",
                input={"mode": mode},
                output={"ready_to_generate": ready, "task_count": task_count, "error": error},
                metadata={"duration_ms": duration_ms, "model": config.LLM_MODEL},
                level="ERROR" if error else "DEFAULT",
            )
            span.end()
        except Exception as e:
            logger.warning(f"[LANGFUSE] extractor span failed: {e}")

    def span_materialize(
        self,
        trace: Optional[Dict[str, Any]],
        activity_id: Optional[str],
        task_count: int,
        updated: bool,
        duration_ms: float,
        error: Optional[str] = None,
    ):
        """Span for committing a confirmed plan."""
        if not trace or not self._enabled:
            return
        try:
            span = trace["root_span"].start_span(
                name="materialize",
                output={
                    "activity_id": activity_id,
                    "task_count": task_count,
                    "updated": updated,
                    "error": error,
                },
                metadata={"duration_ms": duration_ms},
                level="ERROR" if error else "DEFAULT",
            )
            span.end()
        except Exception as e:
            logger.warning(f"[LANGFUSE] materialize span failed: {e}")

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "enabled": self._enabled,
            "traces_created": self._traces_created,
            "host": config.LANGFUSE_HOST,
        }
