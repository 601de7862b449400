"""
Planner Conversation State Machine - One inbound message, one reply.

States: gathering ⇄ confirming → completed

Pipeline per turn:
  1. Resolve the session (new vs continuing)
  2. Classify the reply
  3. Help → fixed explanation, session untouched
  4. Confirming + replay request → stored preview, session untouched
  5. Confirming + generate command → materialize, complete the session
  6. Otherwise → planner agent (slot extraction / revision)
  7. Ready plan → preview + confirmation question, unless this is the
     session's first message (guardrail)

Side effects of a committed plan (event, reminders) are launched in the
background and never delay or fail the turn.
"""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from planner.errors import ExtractorFailure, MaterializationFailure, PlannerError
from planner.intent_classifier import Intent, classify, is_replay_request
from planner.lifecycle import SessionLifecycleManager
from planner.logging_config import CorrelatedLogger
from planner.materializer import PlanMaterializer
from planner.models import (
    CandidatePlan,
    ConversationTurn,
    ExtractorResult,
    MaterializationResult,
    Mode,
    PlanningSession,
    Principal,
    SessionState,
    utcnow_iso,
)
from planner.preview import (
    APOLOGY_MESSAGE,
    HELP_MESSAGE,
    compose_confirmation,
    replay_message,
    success_message,
)

logger = logging.getLogger("planner.engine")


class ConversationStateMachine:
    """
    Drives a planning conversation from first message to committed plan.

    Collaborators:
    - lifecycle: resolves the session for each turn
    - session_store: persists session patches
    - extractor: planner agent, untrusted with respect to readiness
    - materializer: commits confirmed plans atomically
    - publisher / reminders / tracer: optional, failures are logged only
    """

    def __init__(
        self,
        lifecycle: SessionLifecycleManager,
        session_store,
        extractor,
        materializer: PlanMaterializer,
        publisher=None,
        reminders=None,
        tracer=None,
    ):
        self._lifecycle = lifecycle
        self._sessions = session_store
        self._extractor = extractor
        self._materializer = materializer
        self._publisher = publisher
        self._reminders = reminders
        self._tracer = tracer
        self._background: Set[asyncio.Task] = set()
        self._turns = 0
        self._plans_created = 0
        self._plans_updated = 0
        self._guardrail_blocks = 0

    # ── Main turn handler ──────────────────────────────────────────────────────

    async def handle_turn(
        self,
        principal: Principal,
        message: str,
        mode: Mode = Mode.QUICK,
        conversation_history: Optional[List[Dict[str, Any]]] = None,
        activity_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Process one user message.

        Returns: wire response dict

        Raises:
            SessionExpired: continuation with no live session
            MaterializationFailure: commit failed and was rolled back
        """
        request_id = str(uuid.uuid4())[:8]
        log = CorrelatedLogger(correlation_id=request_id, component="Engine")
        owner_id = principal.owner_id
        self._turns += 1

        lf_trace = self._tracer.start_trace(
            request_id=request_id,
            owner_id=owner_id,
            mode=mode.value,
            message_preview=message or "",
        ) if self._tracer else None

        try:
            response = await self._process(principal, message, mode, conversation_history, activity_id, log, lf_trace)
        except PlannerError as e:
            if self._tracer and lf_trace:
                self._tracer.end_trace(lf_trace, {"error": e.error_code, "sessionId": e.session_id})
            raise

        if self._tracer and lf_trace:
            self._tracer.end_trace(lf_trace, response)
        return response

    async def _process(
        self,
        principal: Principal,
        message: str,
        mode: Mode,
        conversation_history: Optional[List[Dict[str, Any]]],
        activity_id: Optional[str],
        log: CorrelatedLogger,
        lf_trace: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        # 1. Resolve session
        session, is_new = await self._lifecycle.resolve(
            principal, mode, conversation_history, activity_id=activity_id, log=log.child("Lifecycle"),
        )
        log.info(
            f"Session {session.id} state={session.session_state.value} new={is_new}",
            stage="RESOLVE",
        )

        # 2. Classify
        intent = classify(message, session.has_pending_plan)
        log.info(f"Intent={intent.intent.value}", stage="CLASSIFY")

        # 3. Help
        if intent.intent == Intent.HELP_REQUEST:
            return {
                "message": HELP_MESSAGE,
                "planGenerated": False,
                "sessionId": session.id,
                "helpProvided": True,
            }

        confirming = session.session_state == SessionState.CONFIRMING and session.has_pending_plan

        if confirming:
            # 4. Replay
            if is_replay_request(message):
                log.info("Replaying stored plan preview", stage="CONFIRM")
                return {
                    "message": replay_message(session.slots.pending_plan),
                    "planGenerated": False,
                    "sessionId": session.id,
                    "plan": session.slots.pending_plan.to_dict(),
                    "awaitingConfirmation": True,
                }

            # 5. Commit
            if intent.is_generate_command:
                return await self._materialize(principal, session, message, log, lf_trace)

            log.info("Plan revision requested", stage="CONFIRM")

        # 6. Extract / revise
        return await self._extract(principal, session, message, is_new, confirming, log, lf_trace)

    # ── Extraction ─────────────────────────────────────────────────────────────

    async def _extract(
        self,
        principal: Principal,
        session: PlanningSession,
        message: str,
        is_new: bool,
        revising: bool,
        log: CorrelatedLogger,
        lf_trace: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        owner_id = principal.owner_id
        ctx = session.external_context
        session_mode = Mode.parse(ctx.mode)
        context = {
            "extracted": session.slots.extracted,
            "question_count": ctx.question_count,
            "revision": revising,
            "pending_plan": session.slots.pending_plan.to_dict() if revising else None,
        }
        history = [t.to_dict() for t in session.conversation_history]

        started = datetime.utcnow()
        try:
            result: ExtractorResult = await self._extractor.process(
                owner_id, message, history, session_mode, context,
            )
            if result.ready_to_generate and not is_new and (result.plan is None or not result.plan.is_complete()):
                raise ExtractorFailure("Planner agent reported ready with an incomplete plan")
        except Exception as e:
            log.error(f"Extractor failed: {e}", stage="EXTRACT", exc_info=not isinstance(e, ExtractorFailure))
            if self._tracer and lf_trace:
                self._tracer.span_extractor(
                    lf_trace, session_mode.value, False, 0,
                    (datetime.utcnow() - started).total_seconds() * 1000, error=str(e),
                )
            await self._save(session, owner_id, {
                "conversation_history": self._history_with(session, message, APOLOGY_MESSAGE),
            })
            return {
                "message": APOLOGY_MESSAGE,
                "planGenerated": False,
                "sessionId": session.id,
                "error": ExtractorFailure.error_code,
            }

        task_count = len(result.plan.tasks) if result.plan else 0
        log.info(f"Agent ready={result.ready_to_generate} tasks={task_count}", stage="EXTRACT")
        if self._tracer and lf_trace:
            self._tracer.span_extractor(
                lf_trace, session_mode.value, result.ready_to_generate, task_count,
                (datetime.utcnow() - started).total_seconds() * 1000,
            )

        slots = session.slots
        extracted = dict(slots.extracted)
        extracted.update(result.extracted_slots)
        pending: Optional[CandidatePlan] = slots.pending_plan
        question_count = ctx.question_count

        if result.ready_to_generate and is_new:
            self._guardrail_blocks += 1
            log.warning("Readiness on first message ignored; plan discarded", stage="GUARDRAIL")
            state = SessionState.GATHERING
            awaiting = False
            reply = result.message
            question_count += 1
        elif result.ready_to_generate:
            pending = result.plan
            state = SessionState.CONFIRMING
            awaiting = True
            reply = compose_confirmation(result.message, pending)
            log.info(f"Plan '{pending.title}' awaiting confirmation", stage="CONFIRM")
        else:
            if result.plan is not None and result.plan.is_complete() and revising:
                pending = result.plan
            state = SessionState.GATHERING
            awaiting = False
            reply = result.message
            question_count += 1

        patch = {
            "session_state": state.value,
            "conversation_history": self._history_with(session, message, reply),
            "slots": {
                "pending_plan": pending.to_dict() if pending else None,
                "extracted": extracted,
            },
            "external_context": {
                **ctx.to_dict(),
                "awaiting_confirmation": awaiting,
                "question_count": question_count,
            },
        }
        await self._save(session, owner_id, patch)

        response: Dict[str, Any] = {
            "message": reply,
            "planGenerated": False,
            "sessionId": session.id,
        }
        if state == SessionState.CONFIRMING:
            response["plan"] = pending.to_dict()
            response["awaitingConfirmation"] = True
        return response

    # ── Materialization ────────────────────────────────────────────────────────

    async def _materialize(
        self,
        principal: Principal,
        session: PlanningSession,
        message: str,
        log: CorrelatedLogger,
        lf_trace: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        owner_id = principal.owner_id
        plan = session.slots.pending_plan
        linked_activity_id = session.external_context.activity_id
        log.info(
            f"Committing plan '{plan.title}' ({len(plan.tasks)} tasks, linked={linked_activity_id})",
            stage="MATERIALIZE",
        )

        started = datetime.utcnow()
        try:
            result: MaterializationResult = await self._materializer.materialize(
                plan, principal, linked_activity_id=linked_activity_id, log=log.child("Materializer"),
            )
        except MaterializationFailure as e:
            e.session_id = session.id
            log.error(
                f"Materialization failed (rollback_complete={e.rollback_complete}): {e.detail}",
                stage="MATERIALIZE",
            )
            if self._tracer and lf_trace:
                self._tracer.span_materialize(
                    lf_trace, linked_activity_id, 0, bool(linked_activity_id),
                    (datetime.utcnow() - started).total_seconds() * 1000, error=e.detail,
                )
            raise

        if self._tracer and lf_trace:
            self._tracer.span_materialize(
                lf_trace, result.activity.id, len(result.tasks), result.updated,
                (datetime.utcnow() - started).total_seconds() * 1000,
            )

        reply = success_message(result.activity, updated=result.updated)
        await self._save(session, owner_id, {
            "session_state": SessionState.COMPLETED.value,
            "is_complete": True,
            "generated_plan": plan.to_dict(),
            "conversation_history": self._history_with(session, message, reply),
            "external_context": {
                **session.external_context.to_dict(),
                "awaiting_confirmation": False,
                "activity_id": result.activity.id,
            },
        })

        if result.updated:
            self._plans_updated += 1
        else:
            self._plans_created += 1

        self._launch(self._after_materialize(principal, session.id, result, log))

        response: Dict[str, Any] = {
            "message": reply,
            "planGenerated": True,
            "sessionId": session.id,
            "createdTasks": [t.to_dict() for t in result.tasks],
            "activity": result.activity.to_dict(),
        }
        response["activityUpdated" if result.updated else "activityCreated"] = True
        return response

    async def _after_materialize(
        self,
        principal: Principal,
        session_id: str,
        result: MaterializationResult,
        log: CorrelatedLogger,
    ):
        owner_id = principal.owner_id
        if self._publisher:
            try:
                published = await self._publisher.publish_plan_materialized(owner_id, {
                    "activity_id": result.activity.id,
                    "task_ids": [t.id for t in result.tasks],
                    "updated": result.updated,
                    "session_id": session_id,
                    "owner_id": owner_id,
                    "published_at": utcnow_iso(),
                })
                if published:
                    log.info(f"PlanMaterialized published for {result.activity.id}", stage="PUBLISH")
                else:
                    log.warning(f"PlanMaterialized not published for {result.activity.id} (non-fatal)", stage="PUBLISH")
            except Exception as e:
                log.warning(f"PlanMaterialized publication failed (non-fatal): {e}", stage="PUBLISH")

        if self._reminders and result.activity.start_date is not None:
            try:
                await self._reminders.schedule_for_activity(result.activity)
            except Exception as e:
                log.warning(f"Reminder scheduling failed (non-fatal): {e}", stage="PUBLISH")

    def _launch(self, coro):
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def drain(self):
        """Wait for in-flight background side effects (shutdown and tests)."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ── Helpers ────────────────────────────────────────────────────────────────

    @staticmethod
    def _history_with(session: PlanningSession, user_message: str, reply: str) -> List[Dict[str, Any]]:
        history = [t.to_dict() for t in session.conversation_history]
        history.append(ConversationTurn(role="user", content=user_message).to_dict())
        history.append(ConversationTurn(role="assistant", content=reply).to_dict())
        return history

    async def _save(self, session: PlanningSession, owner_id: str, patch: Dict[str, Any]):
        updated = await self._sessions.update_session(session.id, patch, owner_id)
        if updated is None:
            raise RuntimeError(f"Session {session.id} vanished during turn")

    def get_health(self) -> Dict[str, Any]:
        return {
            "turns_processed": self._turns,
            "plans_created": self._plans_created,
            "plans_updated": self._plans_updated,
            "guardrail_blocks": self._guardrail_blocks,
            "background_tasks": len(self._background),
        }
