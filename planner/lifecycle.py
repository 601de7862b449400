"""
Planner Session Lifecycle - Decide new-vs-continuing for every inbound message.

The caller's conversation history is the only signal: an empty history is a
fresh conversation, anything else continues the owner's active session. What
the server holds never changes that decision, so "start over" always wins even
in the middle of a confirmation.
"""

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from planner.config import config
from planner.errors import SessionExpired
from planner.logging_config import CorrelatedLogger
from planner.models import (
    ExternalContext,
    Mode,
    PlanningSession,
    Principal,
    SessionSlots,
    SessionState,
)

logger = logging.getLogger("planner.lifecycle")


class SessionLifecycleManager:
    """Resolves the single live planning session for a principal."""

    def __init__(self, session_store, idle_timeout_seconds: Optional[int] = None):
        self._store = session_store
        self._idle_timeout = (
            config.SESSION_IDLE_TIMEOUT_SECONDS if idle_timeout_seconds is None else idle_timeout_seconds
        )

    async def resolve(
        self,
        principal: Principal,
        mode: Mode,
        caller_history: Optional[List] = None,
        activity_id: Optional[str] = None,
        log: Optional[CorrelatedLogger] = None,
    ) -> Tuple[PlanningSession, bool]:
        """
        Return (session, is_new) for this turn.

        Raises: SessionExpired when the caller continues a conversation that
        has no live session behind it.
        """
        log = log or CorrelatedLogger(component="Lifecycle")
        owner_id = principal.owner_id

        if not caller_history:
            session = await self._start_new(owner_id, mode, activity_id, log)
            return session, True

        session = await self._store.get_active_session(owner_id)
        if session is None or session.is_complete:
            log.warning(f"No live session for {owner_id}; continuation rejected", stage="RESOLVE")
            raise SessionExpired()

        if self._is_stale(session):
            log.warning(
                f"Session {session.id} idle longer than {self._idle_timeout}s; marking complete",
                stage="RESOLVE",
            )
            await self._store.update_session(session.id, {"is_complete": True}, owner_id)
            raise SessionExpired(session_id=session.id)

        log.debug(f"Continuing session {session.id} ({session.session_state.value})", stage="RESOLVE")
        return session, False

    async def _start_new(
        self,
        owner_id: str,
        mode: Mode,
        activity_id: Optional[str],
        log: CorrelatedLogger,
    ) -> PlanningSession:
        previous = await self._store.get_active_session(owner_id)
        if previous is not None:
            await self._store.update_session(previous.id, {"is_complete": True}, owner_id)
            log.info(
                f"Superseded session {previous.id} ({previous.session_state.value}) for {owner_id}",
                stage="RESOLVE",
            )

        initial = {
            "session_state": SessionState.GATHERING.value,
            "conversation_history": [],
            "slots": SessionSlots().to_dict(),
            "external_context": ExternalContext(mode=mode.value, activity_id=activity_id).to_dict(),
            "is_complete": False,
        }
        session = await self._store.create_session(owner_id, initial)
        log.info(f"New session {session.id} for {owner_id} (mode={mode.value})", stage="RESOLVE")
        return session

    def _is_stale(self, session: PlanningSession) -> bool:
        if self._idle_timeout <= 0:
            return False
        try:
            last_update = datetime.fromisoformat(session.updated_at)
        except (TypeError, ValueError):
            return False
        return (datetime.utcnow() - last_update).total_seconds() > self._idle_timeout
