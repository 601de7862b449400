"""
Planner Service - Conversational Planning Engine

Turns a free-form conversation into a confirmed plan:
one Activity plus ordered Tasks, committed all or nothing.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import uvicorn
from dotenv import load_dotenv

load_dotenv()

from planner.config import config
from planner.errors import PlannerError
from planner.event_publisher import PlanEventPublisher
from planner.langfuse_tracer import PlannerTracer
from planner.lifecycle import SessionLifecycleManager
from planner.logging_config import setup_logging
from planner.materializer import PlanMaterializer
from planner.memory_store import MemoryActivityStore, MemorySessionStore
from planner.models import Authenticated, Guest, Mode, Principal
from planner.notifications import ReminderScheduler
from planner.planner_agent import OpenAIPlannerAgent
from planner.postgres_store import PostgresActivityStore
from planner.redis_session import RedisSessionStore
from planner.state_machine import ConversationStateMachine

logger = setup_logging(config.LOG_LEVEL)

app = FastAPI(
    title="Planner - Conversational Planning Engine",
    description="Conversation in, confirmed plan out.",
    version=config.VERSION,
)

USER_HEADER = "X-User-Id"
GUEST_HEADER = "X-Guest-Id"

# Global components
session_store = None
activity_store = None
event_publisher: Optional[PlanEventPublisher] = None
tracer: Optional[PlannerTracer] = None
engine: Optional[ConversationStateMachine] = None


@app.on_event("startup")
async def startup_event():
    global session_store, activity_store, event_publisher, tracer, engine

    logger.info("🗓️ Starting Planner: conversational planning engine")

    # 1. Session store (Redis, in-process fallback)
    redis_store = RedisSessionStore()
    if await redis_store.connect():
        session_store = redis_store
    else:
        session_store = MemorySessionStore()
        logger.warning("⚠️ Using in-process session store; sessions will not survive a restart")

    # 2. Activity/Task store (PostgreSQL, in-process fallback)
    pg_store = PostgresActivityStore()
    try:
        await pg_store.connect()
        activity_store = pg_store
    except Exception as e:
        logger.warning(f"⚠️ PostgreSQL unavailable (non-fatal): {e}")
        activity_store = MemoryActivityStore()

    # 3. Event publisher (plans + reminders)
    event_publisher = PlanEventPublisher()
    ep_connected = await event_publisher.connect()

    # 4. Langfuse tracer (gracefully disabled if unavailable)
    tracer = PlannerTracer()

    # 5. Planner agent
    try:
        agent = OpenAIPlannerAgent()
    except Exception as e:
        logger.error(f"❌ Planner agent unavailable: {e}")
        agent = None

    # 6. State machine
    if agent is not None:
        engine = ConversationStateMachine(
            lifecycle=SessionLifecycleManager(session_store),
            session_store=session_store,
            extractor=agent,
            materializer=PlanMaterializer(activity_store),
            publisher=event_publisher if ep_connected else None,
            reminders=ReminderScheduler(event_publisher if ep_connected else None),
            tracer=tracer,
        )

    logger.info(
        f"✅ Planner ready: "
        f"Sessions: {'redis' if session_store is redis_store else 'memory'} | "
        f"Activities: {'postgres' if activity_store is pg_store else 'memory'} | "
        f"NATS: {'✅' if ep_connected else '⚠️'} | "
        f"Langfuse: {'✅' if tracer.is_enabled else '⚠️'} | "
        f"Agent: {'✅' if agent else '❌'}"
    )


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("🛑 Shutting down Planner")
    if engine:
        await engine.drain()
    if event_publisher:
        await event_publisher.disconnect()
    if isinstance(session_store, RedisSessionStore):
        await session_store.close()
    if isinstance(activity_store, PostgresActivityStore):
        await activity_store.close()
    logger.info("✅ Planner shutdown complete")


def resolve_principal(request: Request) -> Principal:
    user_id = (request.headers.get(USER_HEADER) or "").strip()
    if user_id:
        return Authenticated(user_id=user_id)
    guest_id = (request.headers.get(GUEST_HEADER) or "").strip()
    if guest_id:
        return Guest(session_scoped_id=guest_id)
    return Guest.new()


def _with_guest_header(response: JSONResponse, principal: Principal) -> JSONResponse:
    if principal.is_guest:
        response.headers[GUEST_HEADER] = principal.session_scoped_id
    return response


# ── Core endpoints ─────────────────────────────────────────────────────────────

@app.get("/")
async def root():
    return {
        "service": config.SERVICE_NAME,
        "version": config.VERSION,
        "description": "Conversation in, confirmed plan out.",
        "port": config.PORT,
    }


@app.get("/health")
async def health():
    return {
        "status": "healthy" if engine else "degraded",
        "timestamp": datetime.utcnow().isoformat(),
        "service": config.SERVICE_NAME,
        "version": config.VERSION,
        "components": {
            "sessions": await session_store.health_check() if session_store else {"connected": False},
            "activities": await activity_store.health_check() if activity_store else {"connected": False},
            "nats": event_publisher.get_metrics() if event_publisher else {"connected": False},
            "langfuse": tracer.get_metrics() if tracer else {"enabled": False},
            "engine": {"ready": engine is not None, **(engine.get_health() if engine else {})},
        },
    }


@app.post("/plan/conversation")
async def plan_conversation(request: Request):
    """One conversational turn: {message, conversationHistory, mode, activityId?}."""
    if not engine:
        return JSONResponse(status_code=503, content={"error": "Planner engine not initialized"})

    principal = resolve_principal(request)
    try:
        body = await request.json()
    except Exception:
        return _with_guest_header(
            JSONResponse(status_code=400, content={"error": "Request body must be JSON"}), principal,
        )

    message = body.get("message")
    if not isinstance(message, str) or not message.strip():
        return _with_guest_header(
            JSONResponse(status_code=400, content={"error": "Missing 'message'"}), principal,
        )
    history = body.get("conversationHistory") or []
    if not isinstance(history, list):
        return _with_guest_header(
            JSONResponse(status_code=400, content={"error": "'conversationHistory' must be a list"}), principal,
        )

    try:
        result = await engine.handle_turn(
            principal=principal,
            message=message.strip(),
            mode=Mode.parse(body.get("mode")),
            conversation_history=history,
            activity_id=body.get("activityId"),
        )
        return _with_guest_header(JSONResponse(status_code=200, content=result), principal)
    except PlannerError as e:
        return _with_guest_header(JSONResponse(status_code=e.status_code, content=e.to_response()), principal)
    except Exception as e:
        logger.error(f"Conversation turn failed: {e}", exc_info=True)
        return _with_guest_header(
            JSONResponse(status_code=500, content={"error": "Internal error processing your message"}), principal,
        )


@app.get("/session/{session_id}")
async def get_session(session_id: str, request: Request):
    if not session_store:
        return JSONResponse(status_code=503, content={"error": "Session store unavailable"})
    principal = resolve_principal(request)
    session = await session_store.get_session(session_id, principal.owner_id)
    if not session:
        return JSONResponse(status_code=404, content={"error": f"Session {session_id} not found"})
    return session.to_dict()


def main():
    uvicorn.run(
        "planner.main:app",
        host=config.HOST,
        port=config.PORT,
        log_level=config.LOG_LEVEL.lower(),
        reload=False,
    )


if __name__ == "__main__":
    main()
