"""
Planner Redis Session Store - Planning sessions plus one active pointer per owner.

Sessions are never deleted or expired by Redis: completed sessions remain as an
audit trail. Only the active pointer is removed when a session completes.
"""

import json
import logging
import uuid
from typing import Any, Dict, Optional

import redis.asyncio as redis

from planner.config import config
from planner.models import PlanningSession, utcnow_iso

logger = logging.getLogger("planner.session")

# Redis key namespaces
SESSION_PREFIX = "planner:session:"
ACTIVE_PREFIX = "planner:active:"


class RedisSessionStore:
    """
    Stores planning sessions in Redis.

    Key patterns:
    - planner:session:{session_id} → full session JSON
    - planner:active:{owner_id}    → session_id of the owner's live session
    """

    def __init__(self, client: Optional[redis.Redis] = None):
        self._client: Optional[redis.Redis] = client
        self._connected = client is not None

    async def connect(self) -> bool:
        """Establish Redis connection."""
        try:
            self._client = redis.Redis(
                host=config.REDIS_HOST,
                port=config.REDIS_PORT,
                password=config.REDIS_PASSWORD,
                db=config.REDIS_DB,
                decode_responses=True,
                socket_connect_timeout=3,
            )
            await self._client.ping()
            self._connected = True
            logger.info(f"✅ Redis connected: {config.REDIS_HOST}:{config.REDIS_PORT}")
            return True
        except Exception as e:
            logger.warning(f"⚠️ Redis connection failed (non-fatal): {e}")
            self._connected = False
            return False

    async def close(self):
        if self._client:
            await self._client.aclose()
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def health_check(self) -> Dict[str, Any]:
        """Return Redis health status."""
        if not self._client:
            return {"connected": False, "error": "Not initialized"}
        try:
            await self._client.ping()
            return {
                "backend": "redis",
                "connected": True,
                "host": config.REDIS_HOST,
                "port": config.REDIS_PORT,
            }
        except Exception as e:
            return {"backend": "redis", "connected": False, "error": str(e)}

    # ── Session store interface ────────────────────────────────────────────────

    async def create_session(self, user_id: str, initial: Dict[str, Any]) -> PlanningSession:
        """Create a session and make it the owner's active session."""
        session_id = str(uuid.uuid4())
        record = dict(initial)
        record.update({
            "id": session_id,
            "user_id": user_id,
            "created_at": utcnow_iso(),
            "updated_at": utcnow_iso(),
        })
        session = PlanningSession.from_dict(record)
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.set(f"{SESSION_PREFIX}{session_id}", json.dumps(session.to_dict()))
            if not session.is_complete:
                pipe.set(f"{ACTIVE_PREFIX}{user_id}", session_id)
            await pipe.execute()
        logger.debug(f"Session created: {session_id} for {user_id}")
        return session

    async def get_session(self, session_id: str, user_id: str) -> Optional[PlanningSession]:
        """Retrieve a session by ID, scoped to its owner."""
        raw = await self._client.get(f"{SESSION_PREFIX}{session_id}")
        if not raw:
            return None
        data = json.loads(raw)
        if data.get("user_id") != user_id:
            logger.warning(f"⚠️ Session {session_id} requested by non-owner {user_id}")
            return None
        return PlanningSession.from_dict(data)

    async def get_active_session(self, user_id: str) -> Optional[PlanningSession]:
        """The owner's live session, or None if there is none or it has completed."""
        session_id = await self._client.get(f"{ACTIVE_PREFIX}{user_id}")
        if not session_id:
            return None
        session = await self.get_session(session_id, user_id)
        if session is None or session.is_complete:
            return None
        return session

    async def update_session(self, session_id: str, patch: Dict[str, Any], user_id: str) -> Optional[PlanningSession]:
        """Apply a field patch. Completing a session clears the owner's active pointer."""
        key = f"{SESSION_PREFIX}{session_id}"
        raw = await self._client.get(key)
        if not raw:
            return None
        data = json.loads(raw)
        if data.get("user_id") != user_id:
            logger.warning(f"⚠️ Update of session {session_id} rejected for non-owner {user_id}")
            return None
        data.update(patch)
        data["updated_at"] = utcnow_iso()
        session = PlanningSession.from_dict(data)

        async with self._client.pipeline(transaction=True) as pipe:
            pipe.set(key, json.dumps(session.to_dict()))
            if session.is_complete:
                active_key = f"{ACTIVE_PREFIX}{user_id}"
                active_id = await self._client.get(active_key)
                if active_id == session_id:
                    pipe.delete(active_key)
            await pipe.execute()
        return session
