"""
Planner In-Process Stores - Session and Activity/Task stores held in memory.

Used when Redis or PostgreSQL is unavailable at startup, and by the tests.
Same async interface as `RedisSessionStore` and `PostgresActivityStore`.
Records are copied on the way in and out so callers never share mutable state
with the store.
"""

import copy
import logging
import uuid
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from planner.models import Activity, PlanningSession, Task, utcnow_iso

logger = logging.getLogger("planner.memory_store")


class MemorySessionStore:
    """Session store keyed by session id, with one active pointer per owner."""

    def __init__(self):
        self._sessions: Dict[str, Dict[str, Any]] = {}
        self._active: Dict[str, str] = {}

    async def create_session(self, user_id: str, initial: Dict[str, Any]) -> PlanningSession:
        session_id = str(uuid.uuid4())
        record = copy.deepcopy(initial)
        record.update({
            "id": session_id,
            "user_id": user_id,
            "created_at": utcnow_iso(),
            "updated_at": utcnow_iso(),
        })
        session = PlanningSession.from_dict(record)
        self._sessions[session_id] = session.to_dict()
        if not session.is_complete:
            self._active[user_id] = session_id
        return PlanningSession.from_dict(copy.deepcopy(self._sessions[session_id]))

    async def get_session(self, session_id: str, user_id: str) -> Optional[PlanningSession]:
        record = self._sessions.get(session_id)
        if not record or record["user_id"] != user_id:
            return None
        return PlanningSession.from_dict(copy.deepcopy(record))

    async def get_active_session(self, user_id: str) -> Optional[PlanningSession]:
        session_id = self._active.get(user_id)
        if not session_id:
            return None
        session = await self.get_session(session_id, user_id)
        if session is None or session.is_complete:
            return None
        return session

    async def update_session(self, session_id: str, patch: Dict[str, Any], user_id: str) -> Optional[PlanningSession]:
        record = self._sessions.get(session_id)
        if not record or record["user_id"] != user_id:
            return None
        record.update(copy.deepcopy(patch))
        record["updated_at"] = utcnow_iso()
        if record.get("is_complete") and self._active.get(user_id) == session_id:
            del self._active[user_id]
        return PlanningSession.from_dict(copy.deepcopy(record))

    def all_sessions(self, user_id: str) -> List[PlanningSession]:
        """Every session ever created for the owner, oldest first."""
        return [
            PlanningSession.from_dict(copy.deepcopy(r))
            for r in self._sessions.values()
            if r["user_id"] == user_id
        ]

    async def health_check(self) -> Dict[str, Any]:
        return {"backend": "memory", "sessions": len(self._sessions)}


class MemoryActivityStore:
    """Activity/Task store with ordered task links per activity."""

    def __init__(self):
        self._activities: Dict[str, Activity] = {}
        self._tasks: Dict[str, Task] = {}
        self._links: Dict[str, Dict[str, int]] = defaultdict(dict)

    async def create_activity(self, fields: Dict[str, Any]) -> Activity:
        activity = Activity(id=str(uuid.uuid4()), **copy.deepcopy(fields))
        self._activities[activity.id] = activity
        return copy.deepcopy(activity)

    async def get_activity(self, activity_id: str, user_id: str) -> Optional[Activity]:
        activity = self._activities.get(activity_id)
        if not activity or activity.user_id != user_id:
            return None
        return copy.deepcopy(activity)

    async def update_activity(self, activity_id: str, patch: Dict[str, Any], user_id: str) -> Optional[Activity]:
        activity = self._activities.get(activity_id)
        if not activity or activity.user_id != user_id:
            return None
        for key, value in patch.items():
            setattr(activity, key, copy.deepcopy(value))
        return copy.deepcopy(activity)

    async def delete_activity(self, activity_id: str, user_id: str) -> None:
        activity = self._activities.get(activity_id)
        if activity and activity.user_id == user_id:
            del self._activities[activity_id]
            self._links.pop(activity_id, None)

    async def create_task(self, fields: Dict[str, Any]) -> Task:
        task = Task(id=str(uuid.uuid4()), **copy.deepcopy(fields))
        self._tasks[task.id] = task
        return copy.deepcopy(task)

    async def attach_task(self, activity_id: str, task_id: str, order: int) -> None:
        if activity_id not in self._activities:
            raise KeyError(f"Activity {activity_id} not found")
        if task_id not in self._tasks:
            raise KeyError(f"Task {task_id} not found")
        self._links[activity_id][task_id] = order

    async def detach_task(self, activity_id: str, task_id: str) -> None:
        self._links.get(activity_id, {}).pop(task_id, None)

    async def delete_task(self, task_id: str, user_id: str) -> None:
        task = self._tasks.get(task_id)
        if task and task.user_id == user_id:
            del self._tasks[task_id]
            for links in self._links.values():
                links.pop(task_id, None)

    async def list_tasks(self, activity_id: str, user_id: str) -> List[Task]:
        links = self._links.get(activity_id, {})
        ordered = sorted(links.items(), key=lambda item: item[1])
        return [
            copy.deepcopy(self._tasks[task_id])
            for task_id, _ in ordered
            if task_id in self._tasks and self._tasks[task_id].user_id == user_id
        ]

    async def health_check(self) -> Dict[str, Any]:
        return {
            "backend": "memory",
            "activities": len(self._activities),
            "tasks": len(self._tasks),
            "checked_at": datetime.utcnow().isoformat(),
        }
