"""
Planner PostgreSQL Store - Activities, tasks, and their ordered links.

All money columns are BIGINT cents. `transaction()` opens one connection-scoped
transaction; every store call made inside it (in the same task) runs on that
connection, so the materializer's multi-step replace commits or rolls back as a
unit.
"""

import json
import logging
import uuid
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any, Dict, List, Optional

import asyncpg

from planner.config import config
from planner.models import Activity, Task

logger = logging.getLogger("planner.postgres")

_tx_conn: ContextVar[Optional[asyncpg.Connection]] = ContextVar("planner_tx_conn", default=None)


def _parse_id(value: Any) -> Optional[uuid.UUID]:
    """Caller-supplied ids may be malformed; those match no row."""
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError):
        return None

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS activities (
    id                  UUID PRIMARY KEY,
    user_id             TEXT NOT NULL,
    title               TEXT NOT NULL,
    description         TEXT NOT NULL DEFAULT '',
    category            TEXT NOT NULL DEFAULT 'personal',
    status              TEXT NOT NULL DEFAULT 'planning',
    budget_cents        BIGINT,
    budget_breakdown    JSONB NOT NULL DEFAULT '[]'::jsonb,
    budget_buffer_cents BIGINT,
    start_date          TIMESTAMP,
    end_date            TIMESTAMP,
    created_at          TIMESTAMP NOT NULL DEFAULT NOW(),
    updated_at          TIMESTAMP NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS tasks (
    id            UUID PRIMARY KEY,
    user_id       TEXT NOT NULL,
    title         TEXT NOT NULL,
    description   TEXT NOT NULL DEFAULT '',
    category      TEXT NOT NULL DEFAULT 'personal',
    priority      TEXT NOT NULL DEFAULT 'medium',
    time_estimate TEXT NOT NULL DEFAULT '30 min',
    due_date      TIMESTAMP,
    cost_cents    BIGINT,
    cost_notes    TEXT,
    completed     BOOLEAN NOT NULL DEFAULT FALSE,
    created_at    TIMESTAMP NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS activity_tasks (
    activity_id UUID NOT NULL REFERENCES activities(id) ON DELETE CASCADE,
    task_id     UUID NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
    order_index INTEGER NOT NULL,
    PRIMARY KEY (activity_id, task_id)
);

CREATE INDEX IF NOT EXISTS idx_activities_user ON activities(user_id);
CREATE INDEX IF NOT EXISTS idx_activity_tasks_order ON activity_tasks(activity_id, order_index);
"""

ACTIVITY_COLUMNS = (
    "title", "description", "category", "status", "budget_cents",
    "budget_breakdown", "budget_buffer_cents", "start_date", "end_date",
)


def _activity_from_row(row) -> Activity:
    breakdown = row["budget_breakdown"]
    if isinstance(breakdown, str):
        breakdown = json.loads(breakdown)
    return Activity(
        id=str(row["id"]),
        user_id=row["user_id"],
        title=row["title"],
        description=row["description"],
        category=row["category"],
        status=row["status"],
        budget_cents=row["budget_cents"],
        budget_breakdown=breakdown or [],
        budget_buffer_cents=row["budget_buffer_cents"],
        start_date=row["start_date"],
        end_date=row["end_date"],
    )


def _task_from_row(row) -> Task:
    return Task(
        id=str(row["id"]),
        user_id=row["user_id"],
        title=row["title"],
        description=row["description"],
        category=row["category"],
        priority=row["priority"],
        time_estimate=row["time_estimate"],
        due_date=row["due_date"],
        cost_cents=row["cost_cents"],
        cost_notes=row["cost_notes"],
        completed=row["completed"],
    )


class PostgresActivityStore:
    """
    Activity/Task store on PostgreSQL.

    Responsibilities:
    - Persist activities and tasks owned by a principal
    - Keep ordered activity→task links
    - Offer a real transaction for multi-step replaces
    """

    def __init__(
        self,
        host: str = config.POSTGRES_HOST,
        port: int = config.POSTGRES_PORT,
        database: str = config.POSTGRES_DB,
        user: str = config.POSTGRES_USER,
        password: str = config.POSTGRES_PASSWORD,
        pool: Optional[asyncpg.Pool] = None,
    ):
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.pool: Optional[asyncpg.Pool] = pool

    async def connect(self):
        """Initialize connection pool and ensure the schema exists."""
        self.pool = await asyncpg.create_pool(
            host=self.host,
            port=self.port,
            database=self.database,
            user=self.user,
            password=self.password,
            min_size=2,
            max_size=10,
            command_timeout=60
        )
        async with self.pool.acquire() as conn:
            await conn.execute(SCHEMA_SQL)
        logger.info(f"✅ PostgreSQL store connected: {self.host}:{self.port}/{self.database}")

    async def close(self):
        """Close connection pool."""
        if self.pool:
            await self.pool.close()
            logger.info("PostgreSQL store closed")

    @asynccontextmanager
    async def _connection(self):
        conn = _tx_conn.get()
        if conn is not None:
            yield conn
            return
        if not self.pool:
            raise RuntimeError("Store not connected. Call connect() first.")
        async with self.pool.acquire() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self):
        """Run the enclosed store calls in a single database transaction."""
        if _tx_conn.get() is not None:
            yield
            return
        if not self.pool:
            raise RuntimeError("Store not connected. Call connect() first.")
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                token = _tx_conn.set(conn)
                try:
                    yield
                finally:
                    _tx_conn.reset(token)

    # ── Activities ─────────────────────────────────────────────────────────────

    async def create_activity(self, fields: Dict[str, Any]) -> Activity:
        activity_id = uuid.uuid4()
        query = """
            INSERT INTO activities (
                id, user_id, title, description, category, status,
                budget_cents, budget_breakdown, budget_buffer_cents,
                start_date, end_date
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8::jsonb, $9, $10, $11)
            RETURNING *
        """
        async with self._connection() as conn:
            row = await conn.fetchrow(
                query,
                activity_id,
                fields["user_id"],
                fields["title"],
                fields.get("description", ""),
                fields.get("category", "personal"),
                fields.get("status", "planning"),
                fields.get("budget_cents"),
                json.dumps(fields.get("budget_breakdown") or []),
                fields.get("budget_buffer_cents"),
                fields.get("start_date"),
                fields.get("end_date"),
            )
        return _activity_from_row(row)

    async def get_activity(self, activity_id: str, user_id: str) -> Optional[Activity]:
        parsed = _parse_id(activity_id)
        if parsed is None:
            return None
        async with self._connection() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM activities WHERE id = $1 AND user_id = $2",
                parsed, user_id,
            )
        return _activity_from_row(row) if row else None

    async def update_activity(self, activity_id: str, patch: Dict[str, Any], user_id: str) -> Optional[Activity]:
        parsed = _parse_id(activity_id)
        if parsed is None:
            return None
        columns = [c for c in ACTIVITY_COLUMNS if c in patch]
        if not columns:
            return await self.get_activity(activity_id, user_id)

        assignments = []
        values: List[Any] = [parsed, user_id]
        for column in columns:
            values.append(json.dumps(patch[column]) if column == "budget_breakdown" else patch[column])
            cast = "::jsonb" if column == "budget_breakdown" else ""
            assignments.append(f"{column} = ${len(values)}{cast}")

        query = f"""
            UPDATE activities SET {', '.join(assignments)}, updated_at = NOW()
            WHERE id = $1 AND user_id = $2
            RETURNING *
        """
        async with self._connection() as conn:
            row = await conn.fetchrow(query, *values)
        return _activity_from_row(row) if row else None

    async def delete_activity(self, activity_id: str, user_id: str) -> None:
        parsed = _parse_id(activity_id)
        if parsed is None:
            return
        async with self._connection() as conn:
            await conn.execute(
                "DELETE FROM activities WHERE id = $1 AND user_id = $2",
                parsed, user_id,
            )

    # ── Tasks ──────────────────────────────────────────────────────────────────

    async def create_task(self, fields: Dict[str, Any]) -> Task:
        query = """
            INSERT INTO tasks (
                id, user_id, title, description, category, priority,
                time_estimate, due_date, cost_cents, cost_notes, completed
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
            RETURNING *
        """
        async with self._connection() as conn:
            row = await conn.fetchrow(
                query,
                uuid.uuid4(),
                fields["user_id"],
                fields["title"],
                fields.get("description", ""),
                fields.get("category", "personal"),
                fields.get("priority", "medium"),
                fields.get("time_estimate", "30 min"),
                fields.get("due_date"),
                fields.get("cost_cents"),
                fields.get("cost_notes"),
                fields.get("completed", False),
            )
        return _task_from_row(row)

    async def attach_task(self, activity_id: str, task_id: str, order: int) -> None:
        async with self._connection() as conn:
            await conn.execute(
                """
                INSERT INTO activity_tasks (activity_id, task_id, order_index)
                VALUES ($1, $2, $3)
                ON CONFLICT (activity_id, task_id) DO UPDATE SET order_index = EXCLUDED.order_index
                """,
                uuid.UUID(activity_id), uuid.UUID(task_id), order,
            )

    async def detach_task(self, activity_id: str, task_id: str) -> None:
        async with self._connection() as conn:
            await conn.execute(
                "DELETE FROM activity_tasks WHERE activity_id = $1 AND task_id = $2",
                uuid.UUID(activity_id), uuid.UUID(task_id),
            )

    async def delete_task(self, task_id: str, user_id: str) -> None:
        async with self._connection() as conn:
            await conn.execute(
                "DELETE FROM tasks WHERE id = $1 AND user_id = $2",
                uuid.UUID(task_id), user_id,
            )

    async def list_tasks(self, activity_id: str, user_id: str) -> List[Task]:
        parsed = _parse_id(activity_id)
        if parsed is None:
            return []
        async with self._connection() as conn:
            rows = await conn.fetch(
                """
                SELECT t.* FROM tasks t
                JOIN activity_tasks at ON at.task_id = t.id
                WHERE at.activity_id = $1 AND t.user_id = $2
                ORDER BY at.order_index
                """,
                parsed, user_id,
            )
        return [_task_from_row(r) for r in rows]

    async def health_check(self) -> Dict[str, Any]:
        if not self.pool:
            return {"backend": "postgres", "connected": False, "error": "Not initialized"}
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return {"backend": "postgres", "connected": True, "host": self.host, "database": self.database}
        except Exception as e:
            return {"backend": "postgres", "connected": False, "error": str(e)}
