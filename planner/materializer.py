"""
Planner Materializer - Commit a confirmed plan as one Activity and its Tasks.

Create path: activity first, then each task in draft order, attached at its index.

Update path (session already linked to an activity):
  1. snapshot the activity's scalar fields and current task set
  2. update scalar fields in place
  3. create every new task before touching the old ones
  4. detach the old tasks
  5. attach the new tasks at their order indices
  6. delete the old task records (cleanup only, failures are logged)

If the store offers `transaction()`, steps 2-5 run inside it and the database
undoes a failure. Otherwise a failure in 2-5 is undone by hand: new tasks are
detached and deleted, the snapshot is re-attached at its original indices, and
the scalar fields are restored. Either way the caller sees
`MaterializationFailure` and the activity is exactly as it was.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from planner.errors import MaterializationFailure
from planner.logging_config import CorrelatedLogger
from planner.models import (
    Activity,
    BudgetLineItem,
    CandidatePlan,
    MaterializationResult,
    Principal,
    Task,
    TaskDraft,
    to_cents,
)
from planner.scheduling import derive_due_date

logger = logging.getLogger("planner.materializer")

SCALAR_FIELDS = (
    "title", "description", "category", "budget_cents",
    "budget_breakdown", "budget_buffer_cents", "start_date", "end_date",
)


def match_budget_item(draft: TaskDraft, breakdown: List[BudgetLineItem]) -> Optional[BudgetLineItem]:
    """Pick the line item whose label overlaps the task's category or title."""
    if draft.budget_item is not None:
        return draft.budget_item
    task_category = (draft.category or "").lower().strip()
    task_title = (draft.title or "").lower()
    for item in breakdown:
        label = (item.category or "").lower().strip()
        if not label:
            continue
        if task_category and (task_category in label or label in task_category):
            return item
        if label in task_title:
            return item
    return None


def build_task_fields(plan: CandidatePlan, owner_id: str) -> List[Dict[str, Any]]:
    breakdown = plan.budget.breakdown if plan.budget else []
    count = len(plan.tasks)
    fields = []
    for index, draft in enumerate(plan.tasks):
        item = match_budget_item(draft, breakdown)
        fields.append({
            "user_id": owner_id,
            "title": draft.title,
            "description": draft.description or "",
            "category": draft.category or plan.domain or "personal",
            "priority": draft.priority or "medium",
            "time_estimate": draft.time_estimate or "30 min",
            "due_date": derive_due_date(draft, index, count),
            "cost_cents": to_cents(item.amount) if item else None,
            "cost_notes": item.notes if item else None,
        })
    return fields


def build_activity_fields(plan: CandidatePlan, owner_id: str, task_fields: List[Dict[str, Any]]) -> Dict[str, Any]:
    budget = plan.budget
    due_dates = [f["due_date"] for f in task_fields if f["due_date"] is not None]
    return {
        "user_id": owner_id,
        "title": plan.title,
        "description": plan.description or "",
        "category": plan.domain or "personal",
        "status": "planning",
        "budget_cents": to_cents(budget.total) if budget else None,
        "budget_breakdown": [
            {"category": item.category, "amount_cents": to_cents(item.amount), "notes": item.notes}
            for item in (budget.breakdown if budget else [])
        ],
        "budget_buffer_cents": to_cents(budget.buffer) if budget else None,
        "start_date": min(due_dates) if due_dates else None,
        "end_date": max(due_dates) if due_dates else None,
    }


@dataclass
class _ReplaceProgress:
    """What the update path has done so far, for the manual undo."""
    scalars_updated: bool = False
    original_tasks: List[Task] = field(default_factory=list)
    new_tasks: List[Task] = field(default_factory=list)


class PlanMaterializer:
    """Turns a confirmed CandidatePlan into persisted entities, all or nothing."""

    def __init__(self, store):
        self._store = store

    @property
    def _transactional(self) -> bool:
        return callable(getattr(self._store, "transaction", None))

    async def materialize(
        self,
        plan: CandidatePlan,
        principal: Principal,
        linked_activity_id: Optional[str] = None,
        log: Optional[CorrelatedLogger] = None,
    ) -> MaterializationResult:
        """
        Commit a confirmed plan.

        Args:
            plan: The confirmed candidate plan
            principal: Owner of the resulting activity
            linked_activity_id: Activity this conversation already produced, if any
            log: Turn-scoped logger

        Returns: MaterializationResult with the activity, its tasks, and whether it was an update

        Raises: MaterializationFailure after undoing any partial work
        """
        log = log or CorrelatedLogger(component="Materializer")
        owner_id = principal.owner_id
        task_fields = build_task_fields(plan, owner_id)
        activity_fields = build_activity_fields(plan, owner_id, task_fields)

        if linked_activity_id:
            existing = await self._store.get_activity(linked_activity_id, owner_id)
            if existing is not None:
                return await self._update(existing, activity_fields, task_fields, owner_id, log)
            log.warning(
                f"Linked activity {linked_activity_id} no longer exists; creating a new one",
                stage="MATERIALIZE",
            )
        return await self._create(activity_fields, task_fields, owner_id, log)

    # ── Create path ────────────────────────────────────────────────────────────

    async def _create(self, activity_fields, task_fields, owner_id: str, log: CorrelatedLogger) -> MaterializationResult:
        created: Dict[str, Any] = {"activity": None, "tasks": []}

        async def work() -> MaterializationResult:
            activity = await self._store.create_activity(activity_fields)
            created["activity"] = activity
            for index, fields in enumerate(task_fields):
                task = await self._store.create_task(fields)
                created["tasks"].append(task)
                await self._store.attach_task(activity.id, task.id, index)
            return MaterializationResult(activity=activity, tasks=list(created["tasks"]), updated=False)

        async def undo():
            for task in created["tasks"]:
                await self._store.delete_task(task.id, owner_id)
            if created["activity"] is not None:
                await self._store.delete_activity(created["activity"].id, owner_id)

        result = await self._run_atomically(work, undo, log, "create")
        log.info(
            f"Created activity {result.activity.id} with {len(result.tasks)} tasks",
            stage="MATERIALIZE",
        )
        return result

    # ── Update path ────────────────────────────────────────────────────────────

    async def _update(self, existing: Activity, activity_fields, task_fields, owner_id: str,
                      log: CorrelatedLogger) -> MaterializationResult:
        activity_id = existing.id
        original_scalars = {name: getattr(existing, name) for name in SCALAR_FIELDS}
        patch = {name: activity_fields[name] for name in SCALAR_FIELDS}
        progress = _ReplaceProgress()

        async def work() -> MaterializationResult:
            progress.original_tasks = await self._store.list_tasks(activity_id, owner_id)
            updated = await self._store.update_activity(activity_id, patch, owner_id)
            if updated is None:
                raise LookupError(f"Activity {activity_id} disappeared during update")
            progress.scalars_updated = True

            for fields in task_fields:
                progress.new_tasks.append(await self._store.create_task(fields))

            for task in progress.original_tasks:
                await self._store.detach_task(activity_id, task.id)

            for index, task in enumerate(progress.new_tasks):
                await self._store.attach_task(activity_id, task.id, index)

            return MaterializationResult(activity=updated, tasks=list(progress.new_tasks), updated=True)

        async def undo():
            for task in progress.new_tasks:
                try:
                    await self._store.detach_task(activity_id, task.id)
                    await self._store.delete_task(task.id, owner_id)
                except Exception as e:
                    log.warning(f"Could not discard new task {task.id} during rollback: {e}", stage="MATERIALIZE")
            for index, task in enumerate(progress.original_tasks):
                await self._store.attach_task(activity_id, task.id, index)
            if progress.scalars_updated:
                await self._store.update_activity(activity_id, original_scalars, owner_id)

        result = await self._run_atomically(work, undo, log, "update")

        for task in progress.original_tasks:
            try:
                await self._store.delete_task(task.id, owner_id)
            except Exception as e:
                # The activity is already consistent; the old record is just orphaned
                log.warning(f"Failed to delete replaced task {task.id} (non-critical): {e}", stage="MATERIALIZE")

        log.info(
            f"Updated activity {activity_id}: {len(progress.original_tasks)} tasks replaced by {len(result.tasks)}",
            stage="MATERIALIZE",
        )
        return result

    # ── Atomic execution ───────────────────────────────────────────────────────

    async def _run_atomically(
        self,
        work: Callable[[], Awaitable[MaterializationResult]],
        undo: Callable[[], Awaitable[None]],
        log: CorrelatedLogger,
        operation: str,
    ) -> MaterializationResult:
        if self._transactional:
            try:
                async with self._store.transaction():
                    return await work()
            except Exception as e:
                log.error(f"Plan {operation} failed, transaction rolled back: {e}", stage="MATERIALIZE", exc_info=True)
                raise MaterializationFailure(str(e)) from e

        try:
            return await work()
        except Exception as e:
            log.error(f"Plan {operation} failed, rolling back: {e}", stage="MATERIALIZE", exc_info=True)
            try:
                await undo()
            except Exception as rollback_error:
                log.critical(f"Rollback of plan {operation} failed: {rollback_error}", stage="MATERIALIZE", exc_info=True)
                raise MaterializationFailure(str(e), rollback_complete=False) from e
            log.info(f"Rolled back plan {operation}", stage="MATERIALIZE")
            raise MaterializationFailure(str(e)) from e
