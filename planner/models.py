"""
Planner data model - sessions, candidate plans, and persisted entities.

Candidate plans come from an untrusted collaborator, so parsing is lenient
about field names but strict about shape: `CandidatePlan.from_dict` accepts the
agent's aliases, and `CandidatePlan.is_complete()` decides whether a plan may
ever be shown for confirmation.

Money is float (major units) inside a candidate plan and integer cents once
materialized. Conversion lives in `to_cents`.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class SessionState(str, Enum):
    GATHERING = "gathering"
    CONFIRMING = "confirming"
    COMPLETED = "completed"


class Mode(str, Enum):
    QUICK = "quick"
    SMART = "smart"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Mode":
        try:
            return cls((value or "quick").lower())
        except ValueError:
            return cls.QUICK


def utcnow_iso() -> str:
    return datetime.utcnow().isoformat()


def to_cents(amount: Any) -> Optional[int]:
    """Convert a major-unit amount to integer cents, half-up, without float math."""
    if amount is None or amount == "":
        return None
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        return None
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


# ── Principal ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Authenticated:
    user_id: str

    @property
    def owner_id(self) -> str:
        return self.user_id

    @property
    def is_guest(self) -> bool:
        return False


@dataclass(frozen=True)
class Guest:
    session_scoped_id: str

    @property
    def owner_id(self) -> str:
        return f"guest:{self.session_scoped_id}"

    @property
    def is_guest(self) -> bool:
        return True

    @classmethod
    def new(cls) -> "Guest":
        return cls(session_scoped_id=uuid.uuid4().hex)


Principal = Union[Authenticated, Guest]


# ── Candidate plan (untrusted, pre-confirmation) ───────────────────────────────

@dataclass
class BudgetLineItem:
    category: str
    amount: float
    notes: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BudgetLineItem":
        return cls(
            category=str(data.get("category") or data.get("label") or ""),
            amount=data.get("amount") or 0,
            notes=data.get("notes"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"category": self.category, "amount": self.amount, "notes": self.notes}


@dataclass
class Budget:
    total: Optional[float] = None
    breakdown: List[BudgetLineItem] = field(default_factory=list)
    buffer: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["Budget"]:
        if not isinstance(data, dict):
            return None
        return cls(
            total=data.get("total"),
            breakdown=[
                BudgetLineItem.from_dict(item)
                for item in data.get("breakdown") or []
                if isinstance(item, dict)
            ],
            buffer=data.get("buffer"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "breakdown": [item.to_dict() for item in self.breakdown],
            "buffer": self.buffer,
        }


@dataclass
class TaskDraft:
    title: str
    description: str = ""
    category: Optional[str] = None
    priority: str = "medium"
    time_estimate: str = "30 min"
    scheduled_date: Optional[str] = None   # YYYY-MM-DD
    start_time: Optional[str] = None       # HH:MM, 24h
    budget_item: Optional[BudgetLineItem] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskDraft":
        duration = data.get("duration")
        time_estimate = data.get("timeEstimate") or data.get("time_estimate")
        if not time_estimate:
            time_estimate = f"{duration or 30} min"
        priority = str(data.get("priority") or "medium").lower()
        if priority not in ("high", "medium", "low"):
            priority = "medium"
        budget_item = data.get("budgetItem") or data.get("budget_item")
        return cls(
            title=str(data.get("title") or data.get("taskName") or "").strip(),
            description=str(data.get("description") or data.get("notes") or ""),
            category=data.get("category"),
            priority=priority,
            time_estimate=str(time_estimate),
            scheduled_date=data.get("scheduledDate") or data.get("scheduled_date") or data.get("startDate"),
            start_time=data.get("startTime") or data.get("start_time"),
            budget_item=BudgetLineItem.from_dict(budget_item) if isinstance(budget_item, dict) else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "priority": self.priority,
            "timeEstimate": self.time_estimate,
            "scheduledDate": self.scheduled_date,
            "startTime": self.start_time,
            "budgetItem": self.budget_item.to_dict() if self.budget_item else None,
        }


@dataclass
class CandidatePlan:
    title: str
    description: str = ""
    domain: str = "personal"
    tasks: List[TaskDraft] = field(default_factory=list)
    budget: Optional[Budget] = None
    tips: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CandidatePlan":
        return cls(
            title=str(data.get("title") or "").strip(),
            description=str(data.get("description") or data.get("summary") or ""),
            domain=data.get("domain") or data.get("category") or "personal",
            tasks=[TaskDraft.from_dict(t) for t in data.get("tasks") or [] if isinstance(t, dict)],
            budget=Budget.from_dict(data.get("budget")),
            tips=[str(t) for t in data.get("tips") or []],
        )

    def is_complete(self) -> bool:
        """A plan may be confirmed only with a title and at least one titled task."""
        return bool(self.title) and bool(self.tasks) and all(t.title for t in self.tasks)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "domain": self.domain,
            "tasks": [t.to_dict() for t in self.tasks],
            "budget": self.budget.to_dict() if self.budget else None,
            "tips": self.tips,
        }


# ── Session ────────────────────────────────────────────────────────────────────

@dataclass
class ConversationTurn:
    role: str
    content: str
    timestamp: str = field(default_factory=utcnow_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {"role": self.role, "content": self.content, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConversationTurn":
        return cls(
            role=data.get("role", "user"),
            content=data.get("content", ""),
            timestamp=data.get("timestamp") or utcnow_iso(),
        )


@dataclass
class SessionSlots:
    """Extracted slots plus the single pending candidate plan."""
    pending_plan: Optional[CandidatePlan] = None
    extracted: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pending_plan": self.pending_plan.to_dict() if self.pending_plan else None,
            "extracted": dict(self.extracted),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SessionSlots":
        data = data or {}
        pending = data.get("pending_plan")
        return cls(
            pending_plan=CandidatePlan.from_dict(pending) if pending else None,
            extracted=dict(data.get("extracted") or {}),
        )


@dataclass
class ExternalContext:
    mode: str = Mode.QUICK.value
    awaiting_confirmation: bool = False
    activity_id: Optional[str] = None
    question_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "awaiting_confirmation": self.awaiting_confirmation,
            "activity_id": self.activity_id,
            "question_count": self.question_count,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ExternalContext":
        data = data or {}
        return cls(
            mode=data.get("mode", Mode.QUICK.value),
            awaiting_confirmation=bool(data.get("awaiting_confirmation", False)),
            activity_id=data.get("activity_id"),
            question_count=int(data.get("question_count", 0)),
        )


@dataclass
class PlanningSession:
    id: str
    user_id: str
    session_state: SessionState = SessionState.GATHERING
    conversation_history: List[ConversationTurn] = field(default_factory=list)
    slots: SessionSlots = field(default_factory=SessionSlots)
    external_context: ExternalContext = field(default_factory=ExternalContext)
    is_complete: bool = False
    generated_plan: Optional[Dict[str, Any]] = None
    created_at: str = field(default_factory=utcnow_iso)
    updated_at: str = field(default_factory=utcnow_iso)

    @property
    def has_pending_plan(self) -> bool:
        return self.slots.pending_plan is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "session_state": self.session_state.value,
            "conversation_history": [t.to_dict() for t in self.conversation_history],
            "slots": self.slots.to_dict(),
            "external_context": self.external_context.to_dict(),
            "is_complete": self.is_complete,
            "generated_plan": self.generated_plan,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlanningSession":
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            session_state=SessionState(data.get("session_state", SessionState.GATHERING.value)),
            conversation_history=[
                ConversationTurn.from_dict(t) for t in data.get("conversation_history") or []
            ],
            slots=SessionSlots.from_dict(data.get("slots")),
            external_context=ExternalContext.from_dict(data.get("external_context")),
            is_complete=bool(data.get("is_complete", False)),
            generated_plan=data.get("generated_plan"),
            created_at=data.get("created_at") or utcnow_iso(),
            updated_at=data.get("updated_at") or utcnow_iso(),
        )


# ── Persisted entities ─────────────────────────────────────────────────────────

@dataclass
class Activity:
    id: str
    user_id: str
    title: str
    description: str = ""
    category: str = "personal"
    status: str = "planning"
    budget_cents: Optional[int] = None
    budget_breakdown: List[Dict[str, Any]] = field(default_factory=list)
    budget_buffer_cents: Optional[int] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "status": self.status,
            "budget": self.budget_cents,
            "budgetBreakdown": self.budget_breakdown,
            "budgetBuffer": self.budget_buffer_cents,
            "startDate": self.start_date.isoformat() if self.start_date else None,
            "endDate": self.end_date.isoformat() if self.end_date else None,
        }


@dataclass
class Task:
    id: str
    user_id: str
    title: str
    description: str = ""
    category: str = "personal"
    priority: str = "medium"
    time_estimate: str = "30 min"
    due_date: Optional[datetime] = None
    cost_cents: Optional[int] = None
    cost_notes: Optional[str] = None
    completed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "priority": self.priority,
            "timeEstimate": self.time_estimate,
            "dueDate": self.due_date.isoformat() if self.due_date else None,
            "cost": self.cost_cents,
            "costNotes": self.cost_notes,
            "completed": self.completed,
        }


# ── Collaborator result ────────────────────────────────────────────────────────

@dataclass
class ExtractorResult:
    """What the planner agent returns for one turn."""
    message: str
    extracted_slots: Dict[str, Any] = field(default_factory=dict)
    ready_to_generate: bool = False
    plan: Optional[CandidatePlan] = None
    domain: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExtractorResult":
        plan = data.get("plan")
        return cls(
            message=str(data.get("message") or ""),
            extracted_slots=dict(data.get("extractedInfo") or data.get("extracted_slots") or {}),
            ready_to_generate=bool(data.get("readyToGenerate") or data.get("ready_to_generate")),
            plan=CandidatePlan.from_dict(plan) if isinstance(plan, dict) else None,
            domain=data.get("domain"),
        )


@dataclass
class MaterializationResult:
    activity: Activity
    tasks: List[Task]
    updated: bool = False
