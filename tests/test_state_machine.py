"""
Conversation State Machine Tests

Full turns against in-process stores with a scripted planner agent.
"""

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from planner.errors import MaterializationFailure, SessionExpired
from planner.lifecycle import SessionLifecycleManager
from planner.materializer import PlanMaterializer
from planner.memory_store import MemoryActivityStore, MemorySessionStore
from planner.models import (
    Authenticated,
    CandidatePlan,
    ExtractorResult,
    Mode,
    SessionState,
    TaskDraft,
)
from planner.preview import APOLOGY_MESSAGE, CONFIRMATION_QUESTION, HELP_MESSAGE


def _plan(title="Birthday Party", n=5):
    return CandidatePlan(
        title=title,
        description="Saturday party for Sam",
        domain="event",
        tasks=[TaskDraft(title=f"Step {i}", scheduled_date="2030-06-01") for i in range(n)],
    )


def _ask(question="How many guests?", **slots):
    return ExtractorResult(message=question, extracted_slots=slots)


def _ready(plan=None, message="Here's your plan!"):
    return ExtractorResult(message=message, ready_to_generate=True, plan=plan or _plan())


class Conversation:
    """Tracks caller-side history the way a client would."""

    def __init__(self, engine, principal, mode=Mode.QUICK):
        self.engine = engine
        self.principal = principal
        self.mode = mode
        self.history = []

    async def say(self, message):
        response = await self.engine.handle_turn(self.principal, message, self.mode, list(self.history))
        self.history.append({"role": "user", "content": message})
        self.history.append({"role": "assistant", "content": response["message"]})
        return response

    def reset(self):
        self.history = []


class TestStateMachine:
    def setup_method(self):
        from planner.state_machine import ConversationStateMachine
        self.sessions = MemorySessionStore()
        self.activities = MemoryActivityStore()
        self.extractor = MagicMock()
        self.extractor.process = AsyncMock()
        self.publisher = MagicMock()
        self.publisher.publish_plan_materialized = AsyncMock(return_value=True)
        self.reminders = MagicMock()
        self.reminders.schedule_for_activity = AsyncMock(return_value=[])
        self.engine = ConversationStateMachine(
            lifecycle=SessionLifecycleManager(self.sessions, idle_timeout_seconds=0),
            session_store=self.sessions,
            extractor=self.extractor,
            materializer=PlanMaterializer(self.activities),
            publisher=self.publisher,
            reminders=self.reminders,
        )
        self.principal = Authenticated(user_id="u1")
        self.chat = Conversation(self.engine, self.principal)

    async def _session(self):
        return await self.sessions.get_active_session("u1")

    async def _reach_confirming(self, plan=None):
        self.extractor.process.side_effect = [_ask(), _ready(plan)]
        await self.chat.say("plan a birthday party")
        response = await self.chat.say("12 guests")
        assert (await self._session()).session_state == SessionState.CONFIRMING
        return response

    # ── Guardrail ────────────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_first_message_never_confirms(self):
        self.extractor.process.side_effect = [_ready()]
        response = await self.chat.say("plan a party for 10 people on saturday with a $200 budget")

        session = await self._session()
        assert session.session_state == SessionState.GATHERING
        assert session.slots.pending_plan is None
        assert not session.external_context.awaiting_confirmation
        assert "plan" not in response
        assert self.engine.get_health()["guardrail_blocks"] == 1

    @pytest.mark.asyncio
    async def test_second_message_may_confirm(self):
        response = await self._reach_confirming()
        assert response["awaitingConfirmation"] is True
        assert CONFIRMATION_QUESTION in response["message"]
        assert "1. Step 0" in response["message"]

    @pytest.mark.asyncio
    async def test_confirmation_question_not_duplicated(self):
        self.extractor.process.side_effect = [_ask(), _ready(message="Here it is. Does this work for you?")]
        await self.chat.say("plan a dinner")
        response = await self.chat.say("friday")
        assert CONFIRMATION_QUESTION not in response["message"]

    # ── End to end ───────────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_birthday_party_flow(self):
        self.extractor.process.side_effect = [
            _ask("When is the party?", occasion="birthday"),
            _ask("How many guests?", date="2030-06-01"),
            _ask("What's your budget?", guests=12),
            _ready(_plan(n=5)),
        ]
        for message in ["plan a birthday party", "June 1st", "12 guests", "about $300"]:
            response = await self.chat.say(message)
            assert response["planGenerated"] is False

        session = await self._session()
        assert session.session_state == SessionState.CONFIRMING
        assert session.slots.extracted == {"occasion": "birthday", "date": "2030-06-01", "guests": 12}
        assert len(session.conversation_history) == 8

        response = await self.chat.say("yes")
        await self.engine.drain()

        assert response["activityCreated"] is True
        assert response["planGenerated"] is True
        assert len(response["createdTasks"]) == 5
        assert "✨ Your plan is ready!" in response["message"]
        assert self.extractor.process.await_count == 4

        completed = self.sessions.all_sessions("u1")[0]
        assert completed.is_complete
        assert completed.session_state == SessionState.COMPLETED
        assert completed.external_context.activity_id == response["activity"]["id"]
        assert await self._session() is None
        self.publisher.publish_plan_materialized.assert_awaited_once()
        self.reminders.schedule_for_activity.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_continuation_after_completion_expires(self):
        await self._reach_confirming()
        await self.chat.say("yes")
        await self.engine.drain()
        with pytest.raises(SessionExpired):
            await self.chat.say("one more thing")

    # ── Confirming state ─────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_replay_does_not_call_extractor(self):
        await self._reach_confirming()
        before = await self._session()
        calls = self.extractor.process.await_count

        response = await self.chat.say("show the overview")

        assert self.extractor.process.await_count == calls
        assert response["plan"] == before.slots.pending_plan.to_dict()
        assert response["awaitingConfirmation"] is True
        after = await self._session()
        assert after.to_dict() == before.to_dict()

    @pytest.mark.asyncio
    async def test_negative_sends_revision_to_extractor(self):
        await self._reach_confirming()
        self.extractor.process.side_effect = [_ask("What should change?")]

        await self.chat.say("no, wait")

        session = await self._session()
        assert session.session_state == SessionState.GATHERING
        assert session.external_context.awaiting_confirmation is False
        assert session.slots.pending_plan.title == "Birthday Party"
        context = self.extractor.process.await_args.args[4]
        assert context["revision"] is True

    @pytest.mark.asyncio
    async def test_revision_with_ready_plan_reconfirms(self):
        await self._reach_confirming()
        self.extractor.process.side_effect = [_ready(_plan("Bigger Party", n=6))]

        response = await self.chat.say("add a magician")

        session = await self._session()
        assert session.session_state == SessionState.CONFIRMING
        assert session.slots.pending_plan.title == "Bigger Party"
        assert len(response["plan"]["tasks"]) == 6

    @pytest.mark.asyncio
    async def test_new_conversation_supersedes_confirmation(self):
        await self._reach_confirming()
        old = await self._session()

        self.chat.reset()
        self.extractor.process.side_effect = [_ask("What are we planning?")]
        await self.chat.say("yes")

        current = await self._session()
        assert current.id != old.id
        assert current.session_state == SessionState.GATHERING
        assert self.activities._activities == {}
        assert sum(1 for s in self.sessions.all_sessions("u1") if not s.is_complete) == 1

    # ── Help / failures ──────────────────────────────────────────────────────

    @pytest.mark.asyncio
    async def test_help_leaves_session_untouched(self):
        await self._reach_confirming()
        before = await self._session()

        response = await self.chat.say("what's the difference between quick and smart?")

        assert response["helpProvided"] is True
        assert response["message"] == HELP_MESSAGE
        assert (await self._session()).to_dict() == before.to_dict()

    @pytest.mark.asyncio
    async def test_extractor_failure_apologizes(self):
        self.extractor.process.side_effect = RuntimeError("model down")
        response = await self.chat.say("plan a trip")

        assert response["error"] == "plan_generation_failed"
        assert response["message"] == APOLOGY_MESSAGE
        assert (await self._session()).session_state == SessionState.GATHERING

    @pytest.mark.asyncio
    async def test_ready_with_incomplete_plan_is_rejected(self):
        self.extractor.process.side_effect = [_ask(), _ready(CandidatePlan(title="No tasks"))]
        await self.chat.say("plan a trip")
        response = await self.chat.say("to Rome")

        assert response["error"] == "plan_generation_failed"
        session = await self._session()
        assert session.session_state == SessionState.GATHERING
        assert session.slots.pending_plan is None

    @pytest.mark.asyncio
    async def test_materialization_failure_keeps_confirming(self):
        await self._reach_confirming()
        self.activities.create_task = AsyncMock(side_effect=RuntimeError("disk full"))

        with pytest.raises(MaterializationFailure) as exc:
            await self.chat.say("yes")

        assert exc.value.session_id is not None
        session = await self._session()
        assert session.session_state == SessionState.CONFIRMING
        assert session.has_pending_plan

    @pytest.mark.asyncio
    async def test_side_effect_failure_does_not_fail_turn(self):
        self.publisher.publish_plan_materialized = AsyncMock(side_effect=RuntimeError("nats down"))
        await self._reach_confirming()

        response = await self.chat.say("go ahead")
        await self.engine.drain()

        assert response["activityCreated"] is True

    @pytest.mark.asyncio
    async def test_unpublished_event_is_logged_as_warning(self, caplog):
        self.publisher.publish_plan_materialized = AsyncMock(return_value=False)
        await self._reach_confirming()

        with caplog.at_level(logging.INFO, logger="planner.engine"):
            response = await self.chat.say("yes")
            await self.engine.drain()

        assert response["activityCreated"] is True
        messages = [r.getMessage() for r in caplog.records if r.name == "planner.engine"]
        assert any("PlanMaterialized not published" in m for m in messages)
        assert not any("PlanMaterialized published for" in m for m in messages)

    # ── Update path via linked activity ──────────────────────────────────────

    @pytest.mark.asyncio
    async def test_linked_activity_is_updated(self):
        await self._reach_confirming()
        first = await self.chat.say("yes")
        await self.engine.drain()
        activity_id = first["activity"]["id"]

        self.extractor.process.side_effect = [_ask(), _ready(_plan("Party v2", n=2))]
        await self.engine.handle_turn(self.principal, "refine my party", Mode.QUICK, [], activity_id=activity_id)
        history = [{"role": "user", "content": "refine my party"}]
        await self.engine.handle_turn(self.principal, "make it smaller", Mode.QUICK, history)
        response = await self.engine.handle_turn(self.principal, "yes", Mode.QUICK, history * 2)

        assert response["activityUpdated"] is True
        assert response["activity"]["id"] == activity_id
        assert "♻️ Your plan has been updated!" in response["message"]
        tasks = await self.activities.list_tasks(activity_id, "u1")
        assert [t.title for t in tasks] == ["Step 0", "Step 1"]
