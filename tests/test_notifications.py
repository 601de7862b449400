"""
Reminder and Event Publisher Tests - NATS is always mocked.
"""

import json
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from planner.models import Activity


def _activity(start):
    return Activity(id="a1", user_id="guest:g1", title="Birthday Party", start_date=start)


# ─────────────────────────────────────────────────────────────────────────────
# Reminder schedule
# ─────────────────────────────────────────────────────────────────────────────

class TestReminderTimes:
    def test_all_offsets_in_future(self):
        from planner.notifications import reminder_times
        start = datetime(2030, 6, 10, 15, 0)
        schedule = reminder_times(start, now=datetime(2030, 5, 1))
        assert [r["label"] for r in schedule] == ["7d", "3d", "1d", "morning_of"]
        assert schedule[0]["fire_at"] == datetime(2030, 6, 3, 15, 0)
        assert schedule[-1]["fire_at"] == datetime(2030, 6, 10, 8, 0)

    def test_past_reminders_dropped(self):
        from planner.notifications import reminder_times
        start = datetime(2030, 6, 10, 15, 0)
        schedule = reminder_times(start, now=datetime(2030, 6, 8, 12, 0))
        assert [r["label"] for r in schedule] == ["1d", "morning_of"]


class TestReminderScheduler:
    @pytest.mark.asyncio
    async def test_publishes_each_reminder(self):
        from planner.notifications import ReminderScheduler
        publisher = MagicMock()
        publisher.publish_reminder = AsyncMock(return_value=True)
        scheduler = ReminderScheduler(publisher)

        reminders = await scheduler.schedule_for_activity(
            _activity(datetime(2030, 6, 10, 15, 0)), now=datetime(2030, 5, 1),
        )

        assert len(reminders) == 4
        assert publisher.publish_reminder.await_count == 4
        owner, payload = publisher.publish_reminder.await_args.args
        assert owner == "guest:g1"
        assert payload["title"] == "🌅 Birthday Party is today"

    @pytest.mark.asyncio
    async def test_no_start_date_no_reminders(self):
        from planner.notifications import ReminderScheduler
        assert await ReminderScheduler(None).schedule_for_activity(_activity(None)) == []


# ─────────────────────────────────────────────────────────────────────────────
# Event publisher
# ─────────────────────────────────────────────────────────────────────────────

class TestPlanEventPublisher:
    def test_subjects_are_nats_safe(self):
        from planner.event_publisher import materialized_subject, reminder_subject
        assert materialized_subject("guest:ab.c") == "plans.materialized.guest-ab_c"
        assert reminder_subject("u1") == "reminders.u1"

    @pytest.mark.asyncio
    async def test_publish_without_connection_is_noop(self):
        from planner.event_publisher import PlanEventPublisher
        assert await PlanEventPublisher().publish("plans.x", {"a": 1}) is False

    @pytest.mark.asyncio
    async def test_connect_failure_is_non_fatal(self):
        from planner.event_publisher import PlanEventPublisher
        with patch("planner.event_publisher.nats.connect", AsyncMock(side_effect=OSError("refused"))):
            publisher = PlanEventPublisher()
            assert await publisher.connect() is False
            assert publisher.is_connected is False

    @pytest.mark.asyncio
    async def test_publish_plan_materialized(self):
        from planner.event_publisher import PlanEventPublisher
        js = MagicMock()
        js.stream_info = AsyncMock(return_value=MagicMock())
        js.publish = AsyncMock()
        nc = MagicMock()
        nc.jetstream = MagicMock(return_value=js)

        with patch("planner.event_publisher.nats.connect", AsyncMock(return_value=nc)):
            publisher = PlanEventPublisher()
            assert await publisher.connect() is True

        ok = await publisher.publish_plan_materialized("u1", {"activity_id": "a1", "at": datetime(2030, 1, 1)})
        assert ok is True
        subject, data = js.publish.await_args.args
        assert subject == "plans.materialized.u1"
        assert json.loads(data)["activity_id"] == "a1"

    @pytest.mark.asyncio
    async def test_publish_error_returns_false(self):
        from planner.event_publisher import PlanEventPublisher
        publisher = PlanEventPublisher()
        publisher._connected = True
        publisher._js = MagicMock()
        publisher._js.publish = AsyncMock(side_effect=RuntimeError("stream gone"))
        assert await publisher.publish_reminder("u1", {}) is False
