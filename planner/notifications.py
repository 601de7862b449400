"""
Planner Reminders - Schedule start reminders for a newly materialized activity.

Offsets before the activity's start: 7 days, 3 days, 1 day, and the morning of
(08:00 on the start date). Reminders already in the past are dropped. Each
reminder is published for downstream delivery; nothing here blocks a turn.
"""

import logging
from datetime import datetime, time, timedelta
from typing import Any, Dict, List, Optional

from planner.models import Activity

logger = logging.getLogger("planner.reminders")

# (label, minutes before start); 0 means the morning of
START_OFFSETS = [
    ("7d", 7 * 24 * 60),
    ("3d", 3 * 24 * 60),
    ("1d", 24 * 60),
    ("morning_of", 0),
]
MORNING_OF = time(8, 0)

TITLE_TEMPLATES = {
    "7d": "📅 {title} in one week",
    "3d": "📍 {title} in 3 days",
    "1d": "⏰ {title} is tomorrow",
    "morning_of": "🌅 {title} is today",
}


def reminder_times(start: datetime, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Compute the reminder schedule for a start date, dropping reminders in the past."""
    now = now or datetime.utcnow()
    schedule = []
    for label, minutes in START_OFFSETS:
        if minutes == 0:
            fire_at = datetime.combine(start.date(), MORNING_OF)
        else:
            fire_at = start - timedelta(minutes=minutes)
        if fire_at <= now:
            continue
        schedule.append({"label": label, "fire_at": fire_at})
    return schedule


class ReminderScheduler:
    """Publishes reminders for an activity through the plan event publisher."""

    def __init__(self, publisher=None):
        self._publisher = publisher

    async def schedule_for_activity(self, activity: Activity, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """
        Build and publish reminders for the activity's start date.

        Returns: The reminders scheduled (empty when the activity has no start date)
        """
        if activity.start_date is None:
            return []

        reminders = []
        for entry in reminder_times(activity.start_date, now):
            reminder = {
                "activity_id": activity.id,
                "owner_id": activity.user_id,
                "type": f"activity_starts_{entry['label']}",
                "title": TITLE_TEMPLATES[entry["label"]].format(title=activity.title),
                "fire_at": entry["fire_at"].isoformat(),
                "starts_at": activity.start_date.isoformat(),
            }
            reminders.append(reminder)
            if self._publisher is not None:
                await self._publisher.publish_reminder(activity.user_id, reminder)

        logger.info(f"Scheduled {len(reminders)} reminders for activity {activity.id}")
        return reminders
