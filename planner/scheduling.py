"""
Planner Scheduling - Derive each task's due date/time from its draft.

Resolution order for a draft with a scheduled date:
  1. explicit start time on the draft
  2. a deadline phrase in the task text ("before 2 PM", "by noon") minus a buffer
  3. an explicit clock time in the text ("7:30 pm", "10am", "18:00")
  4. a named period ("morning", "evening", ...)
  5. an even spread over the working window by sibling position

Drafts without a scheduled date get no due date.
"""

import logging
import re
from datetime import date, datetime, time, timedelta
from typing import Optional

from planner.config import config
from planner.models import TaskDraft

logger = logging.getLogger("planner.scheduling")

NAMED_PERIODS = {
    "midnight": time(0, 0),
    "morning": time(9, 0),
    "breakfast": time(8, 0),
    "noon": time(12, 0),
    "midday": time(12, 0),
    "lunch": time(12, 0),
    "afternoon": time(14, 0),
    "evening": time(18, 0),
    "dinner": time(18, 0),
    "tonight": time(20, 0),
    "night": time(20, 0),
}

_PERIOD_WORDS = "|".join(sorted(NAMED_PERIODS, key=len, reverse=True))
_CLOCK = r"(\d{1,2})(?::(\d{2}))?\s*(a\.?m\.?|p\.?m\.?)?"

DEADLINE_RE = re.compile(
    rf"\b(?:before|by|no later than)\s+(?:{_CLOCK}|({_PERIOD_WORDS}))\b",
    re.IGNORECASE,
)
MERIDIEM_RE = re.compile(r"\b(\d{1,2})(?::(\d{2}))?\s*(a\.?m\.?|p\.?m\.?)(?=\W|$)", re.IGNORECASE)
TWENTY_FOUR_RE = re.compile(r"\b([01]?\d|2[0-3]):([0-5]\d)\b")
PERIOD_RE = re.compile(rf"\b({_PERIOD_WORDS})\b", re.IGNORECASE)


def parse_hhmm(value: str) -> time:
    hours, minutes = value.strip().split(":")[:2]
    return time(int(hours), int(minutes))


def _to_time(hour: int, minute: int, meridiem: Optional[str]) -> Optional[time]:
    if meridiem:
        meridiem = meridiem.replace(".", "").lower()
        if not 1 <= hour <= 12:
            return None
        if meridiem == "pm" and hour != 12:
            hour += 12
        elif meridiem == "am" and hour == 12:
            hour = 0
    elif 1 <= hour <= 7:
        # "by 5" in a plan almost always means the afternoon
        hour += 12
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        return None
    return time(hour, minute)


def _minus_hours(t: time, hours: int) -> time:
    minutes = max(t.hour * 60 + t.minute - hours * 60, 0)
    return time(minutes // 60, minutes % 60)


def infer_start_time(text: str) -> Optional[time]:
    """Scan task text for a time phrase. Returns None if nothing matches."""
    if not text:
        return None

    deadline = DEADLINE_RE.search(text)
    if deadline:
        hour, minute, meridiem, period = deadline.groups()
        if period:
            target = NAMED_PERIODS[period.lower()]
        else:
            target = _to_time(int(hour), int(minute or 0), meridiem)
        if target is not None:
            return _minus_hours(target, config.DEADLINE_BUFFER_HOURS)

    clock = MERIDIEM_RE.search(text)
    if clock:
        hour, minute, meridiem = clock.groups()
        found = _to_time(int(hour), int(minute or 0), meridiem)
        if found is not None:
            return found

    clock24 = TWENTY_FOUR_RE.search(text)
    if clock24:
        return time(int(clock24.group(1)), int(clock24.group(2)))

    period = PERIOD_RE.search(text)
    if period:
        return NAMED_PERIODS[period.group(1).lower()]

    return None


def distribute_start_time(index: int, sibling_count: int) -> time:
    """Spread sibling tasks evenly inside the working window, never on its edges."""
    start = parse_hhmm(config.SCHEDULE_DAY_START)
    end = parse_hhmm(config.SCHEDULE_DAY_END)
    window = (end.hour * 60 + end.minute) - (start.hour * 60 + start.minute)
    count = max(sibling_count, 1)
    position = min(max(index, 0), count - 1)
    offset = (position + 1) * window // (count + 1)
    minutes = start.hour * 60 + start.minute + offset
    return time(minutes // 60, minutes % 60)


def _parse_date(value: str) -> Optional[date]:
    try:
        return date.fromisoformat(value.strip()[:10])
    except (ValueError, AttributeError):
        logger.warning(f"Unparseable scheduled date {value!r}; task left unscheduled")
        return None


def derive_due_date(draft: TaskDraft, index: int, sibling_count: int) -> Optional[datetime]:
    """
    Effective due date/time for a task draft.

    Args:
        draft: The task draft from the confirmed plan
        index: The draft's position among its siblings (0-based)
        sibling_count: Number of tasks in the plan
    """
    if not draft.scheduled_date:
        return None
    day = _parse_date(draft.scheduled_date)
    if day is None:
        return None

    start: Optional[time] = None
    if draft.start_time:
        try:
            start = parse_hhmm(draft.start_time)
        except (ValueError, TypeError):
            logger.debug(f"Ignoring malformed start time {draft.start_time!r}")
    if start is None:
        start = infer_start_time(f"{draft.title} {draft.description}")
    if start is None:
        start = distribute_start_time(index, sibling_count)
    return datetime.combine(day, start)
