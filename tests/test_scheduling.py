"""
Scheduling Tests - due date derivation for task drafts.
"""

from datetime import datetime, time

from planner.models import TaskDraft
from planner.scheduling import (
    derive_due_date,
    distribute_start_time,
    infer_start_time,
)


class TestInferStartTime:
    def test_deadline_minus_buffer(self):
        assert infer_start_time("meet before 2 PM") == time(12, 0)

    def test_deadline_named_period(self):
        assert infer_start_time("drop off the cake by noon") == time(10, 0)

    def test_deadline_clamped_at_midnight(self):
        assert infer_start_time("finish before 1 am") == time(0, 0)

    def test_bare_deadline_hour_is_afternoon(self):
        assert infer_start_time("be there by 5") == time(15, 0)

    def test_explicit_meridiem(self):
        assert infer_start_time("Dinner reservation at 7:30 pm") == time(19, 30)
        assert infer_start_time("call the venue at 10am") == time(10, 0)

    def test_twenty_four_hour(self):
        assert infer_start_time("Guests arrive 18:15") == time(18, 15)

    def test_named_periods(self):
        assert infer_start_time("morning run") == time(9, 0)
        assert infer_start_time("Afternoon setup") == time(14, 0)
        assert infer_start_time("movie tonight") == time(20, 0)

    def test_no_time_info(self):
        assert infer_start_time("Buy balloons") is None
        assert infer_start_time("") is None


class TestDistribute:
    def test_strictly_inside_window(self):
        for count in range(1, 9):
            for index in range(count):
                start = distribute_start_time(index, count)
                assert time(9, 0) < start < time(20, 0)

    def test_middle_of_five(self):
        # 09:00 + 3 * 660 / 6 = 09:00 + 330 min
        assert distribute_start_time(2, 5) == time(14, 30)

    def test_increasing_with_index(self):
        times = [distribute_start_time(i, 4) for i in range(4)]
        assert times == sorted(times)
        assert len(set(times)) == 4


class TestDeriveDueDate:
    def test_explicit_start_time_wins(self):
        draft = TaskDraft(title="Pick up cake before 2 PM", scheduled_date="2025-06-01", start_time="08:45")
        assert derive_due_date(draft, 0, 1) == datetime(2025, 6, 1, 8, 45)

    def test_deadline_in_title(self):
        draft = TaskDraft(title="Meet the caterer", description="meet before 2 PM", scheduled_date="2025-06-01")
        due = derive_due_date(draft, 0, 3)
        assert due.date() == datetime(2025, 6, 1).date()
        assert due.time() <= time(12, 0)

    def test_distributed_when_no_time_info(self):
        draft = TaskDraft(title="Buy decorations", scheduled_date="2025-06-01")
        due = derive_due_date(draft, 2, 5)
        assert time(9, 0) < due.time() < time(20, 0)

    def test_no_scheduled_date(self):
        assert derive_due_date(TaskDraft(title="Someday"), 0, 1) is None

    def test_unparseable_date(self):
        assert derive_due_date(TaskDraft(title="x", scheduled_date="next tuesday"), 0, 1) is None

    def test_malformed_start_time_falls_back(self):
        draft = TaskDraft(title="evening toast", scheduled_date="2025-06-01", start_time="late")
        assert derive_due_date(draft, 0, 1) == datetime(2025, 6, 1, 18, 0)
