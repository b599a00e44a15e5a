from datetime import date, datetime, timedelta
from types import SimpleNamespace

from django.test import SimpleTestCase

from planning import capacity


MON = date(2025, 6, 2)
WED = date(2025, 6, 4)
FRI = date(2025, 6, 6)
SAT = date(2025, 6, 7)


class BusinessDaysTest(SimpleTestCase):
    """Weekday counting over inclusive windows."""

    def test_full_week_without_holidays(self):
        self.assertEqual(capacity.business_days(MON, FRI), 5)

    def test_public_holiday_midweek(self):
        self.assertEqual(capacity.business_days(MON, FRI, {WED}), 4)

    def test_single_day_windows(self):
        self.assertEqual(capacity.business_days(MON, MON), 1)
        self.assertEqual(capacity.business_days(SAT, SAT), 0)
        self.assertEqual(capacity.business_days(WED, WED, {WED}), 0)

    def test_reversed_window_is_empty(self):
        self.assertEqual(capacity.business_days(FRI, MON), 0)

    def test_accepts_iso_strings_and_datetimes(self):
        self.assertEqual(capacity.business_days("2025-06-02", datetime(2025, 6, 6, 17, 30)), 5)

    def test_holidays_never_increase_the_count(self):
        holidays = {WED, SAT, date(2025, 6, 10), date(2025, 6, 24)}
        for offset in range(0, 30, 3):
            start = MON + timedelta(days=offset)
            for length in (0, 1, 6, 13, 20):
                end = start + timedelta(days=length)
                self.assertLessEqual(
                    capacity.business_days(start, end, holidays),
                    capacity.business_days(start, end),
                )

    def test_iter_days_is_inclusive(self):
        self.assertEqual(list(capacity.iter_days(MON, WED)), [MON, date(2025, 6, 3), WED])


class HolidayExpansionTest(SimpleTestCase):

    def test_range_straddling_window_start(self):
        days = capacity.holidays_in_window([(date(2025, 5, 30), date(2025, 6, 3))], MON, FRI)
        self.assertEqual(days, {MON, date(2025, 6, 3)})

    def test_range_outside_window_contributes_nothing(self):
        days = capacity.holidays_in_window([(date(2025, 6, 16), date(2025, 6, 20))], MON, FRI)
        self.assertEqual(days, set())

    def test_single_days_filtered_to_window(self):
        days = capacity.holidays_in_window([(WED, None), (date(2025, 7, 1), None)], MON, FRI)
        self.assertEqual(days, {WED})

    def test_duplicates_collapse(self):
        days = capacity.holidays_in_window([(WED, None), (MON, FRI)], MON, FRI)
        self.assertEqual(len(days), 5)


class NumbersTest(SimpleTestCase):

    def test_days_remaining(self):
        self.assertEqual(capacity.days_remaining(10, 4), 6)
        self.assertEqual(capacity.days_remaining(3, 5), 0)
        self.assertEqual(capacity.days_remaining(1.3, 0.1), 1.2)
        self.assertEqual(capacity.days_remaining(2, None), 2)

    def test_capacity_scales_by_working_pattern(self):
        self.assertEqual(capacity.capacity_for(10, 2.5), 5.0)
        self.assertEqual(capacity.capacity_for(9, 4), 7.2)
        self.assertEqual(capacity.capacity_for(10, None), 10.0)

    def test_rounding_is_half_up(self):
        self.assertEqual(capacity.round_half_up(0.25, 1), 0.3)
        self.assertEqual(capacity.round_half_up(2.5), 3)
        self.assertEqual(capacity.round_half_up(84.5), 85)

    def test_allocation_percentage(self):
        self.assertEqual(capacity.allocation_percentage(5, 10), 50)
        self.assertEqual(capacity.allocation_percentage(12.5, 10), 125)
        self.assertEqual(capacity.allocation_percentage(0, 0), 0)
        self.assertEqual(capacity.allocation_percentage(3, 0), capacity.ZERO_CAPACITY_SENTINEL)

    def test_allocation_percentage_is_monotonic(self):
        previous = -1
        for tenths in range(0, 300):
            current = capacity.allocation_percentage(tenths / 10, 7.5)
            self.assertGreaterEqual(current, previous)
            previous = current

    def test_allocation_status_tiers(self):
        self.assertEqual(capacity.allocation_status(121), "Overallocated")
        self.assertEqual(capacity.allocation_status(120), "Full")
        self.assertEqual(capacity.allocation_status(91), "Full")
        self.assertEqual(capacity.allocation_status(90), "Balanced")
        self.assertEqual(capacity.allocation_status(51), "Balanced")
        self.assertEqual(capacity.allocation_status(50), "Underallocated")
        self.assertEqual(capacity.allocation_status(0), "Underallocated")

    def test_allocation_status_custom_table(self):
        thresholds = ((90, "Full"), (50, "Balanced"))
        self.assertEqual(capacity.allocation_status(150, thresholds), "Full")

    def test_working_days(self):
        self.assertEqual(capacity.working_days(MON, date(2025, 6, 13), 2.5), 5.0)
        self.assertEqual(capacity.working_days(MON, FRI, 4, {WED}), 3.2)


class ProrationTest(SimpleTestCase):

    def test_due_inside_window_counts_in_full(self):
        result = capacity.prorate(3.5, MON, FRI, MON, date(2025, 6, 13))
        self.assertEqual(result.proportion, 1.0)
        self.assertEqual(result.prorated, 3.5)

    def test_due_after_window_is_spread(self):
        result = capacity.prorate(4, MON, date(2025, 6, 21), MON, date(2025, 6, 11))
        self.assertEqual(result.total_span, 20)
        self.assertEqual(result.window_span, 10)
        self.assertEqual(result.proportion, 0.5)
        self.assertEqual(result.prorated, 2.0)

    def test_effective_start_is_later_of_task_and_window(self):
        result = capacity.prorate(4, date(2025, 5, 1), date(2025, 6, 21), MON, date(2025, 6, 11))
        self.assertEqual(result.effective_start, MON)

        result = capacity.prorate(4, None, date(2025, 6, 21), MON, date(2025, 6, 11))
        self.assertEqual(result.effective_start, MON)

    def test_nothing_remaining_contributes_nothing(self):
        self.assertEqual(capacity.prorate(0, MON, date(2025, 7, 1), MON, FRI).prorated, 0.0)


class AggregateWorkloadTest(SimpleTestCase):
    """Capacity and allocation across several assignees in one pass."""

    def setUp(self):
        self.window_start = MON
        self.window_end = date(2025, 6, 13)
        self.assignees = [
            SimpleNamespace(name="Alex", working_days_per_week=5),
            SimpleNamespace(name="Sam", working_days_per_week=2.5),
            SimpleNamespace(name="Jo", working_days_per_week=5),
        ]

    def task(self, assignee, days_assigned, days_taken=0, start_date=None,
             due_date=FRI, status="In Progress"):
        return SimpleNamespace(
            assignee=assignee, days_assigned=days_assigned, days_taken=days_taken,
            start_date=start_date, due_date=due_date, status=status,
        )

    def run_aggregation(self, tasks, calendars=None):
        loads = capacity.aggregate_workload(
            self.window_start, self.window_end, self.assignees, tasks, calendars or {},
        )
        return {load.name: load for load in loads}

    def test_prorated_allocation_and_status(self):
        tasks = [
            self.task("Alex", 10, 4),
            self.task("Alex", 4, start_date=MON, due_date=date(2025, 6, 21)),
            self.task("Alex", 5, status="Completed"),
            self.task("Alex", 3, 3),
            self.task("Alex", 2, due_date=date(2025, 5, 30)),
            self.task("Alex", 2, start_date=date(2025, 6, 16), due_date=date(2025, 6, 30)),
            self.task("Nobody", 20),
        ]
        alex = self.run_aggregation(tasks)["Alex"]

        self.assertEqual(alex.business_days, 10)
        self.assertEqual(alex.capacity, 10.0)
        self.assertAlmostEqual(alex.allocated, 8.4)
        self.assertEqual(alex.active_tasks, 2)
        self.assertEqual(alex.allocation_percentage, 84)
        self.assertEqual(alex.allocation_status, "Balanced")

    def test_personal_calendar_reduces_capacity(self):
        loads = self.run_aggregation([self.task("Sam", 6, due_date=self.window_end)], {"Sam": {WED}})
        sam = loads["Sam"]
        self.assertEqual(sam.business_days, 9)
        self.assertEqual(sam.capacity, 4.5)
        self.assertEqual(sam.allocation_percentage, 133)
        self.assertEqual(sam.allocation_status, "Overallocated")

    def test_zero_capacity_with_work_is_flagged(self):
        every_day = set(capacity.iter_days(self.window_start, self.window_end))
        jo = self.run_aggregation([self.task("Jo", 1)], {"Jo": every_day})["Jo"]
        self.assertEqual(jo.capacity, 0.0)
        self.assertEqual(jo.allocation_percentage, capacity.ZERO_CAPACITY_SENTINEL)
        self.assertEqual(jo.allocation_status, "Overallocated")

    def test_idle_assignees_are_reported(self):
        loads = self.run_aggregation([])
        self.assertEqual(set(loads), {"Alex", "Sam", "Jo"})
        self.assertEqual(loads["Sam"].allocation_percentage, 0)
        self.assertEqual(loads["Sam"].allocation_status, "Underallocated")


class RagClassificationTest(SimpleTestCase):

    def test_red_when_work_exceeds_time(self):
        result = capacity.classify_rag(10, 4, date(2025, 6, 3), MON)
        self.assertEqual(result.days_remaining, 6)
        self.assertEqual(result.business_days_until_due, 2)
        self.assertEqual(result.buffer, -4)
        self.assertEqual(result.rag, capacity.RED)

    def test_amber_when_buffer_is_tight(self):
        result = capacity.classify_rag(2, 0, FRI, MON)
        self.assertEqual(result.buffer, 3)
        self.assertEqual(result.rag, capacity.AMBER)

    def test_green_with_comfortable_buffer(self):
        self.assertEqual(capacity.classify_rag(1, 0, date(2025, 6, 13), MON).rag, capacity.GREEN)

    def test_holidays_can_change_the_outcome(self):
        self.assertEqual(capacity.classify_rag(1, 0, FRI, MON).rag, capacity.GREEN)
        self.assertEqual(capacity.classify_rag(1, 0, FRI, MON, {WED}).rag, capacity.AMBER)

    def test_overdue_task_with_work_left_is_red(self):
        self.assertEqual(capacity.classify_rag(3, 1, date(2025, 5, 30), MON).rag, capacity.RED)


class DeriveTaskStatusTest(SimpleTestCase):

    def test_status_follows_effort(self):
        self.assertEqual(capacity.derive_task_status(0, 5), "Not Started")
        self.assertEqual(capacity.derive_task_status(2, 5), "In Progress")
        self.assertEqual(capacity.derive_task_status(5, 5), "Completed")
        self.assertEqual(capacity.derive_task_status(6, 5), "Completed")

    def test_stale_progress_goes_on_hold(self):
        now = datetime(2025, 6, 20, 9, 0)
        self.assertEqual(capacity.derive_task_status(2, 5, now - timedelta(days=8), now), "On Hold")
        self.assertEqual(capacity.derive_task_status(2, 5, now - timedelta(days=2), now), "In Progress")
        self.assertEqual(capacity.derive_task_status(0, 5, now - timedelta(days=30), now), "Not Started")
