"""
Capacity, allocation and risk rules.

Everything here works on date-only values and plain numbers, with no database
access, so the same rules back every report and endpoint.
"""
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Iterator, Mapping, Sequence

WEEKEND = (5, 6)  # Saturday, Sunday
STANDARD_WORK_WEEK = 5
ZERO_CAPACITY_SENTINEL = 1000
STALE_UPDATE_DAYS = 7

DEFAULT_THRESHOLDS = (
    (120, "Overallocated"),
    (90, "Full"),
    (50, "Balanced"),
)
UNDERALLOCATED = "Underallocated"
DEFAULT_AMBER_BUFFER = 3

GREEN, AMBER, RED = 1, 2, 3

NOT_STARTED = "Not Started"
IN_PROGRESS = "In Progress"
COMPLETED = "Completed"
ON_HOLD = "On Hold"

NO_HOLIDAYS: frozenset[date] = frozenset()


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

def to_date(value) -> date:
    """Normalise a date, datetime or ISO-8601 string to a date-only value."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value.strip()[:10])
    raise TypeError(f"Cannot interpret {value!r} as a date")


def next_day(day: date) -> date:
    return day + timedelta(days=1)


def iter_days(start: date, end: date) -> Iterator[date]:
    """Yield every calendar day from start to end inclusive."""
    day = start
    while day <= end:
        yield day
        day = next_day(day)


def is_business_day(day: date, holidays: Iterable[date] = NO_HOLIDAYS) -> bool:
    return day.weekday() not in WEEKEND and day not in holidays


def business_days(start, end, holidays: Iterable[date] = NO_HOLIDAYS) -> int:
    """
    Count weekdays in [start, end] that are not holidays.

    A window whose start is after its end has no business days. A single-day
    window follows the same rule as any other.
    """
    start, end = to_date(start), to_date(end)
    holidays = holidays if isinstance(holidays, (set, frozenset)) else frozenset(holidays)
    return sum(1 for day in iter_days(start, end) if is_business_day(day, holidays))


def holidays_in_window(entries: Iterable[tuple], start: date, end: date) -> set[date]:
    """
    Expand (holiday_date, date_end) entries into single days inside [start, end].

    Ranges are expanded over their own span first, so a range that straddles
    the window still contributes the days it shares with it.
    """
    days: set[date] = set()
    for first, last in entries:
        first = to_date(first)
        last = to_date(last) if last else first
        for day in iter_days(max(first, start), min(last, end)):
            days.add(day)
    return days


# ---------------------------------------------------------------------------
# Numbers
# ---------------------------------------------------------------------------

def round_half_up(value, places: int = 0):
    """Round like a spreadsheet does: halves go up, never to even."""
    quantum = Decimal(1).scaleb(-places)
    result = Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP)
    return int(result) if places == 0 else float(result)


def _decimal(value) -> Decimal:
    return Decimal(str(value)) if value not in (None, "") else Decimal(0)


def days_remaining(days_assigned, days_taken) -> float:
    return float(max(Decimal(0), _decimal(days_assigned) - _decimal(days_taken)))


def inclusive_span(start: date, end: date) -> int:
    """Whole days from start to end counting both ends, never less than one."""
    return max(1, (end - start).days + 1)


def capacity_for(business_day_count: int, working_days_per_week=STANDARD_WORK_WEEK) -> float:
    fraction = _decimal(working_days_per_week or STANDARD_WORK_WEEK) / STANDARD_WORK_WEEK
    return round_half_up(business_day_count * fraction, 1)


def working_days(start, end, working_days_per_week=STANDARD_WORK_WEEK,
                 holidays: Iterable[date] = NO_HOLIDAYS) -> float:
    """Business days in the window scaled by the assignee's working pattern."""
    return capacity_for(business_days(start, end, holidays), working_days_per_week)


def allocation_percentage(allocated: float, capacity: float) -> int:
    if capacity > 0:
        return round_half_up(allocated / capacity * 100)
    if allocated > 0:
        return ZERO_CAPACITY_SENTINEL
    return 0


def allocation_status(percentage: float, thresholds: Sequence[tuple] = DEFAULT_THRESHOLDS) -> str:
    """First tier whose limit the percentage strictly exceeds, top-down."""
    for limit, label in thresholds:
        if percentage > limit:
            return label
    return UNDERALLOCATED


# ---------------------------------------------------------------------------
# Proration
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Proration:
    effective_start: date
    total_span: int
    window_span: int
    proportion: float
    prorated: float


def prorate(remaining: float, task_start, due_date, window_start, window_end) -> Proration:
    """
    Portion of a task's remaining effort that falls inside the window.

    A task due inside the window must be finished there, so all of its
    remaining effort counts. A task due later is spread evenly over the
    calendar days from its effective start to its due date.
    """
    due_date, window_start, window_end = to_date(due_date), to_date(window_start), to_date(window_end)
    effective_start = max(to_date(task_start), window_start) if task_start else window_start
    total_span = inclusive_span(effective_start, due_date)
    window_span = inclusive_span(effective_start, window_end)

    if due_date <= window_end:
        proportion = 1.0
    else:
        proportion = min(1.0, window_span / total_span)

    prorated = remaining * proportion if remaining > 0 else 0.0
    return Proration(effective_start, total_span, window_span, proportion, prorated)


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

@dataclass
class AssigneeLoad:
    """Running totals for one assignee while a workload pass is in progress."""
    name: str
    working_days_per_week: float
    business_days: int = 0
    capacity: float = 0.0
    allocated: float = 0.0
    active_tasks: int = 0
    allocation_percentage: int = 0
    allocation_status: str = UNDERALLOCATED


def aggregate_workload(window_start, window_end, assignees: Iterable, tasks: Iterable,
                       calendars: Mapping[str, Iterable[date]],
                       thresholds: Sequence[tuple] = DEFAULT_THRESHOLDS) -> list[AssigneeLoad]:
    """
    Capacity and pro-rated allocation per assignee for the window.

    ``assignees`` need ``name`` and ``working_days_per_week``; ``tasks`` need
    ``assignee``, ``status``, ``days_assigned``, ``days_taken``, ``start_date``
    and ``due_date``. Tasks naming an unknown assignee are left out.
    """
    window_start, window_end = to_date(window_start), to_date(window_end)
    loads: dict[str, AssigneeLoad] = {}

    for assignee in assignees:
        per_week = float(assignee.working_days_per_week or STANDARD_WORK_WEEK)
        count = business_days(window_start, window_end, calendars.get(assignee.name, NO_HOLIDAYS))
        loads[assignee.name] = AssigneeLoad(
            name=assignee.name,
            working_days_per_week=per_week,
            business_days=count,
            capacity=capacity_for(count, per_week),
        )

    for task in tasks:
        load = loads.get(task.assignee)
        if load is None or task.status == COMPLETED or task.due_date is None:
            continue
        if to_date(task.due_date) < window_start:
            continue
        if task.start_date and to_date(task.start_date) > window_end:
            continue

        remaining = days_remaining(task.days_assigned, task.days_taken)
        if remaining <= 0:
            continue

        load.active_tasks += 1
        load.allocated += prorate(remaining, task.start_date, task.due_date, window_start, window_end).prorated

    for load in loads.values():
        load.allocation_percentage = allocation_percentage(load.allocated, load.capacity)
        load.allocation_status = allocation_status(load.allocation_percentage, thresholds)

    return list(loads.values())


# ---------------------------------------------------------------------------
# Risk
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RagAssessment:
    rag: int
    buffer: float
    days_remaining: float
    business_days_until_due: int


def classify_rag(days_assigned, days_taken, due_date, today,
                 holidays: Iterable[date] = NO_HOLIDAYS,
                 amber_buffer: float = DEFAULT_AMBER_BUFFER) -> RagAssessment:
    """Red when the work no longer fits before the due date, Amber when the slack is small."""
    remaining = days_remaining(days_assigned, days_taken)
    until_due = business_days(today, due_date, holidays)
    buffer = until_due - remaining

    if remaining > until_due:
        rag = RED
    elif buffer <= amber_buffer:
        rag = AMBER
    else:
        rag = GREEN

    return RagAssessment(rag=rag, buffer=buffer, days_remaining=remaining, business_days_until_due=until_due)


def derive_task_status(days_taken, days_assigned, last_updated=None, now=None) -> str:
    """Status implied by effort booked so far; stale in-progress work is put on hold."""
    taken = float(days_taken or 0)
    assigned = float(days_assigned or 1)

    if last_updated is not None and now is not None:
        if last_updated < now - timedelta(days=STALE_UPDATE_DAYS) and 0 < taken < assigned:
            return ON_HOLD

    if taken == 0:
        return NOT_STARTED
    if taken < assigned:
        return IN_PROGRESS
    return COMPLETED
