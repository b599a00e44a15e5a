import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

import numpy as np
from django.conf import settings
from django.db import DatabaseError, transaction
from django.db.models import Count, Q
from django.utils import timezone
from inequality import gini  # type: ignore

from . import capacity
from .models import RAG, Assignee, Holiday, Project, Task, TaskStatus
from .schemas import (
    AssigneeAllocationSchema, BusinessDaysSchema, CalendarEventSchema,
    CalendarProjectSchema, ProjectAllocationSchema, TaskAllocationSchema,
    TaskRagSchema, WorkingDaysSchema, WorkloadRowSchema, WorkloadSummarySchema,
)

logger = logging.getLogger(__name__)

PLANNER_DEFAULTS = {
    "PLANNER_ALLOCATION_THRESHOLDS": capacity.DEFAULT_THRESHOLDS,
    "PLANNER_RAG_AMBER_BUFFER": capacity.DEFAULT_AMBER_BUFFER,
    "PLANNER_DEFAULT_WINDOW_DAYS": 14,
    "PLANNER_TIMEFRAME_DAYS": {"week": 7, "month": 30, "quarter": 90},
    "PLANNER_CALENDAR_WINDOW_DAYS": 30,
    "PLANNER_DEFAULT_COUNTRY_CODE": "GB",
    "PLANNER_IMPORT_MAX_BYTES": 10 * 1024 * 1024,
}


def planner_setting(name: str):
    """Read a planner setting, falling back to the built-in default."""
    return getattr(settings, name, PLANNER_DEFAULTS[name])


class PlannerError(Exception):
    """Business rule violation reported to the client as a 400."""

    def payload(self) -> dict:
        return {"error": str(self)}


class AssigneeInUseError(PlannerError):
    def __init__(self, count: int):
        super().__init__("Cannot delete assignee that is referenced in tasks")
        self.count = count

    def payload(self) -> dict:
        return {"error": str(self), "count": self.count}


class InvalidHolidayRangeError(PlannerError):
    pass


class MissingDueDateError(PlannerError):
    pass


def resolve_window(start_date: date | None, end_date: date | None,
                   days: int | None = None, today: date | None = None) -> tuple[date, date]:
    """Fill in a missing window edge; the default window starts today."""
    today = today or timezone.localdate()
    if days is None:
        days = planner_setting("PLANNER_DEFAULT_WINDOW_DAYS")
    start = start_date or today
    end = end_date or start + timedelta(days=days)
    return start, end


# ---------------------------------------------------------------------------
# Holiday lookups
# ---------------------------------------------------------------------------

class HolidayStore:
    """Database lookups the holiday resolver depends on."""

    @staticmethod
    def _in_window(start_date: date, end_date: date) -> Q:
        """Single days inside the window plus every range that overlaps it."""
        single_days = Q(date_end__isnull=True, holiday_date__gte=start_date, holiday_date__lte=end_date)
        ranges = Q(date_end__isnull=False, holiday_date__lte=end_date, date_end__gte=start_date)
        return single_days | ranges

    @classmethod
    def list_public_holidays(cls, start_date: date, end_date: date) -> list[tuple]:
        return list(
            Holiday.objects.filter(assignee__isnull=True)
            .filter(cls._in_window(start_date, end_date))
            .values_list("holiday_date", "date_end")
        )

    @classmethod
    def list_assignee_holidays(cls, assignee_id: int, start_date: date, end_date: date) -> list[tuple]:
        return list(
            Holiday.objects.filter(assignee_id=assignee_id)
            .filter(cls._in_window(start_date, end_date))
            .values_list("holiday_date", "date_end")
        )

    @staticmethod
    def find_assignee_id_by_name(name: str) -> int | None:
        return Assignee.objects.filter(name=name).values_list("id", flat=True).first()


@dataclass(frozen=True)
class ResolvedCalendar:
    """Non-working dates for a window, with any lookup failures that thinned it."""
    dates: frozenset
    warnings: tuple = ()

    @property
    def degraded(self) -> bool:
        return bool(self.warnings)


class HolidayResolver:
    """Builds the set of non-working dates for an assignee (or everyone) in a window."""

    def __init__(self, store=None):
        self.store = store or HolidayStore()

    def public_calendar(self, start_date: date, end_date: date) -> ResolvedCalendar:
        try:
            entries = self.store.list_public_holidays(start_date, end_date)
            dates = frozenset(capacity.holidays_in_window(entries, start_date, end_date))
        except DatabaseError as exc:
            logger.warning("[holidays] public holiday lookup failed, counting weekends only: %s", exc)
            return ResolvedCalendar(frozenset(), ("Public holidays unavailable; weekends only",))
        return ResolvedCalendar(dates)

    def personal_dates(self, assignee_id: int, start_date: date, end_date: date) -> set[date]:
        entries = self.store.list_assignee_holidays(assignee_id, start_date, end_date)
        return capacity.holidays_in_window(entries, start_date, end_date)

    def resolve(self, start_date: date, end_date: date, assignee_name: str | None = None,
                public: ResolvedCalendar | None = None) -> ResolvedCalendar:
        """
        Public holidays in the window, plus the named assignee's own holidays.

        A failed personal lookup leaves the public calendar in place and adds a
        warning, so one bad assignee never blanks a whole report.
        """
        public = public or self.public_calendar(start_date, end_date)
        if not assignee_name:
            return public

        try:
            assignee_id = self.store.find_assignee_id_by_name(assignee_name)
            if assignee_id is None:
                return public
            personal = self.personal_dates(assignee_id, start_date, end_date)
        except DatabaseError as exc:
            logger.warning("[holidays] lookup for assignee %r failed, ignoring personal holidays: %s",
                           assignee_name, exc)
            return ResolvedCalendar(public.dates, public.warnings + (f"Holidays unavailable for {assignee_name}",))

        return ResolvedCalendar(public.dates | personal, public.warnings)


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

class CalendarService:
    """Business-day and working-day figures for arbitrary windows."""

    @staticmethod
    def get_business_days(start_date: date, end_date: date, assignee: str | None = None,
                          resolver: HolidayResolver | None = None) -> BusinessDaysSchema:
        resolver = resolver or HolidayResolver()
        calendar = resolver.resolve(start_date, end_date, assignee)
        return BusinessDaysSchema(
            start_date=start_date,
            end_date=end_date,
            assignee=assignee,
            business_days=capacity.business_days(start_date, end_date, calendar.dates),
            holidays=sorted(calendar.dates),
            degraded=calendar.degraded,
            warnings=list(calendar.warnings),
        )

    @staticmethod
    def get_working_days(assignee: Assignee, start_date: date, end_date: date,
                         resolver: HolidayResolver | None = None) -> WorkingDaysSchema:
        resolver = resolver or HolidayResolver()
        calendar = resolver.resolve(start_date, end_date, assignee.name)
        per_week = float(assignee.working_days_per_week or capacity.STANDARD_WORK_WEEK)
        return WorkingDaysSchema(
            assignee_id=assignee.id,
            start_date=start_date,
            end_date=end_date,
            working_days_per_week=per_week,
            business_days=capacity.business_days(start_date, end_date, calendar.dates),
            working_days=capacity.working_days(start_date, end_date, per_week, calendar.dates),
            holidays=sorted(calendar.dates),
        )


class TaskRiskService:
    """Recalculated RAG for tasks, against either reference calendar."""

    GENERIC = "generic"
    ASSIGNEE = "assignee"

    @classmethod
    def assess(cls, task: Task, calendar: str = GENERIC, today: date | None = None,
               resolver: HolidayResolver | None = None) -> TaskRagSchema:
        if task.due_date is None:
            raise MissingDueDateError("Task has no due date")

        today = today or timezone.localdate()
        resolver = resolver or HolidayResolver()
        assignee_name = task.assignee if calendar == cls.ASSIGNEE else None
        resolved = resolver.resolve(today, task.due_date, assignee_name)

        per_week = capacity.STANDARD_WORK_WEEK
        if assignee_name:
            row = Assignee.objects.filter(name=assignee_name).values_list("working_days_per_week", flat=True).first()
            per_week = row or per_week

        assessment = capacity.classify_rag(
            task.days_assigned, task.days_taken, task.due_date, today,
            resolved.dates, planner_setting("PLANNER_RAG_AMBER_BUFFER"),
        )
        return TaskRagSchema(
            task_id=task.id,
            calendar=calendar,
            rag=assessment.rag,
            stored_rag=task.rag,
            buffer=assessment.buffer,
            days_remaining=assessment.days_remaining,
            business_days_until_due=assessment.business_days_until_due,
            working_days_per_week=float(per_week),
            holiday_count=len(resolved.dates),
            warnings=list(resolved.warnings),
        )

    @staticmethod
    def calculated_rags(tasks, today: date, resolver: HolidayResolver) -> dict[int, int]:
        """Generic-calendar RAG for many tasks, sharing one public holiday lookup."""
        due_dates = [t.due_date for t in tasks if t.due_date]
        if not due_dates:
            return {}

        public = resolver.public_calendar(today, max(max(due_dates), today))
        amber = planner_setting("PLANNER_RAG_AMBER_BUFFER")
        return {
            t.id: capacity.classify_rag(t.days_assigned, t.days_taken, t.due_date, today, public.dates, amber).rag
            for t in tasks if t.due_date
        }


class ResourceAllocationService:
    """Service class for resource allocation reporting."""

    @staticmethod
    def get_allocation(start_date: date | None = None, end_date: date | None = None,
                       assignee: str | None = None, project_id: int | None = None,
                       today: date | None = None) -> list[AssigneeAllocationSchema]:
        """Tasks grouped by assignee and project, with recalculated RAG."""
        today = today or timezone.localdate()
        tasks = Task.objects.filter(assignee__isnull=False).exclude(assignee="").select_related("project")
        if start_date:
            tasks = tasks.filter(due_date__gte=start_date)
        if end_date:
            tasks = tasks.filter(start_date__lte=end_date)
        if assignee:
            tasks = tasks.filter(assignee=assignee)
        if project_id:
            tasks = tasks.filter(project_id=project_id)
        tasks = list(tasks.order_by("assignee", "project__workstream", "start_date"))

        working_pattern = dict(Assignee.objects.values_list("name", "working_days_per_week"))
        rags = TaskRiskService.calculated_rags(tasks, today, HolidayResolver())

        # Nested mapping: assignee -> running totals, projects and task rows
        grouped: dict[str, dict] = {}
        for task in tasks:
            entry = grouped.setdefault(task.assignee, {
                "name": task.assignee,
                "working_days_per_week": float(working_pattern.get(task.assignee) or capacity.STANDARD_WORK_WEEK),
                "total_days_assigned": 0.0,
                "total_days_remaining": 0.0,
                "projects": {},
                "tasks": [],
            })

            assigned = float(task.days_assigned)
            remaining = capacity.days_remaining(task.days_assigned, task.days_taken)
            entry["total_days_assigned"] += assigned
            entry["total_days_remaining"] += remaining

            project = entry["projects"].setdefault(task.project_id, {
                "id": task.project_id,
                "name": task.project.workstream,
                "company": task.project.company_name,
                "total_days_assigned": 0.0,
                "total_days_remaining": 0.0,
            })
            project["total_days_assigned"] += assigned
            project["total_days_remaining"] += remaining

            entry["tasks"].append(TaskAllocationSchema(
                id=task.id,
                name=task.name,
                project_id=task.project_id,
                project_name=task.project.workstream,
                start_date=task.start_date,
                due_date=task.due_date,
                days_assigned=assigned,
                days_remaining=remaining,
                status=task.status,
                rag=task.rag,
                calculated_rag=rags.get(task.id, task.rag),
            ))

        return [
            AssigneeAllocationSchema(
                name=entry["name"],
                working_days_per_week=entry["working_days_per_week"],
                total_days_assigned=entry["total_days_assigned"],
                total_days_remaining=entry["total_days_remaining"],
                projects=[ProjectAllocationSchema(**p) for p in entry["projects"].values()],
                tasks=entry["tasks"],
            )
            for entry in grouped.values()
        ]

    @staticmethod
    def get_calendar_events(start_date: date | None = None, end_date: date | None = None,
                            assignee: str | None = None, project_id: int | None = None,
                            today: date | None = None) -> list[CalendarEventSchema]:
        """Timeline events for tasks overlapping the window; undated starts begin today."""
        today = today or timezone.localdate()
        start, end = resolve_window(start_date, end_date, planner_setting("PLANNER_CALENDAR_WINDOW_DAYS"), today)
        logger.info("[allocation] calendar window %s to %s", start, end)

        tasks = (
            Task.objects.filter(assignee__isnull=False, due_date__isnull=False, due_date__gte=start)
            .exclude(assignee="")
            .filter(Q(start_date__lte=end) | Q(start_date__isnull=True))
            .select_related("project")
        )
        if today > end:
            tasks = tasks.exclude(start_date__isnull=True)
        if assignee:
            tasks = tasks.filter(assignee=assignee)
        if project_id:
            tasks = tasks.filter(project_id=project_id)
        tasks = list(tasks.order_by("assignee", "start_date"))

        rags = TaskRiskService.calculated_rags(tasks, today, HolidayResolver())
        return [
            CalendarEventSchema(
                id=task.id,
                title=task.name,
                assignee=task.assignee,
                start=task.start_date or today,
                end=task.due_date,
                project=CalendarProjectSchema(
                    id=task.project_id,
                    name=task.project.workstream,
                    company=task.project.company_name,
                ),
                days_assigned=float(task.days_assigned),
                days_remaining=capacity.days_remaining(task.days_assigned, task.days_taken),
                status=task.status,
                rag=rags[task.id],
            )
            for task in tasks
        ]

    @staticmethod
    def get_active_tasks_in_window(start_date: date, end_date: date):
        """Incomplete tasks with an assignee that overlap the window."""
        return (
            Task.objects.filter(assignee__isnull=False, due_date__gte=start_date)
            .exclude(assignee="")
            .exclude(status=TaskStatus.COMPLETED)
            .filter(Q(start_date__isnull=True) | Q(start_date__lte=end_date))
        )

    @classmethod
    def get_workload_summary(cls, start_date: date | None = None, end_date: date | None = None,
                             timeframe: str | None = None, today: date | None = None,
                             resolver: HolidayResolver | None = None) -> WorkloadSummarySchema:
        """
        Capacity versus pro-rated allocation for every assignee in the window.

        An explicit start/end wins over ``timeframe`` (week, month or quarter);
        with neither, the window is the next 14 days.
        """
        resolver = resolver or HolidayResolver()
        days = planner_setting("PLANNER_TIMEFRAME_DAYS").get(timeframe) if timeframe else None
        start, end = resolve_window(start_date, end_date, days, today)
        logger.info("[workload] summary window %s to %s", start, end)

        assignees = list(Assignee.objects.all())
        tasks = list(cls.get_active_tasks_in_window(start, end))
        known = {a.name for a in assignees}
        for task in tasks:
            if task.assignee not in known:
                logger.debug("[workload] task %s names unknown assignee %r, skipped", task.id, task.assignee)

        public = resolver.public_calendar(start, end)
        calendars = {a.name: resolver.resolve(start, end, a.name, public=public) for a in assignees}
        warnings = list(public.warnings)
        for calendar in calendars.values():
            warnings.extend(w for w in calendar.warnings if w not in warnings)

        loads = capacity.aggregate_workload(
            start, end, assignees, tasks,
            {name: calendar.dates for name, calendar in calendars.items()},
            planner_setting("PLANNER_ALLOCATION_THRESHOLDS"),
        )

        workload = [
            WorkloadRowSchema(
                assignee=load.name,
                working_days_per_week=load.working_days_per_week,
                business_days=load.business_days,
                total_capacity=load.capacity,
                allocated=capacity.round_half_up(load.allocated, 2),
                allocation_percentage=load.allocation_percentage,
                allocation_status=load.allocation_status,
                active_tasks=load.active_tasks,
            )
            for load in loads
        ]

        return WorkloadSummarySchema(
            start_date=start,
            end_date=end,
            business_days=capacity.business_days(start, end, public.dates),
            gini_coefficient=round(cls._calculate_gini_coefficient([load.allocated for load in loads]), 3),
            workload=workload,
            warnings=warnings,
        )

    @staticmethod
    def _calculate_gini_coefficient(values):
        """Calculate Gini coefficient for a list of values."""
        if not values or len(values) == 1 or sum(values) == 0:
            return 0.0
        return float(gini.Gini(np.asarray(values, dtype=float)).g)


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

def _one_decimal(value) -> Decimal:
    return Decimal(str(capacity.round_half_up(value or 0, 1)))


class ProjectService:

    @staticmethod
    def update_progress(project_id: int) -> float:
        """Recompute a project's progress as completed tasks over all tasks."""
        counts = Task.objects.filter(project_id=project_id).aggregate(
            total=Count("id"),
            completed=Count("id", filter=Q(status=TaskStatus.COMPLETED)),
        )
        progress = counts["completed"] / counts["total"] if counts["total"] else 0.0
        logger.info("[projects] project %s progress %.2f (%s/%s tasks completed)",
                    project_id, progress, counts["completed"], counts["total"])
        Project.objects.filter(pk=project_id).update(progress=progress, updated_at=timezone.now())
        return progress


class AssigneeService:

    @staticmethod
    def delete(assignee: Assignee) -> None:
        """Delete an assignee unless a task still refers to it by name."""
        count = Task.objects.filter(assignee=assignee.name).count()
        if count:
            raise AssigneeInUseError(count)
        assignee.delete()

    @staticmethod
    def add_holiday(assignee: Assignee | None, holiday_date: date, date_end: date | None = None,
                    description: str | None = None, country_code: str | None = None) -> Holiday:
        """Create a single-day or ranged holiday; no assignee means public."""
        if date_end is not None and date_end < holiday_date:
            raise InvalidHolidayRangeError("Holiday range cannot end before it starts")
        if date_end == holiday_date:
            date_end = None
        if assignee is None:
            country_code = country_code or planner_setting("PLANNER_DEFAULT_COUNTRY_CODE")
        return Holiday.objects.create(
            assignee=assignee,
            holiday_date=holiday_date,
            date_end=date_end,
            description=description,
            country_code=country_code,
        )


class TaskService:

    @staticmethod
    def _apply(task: Task, payload: dict) -> None:
        for field in ("project_id", "name", "sub_task_name", "assignee", "start_date",
                      "due_date", "description", "tau_notes", "path_to_green", "persona"):
            setattr(task, field, payload.get(field))
        task.rag = payload.get("rag") or RAG.GREEN
        task.days_assigned = _one_decimal(payload.get("days_assigned"))
        task.days_taken = _one_decimal(payload.get("days_taken"))
        task.status = payload.get("status") or capacity.derive_task_status(
            task.days_taken, task.days_assigned, task.last_updated_days, timezone.now(),
        )

    @classmethod
    @transaction.atomic
    def create(cls, payload: dict) -> Task:
        task = Task()
        cls._apply(task, payload)
        task.save()
        ProjectService.update_progress(task.project_id)
        return task

    @classmethod
    @transaction.atomic
    def update(cls, task: Task, payload: dict) -> Task:
        """Full-row replace; stamps last_updated_days when booked effort changes."""
        previous_project_id = task.project_id
        previous_taken = task.days_taken
        cls._apply(task, payload)
        if task.days_taken != previous_taken:
            task.last_updated_days = timezone.now()
        task.save()

        ProjectService.update_progress(task.project_id)
        if previous_project_id != task.project_id:
            ProjectService.update_progress(previous_project_id)
        return task

    @staticmethod
    @transaction.atomic
    def delete(task: Task) -> None:
        project_id = task.project_id
        task.delete()
        ProjectService.update_progress(project_id)
