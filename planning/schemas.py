from datetime import date, datetime
from typing import Any

from ninja import Field, Schema
from pydantic import field_validator

from .models import Persona, TaskStatus


def _blank_to_none(value):
    return None if value == "" else value


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------

class ProjectIn(Schema):
    """Project create/replace payload."""
    name: str
    company: str = ""
    description: str | None = None
    status: str = "Planning"
    rag: int = Field(1, ge=1, le=3)
    start_date: date | None = None
    end_date: date | None = None

    blank_dates = field_validator("start_date", "end_date", mode="before")(_blank_to_none)


class ProjectOut(Schema):
    id: int
    name: str
    company: str
    company_name: str
    workstream: str
    description: str | None
    status: str
    rag: int
    progress: float
    start_date: date | None
    end_date: date | None
    created_at: datetime
    updated_at: datetime

    @staticmethod
    def resolve_name(obj):
        return obj.workstream

    @staticmethod
    def resolve_company(obj):
        return obj.company_name


# ---------------------------------------------------------------------------
# Assignees and holidays
# ---------------------------------------------------------------------------

class AssigneeIn(Schema):
    name: str
    email: str | None = None
    working_days_per_week: float = Field(5.0, gt=0, le=7)
    start_date: date | None = None

    blank_dates = field_validator("start_date", mode="before")(_blank_to_none)


class AssigneeOut(Schema):
    id: int
    name: str
    email: str | None
    working_days_per_week: float
    start_date: date | None
    created_at: datetime
    updated_at: datetime


class HolidayIn(Schema):
    """Single-day holiday for an assignee."""
    holiday_date: date
    description: str | None = None


class HolidayRangeIn(Schema):
    """Inclusive holiday range for an assignee."""
    start_date: date
    end_date: date
    description: str | None = None


class PublicHolidayIn(Schema):
    holiday_date: date
    description: str | None = None
    country_code: str | None = None


class HolidayOut(Schema):
    id: int
    holiday_date: date
    date_end: date | None
    description: str | None
    country_code: str | None
    is_range: bool
    display_text: str
    created_at: datetime

    @staticmethod
    def resolve_display_text(obj):
        if obj.date_end:
            return f"{obj.holiday_date:%d/%m/%Y} to {obj.date_end:%d/%m/%Y}"
        return f"{obj.holiday_date:%d/%m/%Y}"


class MessageSchema(Schema):
    message: str


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

class TaskIn(Schema):
    """Task create/replace payload. Status is derived from effort when omitted."""
    project_id: int
    name: str
    sub_task_name: str | None = None
    assignee: str | None = None
    status: TaskStatus | None = None
    rag: int = Field(1, ge=1, le=3)
    start_date: date | None = None
    due_date: date | None = None
    days_assigned: float = Field(0, ge=0)
    days_taken: float = Field(0, ge=0)
    description: str | None = None
    tau_notes: str | None = None
    path_to_green: str | None = None
    persona: Persona | None = None

    blank_values = field_validator(
        "start_date", "due_date", "status", "persona", mode="before"
    )(_blank_to_none)


class TaskOut(Schema):
    id: int
    project_id: int
    project_name: str
    company_name: str
    name: str
    sub_task_name: str | None
    assignee: str | None
    status: str
    rag: int
    start_date: date | None
    due_date: date | None
    days_assigned: float
    days_taken: float
    description: str | None
    tau_notes: str | None
    path_to_green: str | None
    persona: str | None
    last_updated_days: datetime | None
    created_at: datetime
    updated_at: datetime

    @staticmethod
    def resolve_project_name(obj):
        return obj.project.workstream

    @staticmethod
    def resolve_company_name(obj):
        return obj.project.company_name


class TaskRagSchema(Schema):
    """Dynamically recalculated risk for a single task."""
    task_id: int
    calendar: str
    rag: int
    stored_rag: int
    buffer: float
    days_remaining: float
    business_days_until_due: int
    working_days_per_week: float
    holiday_count: int
    warnings: list[str] = []


# ---------------------------------------------------------------------------
# Resource allocation
# ---------------------------------------------------------------------------

class ProjectAllocationSchema(Schema):
    id: int
    name: str
    company: str
    total_days_assigned: float
    total_days_remaining: float


class TaskAllocationSchema(Schema):
    id: int
    name: str
    project_id: int
    project_name: str
    start_date: date | None
    due_date: date | None
    days_assigned: float
    days_remaining: float
    status: str
    rag: int  # as stored
    calculated_rag: int


class AssigneeAllocationSchema(Schema):
    """All tasks of one assignee grouped for the allocation view."""
    name: str
    working_days_per_week: float
    total_days_assigned: float
    total_days_remaining: float
    projects: list[ProjectAllocationSchema]
    tasks: list[TaskAllocationSchema]


class CalendarProjectSchema(Schema):
    id: int
    name: str
    company: str


class CalendarEventSchema(Schema):
    """Single task positioned on the timeline."""
    id: int
    title: str
    assignee: str
    start: date
    end: date
    project: CalendarProjectSchema
    days_assigned: float
    days_remaining: float
    status: str
    rag: int  # recalculated


class WorkloadRowSchema(Schema):
    assignee: str
    working_days_per_week: float
    business_days: int
    total_capacity: float
    allocated: float
    allocation_percentage: int
    allocation_status: str
    active_tasks: int


class WorkloadSummarySchema(Schema):
    start_date: date
    end_date: date
    business_days: int
    gini_coefficient: float
    workload: list[WorkloadRowSchema]
    warnings: list[str]


class BusinessDaysSchema(Schema):
    start_date: date
    end_date: date
    assignee: str | None
    business_days: int
    holidays: list[date]
    degraded: bool
    warnings: list[str]


class WorkingDaysSchema(Schema):
    assignee_id: int
    start_date: date
    end_date: date
    working_days_per_week: float
    business_days: int
    working_days: float
    holidays: list[date]


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------

class ImportPreviewSchema(Schema):
    message: str
    data: list[dict[str, Any]]
    row_count: int


class ImportProcessIn(Schema):
    tasks: list[dict[str, Any]]
    column_mapping: dict[str, str] | None = None


class ImportResultSchema(Schema):
    success: bool
    message: str
    imported_count: int
    task_ids: list[int]


class HealthSchema(Schema):
    status: str
    timestamp: datetime
    debug: bool
