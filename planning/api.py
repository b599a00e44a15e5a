from datetime import date
from typing import Literal

from django.conf import settings
from django.db import IntegrityError
from django.http import HttpRequest, HttpResponse
from django.shortcuts import get_object_or_404
from django.utils import timezone
from ninja import File, NinjaAPI, Router, Swagger
from ninja.files import UploadedFile

from .importer import XLSX_CONTENT_TYPE, TaskImportService
from .models import Assignee, Holiday, Project, Task
from .schemas import (
    AssigneeAllocationSchema, AssigneeIn, AssigneeOut, BusinessDaysSchema,
    CalendarEventSchema, HealthSchema, HolidayIn, HolidayOut, HolidayRangeIn,
    ImportPreviewSchema, ImportProcessIn, ImportResultSchema, MessageSchema,
    ProjectIn, ProjectOut, PublicHolidayIn, TaskIn, TaskOut, TaskRagSchema,
    WorkingDaysSchema, WorkloadSummarySchema,
)
from .services import (
    AssigneeService, CalendarService, PlannerError, ResourceAllocationService,
    TaskRiskService, TaskService, resolve_window,
)

api = NinjaAPI(title="Resource Planner API", docs=Swagger(settings={"persistAuthorization": True}))


@api.exception_handler(PlannerError)
def planner_error(request: HttpRequest, exc: PlannerError):
    return api.create_response(request, exc.payload(), status=400)


@api.exception_handler(IntegrityError)
def integrity_error(request: HttpRequest, exc: IntegrityError):
    return api.create_response(request, {"error": "Record conflicts with existing data"}, status=400)


@api.get("/health", response=HealthSchema)
def health(request: HttpRequest) -> HealthSchema:
    return HealthSchema(status="ok", timestamp=timezone.now(), debug=settings.DEBUG)


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------

projects = Router(tags=["projects"])


@projects.get("", response=list[ProjectOut])
def list_projects(request: HttpRequest):
    return Project.objects.all()


@projects.post("", response={201: ProjectOut})
def create_project(request: HttpRequest, payload: ProjectIn):
    project = Project.objects.create(
        company_name=payload.company,
        workstream=payload.name,
        description=payload.description,
        status=payload.status,
        rag=payload.rag,
        start_date=payload.start_date,
        end_date=payload.end_date,
    )
    return 201, project


@projects.get("/{project_id}", response=ProjectOut)
def get_project(request: HttpRequest, project_id: int):
    return get_object_or_404(Project, pk=project_id)


@projects.put("/{project_id}", response=ProjectOut)
def update_project(request: HttpRequest, project_id: int, payload: ProjectIn):
    project = get_object_or_404(Project, pk=project_id)
    project.company_name = payload.company
    project.workstream = payload.name
    project.description = payload.description
    project.status = payload.status
    project.rag = payload.rag
    project.start_date = payload.start_date
    project.end_date = payload.end_date
    project.save()
    return project


@projects.delete("/{project_id}", response=MessageSchema)
def delete_project(request: HttpRequest, project_id: int):
    get_object_or_404(Project, pk=project_id).delete()
    return MessageSchema(message="Project deleted successfully")


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

tasks = Router(tags=["tasks"])


@tasks.get("", response=list[TaskOut])
def list_tasks(request: HttpRequest):
    return Task.objects.select_related("project")


@tasks.post("", response={201: TaskOut})
def create_task(request: HttpRequest, payload: TaskIn):
    get_object_or_404(Project, pk=payload.project_id)
    task = TaskService.create(payload.dict())
    return 201, Task.objects.select_related("project").get(pk=task.pk)


@tasks.get("/{task_id}", response=TaskOut)
def get_task(request: HttpRequest, task_id: int):
    return get_object_or_404(Task.objects.select_related("project"), pk=task_id)


@tasks.put("/{task_id}", response=TaskOut)
def update_task(request: HttpRequest, task_id: int, payload: TaskIn):
    task = get_object_or_404(Task, pk=task_id)
    get_object_or_404(Project, pk=payload.project_id)
    TaskService.update(task, payload.dict())
    return Task.objects.select_related("project").get(pk=task.pk)


@tasks.delete("/{task_id}", response=MessageSchema)
def delete_task(request: HttpRequest, task_id: int):
    TaskService.delete(get_object_or_404(Task, pk=task_id))
    return MessageSchema(message="Task deleted successfully")


@tasks.get("/{task_id}/rag", response=TaskRagSchema)
def get_task_rag(request: HttpRequest, task_id: int,
                 calendar: Literal["generic", "assignee"] = "generic") -> TaskRagSchema:
    """
    Recalculate a task's RAG status.

    - generic: weekends and public holidays only
    - assignee: also removes the assignee's personal holidays
    """
    task = get_object_or_404(Task, pk=task_id)
    return TaskRiskService.assess(task, calendar)


# ---------------------------------------------------------------------------
# Assignees
# ---------------------------------------------------------------------------

assignees = Router(tags=["assignees"])


@assignees.get("", response=list[AssigneeOut])
def list_assignees(request: HttpRequest):
    return Assignee.objects.all()


@assignees.post("", response={201: AssigneeOut})
def create_assignee(request: HttpRequest, payload: AssigneeIn):
    return 201, Assignee.objects.create(**payload.dict())


@assignees.get("/{assignee_id}", response=AssigneeOut)
def get_assignee(request: HttpRequest, assignee_id: int):
    return get_object_or_404(Assignee, pk=assignee_id)


@assignees.put("/{assignee_id}", response=AssigneeOut)
def update_assignee(request: HttpRequest, assignee_id: int, payload: AssigneeIn):
    assignee = get_object_or_404(Assignee, pk=assignee_id)
    for field, value in payload.dict().items():
        setattr(assignee, field, value)
    assignee.save()
    return assignee


@assignees.delete("/{assignee_id}", response=MessageSchema)
def delete_assignee(request: HttpRequest, assignee_id: int):
    AssigneeService.delete(get_object_or_404(Assignee, pk=assignee_id))
    return MessageSchema(message="Assignee deleted successfully")


@assignees.get("/{assignee_id}/holidays", response=list[HolidayOut])
def list_assignee_holidays(request: HttpRequest, assignee_id: int):
    return Holiday.objects.filter(assignee_id=assignee_id)


@assignees.post("/{assignee_id}/holidays", response={201: HolidayOut})
def add_assignee_holiday(request: HttpRequest, assignee_id: int, payload: HolidayIn):
    assignee = get_object_or_404(Assignee, pk=assignee_id)
    return 201, AssigneeService.add_holiday(assignee, payload.holiday_date, description=payload.description)


@assignees.post("/{assignee_id}/holiday-range", response={201: HolidayOut})
def add_assignee_holiday_range(request: HttpRequest, assignee_id: int, payload: HolidayRangeIn):
    assignee = get_object_or_404(Assignee, pk=assignee_id)
    return 201, AssigneeService.add_holiday(
        assignee, payload.start_date, payload.end_date, description=payload.description,
    )


@assignees.delete("/holidays/{holiday_id}", response=MessageSchema)
def delete_assignee_holiday(request: HttpRequest, holiday_id: int):
    get_object_or_404(Holiday, pk=holiday_id, assignee__isnull=False).delete()
    return MessageSchema(message="Holiday deleted successfully")


@assignees.get("/{assignee_id}/working-days", response=WorkingDaysSchema)
def get_working_days(request: HttpRequest, assignee_id: int,
                     start_date: date | None = None, end_date: date | None = None) -> WorkingDaysSchema:
    """Working days available to the assignee, scaled by their working pattern."""
    assignee = get_object_or_404(Assignee, pk=assignee_id)
    start, end = resolve_window(start_date, end_date)
    return CalendarService.get_working_days(assignee, start, end)


# ---------------------------------------------------------------------------
# Public holidays
# ---------------------------------------------------------------------------

holidays = Router(tags=["holidays"])


@holidays.get("/public", response=list[HolidayOut])
def list_public_holidays(request: HttpRequest):
    return Holiday.objects.filter(assignee__isnull=True)


@holidays.post("/public", response={201: HolidayOut})
def create_public_holiday(request: HttpRequest, payload: PublicHolidayIn):
    return 201, AssigneeService.add_holiday(
        None, payload.holiday_date, description=payload.description, country_code=payload.country_code,
    )


@holidays.delete("/public/{holiday_id}", response=MessageSchema)
def delete_public_holiday(request: HttpRequest, holiday_id: int):
    get_object_or_404(Holiday, pk=holiday_id, assignee__isnull=True).delete()
    return MessageSchema(message="Public holiday deleted successfully")


# ---------------------------------------------------------------------------
# Resource allocation
# ---------------------------------------------------------------------------

allocation = Router(tags=["resource-allocation"])


@allocation.get("", response=list[AssigneeAllocationSchema])
def get_resource_allocation(request: HttpRequest, start_date: date | None = None, end_date: date | None = None,
                            assignee: str | None = None, project_id: int | None = None):
    """
    Tasks grouped by assignee and project.

    Each task carries both its stored RAG and the RAG recalculated from
    remaining effort against business days until its due date.
    """
    return ResourceAllocationService.get_allocation(start_date, end_date, assignee, project_id)


@allocation.get("/calendar", response=list[CalendarEventSchema])
def get_resource_calendar(request: HttpRequest, start_date: date | None = None, end_date: date | None = None,
                          assignee: str | None = None, project_id: int | None = None):
    """Timeline events; the window defaults to the next 30 days."""
    return ResourceAllocationService.get_calendar_events(start_date, end_date, assignee, project_id)


@allocation.get("/workload-summary", response=WorkloadSummarySchema)
def get_workload_summary(request: HttpRequest, timeframe: Literal["week", "month", "quarter"] | None = None,
                         start_date: date | None = None, end_date: date | None = None) -> WorkloadSummarySchema:
    """
    Capacity versus allocated effort for every assignee.

    Window:
    - start_date/end_date when given
    - otherwise today plus 7 (week), 30 (month) or 90 (quarter) days
    - otherwise the next 14 days

    Per assignee:
    - total_capacity: business days (minus personal holidays) x working_days_per_week / 5
    - allocated: remaining effort, pro-rated for tasks due after the window
    - allocation_percentage: allocated / capacity x 100 (1000 when capacity is zero)
    - allocation_status: Overallocated, Full, Balanced or Underallocated

    gini_coefficient measures how evenly allocated effort is spread (0 = perfectly even).
    """
    return ResourceAllocationService.get_workload_summary(start_date, end_date, timeframe)


@allocation.get("/business-days", response=BusinessDaysSchema)
def get_business_days(request: HttpRequest, start_date: date | None = None, end_date: date | None = None,
                      assignee: str | None = None) -> BusinessDaysSchema:
    start, end = resolve_window(start_date, end_date)
    return CalendarService.get_business_days(start, end, assignee)


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------

imports = Router(tags=["import"])


@imports.post("/tasks", response=ImportPreviewSchema)
def upload_tasks(request: HttpRequest, file: UploadedFile = File(...)) -> ImportPreviewSchema:
    """Parse an uploaded spreadsheet and return its rows for preview."""
    rows = TaskImportService.parse_upload(file.name, file.read())
    return ImportPreviewSchema(message="File parsed successfully", data=rows, row_count=len(rows))


@imports.post("/tasks/process", response=ImportResultSchema)
def process_tasks(request: HttpRequest, payload: ImportProcessIn) -> ImportResultSchema:
    task_ids = TaskImportService.process(payload.tasks, payload.column_mapping)
    return ImportResultSchema(
        success=True,
        message=f"Successfully imported {len(task_ids)} tasks",
        imported_count=len(task_ids),
        task_ids=task_ids,
    )


@imports.get("/template/tasks")
def download_template(request: HttpRequest):
    response = HttpResponse(TaskImportService.build_template(), content_type=XLSX_CONTENT_TYPE)
    response["Content-Disposition"] = "attachment; filename=tasks_import_template.xlsx"
    return response


api.add_router("/projects", projects)
api.add_router("/tasks", tasks)
api.add_router("/assignees", assignees)
api.add_router("/holidays", holidays)
api.add_router("/resource-allocation", allocation)
api.add_router("/import", imports)
