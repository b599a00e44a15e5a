"""
Spreadsheet import for tasks.

Uploads are parsed into plain row dicts for preview; the client then sends the
rows back (optionally with a column mapping) to be validated and inserted as a
single batch.
"""
import csv
import io
import logging
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from pathlib import Path
from zipfile import BadZipFile

from django.db import transaction
from openpyxl import Workbook, load_workbook
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter

from .models import RAG, Assignee, Persona, Project, Task, TaskStatus
from .services import PlannerError, ProjectService, planner_setting

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".xlsx", ".csv"}
EXCEL_EPOCH = date(1899, 12, 30)
MAX_DAYS = Decimal("100000")

TEMPLATE_COLUMNS = [
    # (field, width, example)
    ("name", 20, "Task Example"),
    ("sub_task_name", 20, "Optional subtask"),
    ("project_name", 20, "Project Name"),
    ("assignee", 15, "Assignee Name"),
    ("status", 15, TaskStatus.NOT_STARTED.value),
    ("start_date", 12, "2025-05-15"),
    ("due_date", 12, "2025-06-15"),
    ("days_assigned", 10, 10),
    ("days_taken", 10, 0),
    ("description", 30, "Task description here"),
    ("path_to_green", 20, "Steps to green"),
    ("tau_notes", 20, "Notes"),
    ("persona", 15, Persona.DEVELOPER.value),
]

XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


class ImportFileError(PlannerError):
    pass


class ImportValidationError(PlannerError):
    def __init__(self, errors: list[str]):
        super().__init__("Validation errors in import data")
        self.errors = errors

    def payload(self) -> dict:
        return {"error": str(self), "validation_errors": self.errors}


class RowError(ValueError):
    pass


def _is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _cell_value(value):
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str):
        return value.strip()
    return value


class TaskImportService:
    """Service class for spreadsheet task imports."""

    @staticmethod
    def parse_upload(filename: str, content: bytes) -> list[dict]:
        """Read the first sheet of an .xlsx or .csv upload into row dicts."""
        extension = Path(filename or "").suffix.lower()
        if extension not in ALLOWED_EXTENSIONS:
            raise ImportFileError("Invalid file type. Please upload an Excel file (.xlsx) or CSV file (.csv)")
        if len(content) > planner_setting("PLANNER_IMPORT_MAX_BYTES"):
            raise ImportFileError("The uploaded file is too large")

        try:
            if extension == ".csv":
                rows = TaskImportService._read_csv(content)
            else:
                rows = TaskImportService._read_xlsx(content)
        except (UnicodeDecodeError, csv.Error, BadZipFile, OSError, ValueError) as exc:
            raise ImportFileError(f"Failed to process import file: {exc}") from exc

        if not rows:
            raise ImportFileError("The uploaded file contains no data")
        logger.info("[import] parsed %s rows from %s", len(rows), filename)
        return rows

    @staticmethod
    def _read_csv(content: bytes) -> list[dict]:
        reader = csv.DictReader(io.StringIO(content.decode("utf-8-sig")))
        rows = []
        for raw in reader:
            row = {k.strip(): _cell_value(v) for k, v in raw.items() if k and not _is_blank(v)}
            if row:
                rows.append(row)
        return rows

    @staticmethod
    def _read_xlsx(content: bytes) -> list[dict]:
        workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
        try:
            values = workbook.worksheets[0].iter_rows(values_only=True)
            headers = next(values, None)
            if headers is None:
                return []
            headers = [str(h).strip() if h is not None else None for h in headers]

            rows = []
            for record in values:
                row = {
                    header: _cell_value(value)
                    for header, value in zip(headers, record)
                    if header and not _is_blank(value)
                }
                if row:
                    rows.append(row)
            return rows
        finally:
            workbook.close()

    @staticmethod
    def apply_column_mapping(rows: list[dict], column_mapping: dict[str, str] | None) -> list[dict]:
        """Rename source columns to task fields; ``column_mapping`` maps field -> column."""
        if not column_mapping:
            return rows
        return [
            {field: row.get(column) for field, column in column_mapping.items() if column}
            for row in rows
        ]

    @staticmethod
    def _project_lookup() -> dict[str, int]:
        """Projects keyed by lower-cased name and by "company - name"."""
        lookup = {}
        for project in Project.objects.all():
            lookup[project.workstream.lower()] = project.id
            if project.company_name:
                lookup[f"{project.company_name.lower()} - {project.workstream.lower()}"] = project.id
        return lookup

    @staticmethod
    def _find_project(name: str, lookup: dict[str, int]) -> int | None:
        name = name.lower()
        if name in lookup:
            return lookup[name]
        for key, project_id in lookup.items():
            if key in name:
                return project_id
        return None

    @staticmethod
    def _parse_date(value, field: str) -> date | None:
        if _is_blank(value):
            return None
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            # Excel serial day number
            try:
                return EXCEL_EPOCH + timedelta(days=round(value))
            except (OverflowError, ValueError):
                raise RowError(f"Invalid date \"{value}\" for '{field}'")
        try:
            return date.fromisoformat(str(value).strip()[:10])
        except ValueError:
            raise RowError(f"Invalid date \"{value}\" for '{field}'")

    @staticmethod
    def _parse_days(value, field: str) -> Decimal:
        if _is_blank(value):
            return Decimal(0)
        try:
            days = Decimal(str(value).strip())
        except InvalidOperation:
            raise RowError(f"Invalid number \"{value}\" for '{field}'")
        if not days.is_finite():
            raise RowError(f"Invalid number \"{value}\" for '{field}'")
        if days < 0:
            raise RowError(f"'{field}' cannot be negative")
        if days >= MAX_DAYS:
            raise RowError(f"'{field}' is too large")
        return days.quantize(Decimal("0.1"))

    @classmethod
    def _validate_row(cls, row: dict, projects: dict[str, int], assignees: dict[str, str]) -> dict:
        for field in ("name", "project_name", "assignee", "days_assigned"):
            if _is_blank(row.get(field)):
                raise RowError(f"Missing required field '{field}'")

        project_id = cls._find_project(str(row["project_name"]), projects)
        if project_id is None:
            raise RowError(f"Project \"{row['project_name']}\" not found")

        assignee = assignees.get(str(row["assignee"]).strip().lower())
        if assignee is None:
            raise RowError(f"Assignee \"{row['assignee']}\" not found")

        status = row.get("status") or TaskStatus.NOT_STARTED
        if status not in TaskStatus.values:
            raise RowError(f"Invalid status \"{status}\". Valid values are: {', '.join(TaskStatus.values)}")

        rag = RAG.GREEN
        if not _is_blank(row.get("rag")):
            try:
                rag = int(row["rag"])
            except (TypeError, ValueError):
                rag = None
            if rag not in RAG.values:
                raise RowError(f"Invalid RAG value \"{row['rag']}\". Valid values are: 1 (Green), 2 (Amber), 3 (Red)")

        persona = None
        if not _is_blank(row.get("persona")):
            persona = str(row["persona"]).strip().lower()
            if persona not in Persona.values:
                raise RowError(f"Invalid persona \"{row['persona']}\". Valid values are: {', '.join(Persona.values)}")

        return {
            "project_id": project_id,
            "name": str(row["name"]).strip(),
            "sub_task_name": row.get("sub_task_name") or None,
            "assignee": assignee,
            "status": status,
            "rag": rag,
            "start_date": cls._parse_date(row.get("start_date"), "start_date"),
            "due_date": cls._parse_date(row.get("due_date"), "due_date"),
            "days_assigned": cls._parse_days(row.get("days_assigned"), "days_assigned"),
            "days_taken": cls._parse_days(row.get("days_taken"), "days_taken"),
            "description": row.get("description") or None,
            "path_to_green": row.get("path_to_green") or None,
            "tau_notes": row.get("tau_notes") or None,
            "persona": persona,
        }

    @classmethod
    def validate(cls, rows: list[dict]) -> list[dict]:
        """Validate every row; any error rejects the whole batch."""
        projects = cls._project_lookup()
        assignees = {name.lower(): name for name in Assignee.objects.values_list("name", flat=True)}

        valid, errors = [], []
        for row_number, row in enumerate(rows, start=1):
            if all(_is_blank(row.get(f)) for f in ("name", "project_name", "assignee")):
                continue
            try:
                valid.append(cls._validate_row(row, projects, assignees))
            except RowError as exc:
                errors.append(f"Row {row_number}: {exc}")

        if errors:
            raise ImportValidationError(errors)
        if not valid:
            raise ImportFileError("No task data provided")
        return valid

    @classmethod
    @transaction.atomic
    def process(cls, rows: list[dict], column_mapping: dict[str, str] | None = None) -> list[int]:
        """Insert validated rows and refresh the progress of every touched project."""
        if not rows:
            raise ImportFileError("No task data provided")
        logger.info("[import] processing %s rows (mapping: %s)", len(rows), column_mapping)

        valid = cls.validate(cls.apply_column_mapping(rows, column_mapping))
        task_ids = [Task.objects.create(**fields).id for fields in valid]

        for project_id in sorted({fields["project_id"] for fields in valid}):
            ProjectService.update_progress(project_id)

        logger.info("[import] imported %s tasks", len(task_ids))
        return task_ids

    @staticmethod
    def build_template() -> bytes:
        """Blank import workbook with one example row."""
        workbook = Workbook()
        sheet = workbook.active
        sheet.title = "Tasks Template"

        sheet.append([field for field, _, _ in TEMPLATE_COLUMNS])
        sheet.append([example for _, _, example in TEMPLATE_COLUMNS])

        header_fill = PatternFill(start_color="DDEBF7", end_color="DDEBF7", fill_type="solid")
        for index, (_, width, _) in enumerate(TEMPLATE_COLUMNS, start=1):
            sheet.column_dimensions[get_column_letter(index)].width = width
            cell = sheet.cell(row=1, column=index)
            cell.font = Font(bold=True)
            cell.fill = header_fill

        buffer = io.BytesIO()
        workbook.save(buffer)
        return buffer.getvalue()
