import json
from pathlib import Path
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from planning.models import Project, Assignee, Holiday, Task
from planning.services import ProjectService

DEFAULT_DIR = Path(__file__).resolve().parents[2] / "seed_data"


class Command(BaseCommand):
    help = "Load demo seed data from JSON files in seed_data/."

    def add_arguments(self, parser):
        parser.add_argument(
            "--truncate",
            action="store_true",
            help="Delete existing data before loading.",
        )
        parser.add_argument(
            "--dir",
            default=str(DEFAULT_DIR),
            help="Directory containing JSON files (default: the bundled seed_data).",
        )

    @transaction.atomic
    def handle(self, *args, **options):
        base_dir = Path(options["dir"]).resolve()

        # 1. optional clean
        if options["truncate"]:
            self.stdout.write("Deleting existing records…")
            Task.objects.all().delete()
            Holiday.objects.all().delete()
            Assignee.objects.all().delete()
            Project.objects.all().delete()

        # 2. load json helpers
        def load_json(name):
            path = base_dir / f"{name}.json"
            if not path.exists():
                raise CommandError(f"{path} not found")
            with open(path) as f:
                return json.load(f)

        projects  = load_json("projects")
        assignees = load_json("assignees")
        holidays  = load_json("holidays")
        tasks     = load_json("tasks")

        # 3. create records (bulk for speed)
        Project.objects.bulk_create(
            [
                Project(
                    id=p["id"],
                    company_name=p.get("company_name", ""),
                    workstream=p["workstream"],
                    status=p.get("status", "Planning"),
                    start_date=p.get("start_date"),
                    end_date=p.get("end_date"),
                )
                for p in projects
            ],
            ignore_conflicts=True,
        )
        Assignee.objects.bulk_create(
            [
                Assignee(
                    id=a["id"],
                    name=a["name"],
                    email=a.get("email"),
                    working_days_per_week=a.get("working_days_per_week", 5),
                )
                for a in assignees
            ],
            ignore_conflicts=True,
        )
        Holiday.objects.bulk_create(
            [
                Holiday(
                    assignee_id=h.get("assignee_id"),
                    holiday_date=h["holiday_date"],
                    date_end=h.get("date_end"),
                    description=h.get("description"),
                    country_code=h.get("country_code"),
                )
                for h in holidays
            ],
        )
        Task.objects.bulk_create(
            [
                Task(
                    id=t["id"],
                    project_id=t["project_id"],
                    name=t["name"],
                    assignee=t.get("assignee"),
                    status=t.get("status", "Not Started"),
                    start_date=t.get("start_date"),
                    due_date=t.get("due_date"),
                    days_assigned=t.get("days_assigned", 0),
                    days_taken=t.get("days_taken", 0),
                )
                for t in tasks
            ],
            ignore_conflicts=True,
        )

        # 4. progress follows the loaded tasks
        for project_id in {t["project_id"] for t in tasks}:
            ProjectService.update_progress(project_id)

        self.stdout.write(self.style.SUCCESS("✅  Seed data loaded successfully"))
