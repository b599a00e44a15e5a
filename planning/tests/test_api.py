from datetime import date
from decimal import Decimal

from django.test import TestCase
from django.test.client import Client

from planning.models import Assignee, Holiday, Project, Task


class PlannerAPITestBase(TestCase):
    """Base test class with common setup and helper methods."""

    def setUp(self):
        """Set up common test data"""
        self.client = Client()

        self.project = Project.objects.create(company_name="Acme", workstream="Migration")
        self.alex = Assignee.objects.create(name="Alex", email="alex@example.com")
        self.sam = Assignee.objects.create(name="Sam", working_days_per_week=Decimal("2.5"))

        Holiday.objects.create(holiday_date=date(2025, 6, 4), description="Company day", country_code="GB")

    def post_json(self, url, payload):
        return self.client.post(url, payload, content_type="application/json")

    def put_json(self, url, payload):
        return self.client.put(url, payload, content_type="application/json")

    def task_payload(self, **overrides):
        payload = {
            "project_id": self.project.id,
            "name": "Build pipeline",
            "assignee": "Alex",
            "start_date": "2025-06-02",
            "due_date": "2025-06-13",
            "days_assigned": 5,
            "days_taken": 0,
        }
        payload.update(overrides)
        return payload


class HealthTest(PlannerAPITestBase):

    def test_health(self):
        response = self.client.get("/api/health")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ok")


class ProjectAPITest(PlannerAPITestBase):

    def test_create_and_list(self):
        response = self.post_json("/api/projects", {"name": "Reporting", "company": "Acme", "start_date": ""})

        self.assertEqual(response.status_code, 201)
        data = response.json()
        self.assertEqual(data["name"], "Reporting")
        self.assertEqual(data["company"], "Acme")
        self.assertIsNone(data["start_date"])
        self.assertEqual(data["progress"], 0)

        names = [p["name"] for p in self.client.get("/api/projects").json()]
        self.assertIn("Reporting", names)
        self.assertIn("Migration", names)

    def test_update_and_delete(self):
        url = f"/api/projects/{self.project.id}"
        response = self.put_json(url, {"name": "Migration phase 2", "company": "Acme", "status": "Active"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["workstream"], "Migration phase 2")

        self.assertEqual(self.client.delete(url).status_code, 200)
        self.assertEqual(self.client.get(url).status_code, 404)


class AssigneeAPITest(PlannerAPITestBase):

    def test_create_assignee(self):
        response = self.post_json("/api/assignees", {"name": "Jo", "working_days_per_week": 3})

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["working_days_per_week"], 3.0)

    def test_working_days_per_week_must_fit_a_week(self):
        self.assertEqual(self.post_json("/api/assignees", {"name": "Jo", "working_days_per_week": 0}).status_code, 422)
        self.assertEqual(self.post_json("/api/assignees", {"name": "Jo", "working_days_per_week": 8}).status_code, 422)

    def test_assignee_with_tasks_cannot_be_deleted(self):
        Task.objects.create(project=self.project, name="Build", assignee="Alex", days_assigned=2)

        response = self.client.delete(f"/api/assignees/{self.alex.id}")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["count"], 1)

    def test_holiday_range(self):
        url = f"/api/assignees/{self.alex.id}/holiday-range"
        response = self.post_json(url, {"start_date": "2025-06-09", "end_date": "2025-06-13", "description": "Leave"})

        self.assertEqual(response.status_code, 201)
        data = response.json()
        self.assertTrue(data["is_range"])
        self.assertEqual(data["display_text"], "09/06/2025 to 13/06/2025")

        listed = self.client.get(f"/api/assignees/{self.alex.id}/holidays").json()
        self.assertEqual([h["id"] for h in listed], [data["id"]])

        self.assertEqual(self.client.delete(f"/api/assignees/holidays/{data['id']}").status_code, 200)
        self.assertFalse(Holiday.objects.filter(pk=data["id"]).exists())

    def test_holiday_range_must_not_end_before_start(self):
        url = f"/api/assignees/{self.alex.id}/holiday-range"
        response = self.post_json(url, {"start_date": "2025-06-13", "end_date": "2025-06-09"})

        self.assertEqual(response.status_code, 400)
        self.assertIn("error", response.json())

    def test_single_holiday(self):
        response = self.post_json(f"/api/assignees/{self.sam.id}/holidays", {"holiday_date": "2025-06-05"})

        self.assertEqual(response.status_code, 201)
        self.assertFalse(response.json()["is_range"])
        self.assertEqual(response.json()["display_text"], "05/06/2025")

    def test_working_days(self):
        response = self.client.get(
            f"/api/assignees/{self.sam.id}/working-days",
            {"start_date": "2025-06-02", "end_date": "2025-06-13"},
        )

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["business_days"], 9)
        self.assertEqual(data["working_days"], 4.5)


class PublicHolidayAPITest(PlannerAPITestBase):

    def test_public_holidays(self):
        Holiday.objects.create(assignee=self.alex, holiday_date=date(2025, 6, 5))

        response = self.post_json("/api/holidays/public", {"holiday_date": "2025-08-25", "description": "Bank holiday"})
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["country_code"], "GB")

        listed = self.client.get("/api/holidays/public").json()
        self.assertEqual([h["holiday_date"] for h in listed], ["2025-06-04", "2025-08-25"])

        response = self.client.delete(f"/api/holidays/public/{listed[0]['id']}")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(self.client.get("/api/holidays/public").json()), 1)


class TaskAPITest(PlannerAPITestBase):

    def test_create_derives_status_and_progress(self):
        response = self.post_json("/api/tasks", self.task_payload(days_taken=5, status=""))

        self.assertEqual(response.status_code, 201)
        data = response.json()
        self.assertEqual(data["status"], "Completed")
        self.assertEqual(data["project_name"], "Migration")
        self.assertEqual(data["company_name"], "Acme")

        project = self.client.get(f"/api/projects/{self.project.id}").json()
        self.assertEqual(project["progress"], 1.0)

    def test_create_for_missing_project(self):
        response = self.post_json("/api/tasks", self.task_payload(project_id=9999))

        self.assertEqual(response.status_code, 404)

    def test_update_and_delete(self):
        task_id = self.post_json("/api/tasks", self.task_payload()).json()["id"]

        response = self.put_json(f"/api/tasks/{task_id}", self.task_payload(days_taken=2))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "In Progress")
        self.assertIsNotNone(response.json()["last_updated_days"])

        self.assertEqual(self.client.delete(f"/api/tasks/{task_id}").status_code, 200)
        self.assertFalse(Task.objects.filter(pk=task_id).exists())

    def test_rag_for_overdue_task(self):
        task_id = self.post_json("/api/tasks", self.task_payload(days_taken=1)).json()["id"]

        generic = self.client.get(f"/api/tasks/{task_id}/rag").json()
        self.assertEqual(generic["calendar"], "generic")
        self.assertEqual(generic["rag"], 3)
        self.assertEqual(generic["days_remaining"], 4)

        personal = self.client.get(f"/api/tasks/{task_id}/rag", {"calendar": "assignee"}).json()
        self.assertEqual(personal["calendar"], "assignee")
        self.assertEqual(personal["rag"], 3)

    def test_rag_requires_due_date(self):
        task_id = self.post_json("/api/tasks", self.task_payload(due_date=None)).json()["id"]

        response = self.client.get(f"/api/tasks/{task_id}/rag")
        self.assertEqual(response.status_code, 400)

    def test_rag_rejects_unknown_calendar(self):
        task_id = self.post_json("/api/tasks", self.task_payload()).json()["id"]

        self.assertEqual(self.client.get(f"/api/tasks/{task_id}/rag", {"calendar": "lunar"}).status_code, 422)


class ResourceAllocationAPITest(PlannerAPITestBase):

    def setUp(self):
        super().setUp()
        Holiday.objects.create(assignee=self.sam, holiday_date=date(2025, 6, 5))
        Task.objects.create(
            project=self.project, name="Build", assignee="Alex",
            start_date=date(2025, 6, 2), due_date=date(2025, 6, 6),
            days_assigned=Decimal("6"), days_taken=Decimal("2"),
        )
        Task.objects.create(
            project=self.project, name="Review", assignee="Sam",
            start_date=date(2025, 6, 2), due_date=date(2025, 6, 13),
            days_assigned=Decimal("3"),
        )

    def test_allocation_groups_tasks(self):
        response = self.client.get("/api/resource-allocation", {"assignee": "Alex"})

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(len(data), 1)
        self.assertEqual(data[0]["name"], "Alex")
        self.assertEqual(data[0]["total_days_remaining"], 4)
        self.assertEqual(data[0]["projects"][0]["name"], "Migration")
        self.assertEqual(data[0]["tasks"][0]["calculated_rag"], 3)

    def test_calendar_window(self):
        response = self.client.get(
            "/api/resource-allocation/calendar", {"start_date": "2025-06-01", "end_date": "2025-06-30"},
        )

        self.assertEqual(response.status_code, 200)
        titles = sorted(event["title"] for event in response.json())
        self.assertEqual(titles, ["Build", "Review"])

    def test_workload_summary(self):
        response = self.client.get(
            "/api/resource-allocation/workload-summary", {"start_date": "2025-06-02", "end_date": "2025-06-13"},
        )

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["business_days"], 9)
        rows = {row["assignee"]: row for row in data["workload"]}

        self.assertEqual(rows["Alex"]["total_capacity"], 9.0)
        self.assertEqual(rows["Alex"]["allocated"], 4.0)
        self.assertEqual(rows["Alex"]["allocation_percentage"], 44)
        self.assertEqual(rows["Alex"]["allocation_status"], "Underallocated")

        self.assertEqual(rows["Sam"]["total_capacity"], 4.0)
        self.assertEqual(rows["Sam"]["allocation_percentage"], 75)
        self.assertEqual(rows["Sam"]["allocation_status"], "Balanced")

    def test_workload_summary_rejects_unknown_timeframe(self):
        response = self.client.get("/api/resource-allocation/workload-summary", {"timeframe": "decade"})

        self.assertEqual(response.status_code, 422)

    def test_business_days(self):
        response = self.client.get(
            "/api/resource-allocation/business-days", {"start_date": "2025-06-02", "end_date": "2025-06-06"},
        )
        self.assertEqual(response.json()["business_days"], 4)

        response = self.client.get(
            "/api/resource-allocation/business-days",
            {"start_date": "2025-06-02", "end_date": "2025-06-06", "assignee": "Sam"},
        )
        data = response.json()
        self.assertEqual(data["business_days"], 3)
        self.assertEqual(data["holidays"], ["2025-06-04", "2025-06-05"])
        self.assertFalse(data["degraded"])
