from django.db import models
from django.db.models import Q, F, CheckConstraint


class RAG(models.IntegerChoices):
    GREEN = 1, "Green"
    AMBER = 2, "Amber"
    RED = 3, "Red"


class TaskStatus(models.TextChoices):
    NOT_STARTED = "Not Started"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    ON_HOLD = "On Hold"


class Persona(models.TextChoices):
    EXEC_SPONSOR = "exec_sponsor", "Exec sponsor"
    EXEC_LEAD = "exec_lead", "Exec lead"
    DEVELOPER = "developer", "Developer"
    CONSULTANT = "consultant", "Consultant"
    PROGRAMME_MANAGER = "programme_manager", "Programme manager"


class Project(models.Model):
    id           = models.BigAutoField(primary_key=True)
    company_name = models.CharField(max_length=255, blank=True, default="")
    workstream   = models.CharField(max_length=255)
    description  = models.TextField(blank=True, null=True)
    status       = models.CharField(max_length=50, default="Planning")
    rag          = models.PositiveSmallIntegerField(choices=RAG.choices, default=RAG.GREEN)
    progress     = models.FloatField(default=0)
    start_date   = models.DateField(null=True, blank=True)
    end_date     = models.DateField(null=True, blank=True)
    created_at   = models.DateTimeField(auto_now_add=True)
    updated_at   = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.company_name} - {self.workstream}" if self.company_name else self.workstream


class Assignee(models.Model):
    id                    = models.BigAutoField(primary_key=True)
    name                  = models.CharField(max_length=100, unique=True)
    email                 = models.EmailField(blank=True, null=True)
    working_days_per_week = models.DecimalField(max_digits=3, decimal_places=1, default=5)
    start_date            = models.DateField(null=True, blank=True)
    created_at            = models.DateTimeField(auto_now_add=True)
    updated_at            = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        constraints = [
            CheckConstraint(
                name="assignee_working_days_in_week",
                condition=Q(working_days_per_week__gt=0) & Q(working_days_per_week__lte=7),
            ),
        ]

    def __str__(self):
        return self.name


class Holiday(models.Model):
    """A non-working day or inclusive date range; no assignee means a public holiday."""
    id           = models.BigAutoField(primary_key=True)
    assignee     = models.ForeignKey(
        Assignee,
        null=True, blank=True,
        on_delete=models.CASCADE,
        related_name="holidays"
    )
    holiday_date = models.DateField(db_index=True)
    date_end     = models.DateField(null=True, blank=True)
    description  = models.CharField(max_length=255, blank=True, null=True)
    country_code = models.CharField(max_length=2, blank=True, null=True)
    created_at   = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["holiday_date"]
        indexes = [
            models.Index(fields=["assignee", "holiday_date"]),
        ]
        constraints = [
            CheckConstraint(
                name="holiday_range_valid",
                condition=Q(date_end__isnull=True) | Q(date_end__gte=F("holiday_date")),
            ),
        ]

    @property
    def is_range(self) -> bool:
        return self.date_end is not None

    def __str__(self):
        owner = self.assignee.name if self.assignee_id else "public"
        if self.date_end:
            return f"{owner}: {self.holiday_date} to {self.date_end}"
        return f"{owner}: {self.holiday_date}"


class Task(models.Model):
    id                = models.BigAutoField(primary_key=True)
    project           = models.ForeignKey(
        Project,
        on_delete=models.CASCADE,
        related_name="tasks"
    )
    name              = models.CharField(max_length=255)
    sub_task_name     = models.CharField(max_length=255, blank=True, null=True)
    # Matched against Assignee.name, not a foreign key
    assignee          = models.CharField(max_length=100, blank=True, null=True, db_index=True)
    status            = models.CharField(max_length=20, choices=TaskStatus.choices, default=TaskStatus.NOT_STARTED)
    rag               = models.PositiveSmallIntegerField(choices=RAG.choices, default=RAG.GREEN)
    start_date        = models.DateField(null=True, blank=True)
    due_date          = models.DateField(null=True, blank=True, db_index=True)
    days_assigned     = models.DecimalField(max_digits=6, decimal_places=1, default=0)
    days_taken        = models.DecimalField(max_digits=6, decimal_places=1, default=0)
    description       = models.TextField(blank=True, null=True)
    tau_notes         = models.TextField(blank=True, null=True)
    path_to_green     = models.TextField(blank=True, null=True)
    persona           = models.CharField(max_length=30, choices=Persona.choices, blank=True, null=True)
    last_updated_days = models.DateTimeField(null=True, blank=True)
    created_at        = models.DateTimeField(auto_now_add=True)
    updated_at        = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["assignee", "due_date"]),
            models.Index(fields=["project", "status"]),
        ]

    def __str__(self):
        return self.name
