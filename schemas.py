"""
Document Schemas for the ProjectSphere project tracker

The whole application state is a single ``Document`` holding every project.
It is persisted as one JSON blob, so the models below are the source of truth
for that blob's shape. Field names are snake_case in Python and camelCase on
the wire (``dueDate``, ``submittedAt``) so stored blobs stay compatible with
the browser build of the tracker.

All models are frozen: mutations build new snapshots with ``model_copy``.
"""

from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

GROUPS = ("Group A", "Group B", "Group C")
STATUSES = ("On Track", "At Risk", "Submitted")

Group = Literal["Group A", "Group B", "Group C"]
Status = Literal["On Track", "At Risk", "Submitted"]
Role = Literal["student", "teacher"]


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


def _check_unique(ids, what: str):
    seen = set()
    for i in ids:
        if i in seen:
            raise ValueError(f"duplicate {what} id: {i}")
        seen.add(i)


# Project contents
class Milestone(_Model):
    id: str
    title: str
    due_date: date
    completed: bool = False


class Task(_Model):
    id: str
    text: str
    owner: str = "Unassigned"
    done: bool = False


class Submission(_Model):
    link: str = ""
    note: str = ""
    submitted_at: Optional[datetime] = None
    marks: Optional[float] = Field(None, ge=0, le=100)
    remark: Optional[str] = None

    @field_validator("marks", mode="before")
    @classmethod
    def _blank_marks(cls, value):
        # The browser build stores an empty marks box as "".
        if isinstance(value, str) and not value.strip():
            return None
        return value


class Project(_Model):
    id: str
    title: str
    description: str
    group: Group
    deadline: date
    status: Status = "On Track"
    progress: int = Field(0, ge=0, le=100)
    milestones: List[Milestone] = Field(default_factory=list)
    tasks: List[Task] = Field(default_factory=list)
    submission: Submission = Field(default_factory=Submission)

    @model_validator(mode="after")
    def _unique_children(self):
        _check_unique((t.id for t in self.tasks), "task")
        _check_unique((m.id for m in self.milestones), "milestone")
        return self


class Document(_Model):
    projects: List[Project]

    @model_validator(mode="after")
    def _unique_projects(self):
        _check_unique((p.id for p in self.projects), "project")
        return self


# Session and derived views
class SessionUser(_Model):
    name: str
    email: str
    password: str = Field("", repr=False, exclude=True)
    role: Role
    group: Optional[Group] = Field(None, description="present only for students")


class Capabilities(_Model):
    can_create_project: bool = False
    can_add_milestone: bool = False
    can_grade: bool = False
    can_submit_work: bool = False


class Stats(_Model):
    count: int
    average_progress: int
    submitted_count: int


class ProjectView(Project):
    days_remaining: int
    deadline_label: str


def default_document() -> Document:
    """The seed document used on first run and whenever storage is unreadable."""
    return Document(projects=[
        Project(
            id="p1",
            title="AI Attendance System",
            description="Build a face-recognition based attendance system for labs.",
            group="Group A",
            deadline=date(2025, 12, 20),
            status="On Track",
            progress=45,
            milestones=[
                Milestone(id="m1", title="Requirement Analysis", due_date=date(2025, 11, 30), completed=True),
                Milestone(id="m2", title="Model Training", due_date=date(2025, 12, 10)),
            ],
            tasks=[
                Task(id="t1", text="Collect sample face dataset", owner="Vipul", done=True),
                Task(id="t2", text="Design database schema", owner="Aman"),
                Task(id="t3", text="Build React dashboard UI", owner="Priya"),
            ],
        ),
        Project(
            id="p2",
            title="Smart Farming Dashboard",
            description="IoT + ML dashboard to monitor soil, weather, and crop health.",
            group="Group B",
            deadline=date(2025, 12, 25),
            status="At Risk",
            progress=20,
            milestones=[
                Milestone(id="m1", title="Sensor Research", due_date=date(2025, 12, 5)),
            ],
            tasks=[
                Task(id="t1", text="Finalize tech stack", owner="Arjun"),
                Task(id="t2", text="Create wireframes", owner="Neha"),
            ],
        ),
    ])
