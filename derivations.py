"""Read-only views computed from the document and the session."""

import math
from datetime import datetime, time, timezone
from typing import Iterable, List, Optional, Sequence

from schemas import Document, Project, ProjectView, SessionUser, Stats, Task

SECONDS_PER_DAY = 24 * 60 * 60


def round_half_up(value: float) -> int:
    # Half-up rounding
    return int(math.floor(value + 0.5))


def compute_progress(tasks: Sequence[Task], fallback: int) -> int:
    """Percentage of done tasks; ``fallback`` when there are no tasks."""
    if not tasks:
        return fallback
    done = sum(1 for t in tasks if t.done)
    return round_half_up(100 * done / len(tasks))


def visible_projects(document: Document, session: SessionUser) -> List[Project]:
    if session.role == "teacher":
        return list(document.projects)
    return [p for p in document.projects if p.group == session.group]


def select_project(projects: Sequence[Project], selected_id: Optional[str]) -> Optional[Project]:
    for p in projects:
        if p.id == selected_id:
            return p
    return projects[0] if projects else None


def days_remaining(project: Project, now: datetime) -> int:
    deadline = datetime.combine(project.deadline, time.min, tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return math.ceil((deadline - now).total_seconds() / SECONDS_PER_DAY)


def deadline_label(project: Project, now: datetime) -> str:
    days = days_remaining(project, now)
    if days < 0:
        return "Past deadline"
    return f"{days} days left"


def project_view(project: Project, now: datetime) -> ProjectView:
    return ProjectView(
        **dict(project),
        days_remaining=days_remaining(project, now),
        deadline_label=deadline_label(project, now),
    )


def aggregate_stats(projects: Iterable[Project]) -> Stats:
    projects = list(projects)
    count = len(projects)
    average = round_half_up(sum(p.progress for p in projects) / count) if count else 0
    submitted = sum(1 for p in projects if p.submission.submitted_at is not None)
    return Stats(count=count, average_progress=average, submitted_count=submitted)
