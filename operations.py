"""
Intents that change the document.

Each operation validates its input first and only then hands a pure
``Project -> Project`` transform to the store, so a rejected intent never
changes state. Targets that do not exist (project, task or milestone ids) are
silently ignored. Role checks belong to the caller; see ``session.capabilities``.
"""

import asyncio
import logging
import time
from datetime import date, datetime, timezone
from typing import Iterable, Optional

from database import DocumentStore
from derivations import compute_progress
from errors import InvalidInput, PreconditionFailed
from schemas import GROUPS, Milestone, Project, Submission, Task

logger = logging.getLogger(__name__)

SUBMIT_DELAY_SECONDS = 0.3


def new_id(prefix: str, taken: Iterable[str] = ()) -> str:
    """Time-based id, bumped until it does not collide with ``taken``."""
    taken = set(taken)
    stamp = int(time.time() * 1000)
    while f"{prefix}_{stamp}" in taken:
        stamp += 1
    return f"{prefix}_{stamp}"


def _require(value: Optional[str], field: str, message: str) -> str:
    value = (value or "").strip()
    if not value:
        raise InvalidInput(field, message)
    return value


# -------------------- Projects -------------------- #

def create_project(store: DocumentStore, title: str, description: str,
                   group: str = "Group A", deadline: Optional[date] = None) -> Project:
    title = _require(title, "title", "Please enter a title.")
    description = _require(description, "description", "Please enter a description.")
    if deadline is None:
        raise InvalidInput("deadline", "Please pick a deadline.")
    if group not in GROUPS:
        raise InvalidInput("group", "Please select a group.")

    with store.lock:
        project = Project(
            id=new_id("p", (p.id for p in store.projects)),
            title=title,
            description=description,
            group=group,
            deadline=deadline,
            status="On Track",
            progress=0,
            milestones=[],
            tasks=[],
            submission=Submission(),
        )
        store.create_project(project)
    logger.info("Project %s created for %s", project.id, group)
    return project


# -------------------- Tasks -------------------- #

def toggle_task(store: DocumentStore, project_id: str, task_id: str) -> Optional[Project]:
    def transform(p: Project) -> Project:
        if not any(t.id == task_id for t in p.tasks):
            return p
        tasks = [t.model_copy(update={"done": not t.done}) if t.id == task_id else t for t in p.tasks]
        return p.model_copy(update={"tasks": tasks, "progress": compute_progress(tasks, p.progress)})

    store.update_project(project_id, transform)
    return store.get_project(project_id)


def add_task(store: DocumentStore, project_id: str, text: str, owner: Optional[str] = None) -> Optional[Project]:
    text = _require(text, "text", "Please describe the task.")
    owner = (owner or "").strip() or "Unassigned"

    def transform(p: Project) -> Project:
        task = Task(id=new_id("t", (t.id for t in p.tasks)), text=text, owner=owner, done=False)
        return p.model_copy(update={"tasks": [*p.tasks, task]})

    store.update_project(project_id, transform)
    return store.get_project(project_id)


# -------------------- Milestones -------------------- #

def toggle_milestone(store: DocumentStore, project_id: str, milestone_id: str) -> Optional[Project]:
    def transform(p: Project) -> Project:
        if not any(m.id == milestone_id for m in p.milestones):
            return p
        milestones = [
            m.model_copy(update={"completed": not m.completed}) if m.id == milestone_id else m
            for m in p.milestones
        ]
        return p.model_copy(update={"milestones": milestones})

    store.update_project(project_id, transform)
    return store.get_project(project_id)


def add_milestone(store: DocumentStore, project_id: str, title: str,
                  due_date: Optional[date]) -> Optional[Project]:
    title = _require(title, "title", "Please enter a milestone title.")
    if due_date is None:
        raise InvalidInput("due_date", "Please pick a due date.")

    def transform(p: Project) -> Project:
        milestone = Milestone(
            id=new_id("m", (m.id for m in p.milestones)),
            title=title,
            due_date=due_date,
            completed=False,
        )
        return p.model_copy(update={"milestones": [*p.milestones, milestone]})

    store.update_project(project_id, transform)
    return store.get_project(project_id)


# -------------------- Submission & grading -------------------- #

async def submit_work(store: DocumentStore, project_id: str, link: str, note: Optional[str] = None,
                      delay: float = SUBMIT_DELAY_SECONDS) -> Optional[Project]:
    """Submit a link after a fixed artificial delay.

    Validation happens before the wait. Once dispatched the submission cannot
    be cancelled, and a re-submission overwrites link, note and timestamp.
    """
    link = _require(link, "link", "Please enter a project link.")
    note = (note or "").strip()

    if delay > 0:
        await asyncio.sleep(delay)

    submitted_at = datetime.now(timezone.utc)

    def transform(p: Project) -> Project:
        submission = p.submission.model_copy(update={
            "link": link,
            "note": note,
            "submitted_at": submitted_at,
        })
        return p.model_copy(update={"status": "Submitted", "submission": submission})

    store.update_project(project_id, transform)
    logger.info("Work submitted for project %s", project_id)
    return store.get_project(project_id)


def record_evaluation(store: DocumentStore, project_id: str, marks: Optional[float],
                      remark: Optional[str] = None) -> Optional[Project]:
    if marks is not None and not 0 <= marks <= 100:
        raise InvalidInput("marks", "Marks must be between 0 and 100.")

    def transform(p: Project) -> Project:
        submission = p.submission.model_copy(update={"marks": marks, "remark": remark})
        return p.model_copy(update={"submission": submission})

    with store.lock:
        project = store.get_project(project_id)
        if project is None:
            return None
        if project.submission.submitted_at is None:
            raise PreconditionFailed(f"Project {project_id} has not been submitted yet")
        store.update_project(project_id, transform)
    logger.info("Evaluation recorded for project %s", project_id)
    return store.get_project(project_id)
