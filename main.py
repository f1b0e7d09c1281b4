import logging
import os
import time
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

import operations
from database import DocumentStore, get_storage
from derivations import aggregate_stats, project_view, visible_projects
from errors import InvalidInput, PreconditionFailed
from schemas import (
    Capabilities, Document, Milestone, Project, ProjectView,
    SessionUser, Stats, Submission, Task,
)
from session import SessionManager, capabilities

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
SUBMIT_DELAY_SECONDS = float(os.getenv("SUBMIT_DELAY_SECONDS", operations.SUBMIT_DELAY_SECONDS))

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("projectsphere.api")

app = FastAPI(title="ProjectSphere API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.store = DocumentStore(get_storage())
app.state.sessions = SessionManager()
app.state.submitting = set()


# -------------------- Dependencies -------------------- #

def get_store(request: Request) -> DocumentStore:
    return request.app.state.store


def get_sessions(request: Request) -> SessionManager:
    return request.app.state.sessions


def get_current_user(sessions: SessionManager = Depends(get_sessions)) -> Optional[SessionUser]:
    return sessions.current


def require_user(user: Optional[SessionUser] = Depends(get_current_user)) -> SessionUser:
    if user is None:
        raise HTTPException(status_code=401, detail="Not logged in")
    return user


def require_capability(name: str):
    def _dep(user: SessionUser = Depends(require_user)):
        if not getattr(capabilities(user), name):
            raise HTTPException(status_code=403, detail="Forbidden for role")
        return user
    return _dep


def now() -> datetime:
    return datetime.now(timezone.utc)


def visible_project(store: DocumentStore, user: SessionUser, project_id: str) -> Project:
    for p in visible_projects(store.document, user):
        if p.id == project_id:
            return p
    raise HTTPException(status_code=404, detail="Project not found")


def respond(project: Optional[Project]) -> ProjectView:
    if project is None:
        raise HTTPException(status_code=404, detail="Project not found")
    return project_view(project, now())


# -------------------- Payloads -------------------- #

class _Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LoginPayload(_Payload):
    role: str = "student"
    name: str = ""
    email: str = ""
    password: str = ""
    group: Optional[str] = None


class SessionResponse(_Payload):
    user: SessionUser
    capabilities: Capabilities


class CreateProjectPayload(_Payload):
    title: str = ""
    description: str = ""
    group: str = "Group A"
    deadline: Optional[date] = None


class TaskPayload(_Payload):
    text: str = ""
    owner: str = ""


class MilestonePayload(_Payload):
    title: str = ""
    due_date: Optional[date] = None


class SubmissionPayload(_Payload):
    link: str = ""
    note: str = ""


class EvaluationPayload(_Payload):
    marks: Optional[float] = None
    remark: Optional[str] = None


class DashboardStats(Stats):
    total: int


# -------------------- Errors & request log -------------------- #

@app.exception_handler(InvalidInput)
async def invalid_input_handler(request: Request, exc: InvalidInput):
    return JSONResponse(status_code=400, content={"detail": exc.message, "field": exc.field})


@app.exception_handler(PreconditionFailed)
async def precondition_handler(request: Request, exc: PreconditionFailed):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.middleware("http")
async def request_log_middleware(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - start) * 1000
    logger.info("%s %s -> %d (%.1f ms)", request.method, request.url.path, response.status_code, elapsed_ms)
    return response


# -------------------- Meta endpoints -------------------- #

@app.get("/")
def read_root():
    return {"message": "ProjectSphere backend is running"}


@app.get("/schema")
def get_schema():
    models = [Document, Project, Milestone, Task, Submission, SessionUser, Capabilities, Stats]
    return {m.__name__: m.model_json_schema(by_alias=True) for m in models}


@app.get("/test")
def test_storage(store: DocumentStore = Depends(get_store)):
    response: Dict[str, Any] = {
        "backend": "✅ Running",
        "storage": store.storage.describe(),
        "storage_key": store.key,
        "connection_status": "Not Connected",
        "projects": len(store.projects),
    }
    try:
        stored = store.storage.get(store.key)
        response["connection_status"] = "Connected"
        response["persisted"] = stored is not None
    except Exception as e:
        logger.warning("Storage check failed: %s", e)
        response["connection_status"] = f"❌ Error: {str(e)[:80]}"
    return response


# -------------------- Auth endpoints -------------------- #

@app.post("/auth/login", response_model=SessionResponse)
def login(payload: LoginPayload, sessions: SessionManager = Depends(get_sessions)):
    """Start the server-wide session.

    The server is single-user: there is one current session per process, and
    each login replaces it for every client.
    """
    user = sessions.login(payload.role, payload.name, payload.email, payload.password, payload.group)
    return SessionResponse(user=user, capabilities=capabilities(user))


@app.post("/auth/logout")
def logout(sessions: SessionManager = Depends(get_sessions)):
    sessions.logout()
    return {"status": "logged_out"}


@app.get("/auth/me", response_model=SessionResponse)
def me(user: SessionUser = Depends(require_user)):
    return SessionResponse(user=user, capabilities=capabilities(user))


# -------------------- Project views -------------------- #

@app.get("/projects", response_model=List[ProjectView])
def list_projects(user: SessionUser = Depends(require_user), store: DocumentStore = Depends(get_store)):
    current = now()
    return [project_view(p, current) for p in visible_projects(store.document, user)]


@app.get("/projects/{project_id}", response_model=ProjectView)
def get_project(project_id: str, user: SessionUser = Depends(require_user),
                store: DocumentStore = Depends(get_store)):
    return respond(visible_project(store, user, project_id))


@app.get("/stats", response_model=DashboardStats)
def get_stats(user: SessionUser = Depends(require_user), store: DocumentStore = Depends(get_store)):
    stats = aggregate_stats(visible_projects(store.document, user))
    return DashboardStats(**dict(stats), total=len(store.projects))


# -------------------- Teacher endpoints -------------------- #

@app.post("/projects", response_model=ProjectView, status_code=201)
def create_project(payload: CreateProjectPayload,
                   user: SessionUser = Depends(require_capability("can_create_project")),
                   store: DocumentStore = Depends(get_store)):
    project = operations.create_project(store, payload.title, payload.description, payload.group, payload.deadline)
    return respond(project)


@app.post("/projects/{project_id}/milestones", response_model=ProjectView)
def add_milestone(project_id: str, payload: MilestonePayload,
                  user: SessionUser = Depends(require_capability("can_add_milestone")),
                  store: DocumentStore = Depends(get_store)):
    visible_project(store, user, project_id)
    return respond(operations.add_milestone(store, project_id, payload.title, payload.due_date))


@app.post("/projects/{project_id}/evaluation", response_model=ProjectView)
def record_evaluation(project_id: str, payload: EvaluationPayload,
                      user: SessionUser = Depends(require_capability("can_grade")),
                      store: DocumentStore = Depends(get_store)):
    visible_project(store, user, project_id)
    return respond(operations.record_evaluation(store, project_id, payload.marks, payload.remark))


@app.post("/admin/reset")
def reset_document(user: SessionUser = Depends(require_capability("can_create_project")),
                   store: DocumentStore = Depends(get_store)):
    document = store.reset()
    return {"status": "reset", "projects": len(document.projects)}


# -------------------- Shared endpoints -------------------- #

@app.post("/projects/{project_id}/tasks", response_model=ProjectView)
def add_task(project_id: str, payload: TaskPayload, user: SessionUser = Depends(require_user),
             store: DocumentStore = Depends(get_store)):
    visible_project(store, user, project_id)
    return respond(operations.add_task(store, project_id, payload.text, payload.owner))


@app.post("/projects/{project_id}/tasks/{task_id}/toggle", response_model=ProjectView)
def toggle_task(project_id: str, task_id: str, user: SessionUser = Depends(require_user),
                store: DocumentStore = Depends(get_store)):
    visible_project(store, user, project_id)
    return respond(operations.toggle_task(store, project_id, task_id))


@app.post("/projects/{project_id}/milestones/{milestone_id}/toggle", response_model=ProjectView)
def toggle_milestone(project_id: str, milestone_id: str, user: SessionUser = Depends(require_user),
                     store: DocumentStore = Depends(get_store)):
    visible_project(store, user, project_id)
    return respond(operations.toggle_milestone(store, project_id, milestone_id))


# -------------------- Student endpoints -------------------- #

@app.post("/projects/{project_id}/submission", response_model=ProjectView)
async def submit_work(project_id: str, payload: SubmissionPayload, request: Request,
                      user: SessionUser = Depends(require_capability("can_submit_work")),
                      store: DocumentStore = Depends(get_store)):
    visible_project(store, user, project_id)
    pending = request.app.state.submitting
    if project_id in pending:
        raise HTTPException(status_code=409, detail="Submission already in progress")
    pending.add(project_id)
    try:
        project = await operations.submit_work(store, project_id, payload.link, payload.note,
                                               delay=SUBMIT_DELAY_SECONDS)
    finally:
        pending.discard(project_id)
    return respond(project)


# -------------------- Run -------------------- #

if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
