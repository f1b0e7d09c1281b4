"""Who is using the tracker right now.

Login is role self-assignment: fields are checked for presence only and
nothing is verified against a credential store. The session lives in memory
and is gone after logout or a restart.
"""

import logging
from typing import Optional

from errors import InvalidInput
from schemas import GROUPS, Capabilities, SessionUser

logger = logging.getLogger(__name__)

NO_CAPABILITIES = Capabilities()


def capabilities(session: Optional[SessionUser]) -> Capabilities:
    if session is None:
        return NO_CAPABILITIES
    if session.role == "teacher":
        return Capabilities(can_create_project=True, can_add_milestone=True, can_grade=True)
    return Capabilities(can_submit_work=True)


class SessionManager:
    def __init__(self):
        self._current: Optional[SessionUser] = None

    @property
    def current(self) -> Optional[SessionUser]:
        return self._current

    def login(self, role: str, name: str, email: str, password: str,
              group: Optional[str] = None) -> SessionUser:
        name, email, password = (name or "").strip(), (email or "").strip(), (password or "").strip()
        if not name:
            raise InvalidInput("name", "Please enter your name.")
        if not email:
            raise InvalidInput("email", "Please enter your email.")
        if not password:
            raise InvalidInput("password", "Please enter your password.")
        if role not in ("student", "teacher"):
            raise InvalidInput("role", "Please select a role.")
        if role == "student" and group not in GROUPS:
            raise InvalidInput("group", "Please select a group.")

        self._current = SessionUser(
            name=name,
            email=email,
            password=password,
            role=role,
            group=group if role == "student" else None,
        )
        logger.info("Session started for %s as %s", name, role)
        return self._current

    def logout(self) -> None:
        if self._current is not None:
            logger.info("Session ended for %s", self._current.name)
        self._current = None
