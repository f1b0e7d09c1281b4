class ProjectSphereError(Exception):
    """Base class for domain errors raised by the project tracker."""


class InvalidInput(ProjectSphereError, ValueError):
    """A required field is empty or a selection is missing."""

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message


class PreconditionFailed(ProjectSphereError):
    """The target project is not in a state that allows the operation."""
