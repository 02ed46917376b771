"""Exception hierarchy for reelflow."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from reelflow.core.definition import ValidationIssue

__all__ = (
    "AccessError",
    "HumanInputError",
    "InvalidTransitionError",
    "LockConflictError",
    "NodeExecutionError",
    "NotFoundError",
    "ReelflowError",
    "WorkflowValidationError",
)


class ReelflowError(Exception):
    """Base exception for all reelflow errors.

    All exceptions raised by the engine inherit from this class so callers
    can catch every workflow-related failure with a single except clause.
    """


class WorkflowValidationError(ReelflowError):
    """Raised when a workflow graph fails structural or type validation.

    Raised synchronously, before any run or template version is persisted.

    Attributes:
        issues: The validation errors that were found.
    """

    def __init__(self, issues: list[ValidationIssue]) -> None:
        """Initialize the exception with the validation errors.

        Args:
            issues: The validation errors that were found.
        """
        self.issues = issues
        summary = "; ".join(f"{issue.code}: {issue.message}" for issue in issues)
        super().__init__(f"Workflow validation failed: {summary}")


class LockConflictError(ReelflowError):
    """Raised when the subject resource already has a live run.

    Attributes:
        task_version_id: The task version whose lock is held.
        locked_by: The token currently holding the lock, if known.
    """

    def __init__(self, task_version_id: int, locked_by: str | None = None) -> None:
        """Initialize the exception with lock details.

        Args:
            task_version_id: The task version whose lock is held.
            locked_by: The token currently holding the lock, if known.
        """
        self.task_version_id = task_version_id
        self.locked_by = locked_by
        msg = f"Task version '{task_version_id}' is locked by another run"
        if locked_by:
            msg += f" ({locked_by})"
        super().__init__(msg)


class NotFoundError(ReelflowError):
    """Raised when a run, node run, template version or other record is missing.

    Attributes:
        kind: The kind of record that was looked up.
        identifier: The identifier that was not found.
    """

    def __init__(self, kind: str, identifier: object) -> None:
        """Initialize the exception with lookup details.

        Args:
            kind: The kind of record that was looked up.
            identifier: The identifier that was not found.
        """
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} '{identifier}' not found")


class AccessError(ReelflowError):
    """Raised when the caller does not own the subject resource.

    Attributes:
        user_id: The caller's user id.
        task_id: The task the caller tried to act on.
    """

    def __init__(self, user_id: int, task_id: int, reason: str | None = None) -> None:
        """Initialize the exception with authorization details.

        Args:
            user_id: The caller's user id.
            task_id: The task the caller tried to act on.
            reason: Additional context about why access was denied.
        """
        self.user_id = user_id
        self.task_id = task_id
        msg = f"User '{user_id}' may not access task '{task_id}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class NodeExecutionError(ReelflowError):
    """Raised when a node handler fails.

    This wraps the underlying exception (a provider or storage failure) or
    describes a violated precondition such as a duration limit.

    Attributes:
        node_id: The id of the node that failed.
        cause: The underlying exception, if any.
    """

    def __init__(self, node_id: str, message: str | None = None, cause: Exception | None = None) -> None:
        """Initialize the exception with node execution details.

        Args:
            node_id: The id of the node that failed.
            message: Description of the failure.
            cause: The underlying exception, if any.
        """
        self.node_id = node_id
        self.cause = cause
        self.detail = message or (str(cause) if cause else "Node execution failed")
        super().__init__(f"Node '{node_id}' failed: {self.detail}")


class HumanInputError(ReelflowError):
    """Raised when a human gate decision is unusable.

    Covers empty selections and decisions aimed at nodes that are not waiting.
    Never mutates run state.
    """


class InvalidTransitionError(ReelflowError):
    """Raised when a run is asked to move to a state it cannot reach.

    Attributes:
        run_id: The run that was targeted.
        status: The run's current status.
    """

    def __init__(self, run_id: int, status: str, reason: str | None = None) -> None:
        """Initialize the exception with transition details.

        Args:
            run_id: The run that was targeted.
            status: The run's current status.
            reason: Additional context about why the transition is invalid.
        """
        self.run_id = run_id
        self.status = status
        msg = f"Run '{run_id}' cannot transition from '{status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
