"""Exception handling for reelflow web endpoints.

Engine errors are mapped to JSON responses with a stable ``error`` code.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from litestar import Response
from litestar.status_codes import (
    HTTP_400_BAD_REQUEST,
    HTTP_403_FORBIDDEN,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_422_UNPROCESSABLE_ENTITY,
    HTTP_500_INTERNAL_SERVER_ERROR,
)

from reelflow.exceptions import (
    AccessError,
    HumanInputError,
    InvalidTransitionError,
    LockConflictError,
    NotFoundError,
    ReelflowError,
    WorkflowValidationError,
)

if TYPE_CHECKING:  # pragma: no cover
    from litestar import Request

__all__ = ["ERROR_STATUS", "reelflow_error_handler"]

ERROR_STATUS: dict[type[ReelflowError], tuple[int, str]] = {
    WorkflowValidationError: (HTTP_422_UNPROCESSABLE_ENTITY, "validation_failed"),
    LockConflictError: (HTTP_409_CONFLICT, "lock_conflict"),
    InvalidTransitionError: (HTTP_409_CONFLICT, "invalid_transition"),
    NotFoundError: (HTTP_404_NOT_FOUND, "not_found"),
    AccessError: (HTTP_403_FORBIDDEN, "forbidden"),
    HumanInputError: (HTTP_400_BAD_REQUEST, "invalid_human_input"),
}


def reelflow_error_handler(
    _request: Request,
    exc: ReelflowError,
) -> Response:
    """Exception handler for ReelflowError and its subclasses.

    Args:
        _request: The Litestar request object.
        exc: The raised engine error.

    Returns:
        Response with the error code, message and, for validation errors, the issues.
    """
    status_code, code = next(
        (value for error_type, value in ERROR_STATUS.items() if isinstance(exc, error_type)),
        (HTTP_500_INTERNAL_SERVER_ERROR, "internal_error"),
    )
    content: dict[str, Any] = {"error": code, "message": str(exc)}
    if isinstance(exc, WorkflowValidationError):
        content["issues"] = [issue.to_dict() for issue in exc.issues]
    return Response(content=content, status_code=status_code, media_type="application/json")
