"""Dependency providers for the reelflow web API."""

from __future__ import annotations

from litestar.params import Parameter

from reelflow.core.context import Caller

__all__ = ["provide_caller"]


async def provide_caller(
    user_id: int = Parameter(header="X-User-Id", description="Id of the acting user"),
    is_admin: bool = Parameter(header="X-User-Admin", default=False, description="Whether the user is an admin"),
) -> Caller:
    """Build the acting user from request headers.

    Authentication is left to the host application, which is expected to set
    these headers (or override this dependency) after verifying the user.

    Args:
        user_id: Value of the ``X-User-Id`` header.
        is_admin: Value of the ``X-User-Admin`` header.

    Returns:
        The caller used for access checks.
    """
    return Caller(user_id=user_id, is_admin=is_admin)
