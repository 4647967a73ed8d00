"""
Security guards for role-based access control.

Provides dependencies for protecting finance endpoints.
"""

from typing import List
from fastapi import Depends, HTTPException, status
from finance_backend.app.models.enums import UserRole
from finance_backend.app.core.dependencies import get_current_user


def require_role(allowed_roles: List[UserRole]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.post("/finance/income")
        async def create_income(current_user: dict = Depends(require_role(FINANCE_WRITERS))):
            ...

    Args:
        allowed_roles: List of UserRole enums that are allowed to access the endpoint

    Returns:
        FastAPI dependency function that validates user role

    Raises:
        HTTPException 403 if user role is not in allowed_roles
    """
    async def role_checker(current_user: dict = Depends(get_current_user)) -> dict:
        user_role_str = current_user.get("role")

        if not user_role_str:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Role information missing from token"
            )

        try:
            user_role = UserRole(user_role_str)
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Invalid role in token"
            )

        if user_role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {', '.join([r.value for r in allowed_roles])}"
            )

        return current_user

    return role_checker


FINANCE_WRITERS = [UserRole.ADMIN, UserRole.FINANCE_OFFICER]

require_finance_writer = require_role(FINANCE_WRITERS)
require_admin = require_role([UserRole.ADMIN])
