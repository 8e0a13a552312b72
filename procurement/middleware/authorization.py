from fastapi import Depends, HTTPException, status

from procurement.middleware.auth import get_current_user
from procurement.models.status import UserRole


def require_roles(*allowed_roles: UserRole):
    """
    FastAPI dependency factory for role-based access control.

    Usage:
        @router.post("")
        async def submit_quote(
            current_user: dict = Depends(get_current_user),
            _auth: None = Depends(require_roles(UserRole.SUPPLIER)),
        ):
    """
    allowed = {role.value for role in allowed_roles}

    async def check_role(current_user: dict = Depends(get_current_user)):
        if current_user["role"] not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "error": {
                        "code": "INSUFFICIENT_PERMISSIONS",
                        "message": (
                            f"Role '{current_user['role']}' cannot perform this action. "
                            f"Required: {sorted(allowed)}"
                        ),
                    }
                },
            )
        return None

    return check_role
