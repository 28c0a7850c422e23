from typing import Annotated

from fastapi import Depends, Header, Path
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.auth.jwt import decode_token
from src.core.auth.models import User, UserRole
from src.core.database import get_db
from src.core.exceptions import AuthenticationError, AuthorizationError


async def get_current_user(
    authorization: Annotated[str | None, Header()] = None,
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Dependency to get the acting staff member from the JWT token.

    Usage:
        @router.get("/me")
        async def get_me(user: User = Depends(get_current_user)):
            return user
    """
    if not authorization:
        raise AuthenticationError("Authorization header required")

    if not authorization.startswith("Bearer "):
        raise AuthenticationError("Invalid authorization header format")

    token = authorization.replace("Bearer ", "")

    payload = decode_token(token, token_type="access")
    try:
        user_id = int(payload.get("sub"))
        token_school_id = int(payload.get("school_id"))
    except (TypeError, ValueError):
        raise AuthenticationError("Token is missing subject or school scope")

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if not user:
        raise AuthenticationError("User not found")

    if not user.is_active:
        raise AuthenticationError("User account is deactivated")

    if token_school_id != user.school_id:
        raise AuthenticationError("Token school scope does not match user")

    return user


def require_school_roles(*roles: UserRole):
    """
    Dependency factory: the actor must belong to the school in the path and hold a role.

    Usage:
        @router.post("/schools/{school_id}/finance/payments")
        async def record_payment(
            school_id: int,
            user: User = Depends(require_school_roles(UserRole.ACCOUNTANT)),
        ):
            ...
    """

    async def role_checker(
        school_id: Annotated[int, Path()],
        current_user: User = Depends(get_current_user),
    ) -> User:
        if current_user.school_id != school_id:
            raise AuthorizationError("Not a member of this school")
        if not current_user.has_role(*roles):
            allowed = ", ".join(r.value for r in roles)
            raise AuthorizationError(f"Required role: {allowed}")
        return current_user

    return role_checker


# Role groups used by the finance routers
LEDGER_WRITE_ROLES = (UserRole.SCHOOL_ADMIN, UserRole.ACCOUNTANT, UserRole.SECRETARY)
LEDGER_ADMIN_ROLES = (UserRole.SCHOOL_ADMIN, UserRole.ACCOUNTANT)

LedgerWriter = Annotated[User, Depends(require_school_roles(*LEDGER_WRITE_ROLES))]
LedgerAdmin = Annotated[User, Depends(require_school_roles(*LEDGER_ADMIN_ROLES))]
