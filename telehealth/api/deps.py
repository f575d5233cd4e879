from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session
from typing import Iterable, Optional

from ..core.config import settings
from ..core.database import get_db, get_redis
from ..core.exceptions import (
    AuthenticationError, AuthorizationError, MissingTokenError, RateLimitError
)
from ..core.security import TokenPayload, UserRole
from ..models.user import User
from ..services.token_service import TokenIssuer

# Missing credentials are reported through MissingTokenError, not FastAPI's 403
security = HTTPBearer(auto_error=False)


def get_token_issuer(db: Session = Depends(get_db)) -> TokenIssuer:
    return TokenIssuer(db)


async def get_current_user_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> TokenPayload:
    """Extract and verify the bearer access token."""
    if credentials is None or not credentials.credentials:
        raise MissingTokenError()

    return issuer.verify(credentials.credentials)


async def get_current_user(
    token_payload: TokenPayload = Depends(get_current_user_token),
    db: Session = Depends(get_db)
) -> User:
    """Get current authenticated user from database."""
    user = db.query(User).filter(User.id == token_payload.user_id).first()
    if not user:
        raise AuthenticationError("User not found")

    if not user.is_active:
        raise AuthenticationError("User account is deactivated")

    return user


# Role-based access control dependencies
def require_role(allowed_roles: Iterable[UserRole]):
    """Create a dependency that requires specific user roles."""
    allowed = frozenset(allowed_roles)

    async def role_checker(
        current_user: User = Depends(get_current_user)
    ) -> User:
        if current_user.role not in allowed:
            raise AuthorizationError(
                f"Access denied. Required roles: {sorted(role.value for role in allowed)}"
            )
        return current_user

    return role_checker


# Specific role dependencies
async def get_admin_user(
    current_user: User = Depends(require_role([UserRole.ADMIN]))
) -> User:
    """Require admin role."""
    return current_user


async def get_doctor_user(
    current_user: User = Depends(require_role([UserRole.DOCTOR]))
) -> User:
    """Require doctor role; used where a doctor profile must exist."""
    return current_user


async def get_patient_user(
    current_user: User = Depends(require_role([UserRole.PATIENT, UserRole.ADMIN]))
) -> User:
    """Require patient or admin role."""
    return current_user


# Rate limiting dependency
async def rate_limit_check(
    request: Request,
    redis_client=Depends(get_redis)
) -> None:
    """Fixed-window rate limiting for unauthenticated auth endpoints."""
    client_ip = request.client.host if request.client else "unknown"
    key = f"rate_limit:{request.url.path}:{client_ip}"

    current_requests = redis_client.get(key)
    if current_requests is None:
        redis_client.setex(key, settings.RATE_LIMIT_WINDOW_SECONDS, 1)
        return

    if int(current_requests) >= settings.RATE_LIMIT_REQUESTS:
        raise RateLimitError()
    redis_client.incr(key)
