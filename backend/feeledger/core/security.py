# ============================================================
# feeledger/core/security.py
#
# Login lives in an external service. It issues a signed JWT
# carrying the user's id and role; this module only verifies that
# token and hands the id to services as the opaque actor for audit
# fields (changed_by, created_by).
#
# How it flows:
#   Request → get_current_user() verifies JWT
#           → returns CurrentUser (user_id, role)
#           → optional require_roles() checks role
#           → endpoint passes user.user_id into the service
# ============================================================

from datetime import datetime, timedelta, timezone

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from pydantic import BaseModel

from feeledger.core.config import settings

# Reads: Authorization: Bearer <token>
bearer_scheme = HTTPBearer()


# ── Token payload model ──────────────────────────────────────
class TokenData(BaseModel):
    """What the login service embeds inside the JWT."""
    user_id: str
    role: str                   # admin | accountant | teacher
    email: str = ""
    full_name: str = ""


class CurrentUser(BaseModel):
    """Available in every protected endpoint via Depends."""
    user_id: str
    role: str
    email: str = ""
    full_name: str = ""


# ── Token creation ───────────────────────────────────────────
def create_access_token(data: TokenData) -> str:
    """
    Sign a token the same way the login service does.
    Used by local tooling and tests.
    """
    now = datetime.now(timezone.utc)
    payload = {
        **data.model_dump(),
        "exp": now + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES),
        "iat": now,
        "type": "access",
    }
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


# ── Token verification ───────────────────────────────────────
def verify_token(token: str) -> TokenData:
    """Decode and verify a JWT. Raises HTTPException if invalid."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
        if payload.get("type") != "access":
            raise credentials_exception
        return TokenData(**payload)
    except JWTError:
        raise credentials_exception


# ── FastAPI dependency: get current user ─────────────────────
async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> CurrentUser:
    token_data = verify_token(credentials.credentials)
    return CurrentUser(**token_data.model_dump())


# ── Role guard factory ───────────────────────────────────────
def require_roles(*allowed_roles: str):
    """
    Dependency factory. Usage:

        @router.put("/structure/{year_id}")
        async def save(user: CurrentUser = Depends(require_roles("admin"))):

    Wrong role → 403 Forbidden.
    """
    async def check_role(
        current_user: CurrentUser = Depends(get_current_user)
    ) -> CurrentUser:
        if current_user.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {' or '.join(allowed_roles)}",
            )
        return current_user
    return check_role
