"""Bearer token verification. Tokens are issued by the identity service."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from foodorder.core.config import JWT_ALGORITHM, JWT_EXPIRE_MINUTES, JWT_SECRET_KEY
from foodorder.core.errors import AccessDenied, AuthenticationError
from foodorder.core.principal import Principal, RestaurantPrincipal, UserPrincipal
from foodorder.models.catalog import Restaurant
from foodorder.models.customer import Customer

bearer_scheme: HTTPBearer = HTTPBearer(auto_error=False)


def create_access_token(subject: UUID, role: str, expires_minutes: int = JWT_EXPIRE_MINUTES) -> str:
    """Create a signed token the way the identity service does (seeding and tests)."""
    expire: datetime = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    return jwt.encode(
        {"sub": str(subject), "role": role, "exp": expire},
        JWT_SECRET_KEY,
        algorithm=JWT_ALGORITHM,
    )


def decode_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError as exc:
        raise AuthenticationError() from exc


def principal_from_claims(claims: Dict[str, Any]) -> Principal:
    subject = claims.get("sub")
    role = claims.get("role")
    try:
        subject_id = UUID(str(subject))
    except (TypeError, ValueError) as exc:
        raise AuthenticationError("Invalid authentication token") from exc

    if role == "user":
        return UserPrincipal(id=subject_id)
    if role == "restaurant":
        return RestaurantPrincipal(id=subject_id)
    raise AuthenticationError("Invalid authentication token")


async def ensure_active(principal: Principal) -> None:
    if isinstance(principal, UserPrincipal):
        account = await Customer.get_or_none(id=principal.id)
    else:
        account = await Restaurant.get_or_none(id=principal.id)
    if account is None or not account.is_active:
        raise AuthenticationError("Account not found or inactive")


async def get_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Principal:
    """Resolve the authenticated principal from the Authorization header."""
    if credentials is None:
        raise AuthenticationError("Missing bearer token")
    principal = principal_from_claims(decode_token(credentials.credentials))
    await ensure_active(principal)
    return principal


async def require_user(principal: Principal = Depends(get_principal)) -> UserPrincipal:
    if not isinstance(principal, UserPrincipal):
        raise AccessDenied("User authentication required")
    return principal


async def require_restaurant(principal: Principal = Depends(get_principal)) -> RestaurantPrincipal:
    if not isinstance(principal, RestaurantPrincipal):
        raise AccessDenied("Restaurant authentication required")
    return principal
