"""
shared/middleware/auth.py
FastAPI dependency functions for authentication and authorization.

A bearer token identifies either a User (role USER/ADMIN) or an Agency
(role AGENCY). The account is resolved once into a Principal and the
role travels with it; downstream code never re-checks which table it came from.
"""

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from shared.models.models import Agency, User
from shared.utils.security import verify_access_token

security = HTTPBearer(auto_error=False)


class PrincipalRole(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"
    AGENCY = "AGENCY"


@dataclass(frozen=True)
class Principal:
    id: uuid.UUID
    role: PrincipalRole
    email: str
    name: str
    account: Union[User, Agency]

    @property
    def is_admin(self) -> bool:
        return self.role == PrincipalRole.ADMIN

    @property
    def is_agency(self) -> bool:
        return self.role == PrincipalRole.AGENCY

    @classmethod
    def from_user(cls, user: User) -> "Principal":
        return cls(
            id=user.id,
            role=PrincipalRole(user.role.value),
            email=user.email,
            name=user.name,
            account=user,
        )

    @classmethod
    def from_agency(cls, agency: Agency) -> "Principal":
        return cls(
            id=agency.id,
            role=PrincipalRole.AGENCY,
            email=agency.email,
            name=agency.name,
            account=agency,
        )


class TokenData:
    def __init__(self, payload: dict):
        self.subject_id: uuid.UUID = uuid.UUID(payload["sub"])
        self.role: PrincipalRole = PrincipalRole(payload["role"])
        self.email: str = payload["email"]
        self.jti: str = payload["jti"]
        self.payload = payload


async def get_token_data(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    redis=Depends(get_redis),
) -> TokenData:
    """
    Extract and validate JWT from Authorization header.
    Checks deny-list in Redis to handle revoked tokens (logout).
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        token_data = TokenData(verify_access_token(credentials.credentials))
    except (JWTError, KeyError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if await RedisCache(redis).is_token_revoked(token_data.jti):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has been revoked",
        )

    return token_data


async def get_current_principal(
    token_data: TokenData = Depends(get_token_data),
    db: AsyncSession = Depends(get_db),
) -> Principal:
    """Load the account behind the token and wrap it as a Principal."""
    if token_data.role == PrincipalRole.AGENCY:
        agency = await db.get(Agency, token_data.subject_id)
        if not agency:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Agency not found",
            )
        if not agency.can_login:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Agency account is not verified or inactive",
            )
        return Principal.from_agency(agency)

    user = await db.get(User, token_data.subject_id)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    if not user.is_active or user.is_blocked:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )
    return Principal.from_user(user)


async def get_current_user(
    principal: Principal = Depends(get_current_principal),
) -> User:
    """Endpoints that only make sense for a user account (USER or ADMIN)."""
    if principal.is_agency:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="This endpoint is only available to user accounts",
        )
    return principal.account


class RoleRequired:
    """Dependency factory for role-based access control."""

    def __init__(self, *roles: PrincipalRole):
        self.roles = roles

    async def __call__(
        self,
        principal: Principal = Depends(get_current_principal),
    ) -> Principal:
        if principal.role not in self.roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Required role: {[r.value for r in self.roles]}",
            )
        return principal


# Convenience role dependencies
require_admin = RoleRequired(PrincipalRole.ADMIN)
require_agency = RoleRequired(PrincipalRole.AGENCY)
require_booking_operator = RoleRequired(PrincipalRole.ADMIN, PrincipalRole.AGENCY)
