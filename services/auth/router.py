"""
services/auth/router.py
Email/password authentication for users and agencies.
Implements: Register → Login → JWT issue → Logout (deny-list) → Me

Login looks up a user first and falls back to an agency with the same
email; the issued token carries the role so later requests resolve the
right account directly.
"""

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from config.settings import settings
from shared.middleware.auth import Principal, get_current_principal
from shared.models.models import Agency, LogAction, User, UserRole
from shared.schemas.schemas import (
    AgencyRegisterRequest,
    AgencyResponse,
    LoginRequest,
    MeResponse,
    MessageResponse,
    TokenResponse,
    UserRegisterRequest,
    UserResponse,
)
from shared.utils.audit import AuditTrail
from shared.utils.errors import AuthenticationError, DuplicateEmailError, ForbiddenError
from shared.utils.security import (
    create_access_token,
    get_token_remaining_ttl,
    hash_password,
    verify_access_token,
    verify_password,
)

router = APIRouter(prefix="/auth", tags=["Authentication"])


# ── Helpers ───────────────────────────────────────────────────

async def _ensure_email_free(db: AsyncSession, email: str) -> None:
    """Users and agencies share one login namespace."""
    taken = await db.scalar(select(User.id).where(User.email == email))
    if not taken:
        taken = await db.scalar(select(Agency.id).where(Agency.email == email))
    if taken:
        raise DuplicateEmailError()


def _issue_token(principal: Principal, account: dict) -> TokenResponse:
    access_token, _ = create_access_token(
        subject_id=str(principal.id),
        role=principal.role.value,
        email=principal.email,
    )
    return TokenResponse(
        access_token=access_token,
        expires_in=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        role=principal.role.value,
        account=account,
    )


# ── Endpoints ─────────────────────────────────────────────────

@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register_user(
    data: UserRegisterRequest,
    db: AsyncSession = Depends(get_db),
):
    """Create a user account with the full annual allocation."""
    email = data.email.lower()
    await _ensure_email_free(db, email)

    user = User(
        name=data.name,
        email=email,
        password_hash=hash_password(data.password),
        role=UserRole.USER,
        barrels_remaining=settings.ANNUAL_BARREL_QUOTA,
        phone=data.phone,
        address=data.address,
        city=data.city,
        state=data.state,
        pincode=data.pincode,
    )
    db.add(user)
    await db.commit()

    await AuditTrail(db).record(user.id, LogAction.REGISTER, f"User {email} registered")
    return UserResponse.model_validate(user)


@router.post("/agency-register", response_model=AgencyResponse, status_code=status.HTTP_201_CREATED)
async def register_agency(
    data: AgencyRegisterRequest,
    db: AsyncSession = Depends(get_db),
):
    """Agencies can log in only after an admin verifies them."""
    email = data.email.lower()
    await _ensure_email_free(db, email)

    agency = Agency(
        name=data.name,
        email=email,
        password_hash=hash_password(data.password),
        phone=data.phone,
        address=data.address,
        city=data.city,
        state=data.state,
        pincode=data.pincode,
        license_number=data.license_number,
        cylinder_price=data.cylinder_price,
        delivery_radius_km=data.delivery_radius_km,
        is_verified=False,
        is_active=True,
    )
    db.add(agency)
    await db.commit()

    await AuditTrail(db).record(agency.id, LogAction.REGISTER, f"Agency {email} registered")
    return AgencyResponse.model_validate(agency)


@router.post("/login", response_model=TokenResponse)
async def login(
    data: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    email = data.email.lower()

    user = await db.scalar(select(User).where(User.email == email))
    if user:
        if not verify_password(data.password, user.password_hash):
            raise AuthenticationError()
        if not user.is_active or user.is_blocked:
            raise ForbiddenError("User account is inactive")
        await AuditTrail(db).record(user.id, LogAction.LOGIN, f"User {email} logged in")
        return _issue_token(
            Principal.from_user(user),
            UserResponse.model_validate(user).model_dump(mode="json"),
        )

    agency = await db.scalar(select(Agency).where(Agency.email == email))
    if not agency or not verify_password(data.password, agency.password_hash):
        raise AuthenticationError()
    if not agency.is_verified:
        raise ForbiddenError("Agency account is pending verification")
    if not agency.is_active:
        raise ForbiddenError("Agency account is inactive")

    await AuditTrail(db).record(agency.id, LogAction.LOGIN, f"Agency {email} logged in")
    return _issue_token(
        Principal.from_agency(agency),
        AgencyResponse.model_validate(agency).model_dump(mode="json"),
    )


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    redis=Depends(get_redis),
):
    """Add the current access token to the Redis deny-list until it expires."""
    auth_header = request.headers.get("Authorization", "")
    payload = verify_access_token(auth_header[7:])
    ttl = get_token_remaining_ttl(payload)
    if ttl > 0:
        await RedisCache(redis).revoke_token(payload["jti"], ttl)
    return MessageResponse(message="Logged out successfully")


@router.get("/me", response_model=MeResponse)
async def get_me(principal: Principal = Depends(get_current_principal)):
    return MeResponse(
        id=principal.id,
        role=principal.role.value,
        email=principal.email,
        name=principal.name,
    )
