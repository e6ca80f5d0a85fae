import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import jwt
from bson import ObjectId
from fastapi import APIRouter, Depends, status
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from pydantic import BaseModel, EmailStr, Field
from werkzeug.security import check_password_hash, generate_password_hash

from expenseflow.api.common import PartialUpdate
from expenseflow.config import settings
from expenseflow.database import db
from expenseflow.errors import AuthenticationFailed, NotFound, ValidationFailed
from expenseflow.models.company import Address, Company
from expenseflow.models.user import User, UserPreferences, UserRole

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Auth"])

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token", auto_error=False)

MIN_PASSWORD_LENGTH = 6


# Tokens

def _encode(user_id: str, secret: str, minutes: int, kind: str) -> str:
    now = datetime.utcnow()
    payload = {"sub": user_id, "type": kind, "iat": now, "exp": now + timedelta(minutes=minutes)}
    return jwt.encode(payload, secret, algorithm=settings.JWT_ALGORITHM)


def create_tokens(user_id: str) -> Dict[str, str]:
    return {
        "access_token": _encode(user_id, settings.SECRET_KEY, settings.ACCESS_TOKEN_EXPIRE_MINUTES, "access"),
        "refresh_token": _encode(user_id, settings.REFRESH_SECRET_KEY, settings.REFRESH_TOKEN_EXPIRE_MINUTES, "refresh"),
        "token_type": "bearer",
    }


def decode_token(token: str, secret: str, prefix: str = "") -> str:
    """Returns the user id carried by a token."""
    try:
        payload = jwt.decode(token, secret, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationFailed("Token expired", code=f"{prefix}TOKEN_EXPIRED")
    except jwt.InvalidTokenError:
        raise AuthenticationFailed("Invalid token", code=f"INVALID_{prefix}TOKEN")
    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationFailed("Invalid token", code=f"INVALID_{prefix}TOKEN")
    return user_id


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(user: User, password: str) -> bool:
    return bool(user.password_hash) and check_password_hash(user.password_hash, password)


# Dependencies

async def get_current_user(token: Optional[str] = Depends(oauth2_scheme)) -> User:
    if not token:
        raise AuthenticationFailed("Access token required", code="NO_TOKEN")
    user_id = decode_token(token, settings.SECRET_KEY)
    user = await db.users.get(user_id)
    if not user:
        raise AuthenticationFailed("Invalid token - user not found", code="INVALID_TOKEN")
    return user


async def get_current_active_user(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_active:
        raise AuthenticationFailed("Account is deactivated", code="ACCOUNT_DEACTIVATED")
    return current_user


# Schemas

class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=MIN_PASSWORD_LENGTH)
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    role: Optional[UserRole] = None
    company: Optional[str] = Field(None, description="Company id, company name, or 'auto-create'")
    manager_id: Optional[str] = None
    department: Optional[str] = None
    position: Optional[str] = None
    phone_number: Optional[str] = None
    address: Optional[Address] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


class ProfileUpdate(PartialUpdate):
    NULLABLE = frozenset({"department", "position", "phone_number", "address"})

    first_name: Optional[str] = Field(None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(None, min_length=1, max_length=50)
    department: Optional[str] = None
    position: Optional[str] = None
    phone_number: Optional[str] = None
    address: Optional[Address] = None
    preferences: Optional[UserPreferences] = None


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


# Registration helpers

async def _resolve_company(company: Optional[str], first_name: str, last_name: str):
    """
    Returns (company_id, created). Only the very first user may register
    without naming a company.
    """
    if not company or company == "auto-create":
        if await db.users.count() > 0:
            raise ValidationFailed("No company selected and not the first user", code="COMPANY_REQUIRED")
        created = await db.companies.create(Company(name=f"{first_name} {last_name}'s Company", country="US", currency="USD"))
        logger.info(f"Created default company {created.id}")
        return created.id, True

    if ObjectId.is_valid(company):
        existing = await db.companies.get(company)
        if not existing:
            raise ValidationFailed("Company not found", code="COMPANY_NOT_FOUND")
        return existing.id, False

    existing = await db.companies.get_by_name(company)
    if existing:
        return existing.id, False
    created = await db.companies.create(Company(name=company, country="US", currency="USD"))
    logger.info(f"Created company '{company}' ({created.id}) during registration")
    return created.id, True


def _session(user: User, message: str) -> Dict[str, Any]:
    return {"message": message, "user": user.public(), "tokens": create_tokens(user.id)}


async def _login(email: str, password: str) -> User:
    user = await db.users.get_by_email(email)
    if not user:
        raise AuthenticationFailed("Invalid email or password", code="INVALID_CREDENTIALS")
    if not user.is_active:
        raise AuthenticationFailed("Account is deactivated", code="ACCOUNT_DEACTIVATED")
    if not verify_password(user, password):
        raise AuthenticationFailed("Invalid email or password", code="INVALID_CREDENTIALS")
    now = datetime.utcnow()
    await db.users.update(user.id, {"last_login": now})
    user.last_login = now
    return user


# Routes

@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(body: RegisterRequest):
    if await db.users.get_by_email(body.email):
        raise ValidationFailed("User already exists with this email", code="USER_EXISTS")

    is_first_user = await db.users.count() == 0
    company_id, company_created = await _resolve_company(body.company, body.first_name, body.last_name)

    if body.manager_id:
        manager = await db.users.get(body.manager_id)
        if not manager or manager.company_id != company_id:
            raise ValidationFailed("Manager not found or not in the same company", code="MANAGER_NOT_FOUND")

    # Only the founder of a company picks their own role; everyone else joins as an employee
    founder = is_first_user or company_created
    role = (body.role or UserRole.ADMIN) if founder else UserRole.EMPLOYEE
    if body.role and not founder and body.role != UserRole.EMPLOYEE:
        logger.warning(f"Ignoring requested role {body.role.value} for {body.email} joining company {company_id}")
    user = await db.users.create(User(
        email=body.email,
        password_hash=hash_password(body.password),
        first_name=body.first_name,
        last_name=body.last_name,
        role=role,
        company_id=company_id,
        manager_id=body.manager_id,
        department=body.department,
        position=body.position,
        phone_number=body.phone_number,
        address=body.address,
        last_login=datetime.utcnow(),
    ))

    if company_created:
        await db.companies.update(company_id, {"created_by": user.id})

    logger.info(f"Registered user {user.id} ({user.role}) in company {company_id}")
    return _session(user, "User registered successfully")


@router.post("/login")
async def login(body: LoginRequest):
    user = await _login(body.email, body.password)
    return _session(user, "Login successful")


@router.post("/token")
async def login_for_access_token(form_data: OAuth2PasswordRequestForm = Depends()):
    """OAuth2 password flow, used by the interactive docs."""
    user = await _login(form_data.username, form_data.password)
    return create_tokens(user.id)


@router.post("/refresh")
async def refresh(body: RefreshRequest):
    user_id = decode_token(body.refresh_token, settings.REFRESH_SECRET_KEY, prefix="REFRESH_")
    user = await db.users.get(user_id)
    if not user or not user.is_active:
        raise AuthenticationFailed("Invalid refresh token", code="INVALID_REFRESH_TOKEN")
    return {"message": "Token refreshed successfully", "tokens": create_tokens(user.id)}


@router.get("/me")
async def read_me(current_user: User = Depends(get_current_active_user)):
    company = await db.companies.get(current_user.company_id)
    manager = await db.users.get(current_user.manager_id) if current_user.manager_id else None
    profile = current_user.public()
    profile["company"] = company.to_api(exclude={"settings"}) if company else None
    profile["manager"] = manager.public() if manager else None
    return {"message": "User profile retrieved successfully", "user": profile}


@router.put("/me")
async def update_me(body: ProfileUpdate, current_user: User = Depends(get_current_active_user)):
    updates = body.changes()
    user = await db.users.update(current_user.id, updates) if updates else current_user
    if not user:
        raise NotFound("user")
    return {"message": "Profile updated successfully", "user": user.public()}


@router.post("/change-password")
async def change_password(body: ChangePasswordRequest, current_user: User = Depends(get_current_active_user)):
    if len(body.new_password) < MIN_PASSWORD_LENGTH:
        raise ValidationFailed("New password must be at least 6 characters", code="PASSWORD_TOO_SHORT")
    if not verify_password(current_user, body.current_password):
        raise AuthenticationFailed("Current password is incorrect", code="INVALID_CURRENT_PASSWORD")
    await db.users.update(current_user.id, {"password_hash": hash_password(body.new_password)})
    logger.info(f"Password changed for user {current_user.id}")
    return {"message": "Password changed successfully"}


@router.post("/logout")
async def logout(current_user: User = Depends(get_current_active_user)):
    return {"message": "Logout successful"}
