import logging
import re
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from expenseflow.api.auth import MIN_PASSWORD_LENGTH, get_current_active_user, hash_password
from expenseflow.api.common import MAX_PAGE_SIZE, PartialUpdate, pagination, search_clause, skip_for
from expenseflow.database import db
from expenseflow.errors import NotFound, PermissionDenied, ValidationFailed
from expenseflow.guardrails.decorators import ensure_can_manage_user, require_roles
from expenseflow.guardrails.permissions import permission_checker
from expenseflow.models.company import Address
from expenseflow.models.expense import ExpenseCategory, ExpenseStatus
from expenseflow.models.user import User, UserPreferences, UserRole

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["Users"])

SELF_FIELDS = {"first_name", "last_name", "department", "position", "phone_number", "address", "preferences"}
MANAGED_FIELDS = {"first_name", "last_name", "role", "department", "position", "phone_number", "address",
                  "is_active", "manager_id"}


class UserCreate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    email: EmailStr
    password: str = Field(..., min_length=MIN_PASSWORD_LENGTH)
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    role: UserRole = UserRole.EMPLOYEE
    company_id: str
    manager_id: Optional[str] = None
    department: Optional[str] = None
    position: Optional[str] = None
    phone_number: Optional[str] = None
    address: Optional[Address] = None


class UserUpdate(PartialUpdate):
    NULLABLE = frozenset({"department", "position", "phone_number", "address", "manager_id"})

    first_name: Optional[str] = Field(None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(None, min_length=1, max_length=50)
    role: Optional[UserRole] = None
    department: Optional[str] = None
    position: Optional[str] = None
    phone_number: Optional[str] = None
    address: Optional[Address] = None
    preferences: Optional[UserPreferences] = None
    is_active: Optional[bool] = None
    manager_id: Optional[str] = None


class ActivateRequest(BaseModel):
    is_active: bool


async def _load_user(user_id: str) -> User:
    user = await db.users.get(user_id)
    if not user:
        raise NotFound("user")
    return user


async def _check_manager(manager_id: str, company_id: str):
    manager = await db.users.get(manager_id)
    if not manager or manager.company_id != company_id:
        raise ValidationFailed("Manager not found or not in the same company", code="MANAGER_NOT_FOUND")


@router.get("/")
async def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_PAGE_SIZE),
    role: Optional[UserRole] = None,
    department: Optional[str] = None,
    search: Optional[str] = None,
    company: Optional[str] = None,
    is_active: bool = True,
    current_user: User = Depends(get_current_active_user)
):
    filter = {"is_active": is_active}
    if current_user.role != UserRole.ADMIN:
        filter["company_id"] = current_user.company_id
    elif company:
        filter["company_id"] = company
    if role:
        filter["role"] = role.value
    if department:
        filter["department"] = {"$regex": re.escape(department), "$options": "i"}
    if search:
        filter.update(search_clause(search, ["first_name", "last_name", "email"]))

    users = await db.users.list(filter, skip=skip_for(page, limit), limit=limit, sort=[("created_at", -1)])
    total = await db.users.count(filter)
    return {
        "message": "Users retrieved successfully",
        "users": [u.public() for u in users],
        "pagination": pagination(page, limit, total),
    }


@router.get("/{id}")
async def get_user(id: str, current_user: User = Depends(get_current_active_user)):
    user = await _load_user(id)
    if not permission_checker.can_view_user(current_user, user):
        raise PermissionDenied("Access denied")
    return {"message": "User retrieved successfully", "user": user.public()}


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_user(
    body: UserCreate,
    current_user: User = Depends(require_roles(UserRole.ADMIN, UserRole.MANAGER))
):
    if await db.users.get_by_email(body.email):
        raise ValidationFailed("User already exists with this email", code="USER_EXISTS")
    if not await db.companies.get(body.company_id):
        raise ValidationFailed("Company not found", code="COMPANY_NOT_FOUND")
    if current_user.role != UserRole.ADMIN and body.company_id != current_user.company_id:
        raise PermissionDenied("Access denied - different company", code="COMPANY_ACCESS_DENIED")
    if body.manager_id:
        await _check_manager(body.manager_id, body.company_id)

    data = body.model_dump(exclude={"password"})
    user = await db.users.create(User(password_hash=hash_password(body.password), **data))
    logger.info(f"User {user.id} ({user.role}) created by {current_user.id}")
    return {"message": "User created successfully", "user": user.public()}


@router.put("/{id}")
async def update_user(id: str, body: UserUpdate, current_user: User = Depends(get_current_active_user)):
    target = await _load_user(id)
    is_self = current_user.id == target.id
    if not is_self:
        ensure_can_manage_user(current_user, target)

    allowed = SELF_FIELDS if is_self else MANAGED_FIELDS
    updates = {k: v for k, v in body.changes().items() if k in allowed}
    if updates.get("manager_id"):
        await _check_manager(updates["manager_id"], target.company_id)
    if not updates:
        return {"message": "User updated successfully", "user": target.public()}

    user = await db.users.update(id, updates)
    if not user:
        raise NotFound("user")
    return {"message": "User updated successfully", "user": user.public()}


@router.delete("/{id}")
async def delete_user(id: str, current_user: User = Depends(require_roles(UserRole.ADMIN, UserRole.MANAGER))):
    target = await _load_user(id)
    ensure_can_manage_user(current_user, target)
    await db.users.update(id, {"is_active": False})
    logger.info(f"User {id} deactivated by {current_user.id}")
    return {"message": "User deactivated successfully"}


@router.get("/{id}/employees")
async def list_employees(id: str, current_user: User = Depends(get_current_active_user)):
    # A manager's team is visible to the manager and to the people reporting to them
    if current_user.role != UserRole.ADMIN and id not in (current_user.id, current_user.manager_id):
        raise PermissionDenied("Access denied")
    employees = await db.users.list_reports(id)
    return {"message": "Employees retrieved successfully", "employees": [u.public() for u in employees]}


@router.get("/{id}/expenses")
async def list_user_expenses(
    id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_PAGE_SIZE),
    status: Optional[ExpenseStatus] = None,
    category: Optional[ExpenseCategory] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    current_user: User = Depends(get_current_active_user)
):
    if current_user.role != UserRole.ADMIN and current_user.id != id:
        target = await _load_user(id)
        if target.manager_id != current_user.id:
            raise PermissionDenied("Access denied")

    filter = {"employee_id": id}
    if status:
        filter["status"] = status.value
    if category:
        filter["category"] = category.value
    if start_date or end_date:
        filter["expense_date"] = {}
        if start_date:
            filter["expense_date"]["$gte"] = start_date
        if end_date:
            filter["expense_date"]["$lte"] = end_date

    expenses = await db.expenses.list(filter, skip=skip_for(page, limit), limit=limit, sort=[("expense_date", -1)])
    total = await db.expenses.count(filter)
    return {
        "message": "User expenses retrieved successfully",
        "expenses": [e.to_api() for e in expenses],
        "pagination": pagination(page, limit, total),
    }


@router.put("/{id}/activate")
async def toggle_active(
    id: str,
    body: ActivateRequest,
    current_user: User = Depends(require_roles(UserRole.ADMIN, UserRole.MANAGER))
):
    target = await _load_user(id)
    ensure_can_manage_user(current_user, target)
    user = await db.users.update(id, {"is_active": body.is_active})
    if not user:
        raise NotFound("user")
    state = "activated" if body.is_active else "deactivated"
    return {"message": f"User {state} successfully", "user": user.public()}
