import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from expenseflow.api.auth import get_current_active_user
from expenseflow.api.common import MAX_PAGE_SIZE, PartialUpdate, pagination, search_clause, skip_for
from expenseflow.database import db
from expenseflow.errors import NotFound
from expenseflow.guardrails.decorators import company_access, require_roles
from expenseflow.models.company import Address, Company, CompanySettings, ContactInfo
from expenseflow.models.user import User, UserRole
from expenseflow.reporting.aggregations import recent_expenses_pipeline, status_breakdown_pipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/company", tags=["Company"])


class CompanyCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    country: str = Field(..., min_length=2, max_length=50)
    currency: str = Field("USD", min_length=3, max_length=3)
    timezone: str = "UTC"
    address: Optional[Address] = None
    contact_info: Optional[ContactInfo] = None
    settings: Optional[CompanySettings] = None


class CompanyUpdate(PartialUpdate):
    NULLABLE = frozenset({"address", "contact_info"})

    name: Optional[str] = Field(None, min_length=2, max_length=100)
    country: Optional[str] = Field(None, min_length=2, max_length=50)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    timezone: Optional[str] = None
    address: Optional[Address] = None
    contact_info: Optional[ContactInfo] = None


class SettingsUpdate(BaseModel):
    settings: CompanySettings


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_company(body: CompanyCreate, current_user: User = Depends(require_roles(UserRole.ADMIN))):
    data = body.model_dump(exclude_none=True)
    company = await db.companies.create(Company(created_by=current_user.id, **data))
    logger.info(f"Company {company.id} created by {current_user.id}")
    return {"message": "Company created successfully", "company": company.to_api()}


@router.get("/")
async def list_companies(current_user: User = Depends(get_current_active_user)):
    if current_user.role == UserRole.ADMIN:
        companies = await db.companies.list({"is_active": True}, limit=1000, sort=[("created_at", -1)])
    else:
        own = await db.companies.get_active(current_user.company_id)
        companies = [own] if own else []
    return {"message": "Companies retrieved successfully", "companies": [c.to_api() for c in companies]}


@router.get("/{id}")
async def get_company(id: str, current_user: User = Depends(company_access)):
    company = await db.companies.get(id)
    if not company:
        raise NotFound("company")
    return {"message": "Company retrieved successfully", "company": company.to_api()}


@router.put("/{id}")
async def update_company(
    id: str,
    body: CompanyUpdate,
    current_user: User = Depends(company_access),
    _: User = Depends(require_roles(UserRole.ADMIN, UserRole.MANAGER))
):
    updates = body.changes()
    if "currency" in updates:
        updates["currency"] = updates["currency"].upper()
    company = await db.companies.update(id, updates)
    if not company:
        raise NotFound("company")
    return {"message": "Company updated successfully", "company": company.to_api()}


@router.delete("/{id}")
async def delete_company(id: str, current_user: User = Depends(require_roles(UserRole.ADMIN))):
    company = await db.companies.deactivate(id)
    if not company:
        raise NotFound("company")
    deactivated = await db.users.deactivate_company_users(id)
    logger.info(f"Company {id} deactivated with {deactivated} users")
    return {"message": "Company deactivated successfully"}


@router.get("/{id}/users")
async def company_users(
    id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_PAGE_SIZE),
    role: Optional[UserRole] = None,
    department: Optional[str] = None,
    search: Optional[str] = None,
    current_user: User = Depends(company_access)
):
    filter = {"company_id": id, "is_active": True}
    if role:
        filter["role"] = role.value
    if department:
        filter["department"] = {"$regex": re.escape(department), "$options": "i"}
    if search:
        filter.update(search_clause(search, ["first_name", "last_name", "email"]))

    users = await db.users.list(filter, skip=skip_for(page, limit), limit=limit, sort=[("created_at", -1)])
    total = await db.users.count(filter)
    return {
        "message": "Company users retrieved successfully",
        "users": [u.public() for u in users],
        "pagination": pagination(page, limit, total),
    }


@router.get("/{id}/stats")
async def company_stats(id: str, current_user: User = Depends(company_access)):
    users = await db.users.aggregate([
        {"$match": {"company_id": id, "is_active": True}},
        {"$group": {"_id": "$role", "count": {"$sum": 1}}},
    ])
    expenses = await db.expenses.aggregate(status_breakdown_pipeline({"company_id": id}))
    recent = await db.expenses.aggregate(recent_expenses_pipeline({"company_id": id}, limit=5))
    return {
        "message": "Company statistics retrieved successfully",
        "stats": {"users": users, "expenses": expenses, "recent_activity": recent},
    }


@router.put("/{id}/settings")
async def update_settings(
    id: str,
    body: SettingsUpdate,
    current_user: User = Depends(company_access),
    _: User = Depends(require_roles(UserRole.ADMIN, UserRole.MANAGER))
):
    company = await db.companies.update(id, {"settings": body.settings.model_dump()})
    if not company:
        raise NotFound("company")
    return {"message": "Company settings updated successfully", "settings": company.settings.model_dump(mode="json")}
