import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field, field_validator

from expenseflow.api.auth import get_current_active_user
from expenseflow.api.common import (
    MAX_PAGE_SIZE,
    PartialUpdate,
    get_currency_converter,
    get_workflow,
    pagination,
    search_clause,
    skip_for,
)
from expenseflow.database import db
from expenseflow.errors import Conflict, NotFound, PermissionDenied, ValidationFailed
from expenseflow.guardrails.permissions import permission_checker
from expenseflow.models.expense import Expense, ExpenseCategory, ExpenseStatus, Location, ReimbursementMethod
from expenseflow.models.user import User, UserRole
from expenseflow.reporting.aggregations import category_breakdown_pipeline, status_breakdown_pipeline
from expenseflow.tools.currency import CurrencyConverter
from expenseflow.workflow.engine import ApprovalWorkflow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/expenses", tags=["Expenses"])


class ExpenseCreate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    amount: float = Field(..., gt=0)
    original_currency: str = Field(..., min_length=3, max_length=3)
    category: ExpenseCategory
    sub_category: Optional[str] = None
    description: str = Field(..., min_length=1, max_length=500)
    justification: Optional[str] = Field(None, max_length=1000)
    expense_date: datetime
    tags: List[str] = Field(default_factory=list)
    is_urgent: bool = False
    project_code: Optional[str] = None
    client_code: Optional[str] = None
    location: Optional[Location] = None

    @field_validator("original_currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()


class ExpenseUpdate(PartialUpdate):
    NULLABLE = frozenset({"sub_category", "justification", "project_code", "client_code", "location"})

    amount: Optional[float] = Field(None, gt=0)
    original_currency: Optional[str] = Field(None, min_length=3, max_length=3)
    category: Optional[ExpenseCategory] = None
    sub_category: Optional[str] = None
    description: Optional[str] = Field(None, min_length=1, max_length=500)
    justification: Optional[str] = Field(None, max_length=1000)
    expense_date: Optional[datetime] = None
    tags: Optional[List[str]] = None
    is_urgent: Optional[bool] = None
    project_code: Optional[str] = None
    client_code: Optional[str] = None
    location: Optional[Location] = None

    @field_validator("original_currency")
    @classmethod
    def upper_currency(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else v


class ReimburseRequest(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    method: ReimbursementMethod = ReimbursementMethod.BANK_TRANSFER


async def _company_currency(company_id: str) -> str:
    company = await db.companies.get(company_id)
    if not company:
        raise ValidationFailed("Company not found", code="COMPANY_NOT_FOUND")
    return company.currency


async def _load_visible(expense_id: str, user: User) -> Expense:
    expense = await db.expenses.get(expense_id)
    if not expense:
        raise NotFound("expense")
    if not permission_checker.can_view_expense(user, expense):
        raise PermissionDenied("Access denied")
    return expense


def _scope(user: User) -> Dict[str, Any]:
    return {} if user.role == UserRole.ADMIN else {"company_id": user.company_id}


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_expense(
    body: ExpenseCreate,
    current_user: User = Depends(get_current_active_user),
    converter: CurrencyConverter = Depends(get_currency_converter)
):
    currency = await _company_currency(current_user.company_id)
    conversion = await converter.convert(body.amount, body.original_currency, currency)

    data = body.model_dump(exclude={"amount"})
    expense = await db.expenses.create(Expense(
        employee_id=current_user.id,
        company_id=current_user.company_id,
        amount=conversion.converted_amount,
        original_amount=body.amount,
        converted_amount=conversion.converted_amount,
        converted_currency=currency,
        exchange_rate=conversion.exchange_rate,
        status=ExpenseStatus.DRAFT,
        **data
    ))
    logger.info(f"Expense {expense.id} created by {current_user.id}: {body.amount} {body.original_currency} -> {expense.amount} {currency}")
    return {"message": "Expense created successfully", "expense": expense.to_api()}


@router.get("/")
async def list_expenses(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_PAGE_SIZE),
    status: Optional[ExpenseStatus] = None,
    category: Optional[ExpenseCategory] = None,
    employee: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    min_amount: Optional[float] = None,
    max_amount: Optional[float] = None,
    search: Optional[str] = None,
    current_user: User = Depends(get_current_active_user)
):
    filter = _scope(current_user)
    if status:
        filter["status"] = status.value
    if category:
        filter["category"] = category.value
    if employee:
        filter["employee_id"] = employee
    if start_date or end_date:
        filter["expense_date"] = {}
        if start_date:
            filter["expense_date"]["$gte"] = start_date
        if end_date:
            filter["expense_date"]["$lte"] = end_date
    if min_amount is not None or max_amount is not None:
        filter["amount"] = {}
        if min_amount is not None:
            filter["amount"]["$gte"] = min_amount
        if max_amount is not None:
            filter["amount"]["$lte"] = max_amount
    if search:
        filter.update(search_clause(search, ["description", "justification"]))

    expenses = await db.expenses.list(filter, skip=skip_for(page, limit), limit=limit, sort=[("expense_date", -1)])
    total = await db.expenses.count(filter)
    return {
        "message": "Expenses retrieved successfully",
        "expenses": [e.to_api() for e in expenses],
        "pagination": pagination(page, limit, total),
    }


@router.get("/stats/summary")
async def expense_stats(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    employee: Optional[str] = None,
    current_user: User = Depends(get_current_active_user)
):
    filter = _scope(current_user)
    if employee:
        filter["employee_id"] = employee
    if start_date or end_date:
        filter["expense_date"] = {}
        if start_date:
            filter["expense_date"]["$gte"] = start_date
        if end_date:
            filter["expense_date"]["$lte"] = end_date

    by_status = await db.expenses.aggregate(status_breakdown_pipeline(filter))
    by_category = await db.expenses.aggregate(category_breakdown_pipeline(filter))
    return {
        "message": "Expense statistics retrieved successfully",
        "stats": {"by_status": by_status, "by_category": by_category},
    }


@router.get("/currency/rates")
async def currency_rates(
    base: str = Query("USD", min_length=3, max_length=3),
    current_user: User = Depends(get_current_active_user),
    converter: CurrencyConverter = Depends(get_currency_converter)
):
    rates = await converter.get_rates(base)
    return {"base": base.upper(), "rates": rates}


@router.get("/{id}")
async def get_expense(id: str, current_user: User = Depends(get_current_active_user)):
    expense = await _load_visible(id, current_user)
    approvals = await db.approvals.list_for_expense(expense.id)
    return {
        "message": "Expense retrieved successfully",
        "expense": expense.to_api(),
        "approvals": [a.to_api() for a in approvals],
    }


@router.get("/{id}/history")
async def expense_history(id: str, current_user: User = Depends(get_current_active_user)):
    expense = await _load_visible(id, current_user)
    events = await db.audit.get_for_expense(expense.id)
    return {"expense_id": expense.id, "events": [e.to_api() for e in events]}


@router.put("/{id}")
async def update_expense(
    id: str,
    body: ExpenseUpdate,
    current_user: User = Depends(get_current_active_user),
    workflow: ApprovalWorkflow = Depends(get_workflow),
    converter: CurrencyConverter = Depends(get_currency_converter)
):
    expense = await db.expenses.get(id)
    if not expense:
        raise NotFound("expense")

    changes = body.changes(exclude={"amount"})
    if body.amount is not None or body.original_currency is not None:
        amount = body.amount if body.amount is not None else expense.original_amount
        source = body.original_currency or expense.original_currency
        currency = await _company_currency(expense.company_id)
        conversion = await converter.convert(amount, source, currency)
        changes.update({
            "amount": conversion.converted_amount,
            "original_amount": amount,
            "original_currency": source,
            "converted_amount": conversion.converted_amount,
            "converted_currency": currency,
            "exchange_rate": conversion.exchange_rate,
        })

    updated = await workflow.edit(expense, current_user, changes)
    return {"message": "Expense updated successfully", "expense": updated.to_api()}


@router.post("/{id}/submit")
async def submit_expense(
    id: str,
    current_user: User = Depends(get_current_active_user),
    workflow: ApprovalWorkflow = Depends(get_workflow)
):
    expense = await workflow.submit(id, current_user)
    return {"message": "Expense submitted successfully", "expense": expense.to_api()}


@router.post("/{id}/reimburse")
async def reimburse_expense(
    id: str,
    body: Optional[ReimburseRequest] = None,
    current_user: User = Depends(get_current_active_user),
    workflow: ApprovalWorkflow = Depends(get_workflow)
):
    method = body.method if body else ReimbursementMethod.BANK_TRANSFER.value
    expense = await workflow.reimburse(id, current_user, method)
    return {"message": "Expense reimbursed successfully", "expense": expense.to_api()}


@router.delete("/{id}")
async def delete_expense(id: str, current_user: User = Depends(get_current_active_user)):
    expense = await db.expenses.get(id)
    if not expense:
        raise NotFound("expense")
    if not permission_checker.can_modify_expense(current_user, expense):
        raise PermissionDenied("Access denied")
    if expense.status != ExpenseStatus.DRAFT:
        raise Conflict("Expense cannot be deleted in current status", code="EXPENSE_LOCKED")

    await db.expenses.delete(expense.id)
    logger.info(f"Expense {expense.id} deleted by {current_user.id}")
    return {"message": "Expense deleted successfully"}
