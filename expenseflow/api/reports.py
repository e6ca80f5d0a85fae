import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from expenseflow.api.auth import get_current_active_user
from expenseflow.api.common import get_report_service
from expenseflow.database import db
from expenseflow.errors import NotFound, ValidationFailed
from expenseflow.guardrails.decorators import ensure_company_access
from expenseflow.models.approval import ApprovalRole, ApprovalStatus
from expenseflow.models.expense import ExpenseCategory, ExpenseStatus
from expenseflow.models.user import User, UserRole
from expenseflow.reporting.aggregations import (
    GROUP_BY_CHOICES,
    ReportService,
    build_approval_filter,
    build_expense_filter,
)
from expenseflow.reporting.export import export_filename, to_csv, to_json, to_pdf, validate_export

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reports", tags=["Reports"])

EXPORT_LIMIT = 10000


def _check_group_by(group_by: str):
    if group_by not in GROUP_BY_CHOICES:
        raise ValidationFailed("Invalid group_by", code="INVALID_GROUP_BY",
                               details={"allowed": list(GROUP_BY_CHOICES)})


def _value(enum_value):
    return enum_value.value if enum_value else None


async def _check_approver(user: User, approver: Optional[str]):
    """Non-admins may only report on approvers from their own company."""
    if not approver or user.role == UserRole.ADMIN:
        return
    target = await db.users.get(approver)
    if not target:
        raise NotFound("user")
    ensure_company_access(user, target.company_id)


@router.get("/expenses")
async def expense_report(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    employee: Optional[str] = None,
    category: Optional[ExpenseCategory] = None,
    status: Optional[ExpenseStatus] = None,
    company: Optional[str] = None,
    group_by: str = "month",
    current_user: User = Depends(get_current_active_user),
    reports: ReportService = Depends(get_report_service)
):
    _check_group_by(group_by)
    filter = build_expense_filter(current_user, company, start_date, end_date, employee,
                                  _value(category), _value(status))
    report = await reports.expense_report(filter, group_by)
    return {"message": "Expense report generated successfully", "report": report}


@router.get("/approvals")
async def approval_report(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    approver: Optional[str] = None,
    role: Optional[ApprovalRole] = None,
    status: Optional[ApprovalStatus] = None,
    group_by: str = "month",
    current_user: User = Depends(get_current_active_user),
    reports: ReportService = Depends(get_report_service)
):
    _check_group_by(group_by)
    await _check_approver(current_user, approver)
    filter = build_approval_filter(current_user, approver, start_date, end_date, _value(role), _value(status))
    report = await reports.approval_report(filter, group_by)
    return {"message": "Approval report generated successfully", "report": report}


@router.get("/dashboard")
async def dashboard(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    company: Optional[str] = None,
    current_user: User = Depends(get_current_active_user),
    reports: ReportService = Depends(get_report_service)
):
    filter = build_expense_filter(current_user, company, start_date, end_date)
    approval_filter = {} if current_user.role == UserRole.ADMIN else {"approver_id": current_user.id}
    stats = await reports.dashboard(filter, approval_filter)
    return {"message": "Dashboard data retrieved successfully", "dashboard": stats}


@router.get("/export")
async def export_report(
    type: str = Query("expenses"),
    format: str = Query("json"),
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    employee: Optional[str] = None,
    category: Optional[ExpenseCategory] = None,
    status: Optional[str] = None,
    role: Optional[ApprovalRole] = None,
    current_user: User = Depends(get_current_active_user)
):
    validate_export(type, format)

    if type == "expenses":
        filter = build_expense_filter(current_user, None, start_date, end_date, employee,
                                      _value(category), status)
        records = await db.expenses.list(filter, limit=EXPORT_LIMIT, sort=[("expense_date", -1)])
    else:
        filter = build_approval_filter(current_user, None, start_date, end_date, _value(role), status)
        records = await db.approvals.list(filter, limit=EXPORT_LIMIT, sort=[("created_at", -1)])
    rows = [r.to_api() for r in records]
    logger.info(f"Exporting {len(rows)} {type} as {format} for {current_user.id}")

    filename = export_filename(type, format)
    if format == "csv":
        return Response(
            content=to_csv(rows),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )
    if format == "pdf":
        return Response(
            content=to_pdf(rows, type),
            media_type="application/pdf",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )
    return to_json(rows, type, format)
