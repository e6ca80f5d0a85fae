from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from expenseflow.api.auth import get_current_active_user
from expenseflow.api.common import MAX_PAGE_SIZE, get_report_service, get_workflow, pagination, skip_for
from expenseflow.database import db
from expenseflow.errors import NotFound, PermissionDenied
from expenseflow.models.approval import ApprovalRole, ApprovalStatus
from expenseflow.models.user import User, UserRole
from expenseflow.reporting.aggregations import ReportService, build_approval_filter
from expenseflow.workflow.engine import ApprovalWorkflow, Decision

router = APIRouter(prefix="/api/approvals", tags=["Approvals"])


class ApproveRequest(BaseModel):
    comments: Optional[str] = Field(None, max_length=500)
    is_urgent: bool = False


class RejectRequest(BaseModel):
    comments: Optional[str] = Field(None, max_length=500)
    rejection_reason: Optional[str] = Field(None, max_length=500)


class EscalateRequest(BaseModel):
    escalated_to: str
    escalation_reason: Optional[str] = Field(None, max_length=500)
    comments: Optional[str] = Field(None, max_length=500)


def _decision(message: str, decision: Decision):
    body = {
        "message": message,
        "approval": decision.approval.to_api(),
        "expense": decision.expense.to_api() if decision.expense else None,
    }
    if decision.new_approval:
        body["new_approval"] = decision.new_approval.to_api()
    return body


@router.get("/")
async def list_my_approvals(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_PAGE_SIZE),
    status: Optional[ApprovalStatus] = None,
    role: Optional[ApprovalRole] = None,
    is_urgent: Optional[bool] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    current_user: User = Depends(get_current_active_user)
):
    filter = build_approval_filter(
        current_user,
        approver=current_user.id,
        start_date=start_date,
        end_date=end_date,
        role=role.value if role else None,
        status=status.value if status else None,
    )
    if is_urgent is not None:
        filter["is_urgent"] = is_urgent

    approvals = await db.approvals.list(filter, skip=skip_for(page, limit), limit=limit, sort=[("created_at", -1)])
    total = await db.approvals.count(filter)

    items = []
    for approval in approvals:
        expense = await db.expenses.get(approval.expense_id)
        item = approval.to_api()
        item["expense"] = expense.to_api() if expense else None
        items.append(item)

    return {
        "message": "Approvals retrieved successfully",
        "approvals": items,
        "pagination": pagination(page, limit, total),
    }


@router.get("/stats/summary")
async def approval_stats(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    role: Optional[ApprovalRole] = None,
    current_user: User = Depends(get_current_active_user),
    reports: ReportService = Depends(get_report_service)
):
    filter = build_approval_filter(
        current_user,
        approver=current_user.id,
        start_date=start_date,
        end_date=end_date,
        role=role.value if role else None,
    )
    stats = await reports.approval_stats(filter)
    return {"message": "Approval statistics retrieved successfully", "stats": stats}


@router.get("/{id}")
async def get_approval(id: str, current_user: User = Depends(get_current_active_user)):
    approval = await db.approvals.get(id)
    if not approval:
        raise NotFound("approval")
    if approval.approver_id != current_user.id and current_user.role != UserRole.ADMIN:
        raise PermissionDenied("Access denied")

    expense = await db.expenses.get(approval.expense_id)
    body = approval.to_api()
    body["expense"] = expense.to_api() if expense else None
    return {"message": "Approval retrieved successfully", "approval": body}


@router.post("/{id}/approve")
async def approve(
    id: str,
    body: ApproveRequest,
    current_user: User = Depends(get_current_active_user),
    workflow: ApprovalWorkflow = Depends(get_workflow)
):
    decision = await workflow.approve(id, current_user, comments=body.comments, is_urgent=body.is_urgent)
    return _decision("Expense approved successfully", decision)


@router.post("/{id}/reject")
async def reject(
    id: str,
    body: RejectRequest,
    current_user: User = Depends(get_current_active_user),
    workflow: ApprovalWorkflow = Depends(get_workflow)
):
    decision = await workflow.reject(id, current_user, comments=body.comments,
                                     rejection_reason=body.rejection_reason)
    return _decision("Expense rejected successfully", decision)


@router.post("/{id}/escalate")
async def escalate(
    id: str,
    body: EscalateRequest,
    current_user: User = Depends(get_current_active_user),
    workflow: ApprovalWorkflow = Depends(get_workflow)
):
    decision = await workflow.escalate(id, current_user, body.escalated_to,
                                       escalation_reason=body.escalation_reason, comments=body.comments)
    return _decision("Expense escalated successfully", decision)


@router.put("/{id}/reminder")
async def send_reminder(
    id: str,
    current_user: User = Depends(get_current_active_user),
    workflow: ApprovalWorkflow = Depends(get_workflow)
):
    approval = await workflow.send_reminder(id, current_user)
    return {"message": "Reminder sent successfully", "approval": approval.to_api()}
