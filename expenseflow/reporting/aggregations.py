import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from expenseflow.config import settings
from expenseflow.models.approval import ApprovalStatus
from expenseflow.models.expense import ExpenseStatus, PENDING_STATUSES
from expenseflow.models.user import User, UserRole

logger = logging.getLogger(__name__)

GROUP_BY_CHOICES = ("day", "week", "month")

_PENDING = [s.value for s in PENDING_STATUSES]


def _date_range(start_date: Optional[datetime], end_date: Optional[datetime]) -> Optional[Dict[str, datetime]]:
    if not start_date and not end_date:
        return None
    span: Dict[str, datetime] = {}
    if start_date:
        span["$gte"] = start_date
    if end_date:
        span["$lte"] = end_date
    return span


def build_expense_filter(user: User,
                         company: Optional[str] = None,
                         start_date: Optional[datetime] = None,
                         end_date: Optional[datetime] = None,
                         employee: Optional[str] = None,
                         category: Optional[str] = None,
                         status: Optional[str] = None) -> Dict[str, Any]:
    """Non-admins only ever see their own company; admins may pick one."""
    filter: Dict[str, Any] = {}
    if user.role != UserRole.ADMIN:
        filter["company_id"] = user.company_id
    elif company:
        filter["company_id"] = company

    span = _date_range(start_date, end_date)
    if span:
        filter["expense_date"] = span
    if employee:
        filter["employee_id"] = employee
    if category:
        filter["category"] = category
    if status:
        filter["status"] = status
    return filter


def build_approval_filter(user: User,
                          approver: Optional[str] = None,
                          start_date: Optional[datetime] = None,
                          end_date: Optional[datetime] = None,
                          role: Optional[str] = None,
                          status: Optional[str] = None) -> Dict[str, Any]:
    filter: Dict[str, Any] = {}
    if approver:
        filter["approver_id"] = approver
    elif user.role != UserRole.ADMIN:
        filter["approver_id"] = user.id

    span = _date_range(start_date, end_date)
    if span:
        filter["created_at"] = span
    if role:
        filter["role"] = role
    if status:
        filter["status"] = status
    return filter


def time_bucket(field: str, group_by: str) -> Dict[str, Any]:
    """Group key for a date field at day, week or month granularity."""
    key: Dict[str, Any] = {"year": {"$year": f"${field}"}}
    if group_by == "day":
        key["month"] = {"$month": f"${field}"}
        key["day"] = {"$dayOfMonth": f"${field}"}
    elif group_by == "week":
        key["week"] = {"$week": f"${field}"}
    else:
        key["month"] = {"$month": f"${field}"}
    return key


_TIMELINE_SORT = {"$sort": {"_id.year": 1, "_id.month": 1, "_id.day": 1, "_id.week": 1}}


def _count_if(field: str, value: str) -> Dict[str, Any]:
    return {"$sum": {"$cond": [{"$eq": [f"${field}", value]}, 1, 0]}}


def _sum_if(status_expr: Dict[str, Any]) -> Dict[str, Any]:
    return {"$sum": {"$cond": [status_expr, "$amount", 0]}}


# Expense pipelines

def expense_timeline_pipeline(filter: Dict[str, Any], group_by: str = "month") -> List[Dict[str, Any]]:
    return [
        {"$match": filter},
        {"$group": {
            "_id": time_bucket("expense_date", group_by),
            "count": {"$sum": 1},
            "total_amount": {"$sum": "$amount"},
            "avg_amount": {"$avg": "$amount"},
        }},
        _TIMELINE_SORT,
    ]


def expense_summary_pipeline(filter: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [
        {"$match": filter},
        {"$group": {
            "_id": None,
            "total_expenses": {"$sum": 1},
            "total_amount": {"$sum": "$amount"},
            "avg_amount": {"$avg": "$amount"},
            "max_amount": {"$max": "$amount"},
            "min_amount": {"$min": "$amount"},
        }},
    ]


def category_breakdown_pipeline(filter: Dict[str, Any], limit: Optional[int] = None) -> List[Dict[str, Any]]:
    pipeline = [
        {"$match": filter},
        {"$group": {
            "_id": "$category",
            "count": {"$sum": 1},
            "total_amount": {"$sum": "$amount"},
            "avg_amount": {"$avg": "$amount"},
        }},
        {"$sort": {"total_amount": -1}},
    ]
    if limit:
        pipeline.append({"$limit": limit})
    return pipeline


def status_breakdown_pipeline(filter: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [
        {"$match": filter},
        {"$group": {"_id": "$status", "count": {"$sum": 1}, "total_amount": {"$sum": "$amount"}}},
    ]


def dashboard_totals_pipeline(filter: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [
        {"$match": filter},
        {"$group": {
            "_id": None,
            "total_expenses": {"$sum": 1},
            "total_amount": {"$sum": "$amount"},
            "pending_amount": _sum_if({"$in": ["$status", _PENDING]}),
            "approved_amount": _sum_if({"$eq": ["$status", ExpenseStatus.APPROVED.value]}),
            "rejected_amount": _sum_if({"$eq": ["$status", ExpenseStatus.REJECTED.value]}),
        }},
    ]


def recent_expenses_pipeline(filter: Dict[str, Any], limit: int = 10) -> List[Dict[str, Any]]:
    """Newest expenses with the employee and current approver names attached."""
    def person(local_field: str, as_field: str) -> List[Dict[str, Any]]:
        return [
            {"$lookup": {
                "from": "users",
                "let": {"uid": {"$convert": {"input": f"${local_field}", "to": "objectId", "onError": None, "onNull": None}}},
                "pipeline": [
                    {"$match": {"$expr": {"$eq": ["$_id", "$$uid"]}}},
                    {"$project": {"_id": 0, "first_name": 1, "last_name": 1, "email": 1}},
                ],
                "as": as_field,
            }},
            {"$unwind": {"path": f"${as_field}", "preserveNullAndEmptyArrays": True}},
        ]

    return [
        {"$match": filter},
        {"$sort": {"created_at": -1}},
        {"$limit": limit},
        *person("employee_id", "employee"),
        *person("current_approver_id", "current_approver"),
        {"$project": {
            "_id": 0,
            "id": {"$toString": "$_id"},
            "amount": 1,
            "category": 1,
            "status": 1,
            "description": 1,
            "created_at": 1,
            "employee": 1,
            "current_approver": 1,
        }},
    ]


# Approval pipelines

def approval_timeline_pipeline(filter: Dict[str, Any], group_by: str = "month") -> List[Dict[str, Any]]:
    return [
        {"$match": filter},
        {"$group": {
            "_id": time_bucket("created_at", group_by),
            "count": {"$sum": 1},
            "approved": _count_if("status", ApprovalStatus.APPROVED.value),
            "rejected": _count_if("status", ApprovalStatus.REJECTED.value),
            "pending": _count_if("status", ApprovalStatus.PENDING.value),
        }},
        _TIMELINE_SORT,
    ]


def approval_summary_pipeline(filter: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [
        {"$match": filter},
        {"$group": {
            "_id": None,
            "total_approvals": {"$sum": 1},
            "approved": _count_if("status", ApprovalStatus.APPROVED.value),
            "rejected": _count_if("status", ApprovalStatus.REJECTED.value),
            "pending": _count_if("status", ApprovalStatus.PENDING.value),
            "escalated": _count_if("status", ApprovalStatus.ESCALATED.value),
        }},
    ]


def approval_time_pipeline(filter: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Decision latency in days over approved and rejected approvals."""
    decided = dict(filter)
    decided["status"] = {"$in": [ApprovalStatus.APPROVED.value, ApprovalStatus.REJECTED.value]}
    return [
        {"$match": decided},
        {"$addFields": {
            "approval_time": {"$divide": [{"$subtract": ["$action_date", "$created_at"]}, 1000 * 60 * 60 * 24]},
        }},
        {"$group": {
            "_id": None,
            "avg_approval_time": {"$avg": "$approval_time"},
            "max_approval_time": {"$max": "$approval_time"},
            "min_approval_time": {"$min": "$approval_time"},
        }},
    ]


def approvals_by_field_pipeline(filter: Dict[str, Any], field: str) -> List[Dict[str, Any]]:
    return [
        {"$match": filter},
        {"$group": {
            "_id": f"${field}",
            "count": {"$sum": 1},
            "approved": _count_if("status", ApprovalStatus.APPROVED.value),
            "rejected": _count_if("status", ApprovalStatus.REJECTED.value),
            "pending": _count_if("status", ApprovalStatus.PENDING.value),
        }},
        {"$sort": {"count": -1}},
    ]


def _first(rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    if not rows:
        return {}
    row = dict(rows[0])
    row.pop("_id", None)
    return row


class ReportService:
    """Runs the report pipelines against the expense and approval collections."""

    def __init__(self, expenses, approvals):
        self.expenses = expenses
        self.approvals = approvals

    async def expense_report(self, filter: Dict[str, Any], group_by: str = "month") -> Dict[str, Any]:
        timeline = await self.expenses.aggregate(expense_timeline_pipeline(filter, group_by))
        summary = await self.expenses.aggregate(expense_summary_pipeline(filter))
        categories = await self.expenses.aggregate(category_breakdown_pipeline(filter))
        statuses = await self.expenses.aggregate(status_breakdown_pipeline(filter))
        logger.info(f"Expense report ({group_by}): {len(timeline)} buckets")
        return {
            "summary": _first(summary),
            "timeline": timeline,
            "category_breakdown": categories,
            "status_breakdown": statuses,
        }

    async def approval_report(self, filter: Dict[str, Any], group_by: str = "month") -> Dict[str, Any]:
        timeline = await self.approvals.aggregate(approval_timeline_pipeline(filter, group_by))
        summary = await self.approvals.aggregate(approval_summary_pipeline(filter))
        timing = await self.approvals.aggregate(approval_time_pipeline(filter))
        return {
            "summary": _first(summary),
            "timeline": timeline,
            "approval_time": _first(timing),
        }

    async def approval_stats(self, filter: Dict[str, Any]) -> Dict[str, Any]:
        by_status = await self.approvals.aggregate(approvals_by_field_pipeline(filter, "status"))
        by_role = await self.approvals.aggregate(approvals_by_field_pipeline(filter, "role"))
        overdue = await self.approvals.count(overdue_filter(filter))
        return {"by_status": by_status, "by_role": by_role, "overdue": overdue}

    async def dashboard(self, filter: Dict[str, Any], approval_filter: Dict[str, Any]) -> Dict[str, Any]:
        totals = await self.expenses.aggregate(dashboard_totals_pipeline(filter))
        statuses = await self.expenses.aggregate(status_breakdown_pipeline(filter))
        categories = await self.expenses.aggregate(category_breakdown_pipeline(filter, limit=10))
        recent = await self.expenses.aggregate(recent_expenses_pipeline(filter))
        approvals = await self.approvals.aggregate(approval_summary_pipeline(approval_filter))
        overdue = await self.approvals.count(overdue_filter(approval_filter))
        return {
            "expenses": _first(totals),
            "status_breakdown": statuses,
            "category_breakdown": categories,
            "recent_expenses": recent,
            "approvals": _first(approvals),
            "overdue_approvals": overdue,
        }


def overdue_filter(filter: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    """Pending approvals created more than APPROVAL_OVERDUE_DAYS ago."""
    now = now or datetime.utcnow()
    overdue = dict(filter)
    overdue["status"] = ApprovalStatus.PENDING.value
    overdue["created_at"] = {"$lt": now - timedelta(days=settings.APPROVAL_OVERDUE_DAYS)}
    return overdue
