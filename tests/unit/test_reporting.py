import pytest
from datetime import datetime, timedelta
from unittest.mock import AsyncMock

from expenseflow.reporting.aggregations import (
    ReportService,
    approval_time_pipeline,
    build_approval_filter,
    build_expense_filter,
    category_breakdown_pipeline,
    expense_timeline_pipeline,
    overdue_filter,
    time_bucket,
)


@pytest.mark.parametrize("group_by,keys", [
    ("day", {"year", "month", "day"}),
    ("week", {"year", "week"}),
    ("month", {"year", "month"}),
])
def test_time_bucket_keys(group_by, keys):
    assert set(time_bucket("expense_date", group_by)) == keys


def test_week_bucket_uses_week_operator():
    assert time_bucket("created_at", "week")["week"] == {"$week": "$created_at"}


def test_timeline_groups_on_expense_date():
    pipeline = expense_timeline_pipeline({"company_id": "c1"}, "day")
    assert pipeline[0] == {"$match": {"company_id": "c1"}}
    assert pipeline[1]["$group"]["_id"]["day"] == {"$dayOfMonth": "$expense_date"}


def test_non_admin_is_pinned_to_own_company(employee, outsider):
    filter = build_expense_filter(employee, company=outsider.company_id, category="Travel")
    assert filter == {"company_id": employee.company_id, "category": "Travel"}


def test_admin_may_choose_company(admin, outsider):
    start, end = datetime(2024, 1, 1), datetime(2024, 1, 31)
    filter = build_expense_filter(admin, company=outsider.company_id, start_date=start, end_date=end)
    assert filter["company_id"] == outsider.company_id
    assert filter["expense_date"] == {"$gte": start, "$lte": end}


def test_approval_filter_scopes(employee, admin, manager):
    assert build_approval_filter(employee) == {"approver_id": employee.id}
    assert build_approval_filter(admin) == {}
    assert build_approval_filter(employee, approver=manager.id, role="manager") == {
        "approver_id": manager.id,
        "role": "manager",
    }


def test_category_breakdown_limit():
    assert category_breakdown_pipeline({})[-1] == {"$sort": {"total_amount": -1}}
    assert category_breakdown_pipeline({}, limit=10)[-1] == {"$limit": 10}


def test_approval_time_only_counts_decided():
    match = approval_time_pipeline({"approver_id": "u1"})[0]["$match"]
    assert match["approver_id"] == "u1"
    assert match["status"] == {"$in": ["approved", "rejected"]}


def test_overdue_filter():
    now = datetime(2024, 5, 10)
    filter = overdue_filter({"approver_id": "u1"}, now=now)
    assert filter["status"] == "pending"
    assert filter["created_at"] == {"$lt": now - timedelta(days=3)}


@pytest.mark.asyncio
async def test_dashboard_shapes_results():
    expenses = AsyncMock()
    approvals = AsyncMock()
    expenses.aggregate.side_effect = [
        [{"_id": None, "total_expenses": 3, "total_amount": 600.0}],
        [{"_id": "approved", "count": 2}],
        [{"_id": "Travel", "count": 3}],
        [{"id": "e1", "amount": 200.0}],
    ]
    approvals.aggregate.return_value = [{"_id": None, "total_approvals": 4, "pending": 1}]
    approvals.count.return_value = 1

    dashboard = await ReportService(expenses, approvals).dashboard({"company_id": "c1"}, {})

    assert dashboard["expenses"] == {"total_expenses": 3, "total_amount": 600.0}
    assert dashboard["approvals"] == {"total_approvals": 4, "pending": 1}
    assert dashboard["overdue_approvals"] == 1
    assert dashboard["recent_expenses"] == [{"id": "e1", "amount": 200.0}]


@pytest.mark.asyncio
async def test_empty_expense_report():
    expenses = AsyncMock()
    expenses.aggregate.return_value = []

    report = await ReportService(expenses, AsyncMock()).expense_report({}, "week")

    assert report["summary"] == {}
    assert report["timeline"] == []
