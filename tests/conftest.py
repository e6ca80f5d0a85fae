import pytest
from datetime import datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock

from bson import ObjectId

from expenseflow.models.approval import Approval, ApprovalRole, ApprovalStatus
from expenseflow.models.company import Company, CompanySettings
from expenseflow.models.expense import Expense, ExpenseCategory, ExpenseStatus
from expenseflow.models.user import User, UserRole
from expenseflow.workflow.engine import ApprovalWorkflow


def _id() -> str:
    return str(ObjectId())


@pytest.fixture
def company():
    return Company(
        id=_id(),
        name="Acme Corporation",
        country="US",
        currency="USD",
        settings=CompanySettings(auto_approval_limit=100),
    )


def _user(company, role, first, email, manager_id=None):
    return User(
        id=_id(),
        email=email,
        password_hash="x",
        first_name=first,
        last_name="Tester",
        role=role,
        company_id=company.id,
        manager_id=manager_id,
    )


@pytest.fixture
def manager(company):
    return _user(company, UserRole.MANAGER, "Mona", "mona@acme.com")


@pytest.fixture
def employee(company, manager):
    return _user(company, UserRole.EMPLOYEE, "John", "john@acme.com", manager_id=manager.id)


@pytest.fixture
def finance(company):
    return _user(company, UserRole.FINANCE, "Fin", "fin@acme.com")


@pytest.fixture
def admin(company):
    return _user(company, UserRole.ADMIN, "Ada", "ada@acme.com")


@pytest.fixture
def outsider():
    return User(
        id=_id(),
        email="olga@other.com",
        password_hash="x",
        first_name="Olga",
        last_name="Outsider",
        role=UserRole.MANAGER,
        company_id=_id(),
    )


@pytest.fixture
def draft_expense(company, employee):
    return Expense(
        id=_id(),
        employee_id=employee.id,
        company_id=company.id,
        amount=500.0,
        original_amount=500.0,
        original_currency="USD",
        converted_amount=500.0,
        converted_currency="USD",
        exchange_rate=1.0,
        category=ExpenseCategory.TRAVEL,
        description="Flight to client site",
        expense_date=datetime(2024, 3, 15),
        status=ExpenseStatus.DRAFT,
    )


@pytest.fixture
def pending_expense(draft_expense, manager):
    return draft_expense.model_copy(update={
        "status": ExpenseStatus.PENDING_MANAGER.value,
        "submission_count": 1,
        "current_approver_id": manager.id,
    })


@pytest.fixture
def pending_approval(pending_expense, manager):
    return Approval(
        id=_id(),
        expense_id=pending_expense.id,
        approver_id=manager.id,
        role=ApprovalRole.MANAGER,
        status=ApprovalStatus.PENDING,
        priority=1,
        cycle=1,
    )


@pytest.fixture
def repos():
    """AsyncMock stand-ins for every repository the workflow touches."""
    return SimpleNamespace(
        expenses=AsyncMock(),
        approvals=AsyncMock(),
        users=AsyncMock(),
        companies=AsyncMock(),
        audit=AsyncMock(),
    )


@pytest.fixture
def notifier():
    mock = AsyncMock()
    mock.send_notification = AsyncMock()
    return mock


@pytest.fixture
def workflow(repos, notifier):
    return ApprovalWorkflow(repos.expenses, repos.approvals, repos.users, repos.companies, repos.audit,
                            notifier=notifier)


@pytest.fixture
def directory(repos, company, manager, employee, finance, admin, outsider):
    """Wires users.get and companies.get to the sample people."""
    people = {u.id: u for u in (manager, employee, finance, admin, outsider)}
    repos.users.get.side_effect = lambda user_id: people.get(user_id)
    repos.companies.get.return_value = company
    return people


def apply_fields(model):
    """side_effect for conditional writes: returns the model with the written fields."""
    def _apply(id, expected, fields):
        return model.model_copy(update=fields)
    return _apply


@pytest.fixture
def write_through():
    return apply_fields
