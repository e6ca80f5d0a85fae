import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from httpx import ASGITransport, AsyncClient

from expenseflow.api.auth import get_current_active_user
from expenseflow.api.common import get_currency_converter, get_report_service, get_workflow
from expenseflow.errors import Conflict
from expenseflow.main import app
from expenseflow.models.expense import ExpenseStatus
from expenseflow.tools.currency import Conversion


@pytest.fixture
def login_as():
    def _login(user):
        app.dependency_overrides[get_current_active_user] = lambda: user
    yield _login
    app.dependency_overrides.clear()


def client():
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_health_check():
    async with client() as ac:
        response = await ac.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_missing_token_is_rejected():
    async with client() as ac:
        response = await ac.get("/api/expenses/")
    assert response.status_code == 401
    assert response.json()["code"] == "NO_TOKEN"


@pytest.mark.asyncio
async def test_register_first_user_becomes_admin(company):
    with patch("expenseflow.api.auth.db") as mock_db:
        mock_db.users.get_by_email = AsyncMock(return_value=None)
        mock_db.users.count = AsyncMock(return_value=0)
        mock_db.companies.create = AsyncMock(return_value=company)
        mock_db.companies.update = AsyncMock(return_value=company)
        mock_db.users.create = AsyncMock(side_effect=lambda user: user.model_copy(update={"id": "66000000000000000000aaaa"}))

        async with client() as ac:
            response = await ac.post("/api/auth/register", json={
                "email": "ada@acme.com",
                "password": "s3cret!",
                "first_name": "Ada",
                "last_name": "Admin",
            })

    assert response.status_code == 201
    body = response.json()
    assert body["user"]["role"] == "admin"
    assert "password_hash" not in body["user"]
    assert body["tokens"]["token_type"] == "bearer"


@pytest.mark.asyncio
async def test_create_expense_converts_to_company_currency(login_as, employee, company):
    login_as(employee)
    converter = MagicMock()
    converter.convert = AsyncMock(return_value=Conversion(54.25, 1.085))
    app.dependency_overrides[get_currency_converter] = lambda: converter

    with patch("expenseflow.api.expenses.db") as mock_db:
        mock_db.companies.get = AsyncMock(return_value=company)
        mock_db.expenses.create = AsyncMock(side_effect=lambda e: e.model_copy(update={"id": "66000000000000000000bbbb"}))

        async with client() as ac:
            response = await ac.post("/api/expenses/", json={
                "amount": 50,
                "original_currency": "eur",
                "category": "Food",
                "description": "Team lunch",
                "expense_date": "2024-03-15T12:00:00",
            })

    assert response.status_code == 201
    expense = response.json()["expense"]
    assert expense["status"] == "draft"
    assert expense["amount"] == 54.25
    assert expense["original_amount"] == 50
    assert expense["original_currency"] == "EUR"
    assert expense["converted_currency"] == "USD"
    converter.convert.assert_awaited_once_with(50, "EUR", "USD")


@pytest.mark.asyncio
async def test_invalid_body_is_400(login_as, employee):
    login_as(employee)
    async with client() as ac:
        response = await ac.post("/api/expenses/", json={"amount": -5})
    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "VALIDATION_ERROR"
    assert body["errors"]


@pytest.mark.asyncio
async def test_submit_goes_through_workflow(login_as, employee, pending_expense):
    login_as(employee)
    workflow = MagicMock()
    workflow.submit = AsyncMock(return_value=pending_expense)
    app.dependency_overrides[get_workflow] = lambda: workflow

    async with client() as ac:
        response = await ac.post(f"/api/expenses/{pending_expense.id}/submit")

    assert response.status_code == 200
    assert response.json()["expense"]["status"] == ExpenseStatus.PENDING_MANAGER.value
    workflow.submit.assert_awaited_once_with(pending_expense.id, employee)


@pytest.mark.asyncio
async def test_approval_race_is_409(login_as, manager, pending_approval):
    login_as(manager)
    workflow = MagicMock()
    workflow.approve = AsyncMock(side_effect=Conflict("Approval is no longer pending", code="APPROVAL_NOT_PENDING"))
    app.dependency_overrides[get_workflow] = lambda: workflow

    async with client() as ac:
        response = await ac.post(f"/api/approvals/{pending_approval.id}/approve", json={"comments": "ok"})

    assert response.status_code == 409
    assert response.json() == {"message": "Approval is no longer pending", "code": "APPROVAL_NOT_PENDING"}


@pytest.mark.asyncio
async def test_only_drafts_can_be_deleted(login_as, employee, pending_expense):
    login_as(employee)
    with patch("expenseflow.api.expenses.db") as mock_db:
        mock_db.expenses.get = AsyncMock(return_value=pending_expense)
        mock_db.expenses.delete = AsyncMock()

        async with client() as ac:
            response = await ac.delete(f"/api/expenses/{pending_expense.id}")

    assert response.status_code == 409
    assert response.json()["code"] == "EXPENSE_LOCKED"
    mock_db.expenses.delete.assert_not_awaited()


@pytest.mark.asyncio
async def test_employee_cannot_create_company(login_as, employee):
    login_as(employee)
    async with client() as ac:
        response = await ac.post("/api/company/", json={"name": "Rogue Inc", "country": "US"})
    assert response.status_code == 403
    assert response.json()["code"] == "INSUFFICIENT_PERMISSIONS"


@pytest.mark.asyncio
async def test_other_company_is_off_limits(login_as, employee, outsider):
    login_as(employee)
    async with client() as ac:
        response = await ac.get(f"/api/company/{outsider.company_id}")
    assert response.status_code == 403
    assert response.json()["code"] == "COMPANY_ACCESS_DENIED"


@pytest.mark.asyncio
async def test_export_csv(login_as, admin, draft_expense):
    login_as(admin)
    with patch("expenseflow.api.reports.db") as mock_db:
        mock_db.expenses.list = AsyncMock(return_value=[draft_expense])

        async with client() as ac:
            response = await ac.get("/api/reports/export", params={"type": "expenses", "format": "csv"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert "attachment" in response.headers["content-disposition"]
    header, row = response.text.split("\n")
    assert header.split(",")[0] == "id"
    assert "Flight to client site" in row


@pytest.mark.asyncio
async def test_export_rejects_unknown_format(login_as, admin):
    login_as(admin)
    async with client() as ac:
        response = await ac.get("/api/reports/export", params={"format": "xlsx"})
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_FORMAT"


@pytest.mark.asyncio
async def test_ocr_extract(login_as, employee, tmp_path):
    login_as(employee)
    with patch("expenseflow.api.ocr.ocr_tool") as mock_ocr, \
         patch("expenseflow.api.ocr.settings.UPLOAD_DIR", str(tmp_path)):
        mock_ocr.extract_text = MagicMock(return_value="Cafe Roma\nTOTAL: $42.50\n03/15/2024")

        async with client() as ac:
            response = await ac.post("/api/ocr/extract",
                                     files={"receipt": ("receipt.png", b"fake-image", "image/png")})

    assert response.status_code == 200
    parsed = response.json()["parsed_data"]
    assert parsed["amount"] == 42.5
    assert parsed["category"] == "Food"
    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_ocr_rejects_non_images(login_as, employee):
    login_as(employee)
    async with client() as ac:
        response = await ac.post("/api/ocr/extract",
                                 files={"receipt": ("notes.txt", b"hello", "text/plain")})
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_FILE_TYPE"


@pytest.mark.asyncio
async def test_update_expense_rejects_null_for_required_fields(login_as, employee, draft_expense):
    login_as(employee)
    workflow = MagicMock()
    workflow.edit = AsyncMock(return_value=draft_expense)
    app.dependency_overrides[get_workflow] = lambda: workflow

    with patch("expenseflow.api.expenses.db") as mock_db:
        mock_db.expenses.get = AsyncMock(return_value=draft_expense)

        async with client() as ac:
            response = await ac.put(f"/api/expenses/{draft_expense.id}",
                                    json={"description": None, "category": None})

    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"
    workflow.edit.assert_not_awaited()


@pytest.mark.asyncio
async def test_update_expense_can_clear_optional_fields(login_as, employee, draft_expense):
    login_as(employee)
    workflow = MagicMock()
    workflow.edit = AsyncMock(return_value=draft_expense)
    app.dependency_overrides[get_workflow] = lambda: workflow

    with patch("expenseflow.api.expenses.db") as mock_db:
        mock_db.expenses.get = AsyncMock(return_value=draft_expense)

        async with client() as ac:
            response = await ac.put(f"/api/expenses/{draft_expense.id}", json={"justification": None})

    assert response.status_code == 200
    workflow.edit.assert_awaited_once_with(draft_expense, employee, {"justification": None})


@pytest.mark.asyncio
async def test_update_user_rejects_null_for_required_fields(login_as, admin, employee):
    login_as(admin)
    with patch("expenseflow.api.users.db") as mock_db:
        mock_db.users.get = AsyncMock(return_value=employee)
        mock_db.users.update = AsyncMock(return_value=employee)

        async with client() as ac:
            response = await ac.put(f"/api/users/{employee.id}", json={"first_name": None, "role": None})

    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"
    mock_db.users.update.assert_not_awaited()


@pytest.mark.asyncio
async def test_update_company_rejects_null_for_required_fields(login_as, admin, company):
    login_as(admin)
    with patch("expenseflow.api.company.db") as mock_db:
        mock_db.companies.update = AsyncMock(return_value=company)

        async with client() as ac:
            response = await ac.put(f"/api/company/{company.id}", json={"name": None, "currency": None})

    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"
    mock_db.companies.update.assert_not_awaited()


@pytest.mark.asyncio
async def test_update_profile_rejects_null_for_required_fields(login_as, employee):
    login_as(employee)
    with patch("expenseflow.api.auth.db") as mock_db:
        mock_db.users.update = AsyncMock(return_value=employee)

        async with client() as ac:
            response = await ac.put("/api/auth/me", json={"last_name": None})

    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"
    mock_db.users.update.assert_not_awaited()


@pytest.mark.asyncio
async def test_approval_report_for_other_company_approver_is_denied(login_as, employee, outsider):
    login_as(employee)
    reports = MagicMock()
    reports.approval_report = AsyncMock(return_value={})
    app.dependency_overrides[get_report_service] = lambda: reports

    with patch("expenseflow.api.reports.db") as mock_db:
        mock_db.users.get = AsyncMock(return_value=outsider)

        async with client() as ac:
            response = await ac.get("/api/reports/approvals", params={"approver": outsider.id})

    assert response.status_code == 403
    assert response.json()["code"] == "COMPANY_ACCESS_DENIED"
    reports.approval_report.assert_not_awaited()


@pytest.mark.asyncio
async def test_approval_report_for_colleague_approver(login_as, employee, manager):
    login_as(employee)
    reports = MagicMock()
    reports.approval_report = AsyncMock(return_value={"summary": {}})
    app.dependency_overrides[get_report_service] = lambda: reports

    with patch("expenseflow.api.reports.db") as mock_db:
        mock_db.users.get = AsyncMock(return_value=manager)

        async with client() as ac:
            response = await ac.get("/api/reports/approvals", params={"approver": manager.id})

    assert response.status_code == 200
    filter, group_by = reports.approval_report.call_args.args
    assert filter == {"approver_id": manager.id}
    assert group_by == "month"


@pytest.mark.asyncio
async def test_register_into_existing_company_ignores_requested_role(company):
    with patch("expenseflow.api.auth.db") as mock_db:
        mock_db.users.get_by_email = AsyncMock(return_value=None)
        mock_db.users.count = AsyncMock(return_value=5)
        mock_db.companies.get = AsyncMock(return_value=company)
        mock_db.companies.create = AsyncMock()
        mock_db.users.create = AsyncMock(side_effect=lambda user: user.model_copy(update={"id": "66000000000000000000cccc"}))

        async with client() as ac:
            response = await ac.post("/api/auth/register", json={
                "email": "mallory@acme.com",
                "password": "s3cret!",
                "first_name": "Mallory",
                "last_name": "Joiner",
                "company": company.id,
                "role": "admin",
            })

    assert response.status_code == 201
    assert response.json()["user"]["role"] == "employee"
    assert mock_db.users.create.call_args.args[0].role == "employee"
    mock_db.companies.create.assert_not_awaited()
