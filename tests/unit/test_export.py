import pytest
from datetime import datetime

from expenseflow.errors import ValidationFailed
from expenseflow.reporting.export import export_filename, to_csv, to_json, to_pdf, validate_export


def test_csv_header_from_first_row():
    rows = [
        {"id": "e1", "description": "Taxi, airport", "amount": 42.5, "location": {"name": "JFK"}},
        {"id": "e2", "description": "Lunch", "amount": 12, "location": None},
    ]
    lines = to_csv(rows).split("\n")

    assert lines[0] == "id,description,amount,location"
    assert lines[1] == 'e1,Taxi; airport,42.5,{"name": "JFK"}'
    assert lines[2] == "e2,Lunch,12,"


def test_csv_empty():
    assert to_csv([]) == ""


def test_json_envelope():
    body = to_json([{"id": "a1"}], "approvals")
    assert body["data"] == [{"id": "a1"}]
    assert body["metadata"]["type"] == "approvals"
    assert body["metadata"]["count"] == 1


def test_filename():
    assert export_filename("expenses", "csv", today=datetime(2024, 6, 1)) == "expenses_2024-06-01.csv"


def test_pdf_renders():
    rows = [{"expense_date": "2024-03-15T00:00:00", "description": "Flight", "category": "Travel",
             "amount": 500.0, "converted_currency": "USD", "status": "approved"}]
    assert to_pdf(rows, "expenses").startswith(b"%PDF")


@pytest.mark.parametrize("type,fmt,code", [
    ("invoices", "json", "INVALID_TYPE"),
    ("expenses", "xlsx", "INVALID_FORMAT"),
])
def test_validate_export(type, fmt, code):
    with pytest.raises(ValidationFailed) as exc:
        validate_export(type, fmt)
    assert exc.value.code == code
