from datetime import datetime

from expenseflow.tools.receipt_parser import find_amount, find_date, find_merchant, parse_receipt_text


def test_total_line():
    parsed = parse_receipt_text("TOTAL: $42.50")

    assert parsed.amount == 42.50
    assert parsed.confidence >= 0.3
    assert parsed.category == "Other"


def test_full_receipt():
    text = """
    Joe's Coffee Shop
    123 Main St
    Date: 03/15/2024
    TOTAL: 12.50
    Thank you!
    """
    parsed = parse_receipt_text(text)

    assert parsed.merchant_name == "Joe's Coffee Shop"
    assert parsed.amount == 12.50
    assert parsed.date == datetime(2024, 3, 15)
    assert parsed.category == "Food"
    assert parsed.confidence == 0.6


def test_merchant_prefers_business_keyword_line():
    lines = ["Welcome", "Grand Plaza Hotel", "Room 12"]
    assert find_merchant(lines) == "Grand Plaza Hotel"


def test_merchant_falls_back_to_first_line():
    assert find_merchant(["Corner Bakery", "Bread 3.00"]) == "Corner Bakery"
    assert find_merchant([]) == ""


def test_amount_pattern_order_beats_line_order():
    # AMOUNT appears first, but TOTAL is the higher-ranked pattern
    assert find_amount(["AMOUNT: 5.00", "TOTAL: 9.99"]) == 9.99


def test_amount_currency_suffix():
    assert find_amount(["Paid 18.20 EUR"]) == 18.20


def test_iso_date_is_not_read_as_day_first():
    assert find_date(["2024-03-15"]) == datetime(2024, 3, 15)


def test_month_name_date():
    assert find_date(["Mar 5, 2024"]) == datetime(2024, 3, 5)
    assert find_date(["September 30 2023"]) == datetime(2023, 9, 30)


def test_two_digit_year():
    assert find_date(["1/2/24"]) == datetime(2024, 1, 2)


def test_invalid_calendar_date_is_skipped():
    assert find_date(["13/45/2024"]) is None


def test_later_valid_date_after_invalid_one():
    assert find_date(["99/99/2024", "04/01/2024"]) == datetime(2024, 4, 1)


def test_hotel_categorized_as_stay():
    parsed = parse_receipt_text("Seaside Hotel\nTOTAL $210.00\nJan 3 2024")
    assert parsed.category == "Stay"
    assert parsed.amount == 210.0
    assert parsed.confidence == 0.6


def test_empty_text():
    parsed = parse_receipt_text("")
    assert parsed.merchant_name == ""
    assert parsed.amount == 0.0
    assert parsed.date is None
    assert parsed.confidence == 0.0
