"""
Heuristic extraction of merchant, amount, date and category from OCR text.

Every field is found by trying patterns in a fixed order and scanning lines
top to bottom; the first hit wins. Confidence grows by a fixed step per field
found and never exceeds 1.0.
"""
import re
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from expenseflow.models.expense import ExpenseCategory

BUSINESS_KEYWORDS = ["LTD", "INC", "CORP", "LLC", "STORE", "SHOP", "RESTAURANT", "HOTEL"]

AMOUNT_PATTERNS = [
    re.compile(r"TOTAL[:\s]*\$?(\d+\.?\d*)", re.IGNORECASE),
    re.compile(r"AMOUNT[:\s]*\$?(\d+\.?\d*)", re.IGNORECASE),
    re.compile(r"\$(\d+\.?\d*)"),
    re.compile(r"(\d+\.?\d*)\s*USD", re.IGNORECASE),
    re.compile(r"(\d+\.?\d*)\s*EUR", re.IGNORECASE),
    re.compile(r"(\d+\.?\d*)\s*GBP", re.IGNORECASE),
]

MONTHS = ["jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"]

# Numeric day-first shapes are read month-first (1/2/2024 is January 2nd)
_MDY = re.compile(r"(?<!\d)(\d{1,2})[/-](\d{1,2})[/-](\d{2,4})")
_YMD = re.compile(r"(\d{4})[/-](\d{1,2})[/-](\d{1,2})")
_MONTH_NAME = re.compile(r"(Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*\.?[\s,]*(\d{1,2})[\s,]*(\d{2,4})",
                         re.IGNORECASE)

CATEGORY_KEYWORDS = {
    ExpenseCategory.TRAVEL: ["airline", "flight", "taxi", "uber", "lyft", "train", "bus", "metro"],
    ExpenseCategory.FOOD: ["restaurant", "cafe", "coffee", "food", "dining", "pizza", "burger"],
    ExpenseCategory.STAY: ["hotel", "motel", "accommodation", "lodging", "airbnb"],
    ExpenseCategory.TRANSPORTATION: ["gas", "fuel", "parking", "toll", "highway"],
    ExpenseCategory.OFFICE_SUPPLIES: ["office", "stationery", "supplies", "staples"],
    ExpenseCategory.ENTERTAINMENT: ["movie", "cinema", "theater", "concert", "sports"],
}

AMOUNT_CONFIDENCE = 0.3
DATE_CONFIDENCE = 0.2
CATEGORY_CONFIDENCE = 0.1


class ParsedReceipt(BaseModel):
    merchant_name: str = ""
    amount: float = 0.0
    date: Optional[datetime] = None
    category: ExpenseCategory = ExpenseCategory.OTHER
    confidence: float = Field(0.0, ge=0.0, le=1.0)

    model_config = {"use_enum_values": True}


def _full_year(year: int) -> int:
    if year < 100:
        return 2000 + year if year < 50 else 1900 + year
    return year


def _build_date(year: int, month: int, day: int) -> Optional[datetime]:
    try:
        return datetime(_full_year(year), month, day)
    except ValueError:
        return None


def _parse_mdy(match) -> Optional[datetime]:
    month, day, year = (int(g) for g in match.groups())
    return _build_date(year, month, day)


def _parse_ymd(match) -> Optional[datetime]:
    year, month, day = (int(g) for g in match.groups())
    return _build_date(year, month, day)


def _parse_month_name(match) -> Optional[datetime]:
    month = MONTHS.index(match.group(1).lower()[:3]) + 1
    return _build_date(int(match.group(3)), month, int(match.group(2)))


DATE_PATTERNS = [
    (_MDY, _parse_mdy),
    (_YMD, _parse_ymd),
    (_MONTH_NAME, _parse_month_name),
]


def _split_lines(text: str) -> List[str]:
    return [line.strip() for line in (text or "").splitlines() if line.strip()]


def find_merchant(lines: List[str]) -> str:
    for line in lines:
        upper = line.upper()
        if any(keyword in upper for keyword in BUSINESS_KEYWORDS):
            return line
    return lines[0] if lines else ""


def find_amount(lines: List[str]) -> Optional[float]:
    for pattern in AMOUNT_PATTERNS:
        for line in lines:
            match = pattern.search(line)
            if match:
                return float(match.group(1))
    return None


def find_date(lines: List[str]) -> Optional[datetime]:
    for pattern, build in DATE_PATTERNS:
        for line in lines:
            match = pattern.search(line)
            if not match:
                continue
            parsed = build(match)
            if parsed:
                return parsed
    return None


def categorize(merchant_name: str) -> Optional[ExpenseCategory]:
    merchant = merchant_name.lower()
    for category, keywords in CATEGORY_KEYWORDS.items():
        if any(keyword in merchant for keyword in keywords):
            return category
    return None


def parse_receipt_text(text: str) -> ParsedReceipt:
    lines = _split_lines(text)
    confidence = 0.0

    merchant = find_merchant(lines)

    amount = find_amount(lines)
    if amount is not None:
        confidence += AMOUNT_CONFIDENCE

    date = find_date(lines)
    if date is not None:
        confidence += DATE_CONFIDENCE

    category = categorize(merchant)
    if category is not None:
        confidence += CATEGORY_CONFIDENCE

    return ParsedReceipt(
        merchant_name=merchant,
        amount=amount or 0.0,
        date=date,
        category=category or ExpenseCategory.OTHER,
        confidence=round(min(confidence, 1.0), 2),
    )
