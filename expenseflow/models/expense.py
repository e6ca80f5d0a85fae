from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional
from pydantic import Field, computed_field, field_validator
from expenseflow.config import settings
from expenseflow.models.base import EmbeddedModel, MongoModel

class ExpenseStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    PENDING_MANAGER = "pending_manager"
    PENDING_FINANCE = "pending_finance"
    PENDING_DIRECTOR = "pending_director"
    APPROVED = "approved"
    REJECTED = "rejected"
    REIMBURSED = "reimbursed"

PENDING_STATUSES = (
    ExpenseStatus.PENDING_MANAGER,
    ExpenseStatus.PENDING_FINANCE,
    ExpenseStatus.PENDING_DIRECTOR,
)

class ExpenseCategory(str, Enum):
    TRAVEL = "Travel"
    FOOD = "Food"
    STAY = "Stay"
    TRANSPORTATION = "Transportation"
    OFFICE_SUPPLIES = "Office Supplies"
    ENTERTAINMENT = "Entertainment"
    TRAINING = "Training"
    MEDICAL = "Medical"
    OTHER = "Other"

class ReimbursementMethod(str, Enum):
    BANK_TRANSFER = "bank_transfer"
    CHECK = "check"
    CASH = "cash"
    OTHER = "other"

class OCRData(EmbeddedModel):
    """Fields recovered from a receipt image."""
    extracted_text: Optional[str] = None
    merchant_name: Optional[str] = None
    amount: Optional[float] = None
    date: Optional[datetime] = None
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)

class Receipt(EmbeddedModel):
    filename: str
    original_name: str
    path: str
    size: int = Field(..., ge=0)
    mime_type: str
    ocr_data: Optional[OCRData] = None
    uploaded_at: datetime = Field(default_factory=datetime.utcnow)

class Coordinates(EmbeddedModel):
    latitude: Optional[float] = None
    longitude: Optional[float] = None

class Location(EmbeddedModel):
    name: Optional[str] = None
    address: Optional[str] = None
    coordinates: Optional[Coordinates] = None

class Expense(MongoModel):
    """
    An employee expense claim.

    `amount` always holds the converted amount in the company currency;
    the submitted figure is kept in `original_amount`/`original_currency`.
    """
    employee_id: str
    company_id: str

    amount: float = Field(..., ge=0)
    original_amount: float = Field(..., ge=0)
    original_currency: str = Field(..., min_length=3, max_length=3)
    converted_amount: float = Field(..., ge=0)
    converted_currency: str = Field(..., min_length=3, max_length=3)
    exchange_rate: float = Field(..., gt=0)

    category: ExpenseCategory
    sub_category: Optional[str] = None
    description: str = Field(..., min_length=1, max_length=500)
    justification: Optional[str] = Field(None, max_length=1000)
    expense_date: datetime
    submission_date: datetime = Field(default_factory=datetime.utcnow)

    status: ExpenseStatus = ExpenseStatus.DRAFT
    submission_count: int = Field(0, ge=0, description="Approval cycle counter, bumped on every submit")

    receipts: List[Receipt] = Field(default_factory=list)

    current_approver_id: Optional[str] = None
    rejection_reason: Optional[str] = Field(None, max_length=500)
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    reimbursed_by: Optional[str] = None
    reimbursed_at: Optional[datetime] = None
    reimbursement_method: Optional[ReimbursementMethod] = None

    tags: List[str] = Field(default_factory=list)
    is_urgent: bool = False
    project_code: Optional[str] = None
    client_code: Optional[str] = None
    location: Optional[Location] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("original_currency", "converted_currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()

    @computed_field
    @property
    def is_overdue(self) -> bool:
        if self.status in PENDING_STATUSES:
            return datetime.utcnow() - self.submission_date > timedelta(days=settings.EXPENSE_OVERDUE_DAYS)
        return False

    def to_mongo(self, exclude_none: bool = False):
        data = super().to_mongo(exclude_none=exclude_none)
        data.pop("is_overdue", None)
        return data
