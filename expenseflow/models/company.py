from datetime import datetime
from enum import Enum
from typing import Any, List, Optional
from pydantic import Field, field_validator
from expenseflow.models.base import EmbeddedModel, MongoModel

class ApprovalWorkflowMode(str, Enum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    HYBRID = "hybrid"

class Address(EmbeddedModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None

class ContactInfo(EmbeddedModel):
    phone: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None

class PercentageRule(EmbeddedModel):
    enabled: bool = False
    percentage: float = Field(60, ge=0, le=100)

class SpecificApproverRule(EmbeddedModel):
    enabled: bool = False
    approvers: List[str] = Field(default_factory=list)

class HybridRule(EmbeddedModel):
    condition: str = Field(..., pattern="^(amount|category|department)$")
    operator: str = Field(..., pattern="^(greater_than|less_than|equals|contains)$")
    value: Any = None
    approvers: List[str] = Field(default_factory=list)

class HybridRules(EmbeddedModel):
    enabled: bool = False
    rules: List[HybridRule] = Field(default_factory=list)

class ApprovalRules(EmbeddedModel):
    percentage_rule: PercentageRule = Field(default_factory=PercentageRule)
    specific_approver_rule: SpecificApproverRule = Field(default_factory=SpecificApproverRule)
    hybrid_rules: HybridRules = Field(default_factory=HybridRules)

class ExpenseCategorySetting(EmbeddedModel):
    name: str
    description: Optional[str] = None
    max_amount: Optional[float] = None
    requires_approval: bool = True

class NotificationSettings(EmbeddedModel):
    email_notifications: bool = True
    push_notifications: bool = True
    notification_recipients: List[str] = Field(default_factory=list)

class CompanySettings(EmbeddedModel):
    approval_workflow: ApprovalWorkflowMode = ApprovalWorkflowMode.SEQUENTIAL
    max_expense_amount: float = Field(10000, ge=0)
    require_receipt: bool = True
    receipt_threshold: float = Field(25, ge=0)
    auto_approval_limit: float = Field(100, ge=0, description="Amounts at or below this are approved on submit")
    approval_rules: ApprovalRules = Field(default_factory=ApprovalRules)
    expense_categories: List[ExpenseCategorySetting] = Field(default_factory=list)
    notification_settings: NotificationSettings = Field(default_factory=NotificationSettings)

class Company(MongoModel):
    """
    Tenant document. Every user, expense and approval belongs to one company.
    """
    name: str = Field(..., min_length=2, max_length=100)
    country: str = Field(..., min_length=2, max_length=50)
    currency: str = Field("USD", min_length=3, max_length=3)
    timezone: str = "UTC"
    address: Optional[Address] = None
    contact_info: Optional[ContactInfo] = None
    settings: CompanySettings = Field(default_factory=CompanySettings)

    is_active: bool = True
    created_by: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()
