from datetime import datetime, timedelta
from enum import Enum
from typing import Optional
from pydantic import Field, computed_field
from expenseflow.config import settings
from expenseflow.models.base import MongoModel

class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    ESCALATED = "escalated"

class ApprovalRole(str, Enum):
    MANAGER = "manager"
    FINANCE = "finance"
    DIRECTOR = "director"

class Approval(MongoModel):
    """
    One approver's decision on one expense.

    Approvals of the same expense and cycle form a chain ordered by `priority`.
    """
    expense_id: str
    approver_id: str
    role: ApprovalRole
    status: ApprovalStatus = ApprovalStatus.PENDING
    priority: int = Field(1, ge=1)
    cycle: int = Field(1, ge=1, description="Expense submission this approval belongs to")

    comments: Optional[str] = Field(None, max_length=500)
    action_date: Optional[datetime] = None

    escalation_reason: Optional[str] = Field(None, max_length=500)
    escalated_to: Optional[str] = None
    escalation_date: Optional[datetime] = None

    is_urgent: bool = False
    reminder_sent: bool = False
    last_reminder_date: Optional[datetime] = None
    reminder_count: int = 0

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @computed_field
    @property
    def approval_time_seconds(self) -> Optional[float]:
        if self.action_date:
            return (self.action_date - self.created_at).total_seconds()
        return None

    @computed_field
    @property
    def is_overdue(self) -> bool:
        if self.status == ApprovalStatus.PENDING:
            return datetime.utcnow() - self.created_at > timedelta(days=settings.APPROVAL_OVERDUE_DAYS)
        return False

    def to_mongo(self, exclude_none: bool = False):
        data = super().to_mongo(exclude_none=exclude_none)
        data.pop("approval_time_seconds", None)
        data.pop("is_overdue", None)
        return data
