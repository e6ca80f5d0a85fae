from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import EmailStr, Field, field_validator
from expenseflow.models.base import EmbeddedModel, MongoModel
from expenseflow.models.company import Address

class UserRole(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    EMPLOYEE = "employee"
    FINANCE = "finance"

class NotificationPreferences(EmbeddedModel):
    email: bool = True
    push: bool = True

class UserPreferences(EmbeddedModel):
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    language: Optional[str] = Field(None, min_length=2, max_length=2)
    notifications: NotificationPreferences = Field(default_factory=NotificationPreferences)

class User(MongoModel):
    email: EmailStr
    password_hash: str = ""
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    role: UserRole = UserRole.EMPLOYEE

    company_id: str
    manager_id: Optional[str] = None

    department: Optional[str] = None
    position: Optional[str] = None
    phone_number: Optional[str] = None
    address: Optional[Address] = None
    preferences: UserPreferences = Field(default_factory=UserPreferences)

    is_active: bool = True
    last_login: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def public(self) -> Dict[str, Any]:
        """API view without credentials."""
        return self.to_api(exclude={"password_hash"})
