from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import Field
from expenseflow.models.base import EmbeddedModel, MongoModel

class ActionType(str, Enum):
    STATE_CHANGE = "STATE_CHANGE"
    USER_ACTION = "USER_ACTION"
    SYSTEM_EVENT = "SYSTEM_EVENT"
    ERROR = "ERROR"

class Actor(EmbeddedModel):
    id: str
    name: str
    role: Optional[str] = None

class Action(EmbeddedModel):
    """What happened to the expense, and the status it moved between."""
    action_type: ActionType
    details: str
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    approval_id: Optional[str] = None
    success: bool = True
    metadata: Dict[str, Any] = Field(default_factory=dict)

class AuditEvent(MongoModel):
    """
    One entry in the `audit_log` collection. Events for an expense read in
    timestamp order reconstruct its workflow history.
    """
    event_id: str
    expense_id: Optional[str] = None
    company_id: str
    actor: Actor
    action: Action
    timestamp: datetime = Field(default_factory=datetime.utcnow)
