import uuid
from typing import Any, Dict, List, Optional
from pymongo import ASCENDING
from expenseflow.repositories.base import BaseRepository
from expenseflow.models.audit import AuditEvent, Action, Actor, ActionType

class AuditLogger(BaseRepository[AuditEvent]):

    async def log_event(self, event: AuditEvent):
        """Log an event to the audit trail."""
        await self.create(event)

    async def log_action(self,
                         company_id: str,
                         actor: Actor,
                         action_type: ActionType,
                         details: str,
                         expense_id: Optional[str] = None,
                         from_status: Optional[str] = None,
                         to_status: Optional[str] = None,
                         approval_id: Optional[str] = None,
                         metadata: Optional[Dict[str, Any]] = None,
                         success: bool = True) -> AuditEvent:
        event = AuditEvent(
            event_id=f"EVT-{uuid.uuid4()}",
            expense_id=expense_id,
            company_id=company_id,
            actor=actor,
            action=Action(
                action_type=action_type,
                details=details,
                from_status=getattr(from_status, "value", from_status),
                to_status=getattr(to_status, "value", to_status),
                approval_id=approval_id,
                success=success,
                metadata=metadata or {},
            )
        )
        await self.log_event(event)
        return event

    async def get_for_expense(self, expense_id: str) -> List[AuditEvent]:
        """Workflow history of one expense, oldest first."""
        return await self.list({"expense_id": expense_id}, limit=1000, sort=[("timestamp", ASCENDING)])
