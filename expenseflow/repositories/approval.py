from datetime import datetime
from typing import Any, Dict, Optional
from pymongo import ASCENDING, ReturnDocument
from expenseflow.repositories.base import BaseRepository, to_object_id
from expenseflow.models.approval import Approval, ApprovalStatus

class ApprovalRepository(BaseRepository[Approval]):

    async def transition(self, id: str, from_status: str, fields: Dict[str, Any]) -> Optional[Approval]:
        """
        Compare-and-swap on status: the update applies only if the approval
        is still `from_status`. A None result means another request won.
        """
        from_status = getattr(from_status, "value", from_status)
        return await self.find_one_and_set({"_id": id, "status": from_status}, fields)

    async def count_pending(self, expense_id: str, cycle: int, exclude_id: Optional[str] = None) -> int:
        filter: Dict[str, Any] = {
            "expense_id": expense_id,
            "cycle": cycle,
            "status": ApprovalStatus.PENDING.value,
        }
        oid = to_object_id(exclude_id) if exclude_id else None
        if oid is not None:
            filter["_id"] = {"$ne": oid}
        return await self.count(filter)

    async def next_pending_after(self, expense_id: str, cycle: int, priority: int) -> Optional[Approval]:
        """Pending approval with the lowest priority strictly above `priority`."""
        found = await self.list(
            {
                "expense_id": expense_id,
                "cycle": cycle,
                "status": ApprovalStatus.PENDING.value,
                "priority": {"$gt": priority},
            },
            limit=1,
            sort=[("priority", ASCENDING), ("created_at", ASCENDING)]
        )
        return found[0] if found else None

    async def record_reminder(self, id: str) -> Optional[Approval]:
        oid = to_object_id(id)
        if oid is None:
            return None
        now = datetime.utcnow()
        doc = await self.collection.find_one_and_update(
            {"_id": oid, "status": ApprovalStatus.PENDING.value},
            {
                "$set": {"reminder_sent": True, "last_reminder_date": now, "updated_at": now},
                "$inc": {"reminder_count": 1},
            },
            return_document=ReturnDocument.AFTER
        )
        return self.model_cls.from_mongo(doc) if doc else None

    async def list_for_expense(self, expense_id: str):
        return await self.list({"expense_id": expense_id}, limit=1000,
                               sort=[("cycle", ASCENDING), ("priority", ASCENDING)])
