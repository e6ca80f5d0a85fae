from typing import Any, Dict, Iterable, Optional
from expenseflow.repositories.base import BaseRepository
from expenseflow.models.expense import Expense

class ExpenseRepository(BaseRepository[Expense]):

    async def update_if_status(self, id: str, expected_statuses: Iterable[str], fields: Dict[str, Any]) -> Optional[Expense]:
        """
        Update only while the expense is still in one of `expected_statuses`.
        Returns None when the expense is missing or has moved on.
        """
        statuses = [getattr(s, "value", s) for s in expected_statuses]
        return await self.find_one_and_set({"_id": id, "status": {"$in": statuses}}, fields)
