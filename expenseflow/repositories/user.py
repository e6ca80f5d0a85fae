from datetime import datetime
from typing import List, Optional
from pymongo import ASCENDING
from expenseflow.repositories.base import BaseRepository
from expenseflow.models.user import User

class UserRepository(BaseRepository[User]):

    async def get_by_email(self, email: str) -> Optional[User]:
        return await self.get_by_field("email", email.lower())

    async def first_active_with_role(self, company_id: str, role: str) -> Optional[User]:
        """
        Oldest active user holding `role` in the company.
        Ordering is by account creation, then _id, so repeated calls agree.
        """
        users = await self.list(
            {"company_id": company_id, "role": role, "is_active": True},
            limit=1,
            sort=[("created_at", ASCENDING), ("_id", ASCENDING)]
        )
        return users[0] if users else None

    async def list_reports(self, manager_id: str) -> List[User]:
        return await self.list(
            {"manager_id": manager_id, "is_active": True},
            limit=1000,
            sort=[("first_name", ASCENDING), ("last_name", ASCENDING)]
        )

    async def deactivate_company_users(self, company_id: str) -> int:
        result = await self.collection.update_many(
            {"company_id": company_id},
            {"$set": {"is_active": False, "updated_at": datetime.utcnow()}}
        )
        return result.modified_count
