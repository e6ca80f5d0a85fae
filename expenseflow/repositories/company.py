from typing import Optional
from expenseflow.repositories.base import BaseRepository
from expenseflow.models.company import Company

class CompanyRepository(BaseRepository[Company]):
    async def get_active(self, id: str) -> Optional[Company]:
        company = await self.get(id)
        return company if company and company.is_active else None

    async def get_by_name(self, name: str) -> Optional[Company]:
        return await self.get_by_field("name", name)

    async def deactivate(self, id: str) -> Optional[Company]:
        """Soft delete."""
        return await self.update(id, {"is_active": False})
