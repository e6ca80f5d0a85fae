import logging
from typing import Optional

from expenseflow.models.expense import Expense
from expenseflow.models.user import User, UserRole

logger = logging.getLogger(__name__)


class PermissionChecker:
    """Role and ownership checks shared by the routers."""

    def has_role(self, user: User, *roles: str) -> bool:
        allowed = [getattr(r, "value", r) for r in roles]
        if user.role in allowed:
            return True
        logger.warning(f"User {user.id} ({user.role}) denied; requires one of {allowed}")
        return False

    def can_access_company(self, user: User, company_id: Optional[str]) -> bool:
        """Admins reach every company; everyone else only their own."""
        if user.role == UserRole.ADMIN:
            return True
        return bool(company_id) and user.company_id == company_id

    def can_manage_user(self, actor: User, target: User) -> bool:
        if actor.role == UserRole.ADMIN:
            return True
        if actor.role == UserRole.MANAGER:
            return target.manager_id == actor.id
        return False

    def can_view_user(self, actor: User, target: User) -> bool:
        return (
            actor.role == UserRole.ADMIN
            or actor.id == target.id
            or actor.company_id == target.company_id
        )

    def can_view_expense(self, user: User, expense: Expense) -> bool:
        return (
            user.role == UserRole.ADMIN
            or expense.employee_id == user.id
            or expense.company_id == user.company_id
        )

    def can_modify_expense(self, user: User, expense: Expense) -> bool:
        return user.role == UserRole.ADMIN or expense.employee_id == user.id

permission_checker = PermissionChecker()
