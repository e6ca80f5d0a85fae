from fastapi import Depends

from expenseflow.api.auth import get_current_active_user
from expenseflow.errors import NotFound, PermissionDenied, ValidationFailed
from expenseflow.guardrails.permissions import permission_checker
from expenseflow.models.user import User, UserRole

def require_roles(*roles: UserRole):
    """
    Dependency restricting an endpoint to the given roles.
    """
    def check(user: User = Depends(get_current_active_user)) -> User:
        if not permission_checker.has_role(user, *roles):
            raise PermissionDenied(
                "Insufficient permissions",
                code="INSUFFICIENT_PERMISSIONS",
                details={"required": [r.value for r in roles], "current": user.role}
            )
        return user
    return check

def ensure_company_access(user: User, company_id: str):
    if not company_id:
        raise ValidationFailed("Company ID required", code="COMPANY_ID_REQUIRED")
    if not permission_checker.can_access_company(user, company_id):
        raise PermissionDenied("Access denied - different company", code="COMPANY_ACCESS_DENIED")

async def company_access(id: str, current_user: User = Depends(get_current_active_user)) -> User:
    """Path dependency for /{id} routes scoped to one company."""
    ensure_company_access(current_user, id)
    return current_user

def ensure_can_manage_user(actor: User, target: User):
    if target is None:
        raise NotFound("user")
    if not permission_checker.can_manage_user(actor, target):
        raise PermissionDenied("Insufficient permissions for user management", code="USER_MANAGEMENT_DENIED")
