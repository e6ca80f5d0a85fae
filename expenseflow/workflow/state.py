"""
Expense lifecycle states and the transitions allowed between them.
"""
from typing import Dict, FrozenSet
from expenseflow.models.expense import ExpenseStatus
from expenseflow.models.approval import ApprovalRole
from expenseflow.models.user import UserRole

_REVIEW_TARGETS = frozenset({
    ExpenseStatus.PENDING_MANAGER,
    ExpenseStatus.PENDING_FINANCE,
    ExpenseStatus.PENDING_DIRECTOR,
    ExpenseStatus.APPROVED,
    ExpenseStatus.REJECTED,
})

TRANSITIONS: Dict[ExpenseStatus, FrozenSet[ExpenseStatus]] = {
    ExpenseStatus.DRAFT: frozenset({
        ExpenseStatus.APPROVED,
        ExpenseStatus.PENDING_MANAGER,
        ExpenseStatus.PENDING_FINANCE,
    }),
    # Legacy label; treated like a manager review
    ExpenseStatus.SUBMITTED: _REVIEW_TARGETS,
    ExpenseStatus.PENDING_MANAGER: _REVIEW_TARGETS,
    ExpenseStatus.PENDING_FINANCE: _REVIEW_TARGETS,
    ExpenseStatus.PENDING_DIRECTOR: _REVIEW_TARGETS,
    ExpenseStatus.APPROVED: frozenset({ExpenseStatus.REIMBURSED}),
    ExpenseStatus.REJECTED: frozenset({ExpenseStatus.DRAFT}),
    ExpenseStatus.REIMBURSED: frozenset(),
}

EDITABLE_STATUSES = (ExpenseStatus.DRAFT, ExpenseStatus.REJECTED)

_PENDING_BY_ROLE = {
    ApprovalRole.MANAGER: ExpenseStatus.PENDING_MANAGER,
    ApprovalRole.FINANCE: ExpenseStatus.PENDING_FINANCE,
    ApprovalRole.DIRECTOR: ExpenseStatus.PENDING_DIRECTOR,
}

_APPROVAL_ROLE_BY_USER_ROLE = {
    UserRole.MANAGER: ApprovalRole.MANAGER,
    UserRole.FINANCE: ApprovalRole.FINANCE,
    UserRole.ADMIN: ApprovalRole.DIRECTOR,
}

def can_transition(current: str, target: str) -> bool:
    try:
        return ExpenseStatus(target) in TRANSITIONS[ExpenseStatus(current)]
    except (KeyError, ValueError):
        return False

def sources_for(target: str) -> FrozenSet[ExpenseStatus]:
    """States from which `target` is reachable; used as the expected-status guard on writes."""
    target = ExpenseStatus(target)
    return frozenset(s for s, allowed in TRANSITIONS.items() if target in allowed)

def pending_status_for(role: str) -> ExpenseStatus:
    """Pending expense state that matches an approval role tag."""
    return _PENDING_BY_ROLE.get(ApprovalRole(role), ExpenseStatus.PENDING_MANAGER)

def approval_role_for(user_role: str):
    """Approval role tag for an escalation target, or None if the user cannot approve."""
    try:
        return _APPROVAL_ROLE_BY_USER_ROLE.get(UserRole(user_role))
    except ValueError:
        return None
