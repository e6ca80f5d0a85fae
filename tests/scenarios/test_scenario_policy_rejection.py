"""
Company auto-approval limit of 100:
  1. a 50.00 expense is approved on submit without any approval step
  2. a 500.00 expense waits on the employee's manager
  3. the manager rejects it as out of policy
  4. a rejection ends the chain even with a later finance step still pending
"""
import pytest

from expenseflow.errors import Conflict
from expenseflow.models.approval import Approval, ApprovalRole, ApprovalStatus
from expenseflow.models.expense import ExpenseStatus


class Store:
    """Minimal in-memory persistence behind the repository mocks."""

    def __init__(self, repos):
        self.expenses = {}
        self.approvals = {}
        repos.expenses.get.side_effect = lambda id: self.expenses.get(id)
        repos.expenses.update_if_status.side_effect = self._update_expense
        repos.approvals.get.side_effect = lambda id: self.approvals.get(id)
        repos.approvals.create.side_effect = self._create_approval
        repos.approvals.transition.side_effect = self._transition
        repos.approvals.count_pending.side_effect = self._count_pending

    def add_expense(self, expense):
        self.expenses[expense.id] = expense

    def _update_expense(self, id, expected, fields):
        current = self.expenses.get(id)
        if current is None or current.status not in [getattr(s, "value", s) for s in expected]:
            return None
        self.expenses[id] = current.model_copy(update=fields)
        return self.expenses[id]

    def _create_approval(self, approval):
        approval = approval.model_copy(update={"id": f"{len(self.approvals) + 1:024x}"})
        self.approvals[approval.id] = approval
        return approval

    def _count_pending(self, expense_id, cycle, exclude_id=None):
        return sum(1 for a in self.approvals.values()
                   if a.expense_id == expense_id and a.cycle == cycle
                   and a.status == ApprovalStatus.PENDING.value and a.id != exclude_id)

    def _transition(self, id, from_status, fields):
        current = self.approvals.get(id)
        if current is None or current.status != from_status:
            return None
        self.approvals[id] = current.model_copy(update=fields)
        return self.approvals[id]


@pytest.mark.asyncio
async def test_small_expense_auto_approved(workflow, repos, directory, draft_expense, employee):
    store = Store(repos)
    small = draft_expense.model_copy(update={"amount": 50.0, "converted_amount": 50.0, "original_amount": 50.0})
    store.add_expense(small)

    result = await workflow.submit(small.id, employee)

    assert result.status == ExpenseStatus.APPROVED.value
    assert store.approvals == {}


@pytest.mark.asyncio
async def test_large_expense_waits_on_manager_then_rejected(workflow, repos, directory, draft_expense, employee, manager):
    store = Store(repos)
    store.add_expense(draft_expense)

    submitted = await workflow.submit(draft_expense.id, employee)

    assert submitted.status == ExpenseStatus.PENDING_MANAGER.value
    assert len(store.approvals) == 1
    approval = next(iter(store.approvals.values()))
    assert (approval.approver_id, approval.role, approval.status, approval.priority) == (
        manager.id, "manager", "pending", 1)

    decision = await workflow.reject(approval.id, manager, comments="out of policy")

    assert decision.expense.status == ExpenseStatus.REJECTED.value
    assert decision.expense.rejection_reason == "out of policy"
    assert store.approvals[approval.id].status == ApprovalStatus.REJECTED.value

    # A second decision on the same approval loses
    with pytest.raises(Conflict) as exc:
        await workflow.approve(approval.id, manager)
    assert exc.value.code == "APPROVAL_NOT_PENDING"


@pytest.mark.asyncio
async def test_rejection_ends_the_chain_with_later_steps_still_pending(workflow, repos, directory, pending_expense, pending_approval, manager, finance):
    store = Store(repos)
    store.add_expense(pending_expense)
    store.approvals[pending_approval.id] = pending_approval
    finance_step = Approval(id="6600000000000000000000ff", expense_id=pending_expense.id, approver_id=finance.id,
                            role=ApprovalRole.FINANCE, status=ApprovalStatus.PENDING, priority=2, cycle=1)
    store.approvals[finance_step.id] = finance_step

    decision = await workflow.reject(pending_approval.id, manager, comments="duplicate claim")

    assert decision.expense.status == ExpenseStatus.REJECTED.value
    assert decision.expense.rejection_reason == "duplicate claim"
    assert decision.expense.current_approver_id is None
    assert store.expenses[pending_expense.id].status == ExpenseStatus.REJECTED.value
    # The later step is not promoted
    assert store.approvals[finance_step.id].status == ApprovalStatus.PENDING.value
