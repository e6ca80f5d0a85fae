import logging
from datetime import datetime
from typing import Any, Dict, NamedTuple, Optional

from expenseflow.config import settings
from expenseflow.errors import Conflict, NotFound, PermissionDenied, ValidationFailed
from expenseflow.models.approval import Approval, ApprovalRole, ApprovalStatus
from expenseflow.models.audit import ActionType, Actor
from expenseflow.models.expense import Expense, ExpenseStatus
from expenseflow.models.user import User, UserRole
from expenseflow.repositories.approval import ApprovalRepository
from expenseflow.repositories.audit import AuditLogger
from expenseflow.repositories.company import CompanyRepository
from expenseflow.repositories.expense import ExpenseRepository
from expenseflow.repositories.user import UserRepository
from expenseflow.tools.notification_tool import NotificationTool, notification_tool
from expenseflow.workflow.state import (
    EDITABLE_STATUSES,
    approval_role_for,
    pending_status_for,
    sources_for,
)

logger = logging.getLogger(__name__)


class Decision(NamedTuple):
    approval: Approval
    expense: Optional[Expense]
    new_approval: Optional[Approval] = None


class ApprovalWorkflow:
    """
    Drives an expense from draft through review to reimbursement.

    Every approval write is a compare-and-swap on the approval's status, so
    two approvers acting on the same record cannot both win. Expense writes
    are guarded by the set of states the target is reachable from.
    """

    def __init__(self,
                 expenses: ExpenseRepository,
                 approvals: ApprovalRepository,
                 users: UserRepository,
                 companies: CompanyRepository,
                 audit: AuditLogger,
                 notifier: NotificationTool = notification_tool):
        self.expenses = expenses
        self.approvals = approvals
        self.users = users
        self.companies = companies
        self.audit = audit
        self.notifier = notifier

    # Submission

    async def submit(self, expense_id: str, actor: User) -> Expense:
        expense = await self.expenses.get(expense_id)
        if not expense:
            raise NotFound("expense")
        if actor.role != UserRole.ADMIN and expense.employee_id != actor.id:
            raise PermissionDenied("Access denied")
        if expense.status != ExpenseStatus.DRAFT:
            raise Conflict("Expense cannot be submitted in current status", code="INVALID_STATUS",
                           details={"status": expense.status})

        company = await self.companies.get(expense.company_id)
        limit = company.settings.auto_approval_limit if company else settings.DEFAULT_AUTO_APPROVAL_LIMIT
        cycle = expense.submission_count + 1
        now = datetime.utcnow()

        if expense.amount <= limit:
            updated = await self._move_expense(expense, ExpenseStatus.APPROVED, {
                "submission_count": cycle,
                "submission_date": now,
                "approved_by": actor.id,
                "approved_at": now,
                "current_approver_id": None,
            }, expected=[ExpenseStatus.DRAFT])
            logger.info(f"Expense {expense.id} auto-approved ({expense.amount} <= {limit})")
            await self._audit(actor, updated, "Submitted and auto-approved",
                              {"auto_approved": True, "limit": limit, "cycle": cycle},
                              from_status=expense.status)
            return updated

        approver, role = await self._first_approver(expense)
        target = pending_status_for(role)
        updated = await self._move_expense(expense, target, {
            "submission_count": cycle,
            "submission_date": now,
            "current_approver_id": approver.id if approver else None,
            "rejection_reason": None,
        }, expected=[ExpenseStatus.DRAFT])

        if approver:
            await self.approvals.create(Approval(
                expense_id=expense.id,
                approver_id=approver.id,
                role=role,
                status=ApprovalStatus.PENDING,
                priority=1,
                cycle=cycle,
            ))
            await self.notifier.send_notification(
                [approver],
                "Expense awaiting your approval",
                f"{actor.full_name} submitted '{expense.description}' for {expense.amount} {expense.converted_currency}"
            )
        else:
            logger.warning(f"Expense {expense.id} is {target.value} but company {expense.company_id} has no active finance user")

        logger.info(f"Expense {expense.id} submitted -> {target.value}")
        await self._audit(actor, updated, "Submitted for approval",
                          {"cycle": cycle, "approver_id": approver.id if approver else None},
                          from_status=expense.status)
        return updated

    async def _first_approver(self, expense: Expense):
        employee = await self.users.get(expense.employee_id)
        if employee and employee.manager_id:
            manager = await self.users.get(employee.manager_id)
            if manager:
                return manager, ApprovalRole.MANAGER
        finance = await self.users.first_active_with_role(expense.company_id, UserRole.FINANCE.value)
        return finance, ApprovalRole.FINANCE

    # Decisions

    async def approve(self, approval_id: str, actor: User, comments: Optional[str] = None,
                      is_urgent: bool = False) -> Decision:
        approval, expense = await self._load_pending(approval_id, actor)
        before = expense.status
        now = datetime.utcnow()
        updated = await self._swap(approval, ApprovalStatus.APPROVED, {
            "comments": comments,
            "action_date": now,
            "is_urgent": is_urgent,
        })

        remaining = await self.approvals.count_pending(approval.expense_id, approval.cycle, exclude_id=approval.id)
        if remaining == 0:
            expense = await self._move_expense(expense, ExpenseStatus.APPROVED, {
                "approved_by": actor.id,
                "approved_at": now,
                "current_approver_id": None,
            }, strict=False)
            logger.info(f"Expense {approval.expense_id} approved by {actor.id}")
            if expense:
                await self._notify_employee(expense, "Expense approved",
                                            f"'{expense.description}' was approved by {actor.full_name}")
        else:
            nxt = await self.approvals.next_pending_after(approval.expense_id, approval.cycle, approval.priority)
            if nxt:
                target = pending_status_for(nxt.role)
                expense = await self._move_expense(expense, target, {"current_approver_id": nxt.approver_id},
                                                   strict=False)
                logger.info(f"Expense {approval.expense_id} moved to {target.value}, next approver {nxt.approver_id}")
            else:
                logger.info(f"Expense {approval.expense_id} still has {remaining} pending approval(s) at or below priority {approval.priority}")

        await self._audit(actor, expense, "Approval granted", {"comments": comments, "remaining": remaining},
                          from_status=before, approval_id=approval.id)
        return Decision(updated, expense)

    async def reject(self, approval_id: str, actor: User, comments: Optional[str] = None,
                     rejection_reason: Optional[str] = None) -> Decision:
        approval, expense = await self._load_pending(approval_id, actor)
        before = expense.status
        updated = await self._swap(approval, ApprovalStatus.REJECTED, {
            "comments": comments,
            "action_date": datetime.utcnow(),
        })

        reason = rejection_reason or comments
        expense = await self._move_expense(expense, ExpenseStatus.REJECTED, {
            "rejection_reason": reason,
            "current_approver_id": None,
        }, strict=False)
        logger.info(f"Expense {approval.expense_id} rejected by {actor.id}")
        if expense:
            await self._notify_employee(expense, "Expense rejected",
                                        f"'{expense.description}' was rejected: {reason or 'no reason given'}")

        await self._audit(actor, expense, "Approval rejected", {"rejection_reason": reason},
                          from_status=before, approval_id=approval.id)
        return Decision(updated, expense)

    async def escalate(self, approval_id: str, actor: User, escalated_to: str,
                       escalation_reason: Optional[str] = None, comments: Optional[str] = None) -> Decision:
        approval, expense = await self._load_pending(approval_id, actor)
        before = expense.status

        target = await self.users.get(escalated_to)
        role = approval_role_for(target.role) if target else None
        if not target or not target.is_active or target.company_id != expense.company_id or role is None:
            raise ValidationFailed("Invalid user for escalation", code="INVALID_ESCALATION_USER")

        now = datetime.utcnow()
        updated = await self._swap(approval, ApprovalStatus.ESCALATED, {
            "comments": comments,
            "escalation_reason": escalation_reason,
            "escalated_to": target.id,
            "escalation_date": now,
            "action_date": now,
        })

        new_approval = await self.approvals.create(Approval(
            expense_id=approval.expense_id,
            approver_id=target.id,
            role=role,
            status=ApprovalStatus.PENDING,
            priority=approval.priority + 1,
            cycle=approval.cycle,
            is_urgent=approval.is_urgent,
        ))

        status = pending_status_for(role)
        expense = await self._move_expense(expense, status, {"current_approver_id": target.id}, strict=False)
        logger.info(f"Approval {approval.id} escalated to {target.id}; expense {approval.expense_id} -> {status.value}")

        await self.notifier.send_notification(
            [target],
            "Expense escalated to you",
            f"{actor.full_name} escalated an expense: {escalation_reason or 'no reason given'}"
        )
        await self._audit(actor, expense, f"Escalated to {target.full_name}",
                          {"new_approval_id": new_approval.id, "escalation_reason": escalation_reason},
                          from_status=before, approval_id=approval.id)
        return Decision(updated, expense, new_approval)

    # Post-approval and editing

    async def reimburse(self, expense_id: str, actor: User, method: str = "bank_transfer") -> Expense:
        if actor.role not in (UserRole.FINANCE, UserRole.ADMIN):
            raise PermissionDenied("Only finance or admin users can reimburse expenses",
                                   code="INSUFFICIENT_PERMISSIONS")
        expense = await self.expenses.get(expense_id)
        if not expense:
            raise NotFound("expense")
        if actor.role != UserRole.ADMIN and expense.company_id != actor.company_id:
            raise PermissionDenied("Access denied")
        if expense.status != ExpenseStatus.APPROVED:
            raise Conflict("Only approved expenses can be reimbursed", code="INVALID_STATUS",
                           details={"status": expense.status})

        updated = await self._move_expense(expense, ExpenseStatus.REIMBURSED, {
            "reimbursed_by": actor.id,
            "reimbursed_at": datetime.utcnow(),
            "reimbursement_method": method,
        })
        logger.info(f"Expense {expense.id} reimbursed via {method}")
        await self._notify_employee(updated, "Expense reimbursed", f"'{updated.description}' was reimbursed")
        await self._audit(actor, updated, "Reimbursed", {"method": method}, from_status=expense.status)
        return updated

    async def edit(self, expense: Expense, actor: User, changes: Dict[str, Any]) -> Expense:
        """
        Apply field changes to a draft or rejected expense. A rejected expense
        is reopened as a draft so the next submit starts a fresh cycle.
        """
        if actor.role != UserRole.ADMIN and expense.employee_id != actor.id:
            raise PermissionDenied("Access denied")
        if expense.status not in EDITABLE_STATUSES:
            raise Conflict("Expense cannot be updated in current status", code="EXPENSE_LOCKED",
                           details={"status": expense.status})

        fields = dict(changes)
        reopening = expense.status == ExpenseStatus.REJECTED
        if reopening:
            fields.update({"status": ExpenseStatus.DRAFT.value, "rejection_reason": None, "current_approver_id": None})

        updated = await self.expenses.update_if_status(expense.id, [expense.status], fields)
        if not updated:
            logger.warning(f"Expense {expense.id} changed state during edit")
            raise Conflict("Expense was modified concurrently", code="EXPENSE_LOCKED")

        if reopening:
            logger.info(f"Expense {expense.id} reopened as draft")
            await self._audit(actor, updated, "Reopened for editing", {"fields": sorted(changes)},
                              from_status=expense.status)
        return updated

    async def send_reminder(self, approval_id: str, actor: User) -> Approval:
        approval = await self.approvals.get(approval_id)
        if not approval:
            raise NotFound("approval")
        if approval.approver_id != actor.id and actor.role != UserRole.ADMIN:
            raise PermissionDenied("Access denied")

        updated = await self.approvals.record_reminder(approval.id)
        if not updated:
            raise Conflict("Approval is no longer pending", code="APPROVAL_NOT_PENDING")

        approver = await self.users.get(approval.approver_id)
        if approver:
            await self.notifier.send_notification(
                [approver],
                "Reminder: expense awaiting your approval",
                f"Reminder #{updated.reminder_count} for approval {approval.id}"
            )
        expense = await self.expenses.get(approval.expense_id)
        await self._audit(actor, expense, "Reminder sent", {"reminder_count": updated.reminder_count},
                          approval_id=approval.id, action_type=ActionType.USER_ACTION)
        return updated

    # Helpers

    async def _load_pending(self, approval_id: str, actor: User):
        approval = await self.approvals.get(approval_id)
        if not approval:
            raise NotFound("approval")
        if approval.approver_id != actor.id:
            raise PermissionDenied("Access denied")
        if approval.status != ApprovalStatus.PENDING:
            raise Conflict("Approval is no longer pending", code="APPROVAL_NOT_PENDING")
        expense = await self.expenses.get(approval.expense_id)
        if not expense:
            raise NotFound("expense")
        return approval, expense

    async def _swap(self, approval: Approval, to_status: ApprovalStatus, fields: Dict[str, Any]) -> Approval:
        fields = dict(fields, status=to_status.value)
        updated = await self.approvals.transition(approval.id, ApprovalStatus.PENDING, fields)
        if not updated:
            logger.warning(f"Approval {approval.id} was decided concurrently; {to_status.value} refused")
            raise Conflict("Approval is no longer pending", code="APPROVAL_NOT_PENDING")
        return updated

    async def _move_expense(self, expense: Expense, target: ExpenseStatus, fields: Dict[str, Any],
                            strict: bool = True, expected=None) -> Optional[Expense]:
        """
        Conditionally move the expense to `target`. With `strict`, a lost
        race is a conflict; otherwise the approval write has already landed
        and the mismatch is logged.
        """
        fields = dict(fields, status=target.value)
        updated = await self.expenses.update_if_status(expense.id, expected or sources_for(target), fields)
        if updated:
            return updated
        if strict:
            logger.warning(f"Expense {expense.id} left {expense.status} before moving to {target.value}")
            raise Conflict("Expense status changed concurrently", code="INVALID_STATUS")
        logger.error(f"Expense {expense.id} could not move to {target.value}; approval already recorded")
        return await self.expenses.get(expense.id)

    async def _notify_employee(self, expense: Expense, subject: str, message: str):
        employee = await self.users.get(expense.employee_id)
        if employee:
            await self.notifier.send_notification([employee], subject, message)

    async def _audit(self, actor: User, expense: Optional[Expense], details: str, metadata: Dict[str, Any],
                     from_status: Optional[str] = None, approval_id: Optional[str] = None,
                     action_type: ActionType = ActionType.STATE_CHANGE):
        await self.audit.log_action(
            company_id=expense.company_id if expense else actor.company_id,
            actor=Actor(id=actor.id, name=actor.full_name, role=actor.role),
            action_type=action_type,
            details=details,
            expense_id=expense.id if expense else None,
            from_status=from_status,
            to_status=expense.status if expense else None,
            approval_id=approval_id,
            metadata=metadata,
        )
