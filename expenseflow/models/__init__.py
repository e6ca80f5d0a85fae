from expenseflow.models.base import EmbeddedModel, MongoModel
from expenseflow.models.company import Company, CompanySettings, ApprovalRules, ApprovalWorkflowMode, Address, ContactInfo
from expenseflow.models.user import User, UserRole, UserPreferences
from expenseflow.models.expense import Expense, ExpenseStatus, ExpenseCategory, Receipt, OCRData, ReimbursementMethod, PENDING_STATUSES
from expenseflow.models.approval import Approval, ApprovalStatus, ApprovalRole
from expenseflow.models.audit import AuditEvent, Action, Actor, ActionType
