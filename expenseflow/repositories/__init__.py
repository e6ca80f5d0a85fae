from expenseflow.repositories.base import BaseRepository, to_object_id
from expenseflow.repositories.company import CompanyRepository
from expenseflow.repositories.user import UserRepository
from expenseflow.repositories.expense import ExpenseRepository
from expenseflow.repositories.approval import ApprovalRepository
from expenseflow.repositories.audit import AuditLogger
