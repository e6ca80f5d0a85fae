import logging
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING, IndexModel
from expenseflow.config import settings
from expenseflow.repositories.company import CompanyRepository
from expenseflow.repositories.user import UserRepository
from expenseflow.repositories.expense import ExpenseRepository
from expenseflow.repositories.approval import ApprovalRepository
from expenseflow.repositories.audit import AuditLogger
from expenseflow.models.company import Company
from expenseflow.models.user import User
from expenseflow.models.expense import Expense
from expenseflow.models.approval import Approval
from expenseflow.models.audit import AuditEvent

logger = logging.getLogger(__name__)

INDEXES = {
    "users": [
        IndexModel([("email", ASCENDING)], unique=True),
        IndexModel([("company_id", ASCENDING), ("role", ASCENDING)]),
        IndexModel([("manager_id", ASCENDING)]),
    ],
    "expenses": [
        IndexModel([("employee_id", ASCENDING), ("status", ASCENDING)]),
        IndexModel([("company_id", ASCENDING), ("status", ASCENDING)]),
        IndexModel([("expense_date", DESCENDING)]),
        IndexModel([("submission_date", DESCENDING)]),
        IndexModel([("category", ASCENDING)]),
        IndexModel([("current_approver_id", ASCENDING), ("status", ASCENDING)]),
    ],
    "approvals": [
        IndexModel([("approver_id", ASCENDING), ("status", ASCENDING)]),
        IndexModel([("expense_id", ASCENDING), ("cycle", ASCENDING), ("priority", ASCENDING)]),
        IndexModel([("role", ASCENDING), ("status", ASCENDING)]),
        IndexModel([("action_date", DESCENDING)]),
    ],
    "companies": [
        IndexModel([("name", ASCENDING)]),
    ],
    "audit_log": [
        IndexModel([("expense_id", ASCENDING), ("timestamp", ASCENDING)]),
    ],
}

class Database:
    client: AsyncIOMotorClient = None

    # Repositories
    companies: CompanyRepository = None
    users: UserRepository = None
    expenses: ExpenseRepository = None
    approvals: ApprovalRepository = None
    audit: AuditLogger = None

    def connect(self):
        """Initialize database connection and repositories."""
        self.client = AsyncIOMotorClient(settings.MONGODB_URL)
        self.db = self.client[settings.DB_NAME]

        self.companies = CompanyRepository(self.db.companies, Company)
        self.users = UserRepository(self.db.users, User)
        self.expenses = ExpenseRepository(self.db.expenses, Expense)
        self.approvals = ApprovalRepository(self.db.approvals, Approval)
        self.audit = AuditLogger(self.db.audit_log, AuditEvent)

        logger.info(f"Connected to MongoDB database '{settings.DB_NAME}'")

    async def ensure_indexes(self):
        for collection, indexes in INDEXES.items():
            names = await self.db[collection].create_indexes(indexes)
            logger.info(f"Indexes on {collection}: {', '.join(names)}")

    def close(self):
        """Close database connection."""
        if self.client:
            self.client.close()
            logger.info("Disconnected from MongoDB")

db = Database()
