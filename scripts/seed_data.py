import asyncio
import os

from expenseflow.api.auth import hash_password
from expenseflow.config import settings
from expenseflow.database import db
from expenseflow.models.company import Company, CompanySettings
from expenseflow.models.user import User, UserRole

SEED_PASSWORD = os.getenv("SEED_PASSWORD", "password123")

async def seed_db():
    print(f"Connecting to {settings.MONGODB_URL}...")
    db.connect()

    # 1. Company
    print("Seeding Company...")
    company = await db.companies.get_by_name("Acme Corporation")
    if not company:
        company = await db.companies.create(Company(
            name="Acme Corporation",
            country="GB",
            currency="GBP",
            settings=CompanySettings(auto_approval_limit=100, max_expense_amount=50000),
        ))

    # 2. Users, manager chain: employee -> manager
    print("Seeding Users...")
    people = [
        ("admin@acme.com", "Ada", "Admin", UserRole.ADMIN, None),
        ("finance@acme.com", "Fin", "Lead", UserRole.FINANCE, None),
        ("manager@acme.com", "Mona", "Manager", UserRole.MANAGER, None),
        ("john.doe@acme.com", "John", "Doe", UserRole.EMPLOYEE, "manager@acme.com"),
    ]

    created = {}
    for email, first, last, role, manager_email in people:
        user = await db.users.get_by_email(email)
        if not user:
            manager = created.get(manager_email)
            user = await db.users.create(User(
                email=email,
                password_hash=hash_password(SEED_PASSWORD),
                first_name=first,
                last_name=last,
                role=role,
                company_id=company.id,
                manager_id=manager.id if manager else None,
                department="IT",
            ))
        created[email] = user
        print(f"  {role.value:<9} {email}")

    print("Database seeding complete.")
    db.close()

if __name__ == "__main__":
    asyncio.run(seed_db())
