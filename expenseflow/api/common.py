import math
import re
from typing import Any, ClassVar, Dict, FrozenSet, List

from pydantic import BaseModel, ConfigDict, model_validator

from expenseflow.database import db
from expenseflow.reporting.aggregations import ReportService
from expenseflow.tools.currency import CurrencyConverter, currency_converter
from expenseflow.workflow.engine import ApprovalWorkflow

MAX_PAGE_SIZE = 100


class PartialUpdate(BaseModel):
    """
    Body of a PUT route. Omitted fields are left untouched; an explicit null
    is only accepted for the fields listed in `NULLABLE`, which may be cleared.
    """
    model_config = ConfigDict(use_enum_values=True)

    NULLABLE: ClassVar[FrozenSet[str]] = frozenset()

    @model_validator(mode="after")
    def reject_null_required(self):
        cleared = sorted(name for name in self.model_fields_set
                         if getattr(self, name) is None and name not in self.NULLABLE)
        if cleared:
            raise ValueError(f"{', '.join(cleared)} cannot be null")
        return self

    def changes(self, **kwargs) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True, **kwargs)


def pagination(page: int, limit: int, total: int) -> Dict[str, int]:
    return {"current": page, "pages": math.ceil(total / limit) if limit else 0, "total": total}


def skip_for(page: int, limit: int) -> int:
    return (max(page, 1) - 1) * limit


def search_clause(search: str, fields: List[str]) -> Dict[str, Any]:
    """Case-insensitive substring match over `fields`; user input is escaped."""
    pattern = {"$regex": re.escape(search), "$options": "i"}
    return {"$or": [{field: pattern} for field in fields]}


def get_workflow() -> ApprovalWorkflow:
    return ApprovalWorkflow(db.expenses, db.approvals, db.users, db.companies, db.audit)


def get_report_service() -> ReportService:
    return ReportService(db.expenses, db.approvals)


def get_currency_converter() -> CurrencyConverter:
    return currency_converter
