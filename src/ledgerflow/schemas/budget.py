"""
Budget schemas.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any


class BudgetPeriod(str, Enum):
    """Budget recurrence period."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


@dataclass
class Budget:
    """Spending target for one category."""

    id: int
    user_id: str
    category_id: int
    amount: Decimal  # Target, in `currency`
    currency: str  # Settlement currency
    period: BudgetPeriod
    start_date: datetime
    end_date: datetime | None = None  # None = ongoing
    alert_threshold: int = 80  # Percent
    is_active: bool = True


@dataclass
class BudgetProgress:
    """Evaluated state of a budget."""

    budget_id: int
    spent: Decimal
    remaining: Decimal
    percentage: int
    is_over_budget: bool
    should_alert: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "budget_id": self.budget_id,
            "spent": str(self.spent),
            "remaining": str(self.remaining),
            "percentage": self.percentage,
            "is_over_budget": self.is_over_budget,
            "should_alert": self.should_alert,
        }
