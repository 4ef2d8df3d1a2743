"""Budget progress evaluation and budget period helpers."""

from __future__ import annotations

import calendar
import logging
import math
from collections.abc import Iterable
from datetime import datetime, time, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from ..schemas.budget import Budget, BudgetPeriod, BudgetProgress
from ..schemas.transaction import LedgerTransaction, TransactionType

if TYPE_CHECKING:
    from ..currency.converter import CurrencyConverter
    from ..state_store import LedgerStore

logger = logging.getLogger(__name__)

PERIOD_LABELS = {
    BudgetPeriod.DAY: "Daily",
    BudgetPeriod.WEEK: "Weekly",
    BudgetPeriod.MONTH: "Monthly",
    BudgetPeriod.YEAR: "Yearly",
}

END_OF_DAY = time(23, 59, 59, 999999)


def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_percentage(spent: Decimal, target: Decimal) -> int:
    """Whole percent of `target` used by `spent`; 0 when target <= 0."""
    if target <= 0:
        return 0
    return _round_half_up(Decimal(spent) / Decimal(target) * 100)


def calculate_budget_progress(
    budget: Budget,
    transactions: Iterable[LedgerTransaction],
    converter: CurrencyConverter | None = None,
    now: datetime | None = None,
) -> BudgetProgress:
    """
    Evaluate a budget against ledger transactions.

    Only expenses in the budget's category dated within
    [start_date, end_date or now] count. Transactions excluded from
    analytics are ignored. Amounts in another currency are converted to the
    budget currency.

    Raises:
        ValueError: If a foreign-currency transaction is found and no
            converter was given
    """
    period_end = budget.end_date or now or datetime.now()
    spent = Decimal("0")

    for txn in transactions:
        if txn.type != TransactionType.EXPENSE or txn.category_id != budget.category_id:
            continue
        if txn.exclude_from_analytics:
            continue
        if not (budget.start_date <= txn.date <= period_end):
            continue

        if txn.currency == budget.currency:
            spent += txn.amount
        else:
            if converter is None:
                raise ValueError(
                    f"Transaction {txn.id} is in {txn.currency}, budget is in {budget.currency}"
                )
            spent += converter.convert(txn.amount, txn.currency, budget.currency)

    percentage = calculate_percentage(spent, budget.amount)
    return BudgetProgress(
        budget_id=budget.id,
        spent=spent,
        remaining=budget.amount - spent,
        percentage=percentage,
        is_over_budget=spent > budget.amount,
        should_alert=percentage >= budget.alert_threshold,
    )


def get_current_period_dates(
    period: BudgetPeriod | str, reference: datetime | None = None
) -> tuple[datetime, datetime]:
    """
    Start and end of the period containing `reference`.

    Weeks start on Monday. Start is 00:00:00, end is 23:59:59.999999.
    """
    day = (reference or datetime.now()).date()
    period = BudgetPeriod(period)

    if period == BudgetPeriod.DAY:
        start, end = day, day
    elif period == BudgetPeriod.WEEK:
        start = day - timedelta(days=day.weekday())
        end = start + timedelta(days=6)
    elif period == BudgetPeriod.MONTH:
        start = day.replace(day=1)
        end = day.replace(day=calendar.monthrange(day.year, day.month)[1])
    else:
        start = day.replace(month=1, day=1)
        end = day.replace(month=12, day=31)

    return datetime.combine(start, time.min), datetime.combine(end, END_OF_DAY)


def get_period_label(period: BudgetPeriod | str) -> str:
    try:
        return PERIOD_LABELS[BudgetPeriod(period)]
    except ValueError:
        return str(period)


def get_days_remaining(period_end: datetime, now: datetime | None = None) -> int:
    """Whole days left until `period_end`, rounded up; never negative."""
    diff = period_end - (now or datetime.now())
    return max(0, math.ceil(diff.total_seconds() / 86400))


class BudgetProgressService:
    """Loads budget transactions from the ledger store and evaluates them."""

    def __init__(self, store: LedgerStore, converter: CurrencyConverter | None = None):
        self.store = store
        self.converter = converter

    def progress_for(
        self, user_id: str, budget: Budget, now: datetime | None = None
    ) -> BudgetProgress:
        end = budget.end_date or now or datetime.now()
        transactions = self.store.get_transactions(
            user_id,
            type=TransactionType.EXPENSE,
            category_ids=[budget.category_id],
            start=budget.start_date,
            end=end,
        )
        return calculate_budget_progress(budget, transactions, self.converter, now=end)

    def progress_all(self, user_id: str, now: datetime | None = None) -> list[BudgetProgress]:
        """Progress of every active budget of a user."""
        results = []
        for budget in self.store.list_budgets(user_id, active_only=True):
            progress = self.progress_for(user_id, budget, now=now)
            if progress.should_alert:
                logger.info(
                    f"Budget {budget.id} at {progress.percentage}% "
                    f"(threshold {budget.alert_threshold}%)"
                )
            results.append(progress)
        return results
