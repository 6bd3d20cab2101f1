"""Financial aggregation over already-fetched expense and budget records.

Everything here is a pure function of its inputs: no I/O, no clock reads
except through the ``today`` arguments. Records only need ``amount`` and
``category`` attributes (plus ``date`` for expenses and ``period`` for
budgets), so ORM rows and plain dataclasses both work.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Optional, Sequence

BUDGET_USAGE_LIMIT = 4
SAVINGS_LIMIT = 3

OVER_BUDGET_CAP = 0.25
APPROACHING_THRESHOLD = 0.8
APPROACHING_SAVINGS = 0.10
NO_BUDGET_SAVINGS = 0.15
LARGE_CATEGORY_SAVINGS = 0.10
SMALL_CATEGORY_SAVINGS = 0.20
LARGE_CATEGORY_MIN = 500.0
SMALL_CATEGORY_MAX = 50.0
FORCE_INCLUDE_COUNT = 2
FORCE_INCLUDE_MIN_SPEND = 100.0

REASON_OVER_BUDGET = "over budget"
REASON_APPROACHING = "approaching limit"
REASON_NO_BUDGET = "no budget set"
REASON_SET_BUDGET = "set a budget"


@dataclass(frozen=True)
class FinancialSnapshot:
    expenses: Sequence[Any]
    budgets: Sequence[Any]
    total_spent: float
    total_budget: float
    category_summary: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class CategoryUsage:
    category: str
    spent: float
    budget: float
    percentage: float


@dataclass(frozen=True)
class MonthRow:
    month: str
    budget: float
    spent: float


@dataclass(frozen=True)
class CategoryTotals:
    budget: float
    spent: float


@dataclass(frozen=True)
class SavingOpportunity:
    category: str
    amount: float
    potential_savings: float
    percentage: float
    reason: str


@dataclass(frozen=True)
class Overview:
    total_spent: float
    total_budget: float
    remaining_budget: float
    percent_used: float


@dataclass(frozen=True)
class AccountStats:
    total_transactions: int
    categories_used: int
    last_activity: Optional[date]
    account_age_days: int


@dataclass(frozen=True)
class DailySpending:
    day: date
    amount: float


def safe_amount(value: Any) -> float:
    """Coerce a stored amount to a finite float, treating junk as zero."""
    if isinstance(value, bool) or value is None:
        return 0.0
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(amount):
        return 0.0
    return amount


def _category(record: Any) -> str:
    value = getattr(record, "category", None)
    return value if isinstance(value, str) else str(value or "")


def _as_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    return None


def _date_key(value: Any) -> str:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value or "")


def build_snapshot(expenses: Iterable[Any], budgets: Iterable[Any]) -> FinancialSnapshot:
    expenses = list(expenses)
    budgets = list(budgets)
    category_summary: dict[str, float] = {}
    total_spent = 0.0
    for expense in expenses:
        amount = safe_amount(getattr(expense, "amount", None))
        total_spent += amount
        category = _category(expense)
        category_summary[category] = category_summary.get(category, 0.0) + amount
    total_budget = sum(safe_amount(getattr(b, "amount", None)) for b in budgets)
    return FinancialSnapshot(
        expenses=expenses,
        budgets=budgets,
        total_spent=total_spent,
        total_budget=total_budget,
        category_summary=category_summary,
    )


def budget_usage(
    snapshot: FinancialSnapshot, limit: Optional[int] = BUDGET_USAGE_LIMIT
) -> list[CategoryUsage]:
    """Spend against each configured budget, highest percentage first."""
    rows: list[CategoryUsage] = []
    for budget in snapshot.budgets:
        category = _category(budget)
        amount = safe_amount(getattr(budget, "amount", None))
        spent = snapshot.category_summary.get(category, 0.0)
        percentage = spent / amount * 100 if amount > 0 else 0.0
        rows.append(
            CategoryUsage(
                category=category, spent=spent, budget=amount, percentage=percentage
            )
        )
    rows.sort(key=lambda row: row.percentage, reverse=True)
    if limit is None:
        return rows
    return rows[:limit]


def monthly_rollup(
    expenses: Iterable[Any],
    budgets: Iterable[Any],
    *,
    today: Optional[date] = None,
) -> list[MonthRow]:
    """Budget vs. spend per ``YYYY-MM`` month key, ascending.

    Budgets carry no date, so every budget is counted in the current month
    regardless of when it was created. This mirrors how budgets have always
    been reported; older months therefore only ever show spend.
    """
    today = today or date.today()
    current_month = today.isoformat()[:7]
    totals: dict[str, list[float]] = {}

    for budget in budgets:
        bucket = totals.setdefault(current_month, [0.0, 0.0])
        bucket[0] += safe_amount(getattr(budget, "amount", None))

    for expense in expenses:
        month = _date_key(getattr(expense, "date", None))[:7]
        bucket = totals.setdefault(month, [0.0, 0.0])
        bucket[1] += safe_amount(getattr(expense, "amount", None))

    return [
        MonthRow(month=month, budget=totals[month][0], spent=totals[month][1])
        for month in sorted(totals)
    ]


def category_report(
    expenses: Iterable[Any], budgets: Iterable[Any]
) -> dict[str, CategoryTotals]:
    """Budget and spend per budgeted category.

    Expenses in categories without a budget are left out here, unlike
    ``FinancialSnapshot.category_summary`` which counts every category.
    """
    report: dict[str, list[float]] = {}
    for budget in budgets:
        report[_category(budget)] = [safe_amount(getattr(budget, "amount", None)), 0.0]
    for expense in expenses:
        entry = report.get(_category(expense))
        if entry is not None:
            entry[1] += safe_amount(getattr(expense, "amount", None))
    return {
        category: CategoryTotals(budget=values[0], spent=values[1])
        for category, values in report.items()
    }


def _opportunity(category: str, spent: float, savings: float, reason: str) -> SavingOpportunity:
    percentage = savings / spent * 100 if spent > 0 else 0.0
    return SavingOpportunity(
        category=category,
        amount=spent,
        potential_savings=savings,
        percentage=percentage,
        reason=reason,
    )


def saving_opportunities(
    snapshot: FinancialSnapshot, limit: int = SAVINGS_LIMIT
) -> list[SavingOpportunity]:
    """Rule-based savings suggestions, largest potential saving first.

    The first pass already lists every unbudgeted category with spend as
    "no budget set", so the "set a budget" pass below never adds a row today.
    """
    budgets_by_category: dict[str, float] = {}
    for budget in snapshot.budgets:
        budgets_by_category.setdefault(
            _category(budget), safe_amount(getattr(budget, "amount", None))
        )

    opportunities: list[SavingOpportunity] = []
    for category, spent in snapshot.category_summary.items():
        if spent <= 0:
            continue
        budget = budgets_by_category.get(category)
        if budget is not None:
            if spent > budget:
                savings = min(spent - budget, spent * OVER_BUDGET_CAP)
                opportunities.append(
                    _opportunity(category, spent, savings, REASON_OVER_BUDGET)
                )
            elif spent > budget * APPROACHING_THRESHOLD:
                opportunities.append(
                    _opportunity(
                        category, spent, spent * APPROACHING_SAVINGS, REASON_APPROACHING
                    )
                )
        else:
            rate = NO_BUDGET_SAVINGS
            if spent > LARGE_CATEGORY_MIN:
                rate = LARGE_CATEGORY_SAVINGS
            elif spent < SMALL_CATEGORY_MAX:
                rate = SMALL_CATEGORY_SAVINGS
            opportunities.append(
                _opportunity(category, spent, spent * rate, REASON_NO_BUDGET)
            )

    unbudgeted = sorted(
        (
            (category, spent)
            for category, spent in snapshot.category_summary.items()
            if category not in budgets_by_category and spent > FORCE_INCLUDE_MIN_SPEND
        ),
        key=lambda item: item[1],
        reverse=True,
    )
    listed = {o.category for o in opportunities}
    for category, spent in unbudgeted[:FORCE_INCLUDE_COUNT]:
        if category not in listed:
            opportunities.append(
                _opportunity(
                    category, spent, spent * NO_BUDGET_SAVINGS, REASON_SET_BUDGET
                )
            )

    opportunities.sort(key=lambda o: o.potential_savings, reverse=True)
    return opportunities[:limit]


def overview(snapshot: FinancialSnapshot) -> Overview:
    total_budget = snapshot.total_budget
    percent_used = (
        snapshot.total_spent / total_budget * 100 if total_budget > 0 else 0.0
    )
    return Overview(
        total_spent=snapshot.total_spent,
        total_budget=total_budget,
        remaining_budget=total_budget - snapshot.total_spent,
        percent_used=percent_used,
    )


def recent_expenses(expenses: Iterable[Any], limit: int = 10) -> list[Any]:
    ordered = sorted(
        expenses, key=lambda e: _date_key(getattr(e, "date", None)), reverse=True
    )
    return ordered[:limit]


def account_stats(
    expenses: Iterable[Any], *, today: Optional[date] = None
) -> AccountStats:
    today = today or date.today()
    expenses = list(expenses)
    dates = [d for d in (_as_date(getattr(e, "date", None)) for e in expenses) if d]
    categories = {_category(e) for e in expenses}
    last_activity = max(dates) if dates else None
    age_days = (today - min(dates)).days if dates else 0
    return AccountStats(
        total_transactions=len(expenses),
        categories_used=len(categories),
        last_activity=last_activity,
        account_age_days=max(age_days, 0),
    )


def daily_spending(
    expenses: Iterable[Any], *, days: int = 30, today: Optional[date] = None
) -> list[DailySpending]:
    today = today or date.today()
    start = today - timedelta(days=days - 1)
    totals: dict[date, float] = {start + timedelta(days=i): 0.0 for i in range(days)}
    for expense in expenses:
        day = _as_date(getattr(expense, "date", None))
        if day in totals:
            totals[day] += safe_amount(getattr(expense, "amount", None))
    return [DailySpending(day=day, amount=amount) for day, amount in totals.items()]
