"""Read-only report figures computed from a full ledger snapshot.

Every function here recomputes from the entries it is given and never touches
the database, so callers fetch the snapshot once and may call these freely.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime

from periods import trailing_months

WARNING_PERCENT = 75
DANGER_PERCENT = 90
LARGEST_EXPENSES_LIMIT = 5


@dataclass(frozen=True)
class CategoryTotal:
    category_id: str
    name: str
    color: str
    amount_cents: int


@dataclass(frozen=True)
class MonthlyTotal:
    year: int
    month: int
    label: str
    amount_cents: int


@dataclass(frozen=True)
class IncomeExpenseSummary:
    income_cents: int
    expense_cents: int
    net_cents: int


@dataclass(frozen=True)
class LargeExpense:
    entry_id: int
    description: str
    occurred_at: datetime
    category_id: str
    name: str
    color: str
    amount_cents: int


@dataclass(frozen=True)
class BudgetProgress:
    budget_id: int
    category_id: str
    name: str
    amount_cents: int
    spent_cents: int
    remaining_cents: int
    percent: int
    status: str  # "ok" | "warning" | "danger"


def category_totals(
    entries: Iterable, categories: Mapping[str, object], fallback
) -> list[CategoryTotal]:
    totals: dict[str, int] = {}
    for entry in entries:
        if entry.is_income:
            continue
        totals[entry.category_id] = (
            totals.get(entry.category_id, 0) + entry.amount_cents
        )

    rows: list[CategoryTotal] = []
    for category_id, amount in totals.items():
        if amount <= 0:
            continue
        category = categories.get(category_id) or fallback
        rows.append(
            CategoryTotal(
                category_id=category_id,
                name=category.name,
                color=category.color,
                amount_cents=amount,
            )
        )
    rows.sort(key=lambda row: (-row.amount_cents, row.name))
    return rows


def largest_expenses(
    entries: Iterable,
    categories: Mapping[str, object],
    fallback,
    limit: int = LARGEST_EXPENSES_LIMIT,
) -> list[LargeExpense]:
    expenses = sorted(
        (entry for entry in entries if not entry.is_income),
        key=lambda entry: (-entry.amount_cents, entry.id),
    )
    rows: list[LargeExpense] = []
    for entry in expenses[:limit]:
        category = categories.get(entry.category_id) or fallback
        rows.append(
            LargeExpense(
                entry_id=entry.id,
                description=entry.description,
                occurred_at=entry.occurred_at,
                category_id=entry.category_id,
                name=category.name,
                color=category.color,
                amount_cents=entry.amount_cents,
            )
        )
    return rows


def monthly_totals(
    entries: Iterable, months_back: int, today: date
) -> list[MonthlyTotal]:
    months = trailing_months(today, months_back)
    buckets: dict[tuple[int, int], int] = {(m.year, m.month): 0 for m in months}
    for entry in entries:
        if entry.is_income:
            continue
        key = (entry.occurred_at.year, entry.occurred_at.month)
        if key in buckets:
            buckets[key] += entry.amount_cents

    return [
        MonthlyTotal(
            year=m.year,
            month=m.month,
            label=f"{m.year:04d}-{m.month:02d}",
            amount_cents=buckets[(m.year, m.month)],
        )
        for m in months
    ]


def income_vs_expense(entries: Iterable) -> IncomeExpenseSummary:
    income = 0
    expense = 0
    for entry in entries:
        if entry.is_income:
            income += entry.amount_cents
        else:
            expense += entry.amount_cents
    return IncomeExpenseSummary(
        income_cents=income, expense_cents=expense, net_cents=income - expense
    )


def budget_status(percent: int) -> str:
    if percent >= DANGER_PERCENT:
        return "danger"
    if percent >= WARNING_PERCENT:
        return "warning"
    return "ok"


def budget_progress(budgets: Iterable) -> list[BudgetProgress]:
    rows: list[BudgetProgress] = []
    for budget in budgets:
        spent = budget.current_spending_cents
        percent = 0
        if budget.amount_cents:
            percent = round(spent * 100 / budget.amount_cents)
        rows.append(
            BudgetProgress(
                budget_id=budget.id,
                category_id=budget.category_id,
                name=budget.name,
                amount_cents=budget.amount_cents,
                spent_cents=spent,
                remaining_cents=budget.amount_cents - spent,
                percent=percent,
                status=budget_status(percent),
            )
        )
    return rows
