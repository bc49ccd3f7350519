from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Iterator, Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

import aggregations
from config import Settings, get_settings
from models import (
    FALLBACK_CATEGORY_ID,
    INCOME_CATEGORY_ID,
    Budget,
    Category,
    Entry,
)
from periods import is_reset_due, local_today, period_start
from reconciliation import AppliedAdjustment, EntryState, ReconciliationEngine
from schemas import BudgetIn, BudgetPatch, EntryIn, EntryPatch

logger = logging.getLogger(__name__)


# (id, name, color, icon); the first entry doubles as the display fallback.
DEFAULT_CATEGORIES = (
    ("food", "Food & Dining", "#FF9800", "utensils"),
    ("transport", "Transportation", "#03A9F4", "car"),
    ("housing", "Housing", "#4CAF50", "home"),
    ("entertainment", "Entertainment", "#9C27B0", "film"),
    ("shopping", "Shopping", "#E91E63", "shopping-bag"),
    ("utilities", "Utilities", "#607D8B", "bolt"),
    ("health", "Health", "#F44336", "heart"),
    ("travel", "Travel", "#8BC34A", "plane"),
    (INCOME_CATEGORY_ID, "Income", "#4ADE80", "banknote"),
)

ENTRY_MUTABLE_FIELDS = frozenset(
    {"amount_cents", "description", "occurred_at", "category_id", "is_income"}
)

ENTRY_SORT_COLUMNS = {"date": Entry.occurred_at, "amount": Entry.amount_cents}


class NotFound(ValueError):
    pass


class ValidationFailed(ValueError):
    pass


class StoreUnavailable(RuntimeError):
    pass


class EntryWriteFailed(StoreUnavailable):
    pass


class ReconciliationFailed(RuntimeError):
    def __init__(
        self,
        message: str,
        *,
        entry_id: Optional[int] = None,
        entry_committed: bool = False,
    ) -> None:
        super().__init__(message)
        self.entry_id = entry_id
        self.entry_committed = entry_committed


class BudgetWriteFailed(ReconciliationFailed):
    pass


def get_current_user_id() -> str:
    return get_settings().default_user_id


@contextmanager
def store_read(op: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.exception(f"store_read_failed: op={op}")
        raise StoreUnavailable("Store unavailable") from exc


@dataclass
class EntryFilters:
    type: Optional[str] = None
    category_id: Optional[str] = None
    query: Optional[str] = None
    sort_by: str = "date"
    order: str = "desc"


def reset_due_budgets(
    session: Session, today: Optional[date] = None, user_id: Optional[str] = None
) -> int:
    """Zero every budget whose period rolled over since its last reset."""
    today = today or local_today()
    stmt = select(Budget).order_by(Budget.id)
    if user_id is not None:
        stmt = stmt.where(Budget.user_id == user_id)
    count = 0
    for budget in session.scalars(stmt).all():
        if not is_reset_due(budget.period, budget.last_reset_on, today):
            continue
        BudgetService(session, budget.user_id).zero_spending(budget.id, today)
        count += 1
    session.commit()
    logger.info(f"budget_reset: today={today.isoformat()} budgets_reset={count}")
    return count


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def ensure_defaults(self) -> int:
        existing = set(self.session.scalars(select(Category.id)).all())
        added = 0
        for order, (category_id, name, color, icon) in enumerate(DEFAULT_CATEGORIES):
            if category_id in existing:
                continue
            self.session.add(
                Category(
                    id=category_id,
                    name=name,
                    color=color,
                    icon=icon,
                    is_income=category_id == INCOME_CATEGORY_ID,
                    order=order,
                )
            )
            added += 1
        if added:
            self.session.commit()
        return added

    def list_all(self) -> list[Category]:
        stmt = select(Category).order_by(Category.order, Category.name)
        with store_read("list_categories"):
            return self.session.scalars(stmt).all()

    def get(self, category_id: str) -> Category:
        category = self.session.get(Category, category_id)
        if not category:
            raise NotFound("Category not found")
        return category

    def fallback(self) -> Category:
        return self.get(FALLBACK_CATEGORY_ID)

    def by_id(self, category_id: str) -> Category:
        category = self.session.get(Category, category_id)
        return category or self.fallback()

    def lookup(self) -> dict[str, Category]:
        return {category.id: category for category in self.list_all()}


class EntryService:
    def __init__(self, session: Session, user_id: Optional[str] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def get(self, entry_id: int) -> Optional[Entry]:
        entry = self.session.get(Entry, entry_id)
        if not entry or entry.user_id != self.user_id:
            return None
        return entry

    def require(self, entry_id: int) -> Entry:
        entry = self.get(entry_id)
        if not entry:
            raise NotFound("Entry not found")
        return entry

    def insert(self, entry: Entry) -> int:
        entry.user_id = self.user_id
        self.session.add(entry)
        self.session.flush()
        return entry.id

    def update(self, entry_id: int, fields: dict[str, object]) -> Entry:
        unknown = set(fields) - ENTRY_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown entry fields: {', '.join(sorted(unknown))}")
        entry = self.require(entry_id)
        for name, value in fields.items():
            setattr(entry, name, value)
        self.session.flush()
        return entry

    def delete(self, entry_id: int) -> None:
        entry = self.require(entry_id)
        self.session.delete(entry)
        self.session.flush()

    def list_for_user(
        self, filters: Optional[EntryFilters] = None, limit: Optional[int] = None
    ) -> list[Entry]:
        filters = filters or EntryFilters()
        column = ENTRY_SORT_COLUMNS.get(filters.sort_by)
        if column is None:
            raise ValidationFailed(f"Cannot sort entries by {filters.sort_by!r}")
        if filters.order not in ("asc", "desc"):
            raise ValidationFailed("Sort order must be 'asc' or 'desc'")
        if filters.type not in (None, "income", "expense"):
            raise ValidationFailed("Entry type must be 'income' or 'expense'")

        stmt = select(Entry).where(Entry.user_id == self.user_id)
        if filters.type:
            stmt = stmt.where(Entry.is_income == (filters.type == "income"))
        if filters.category_id:
            stmt = stmt.where(Entry.category_id == filters.category_id)
        if filters.query:
            like = f"%{filters.query.lower()}%"
            stmt = stmt.where(func.lower(Entry.description).like(like))
        if filters.order == "asc":
            stmt = stmt.order_by(column.asc(), Entry.id.asc())
        else:
            stmt = stmt.order_by(column.desc(), Entry.id.desc())
        if limit:
            stmt = stmt.limit(limit)
        return self.session.scalars(stmt).all()


class BudgetService:
    def __init__(self, session: Session, user_id: Optional[str] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[Budget]:
        stmt = (
            select(Budget)
            .options(joinedload(Budget.category))
            .where(Budget.user_id == self.user_id)
            .order_by(Budget.created_at.desc(), Budget.id.desc())
        )
        with store_read("list_budgets"):
            return self.session.scalars(stmt).all()

    def get(self, budget_id: int) -> Budget:
        with store_read("get_budget"):
            budget = self.session.get(Budget, budget_id)
        if not budget or budget.user_id != self.user_id:
            raise NotFound("Budget not found")
        return budget

    def find_for(self, user_id: str, category_id: str) -> Optional[Budget]:
        # Uniqueness is enforced by uq_budget_user_category; the ordering only
        # matters for stores created before that constraint existed.
        stmt = (
            select(Budget)
            .where(Budget.user_id == user_id, Budget.category_id == category_id)
            .order_by(Budget.id)
            .limit(1)
        )
        return self.session.scalar(stmt)

    def find_for_category(self, category_id: str) -> Optional[Budget]:
        return self.find_for(self.user_id, category_id)

    def create(self, data: BudgetIn, today: Optional[date] = None) -> Budget:
        category = self.session.get(Category, data.category_id)
        if not category:
            raise ValidationFailed("Category not found")
        if category.is_income:
            raise ValidationFailed("Budgets can only be set for expense categories")
        if self.find_for_category(category.id):
            raise ValidationFailed("A budget already exists for this category")

        today = today or local_today()
        budget = Budget(
            user_id=self.user_id,
            category_id=category.id,
            name=(data.name or category.name).strip(),
            amount_cents=data.amount_cents,
            current_spending_cents=0,
            period=data.period,
            last_reset_on=period_start(data.period, today),
            ledger_baseline_cents=self.ledger_total(category.id),
        )
        self.session.add(budget)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ValidationFailed("A budget already exists for this category") from exc
        self.session.refresh(budget)
        return budget

    def update(self, budget_id: int, data: BudgetPatch) -> Budget:
        budget = self.get(budget_id)
        for name in data.model_fields_set:
            value = getattr(data, name)
            if value is None:
                continue
            setattr(budget, name, value.strip() if name == "name" else value)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def delete(self, budget_id: int) -> None:
        budget = self.get(budget_id)
        self.session.delete(budget)
        self.session.commit()

    def increment_spending(self, budget_id: int, delta_cents: int) -> None:
        """Add ``delta_cents`` to the running total in a single statement.

        The result is clamped at zero inside the UPDATE itself, so concurrent
        adjustments to the same budget never read a stale total.
        """
        new_value = Budget.current_spending_cents + delta_cents
        self.session.execute(
            update(Budget)
            .where(Budget.id == budget_id)
            .values(
                current_spending_cents=case((new_value < 0, 0), else_=new_value),
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        self._expire(budget_id)

    def set_spending(self, budget_id: int, value_cents: int) -> None:
        if value_cents < 0:
            raise ValidationFailed("Spending cannot be negative")
        self.session.execute(
            update(Budget)
            .where(Budget.id == budget_id)
            .values(current_spending_cents=value_cents, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        self._expire(budget_id)

    def zero_spending(self, budget_id: int, today: Optional[date] = None) -> None:
        budget = self.get(budget_id)
        today = today or local_today()
        self.session.execute(
            update(Budget)
            .where(Budget.id == budget.id)
            .values(
                current_spending_cents=0,
                last_reset_on=period_start(budget.period, today),
                ledger_baseline_cents=self.ledger_total(
                    budget.category_id, budget.user_id
                ),
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        self._expire(budget.id)

    def reset_spending(self, budget_id: int, today: Optional[date] = None) -> Budget:
        self.zero_spending(budget_id, today)
        self.session.commit()
        logger.info(f"budget_reset: budget_id={budget_id} source=manual")
        return self.get(budget_id)

    def reset_due(self, today: Optional[date] = None) -> int:
        return reset_due_budgets(self.session, today, user_id=self.user_id)

    def ledger_total(self, category_id: str, user_id: Optional[str] = None) -> int:
        stmt = select(func.coalesce(func.sum(Entry.amount_cents), 0)).where(
            Entry.user_id == (user_id or self.user_id),
            Entry.category_id == category_id,
            Entry.is_income.is_(False),
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def recompute_from_ledger(self, budget_id: int) -> Budget:
        """Rebuild the running total from the ledger.

        Every entry mutation moves the category's expense total and the running
        total by the same delta, so the running total is the current category
        total minus the total captured when the spending window opened (budget
        creation or last reset).
        """
        budget = self.get(budget_id)
        current = self.ledger_total(budget.category_id, budget.user_id)
        total = max(current - budget.ledger_baseline_cents, 0)
        previous = budget.current_spending_cents
        self.set_spending(budget.id, total)
        self.session.commit()
        logger.info(
            f"budget_recomputed: budget_id={budget.id} "
            f"previous_cents={previous} current_cents={total}"
        )
        return self.get(budget.id)

    def _expire(self, budget_id: int) -> None:
        key = self.session.identity_key(Budget, budget_id)
        budget = self.session.identity_map.get(key)
        if budget is not None:
            self.session.expire(budget)


class LedgerService:
    """Entry mutations paired with their budget reconciliation.

    In ``strict`` mode the entry write and the budget adjustments commit as one
    transaction. In ``best_effort`` mode the entry commits first and a failed
    adjustment is reported as ``BudgetWriteFailed`` with ``entry_committed``
    set, leaving compensation to the caller.
    """

    def __init__(
        self,
        session: Session,
        user_id: Optional[str] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.settings = settings or get_settings()
        self.categories = CategoryService(session)
        self.entries = EntryService(session, self.user_id)
        self.budgets = BudgetService(session, self.user_id)
        self.engine = ReconciliationEngine(self.budgets)

    def record_entry(self, data: EntryIn) -> Entry:
        self._validate_amount(data.amount_cents)
        with store_read("record_entry"):
            category_id = self._resolve_category(data.category_id, data.is_income)
        entry = Entry(
            amount_cents=data.amount_cents,
            description=(data.description or "").strip(),
            occurred_at=data.occurred_at,
            category_id=category_id,
            is_income=data.is_income,
        )
        try:
            self.entries.insert(entry)
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception("entry_write_failed: op=record")
            raise EntryWriteFailed("Could not save entry") from exc

        state = EntryState.of(entry)
        applied = self._reconcile(
            entry.id, lambda: self.engine.apply_new_entry(state)
        )
        logger.info(
            f"entry_recorded: entry_id={entry.id} user_id={self.user_id} "
            f"adjustments={len(applied)}"
        )
        return entry

    def edit_entry(self, entry_id: int, patch: EntryPatch) -> Entry:
        with store_read("edit_entry"):
            entry = self.entries.require(entry_id)
            before = EntryState.of(entry)
            changes = self._validated_changes(entry, patch)
        if not changes:
            return entry
        try:
            self.entries.update(entry_id, changes)
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception(f"entry_write_failed: op=edit entry_id={entry_id}")
            raise EntryWriteFailed("Could not update entry") from exc

        after = EntryState.of(entry)
        applied = self._reconcile(
            entry_id, lambda: self.engine.apply_entry_edit(before, after)
        )
        logger.info(
            f"entry_edited: entry_id={entry_id} fields={','.join(sorted(changes))} "
            f"adjustments={len(applied)}"
        )
        return entry

    def remove_entry(self, entry_id: int) -> None:
        with store_read("remove_entry"):
            state = EntryState.of(self.entries.require(entry_id))
        try:
            self.entries.delete(entry_id)
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception(f"entry_write_failed: op=remove entry_id={entry_id}")
            raise EntryWriteFailed("Could not delete entry") from exc

        applied = self._reconcile(
            entry_id, lambda: self.engine.apply_entry_delete(state)
        )
        logger.info(f"entry_removed: entry_id={entry_id} adjustments={len(applied)}")

    def list_entries(
        self, filters: Optional[EntryFilters] = None, limit: Optional[int] = None
    ) -> list[Entry]:
        with store_read("list_entries"):
            return self.entries.list_for_user(filters, limit)

    def category_totals(self) -> list[aggregations.CategoryTotal]:
        with store_read("category_totals"):
            return aggregations.category_totals(
                self.entries.list_for_user(),
                self.categories.lookup(),
                self.categories.fallback(),
            )

    def monthly_totals(
        self, months_back: Optional[int] = None, today: Optional[date] = None
    ) -> list[aggregations.MonthlyTotal]:
        with store_read("monthly_totals"):
            entries = self.entries.list_for_user()
        return aggregations.monthly_totals(
            entries,
            months_back or self.settings.dashboard_months,
            today or local_today(),
        )

    def income_vs_expense(self) -> aggregations.IncomeExpenseSummary:
        with store_read("income_vs_expense"):
            entries = self.entries.list_for_user()
        return aggregations.income_vs_expense(entries)

    def largest_expenses(
        self, limit: int = aggregations.LARGEST_EXPENSES_LIMIT
    ) -> list[aggregations.LargeExpense]:
        with store_read("largest_expenses"):
            return aggregations.largest_expenses(
                self.entries.list_for_user(),
                self.categories.lookup(),
                self.categories.fallback(),
                limit,
            )

    def budget_progress(self) -> list[aggregations.BudgetProgress]:
        return aggregations.budget_progress(self.budgets.list_all())

    def _reconcile(
        self, entry_id: int, apply: Callable[[], list[AppliedAdjustment]]
    ) -> list[AppliedAdjustment]:
        strict = self.settings.strict_reconciliation
        if not strict:
            self._commit(entry_id)
        try:
            applied = apply()
            if not strict:
                self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception(
                f"reconciliation_failed: entry_id={entry_id} "
                f"mode={self.settings.reconciliation_mode}"
            )
            raise BudgetWriteFailed(
                "Budget adjustment failed",
                entry_id=entry_id,
                entry_committed=not strict,
            ) from exc
        if strict:
            self._commit(entry_id)
        return applied

    def _commit(self, entry_id: int) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception(f"entry_commit_failed: entry_id={entry_id}")
            raise EntryWriteFailed("Could not save entry") from exc

    @staticmethod
    def _validate_amount(amount_cents: Optional[int]) -> None:
        if amount_cents is None or amount_cents <= 0:
            raise ValidationFailed("Amount must be positive")

    def _resolve_category(self, category_id: Optional[str], is_income: bool) -> str:
        if not category_id:
            if is_income:
                return INCOME_CATEGORY_ID
            raise ValidationFailed("Expenses require a category")
        category = self.session.get(Category, category_id)
        if not category:
            raise ValidationFailed("Category not found")
        if category.is_income and not is_income:
            raise ValidationFailed("The Income category is reserved for income entries")
        return category.id

    def _validated_changes(
        self, entry: Entry, patch: EntryPatch
    ) -> dict[str, object]:
        changes = patch.changed_fields()
        for name in ("amount_cents", "occurred_at", "is_income"):
            if name in changes and changes[name] is None:
                raise ValidationFailed(f"{name} cannot be cleared")
        if "amount_cents" in changes:
            self._validate_amount(changes["amount_cents"])
        if "description" in changes:
            changes["description"] = (changes["description"] or "").strip()
        if "category_id" in changes or "is_income" in changes:
            is_income = changes.get("is_income", entry.is_income)
            requested = changes.get("category_id", entry.category_id)
            changes["category_id"] = self._resolve_category(requested, is_income)
        return changes
