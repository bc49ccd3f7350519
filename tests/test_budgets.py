from datetime import date, datetime

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from config import Settings
from database import Base
from models import Budget, BudgetPeriod
from periods import is_reset_due, period_start, trailing_months
from schemas import BudgetIn, BudgetPatch, EntryIn, EntryPatch
from services import (
    BudgetService,
    CategoryService,
    LedgerService,
    NotFound,
    ValidationFailed,
    reset_due_budgets,
)

STRICT = Settings(database_url="sqlite://", timezone="UTC")


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    session = SessionLocal()
    CategoryService(session).ensure_defaults()
    return session


def spending(session, budget_id: int) -> int:
    return session.scalar(
        select(Budget.current_spending_cents).where(Budget.id == budget_id)
    )


def test_period_start_for_each_period() -> None:
    wednesday = date(2025, 3, 12)
    assert period_start(BudgetPeriod.daily, wednesday) == wednesday
    assert period_start(BudgetPeriod.weekly, wednesday) == date(2025, 3, 10)
    assert period_start(BudgetPeriod.monthly, wednesday) == date(2025, 3, 1)
    assert period_start(BudgetPeriod.yearly, wednesday) == date(2025, 1, 1)


def test_reset_due_only_after_period_rolls_over() -> None:
    assert is_reset_due(BudgetPeriod.monthly, None, date(2025, 1, 1))
    assert not is_reset_due(BudgetPeriod.monthly, date(2025, 1, 1), date(2025, 1, 31))
    assert is_reset_due(BudgetPeriod.monthly, date(2025, 1, 1), date(2025, 2, 1))
    assert not is_reset_due(BudgetPeriod.weekly, date(2025, 3, 10), date(2025, 3, 16))


def test_trailing_months_oldest_first() -> None:
    assert trailing_months(date(2025, 1, 20), 3) == [
        date(2024, 11, 1),
        date(2024, 12, 1),
        date(2025, 1, 1),
    ]


def test_create_budget_defaults_name_and_period_start() -> None:
    session = make_session()
    budget = BudgetService(session, "alice").create(
        BudgetIn(category_id="food", amount_cents=50_000), today=date(2025, 1, 15)
    )
    assert budget.name == "Food & Dining"
    assert budget.period == BudgetPeriod.monthly
    assert budget.current_spending_cents == 0
    assert budget.last_reset_on == date(2025, 1, 1)


def test_budget_uniqueness_per_user_and_category() -> None:
    session = make_session()
    budgets = BudgetService(session, "alice")
    budgets.create(BudgetIn(category_id="food", amount_cents=50_000))

    with pytest.raises(ValidationFailed):
        budgets.create(BudgetIn(category_id="food", amount_cents=10_000))

    other = BudgetService(session, "bob").create(
        BudgetIn(category_id="food", amount_cents=10_000)
    )
    assert other.user_id == "bob"


def test_budgets_rejected_for_income_or_unknown_category() -> None:
    session = make_session()
    budgets = BudgetService(session, "alice")
    with pytest.raises(ValidationFailed):
        budgets.create(BudgetIn(category_id="income", amount_cents=1_000))
    with pytest.raises(ValidationFailed):
        budgets.create(BudgetIn(category_id="pets", amount_cents=1_000))


def test_update_and_delete_budget() -> None:
    session = make_session()
    budgets = BudgetService(session, "alice")
    budget = budgets.create(
        BudgetIn(category_id="travel", name="Trips", amount_cents=90_000)
    )

    updated = budgets.update(
        budget.id, BudgetPatch(amount_cents=120_000, period=BudgetPeriod.yearly)
    )
    assert updated.amount_cents == 120_000
    assert updated.period == BudgetPeriod.yearly
    assert updated.name == "Trips"

    with pytest.raises(NotFound):
        BudgetService(session, "bob").delete(budget.id)

    budgets.delete(budget.id)
    with pytest.raises(NotFound):
        budgets.get(budget.id)


def test_reset_spending_zeroes_running_total() -> None:
    session = make_session()
    budget = BudgetService(session, "alice").create(
        BudgetIn(category_id="food", amount_cents=50_000), today=date(2025, 1, 2)
    )
    LedgerService(session, "alice", settings=STRICT).record_entry(
        EntryIn(
            amount_cents=4_599,
            occurred_at=datetime(2025, 1, 3, 12, 0),
            category_id="food",
        )
    )

    reset = BudgetService(session, "alice").reset_spending(
        budget.id, today=date(2025, 1, 20)
    )

    assert reset.current_spending_cents == 0
    assert spending(session, budget.id) == 0


def test_reset_due_budgets_follows_each_budget_period() -> None:
    session = make_session()
    budgets = BudgetService(session, "alice")
    monthly = budgets.create(
        BudgetIn(category_id="food", amount_cents=50_000), today=date(2025, 1, 15)
    )
    yearly = budgets.create(
        BudgetIn(
            category_id="travel", amount_cents=200_000, period=BudgetPeriod.yearly
        ),
        today=date(2025, 1, 15),
    )
    ledger = LedgerService(session, "alice", settings=STRICT)
    for category_id in ("food", "travel"):
        ledger.record_entry(
            EntryIn(
                amount_cents=3_000,
                occurred_at=datetime(2025, 1, 20, 18, 0),
                category_id=category_id,
            )
        )

    assert reset_due_budgets(session, today=date(2025, 1, 31)) == 0
    assert reset_due_budgets(session, today=date(2025, 2, 1)) == 1
    assert spending(session, monthly.id) == 0
    assert spending(session, yearly.id) == 3_000
    assert budgets.get(monthly.id).last_reset_on == date(2025, 2, 1)

    assert budgets.reset_due(today=date(2025, 2, 1)) == 0


def test_recompute_matches_incremental_total_for_backdated_entries() -> None:
    session = make_session()
    budgets = BudgetService(session, "alice")
    budget = budgets.create(
        BudgetIn(category_id="food", amount_cents=50_000), today=date(2025, 1, 5)
    )
    ledger = LedgerService(session, "alice", settings=STRICT)
    ledger.record_entry(
        EntryIn(
            amount_cents=3_000,
            occurred_at=datetime(2025, 1, 10, 12, 0),
            category_id="food",
        )
    )
    backdated = ledger.record_entry(
        EntryIn(
            amount_cents=1_000,
            occurred_at=datetime(2024, 12, 20, 12, 0),
            category_id="food",
        )
    )
    ledger.record_entry(
        EntryIn(
            amount_cents=500,
            occurred_at=datetime(2025, 1, 11, 12, 0),
            category_id="food",
            is_income=True,
        )
    )
    ledger.record_entry(
        EntryIn(
            amount_cents=700,
            occurred_at=datetime(2025, 1, 12, 12, 0),
            category_id="transport",
        )
    )
    assert spending(session, budget.id) == 4_000

    budgets.set_spending(budget.id, 99)
    session.commit()
    assert budgets.recompute_from_ledger(budget.id).current_spending_cents == 4_000

    ledger.remove_entry(backdated.id)
    assert spending(session, budget.id) == 3_000
    assert budgets.recompute_from_ledger(budget.id).current_spending_cents == 3_000


def test_recompute_ignores_entries_recorded_before_budget() -> None:
    session = make_session()
    ledger = LedgerService(session, "alice", settings=STRICT)
    earlier = ledger.record_entry(
        EntryIn(
            amount_cents=2_500,
            occurred_at=datetime(2025, 1, 3, 12, 0),
            category_id="food",
        )
    )
    budgets = BudgetService(session, "alice")
    budget = budgets.create(
        BudgetIn(category_id="food", amount_cents=50_000), today=date(2025, 1, 5)
    )
    assert budget.ledger_baseline_cents == 2_500

    ledger.record_entry(
        EntryIn(
            amount_cents=1_000,
            occurred_at=datetime(2025, 1, 6, 12, 0),
            category_id="food",
        )
    )
    ledger.edit_entry(earlier.id, EntryPatch(amount_cents=3_000))
    assert spending(session, budget.id) == 1_500

    assert budgets.recompute_from_ledger(budget.id).current_spending_cents == 1_500


def test_recompute_after_reset_stays_at_zero() -> None:
    session = make_session()
    budgets = BudgetService(session, "alice")
    budget = budgets.create(
        BudgetIn(category_id="food", amount_cents=50_000), today=date(2025, 1, 2)
    )
    LedgerService(session, "alice", settings=STRICT).record_entry(
        EntryIn(
            amount_cents=4_599,
            occurred_at=datetime(2025, 1, 3, 12, 0),
            category_id="food",
        )
    )

    budgets.reset_spending(budget.id, today=date(2025, 2, 1))

    assert budgets.recompute_from_ledger(budget.id).current_spending_cents == 0


def test_category_lookup_falls_back_for_unknown_ids() -> None:
    session = make_session()
    categories = CategoryService(session)
    assert categories.ensure_defaults() == 0
    assert categories.by_id("transport").name == "Transportation"
    assert categories.by_id("does-not-exist").id == "food"
    with pytest.raises(NotFound):
        categories.get("does-not-exist")
    assert [c.id for c in categories.list_all()][-1] == "income"
