from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from config import Settings
from database import Base
from schemas import EntryIn
from services import (
    CategoryService,
    EntryFilters,
    EntryService,
    LedgerService,
    ValidationFailed,
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


def seed(session) -> LedgerService:
    ledger = LedgerService(session, "alice", settings=STRICT)
    for amount, description, day, category_id, is_income in (
        (4_599, "Grocery shopping", 10, "food", False),
        (350_000, "Salary deposit", 1, None, True),
        (120_000, "Rent payment", 5, "housing", False),
        (1_250, "Coffee and croissant", 12, "food", False),
        (2_000, "Cinema tickets", 8, "entertainment", False),
    ):
        ledger.record_entry(
            EntryIn(
                amount_cents=amount,
                description=description,
                occurred_at=datetime(2025, 1, day, 9, 0),
                category_id=category_id,
                is_income=is_income,
            )
        )
    LedgerService(session, "bob", settings=STRICT).record_entry(
        EntryIn(
            amount_cents=999,
            description="Grocery run",
            occurred_at=datetime(2025, 1, 11, 9, 0),
            category_id="food",
        )
    )
    return ledger


def descriptions(entries) -> list[str]:
    return [entry.description for entry in entries]


def test_default_listing_is_newest_first() -> None:
    session = make_session()
    seed(session)

    entries = EntryService(session, "alice").list_for_user()

    assert descriptions(entries) == [
        "Coffee and croissant",
        "Grocery shopping",
        "Cinema tickets",
        "Rent payment",
        "Salary deposit",
    ]


def test_search_matches_description_case_insensitively() -> None:
    session = make_session()
    seed(session)

    entries = EntryService(session, "alice").list_for_user(
        EntryFilters(query="GROCERY")
    )

    assert descriptions(entries) == ["Grocery shopping"]


def test_filter_by_type_and_category() -> None:
    session = make_session()
    ledger = seed(session)

    income = ledger.list_entries(EntryFilters(type="income"))
    food = ledger.list_entries(EntryFilters(type="expense", category_id="food"))

    assert descriptions(income) == ["Salary deposit"]
    assert descriptions(food) == ["Coffee and croissant", "Grocery shopping"]


def test_sort_by_amount_in_both_directions() -> None:
    session = make_session()
    ledger = seed(session)

    ascending = ledger.list_entries(
        EntryFilters(type="expense", sort_by="amount", order="asc")
    )
    top = ledger.list_entries(EntryFilters(sort_by="amount", order="desc"), limit=2)

    assert [e.amount_cents for e in ascending] == [1_250, 2_000, 4_599, 120_000]
    assert [e.amount_cents for e in top] == [350_000, 120_000]


def test_sort_by_date_ascending() -> None:
    session = make_session()
    ledger = seed(session)

    entries = ledger.list_entries(EntryFilters(order="asc"))

    assert entries[0].description == "Salary deposit"
    assert entries[-1].description == "Coffee and croissant"


def test_unknown_listing_options_are_rejected() -> None:
    session = make_session()
    entries = EntryService(session, "alice")

    with pytest.raises(ValidationFailed):
        entries.list_for_user(EntryFilters(sort_by="category"))
    with pytest.raises(ValidationFailed):
        entries.list_for_user(EntryFilters(order="sideways"))
    with pytest.raises(ValidationFailed):
        entries.list_for_user(EntryFilters(type="transfer"))


def test_largest_expenses_skip_income() -> None:
    session = make_session()
    ledger = seed(session)

    rows = ledger.largest_expenses(limit=3)

    assert [(r.description, r.amount_cents) for r in rows] == [
        ("Rent payment", 120_000),
        ("Grocery shopping", 4_599),
        ("Cinema tickets", 2_000),
    ]
    assert rows[0].name == "Housing"
