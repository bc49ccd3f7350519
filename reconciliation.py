"""Keeps budget running totals in step with ledger entry mutations.

Planning is pure: each ``plan_*`` function turns an entry mutation into the
per-category deltas it implies. ``ReconciliationEngine`` then resolves every
delta to the user's budget for that category and issues it as an atomic
increment against the budget store. Categories without a budget are skipped.
"""

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntryState:
    user_id: str
    category_id: str
    amount_cents: int
    is_income: bool

    @classmethod
    def of(cls, entry) -> "EntryState":
        return cls(
            user_id=entry.user_id,
            category_id=entry.category_id,
            amount_cents=entry.amount_cents,
            is_income=bool(entry.is_income),
        )

    @property
    def effective_cents(self) -> int:
        # Income never counts against a budget.
        return 0 if self.is_income else self.amount_cents


@dataclass(frozen=True)
class BudgetAdjustment:
    user_id: str
    category_id: str
    delta_cents: int


@dataclass(frozen=True)
class AppliedAdjustment:
    budget_id: int
    category_id: str
    delta_cents: int


def plan_new_entry(entry: EntryState) -> list[BudgetAdjustment]:
    if entry.effective_cents == 0:
        return []
    return [
        BudgetAdjustment(entry.user_id, entry.category_id, entry.effective_cents)
    ]


def plan_entry_delete(entry: EntryState) -> list[BudgetAdjustment]:
    if entry.effective_cents == 0:
        return []
    return [
        BudgetAdjustment(entry.user_id, entry.category_id, -entry.effective_cents)
    ]


def plan_entry_edit(old: EntryState, new: EntryState) -> list[BudgetAdjustment]:
    """Deltas for an edit, covering amount, category and income flag changes.

    When the category is unchanged the old and new contributions are netted into
    one delta. When it changed, the old contribution is reversed on the old
    category and the new one applied to the new category; the two are never
    netted because they hit different budgets.
    """
    if old.user_id != new.user_id:
        raise ValueError("Entries cannot move between users")

    if old.category_id == new.category_id:
        delta = new.effective_cents - old.effective_cents
        if delta == 0:
            return []
        return [BudgetAdjustment(new.user_id, new.category_id, delta)]

    adjustments: list[BudgetAdjustment] = []
    if old.effective_cents:
        adjustments.append(
            BudgetAdjustment(old.user_id, old.category_id, -old.effective_cents)
        )
    if new.effective_cents:
        adjustments.append(
            BudgetAdjustment(new.user_id, new.category_id, new.effective_cents)
        )
    return adjustments


class ReconciliationEngine:
    def __init__(self, budgets) -> None:
        self.budgets = budgets

    def apply_new_entry(self, entry) -> list[AppliedAdjustment]:
        return self.apply(plan_new_entry(EntryState.of(entry)))

    def apply_entry_edit(self, old_entry, new_entry) -> list[AppliedAdjustment]:
        return self.apply(
            plan_entry_edit(EntryState.of(old_entry), EntryState.of(new_entry))
        )

    def apply_entry_delete(self, entry) -> list[AppliedAdjustment]:
        return self.apply(plan_entry_delete(EntryState.of(entry)))

    def apply(self, adjustments: list[BudgetAdjustment]) -> list[AppliedAdjustment]:
        applied: list[AppliedAdjustment] = []
        for adjustment in adjustments:
            budget = self.budgets.find_for(adjustment.user_id, adjustment.category_id)
            if budget is None:
                logger.debug(
                    f"budget_missing: user_id={adjustment.user_id} "
                    f"category_id={adjustment.category_id}"
                )
                continue
            self.budgets.increment_spending(budget.id, adjustment.delta_cents)
            logger.info(
                f"budget_adjusted: budget_id={budget.id} "
                f"category_id={adjustment.category_id} "
                f"delta_cents={adjustment.delta_cents}"
            )
            applied.append(
                AppliedAdjustment(
                    budget_id=budget.id,
                    category_id=adjustment.category_id,
                    delta_cents=adjustment.delta_cents,
                )
            )
        return applied
