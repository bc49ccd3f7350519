from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import BudgetPeriod


class EntryIn(BaseModel):
    amount_cents: int = Field(..., gt=0)
    description: str = Field(default="", max_length=200)
    occurred_at: datetime
    category_id: Optional[str] = Field(default=None, max_length=40)
    is_income: bool = False


class EntryPatch(BaseModel):
    """Partial edit of an entry.

    Only the fields the caller actually supplied are applied; use
    ``changed_fields()`` rather than comparing values against ``None``.
    """

    model_config = ConfigDict(extra="forbid")

    amount_cents: Optional[int] = Field(default=None, gt=0)
    description: Optional[str] = Field(default=None, max_length=200)
    occurred_at: Optional[datetime] = None
    category_id: Optional[str] = Field(default=None, max_length=40)
    is_income: Optional[bool] = None

    def changed_fields(self) -> dict[str, object]:
        return {name: getattr(self, name) for name in self.model_fields_set}


class EntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    amount_cents: int
    description: str
    occurred_at: datetime
    category_id: str
    is_income: bool
    created_at: datetime
    updated_at: datetime


class BudgetIn(BaseModel):
    category_id: str = Field(..., min_length=1, max_length=40)
    name: Optional[str] = Field(default=None, max_length=100)
    amount_cents: int = Field(..., gt=0)
    period: BudgetPeriod = BudgetPeriod.monthly


class BudgetPatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    amount_cents: Optional[int] = Field(default=None, gt=0)
    period: Optional[BudgetPeriod] = None


class BudgetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    category_id: str
    name: str
    amount_cents: int
    current_spending_cents: int
    period: BudgetPeriod
    created_at: datetime
    updated_at: datetime


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    color: str
    icon: str
    is_income: bool
