from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings
from models import BudgetPeriod


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def period_start(period: BudgetPeriod, on: date) -> date:
    """First day of the budget period containing ``on``.

    Weeks start on Monday.
    """
    if period == BudgetPeriod.daily:
        return on
    if period == BudgetPeriod.weekly:
        return on - timedelta(days=on.weekday())
    if period == BudgetPeriod.monthly:
        return on.replace(day=1)
    if period == BudgetPeriod.yearly:
        return on.replace(month=1, day=1)
    raise ValueError(f"Unsupported budget period: {period}")


def is_reset_due(
    period: BudgetPeriod, last_reset_on: Optional[date], today: date
) -> bool:
    if last_reset_on is None:
        return True
    return last_reset_on < period_start(period, today)


def add_months(d: date, count: int) -> date:
    month_index = (d.year * 12) + (d.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    return date(year, month, 1)


def trailing_months(today: date, months_back: int) -> list[date]:
    if months_back < 1:
        raise ValueError("months_back must be at least 1")
    current = today.replace(day=1)
    return [add_months(current, -offset) for offset in range(months_back - 1, -1, -1)]
