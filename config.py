import os
from functools import lru_cache
from pathlib import Path

RECONCILIATION_MODES = ("strict", "best_effort")


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        reconciliation_mode: str = "strict",
        budget_auto_reset: bool = False,
        default_user_id: str = "local",
        dashboard_months: int = 6,
        report_months: int = 12,
    ) -> None:
        if reconciliation_mode not in RECONCILIATION_MODES:
            raise ValueError(
                f"Unsupported reconciliation mode: {reconciliation_mode}"
            )
        self.database_url = database_url
        self.timezone = timezone
        self.reconciliation_mode = reconciliation_mode
        self.budget_auto_reset = budget_auto_reset
        self.default_user_id = default_user_id
        self.dashboard_months = dashboard_months
        self.report_months = report_months

    @property
    def strict_reconciliation(self) -> bool:
        return self.reconciliation_mode == "strict"


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGER_TIMEZONE", "Europe/Berlin")
    reconciliation_mode = os.getenv("LEDGER_RECONCILIATION_MODE", "strict").lower()
    budget_auto_reset = _env_flag("LEDGER_BUDGET_AUTO_RESET")
    default_user_id = os.getenv("LEDGER_DEFAULT_USER", "local")
    dashboard_months = int(os.getenv("LEDGER_DASHBOARD_MONTHS", "6"))
    report_months = int(os.getenv("LEDGER_REPORT_MONTHS", "12"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        reconciliation_mode=reconciliation_mode,
        budget_auto_reset=budget_auto_reset,
        default_user_id=default_user_id,
        dashboard_months=dashboard_months,
        report_months=report_months,
    )
