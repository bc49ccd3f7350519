import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Response
from sqlalchemy.orm import Session

from aggregations import LARGEST_EXPENSES_LIMIT
from config import get_settings
from database import SessionLocal, session_scope
from scheduler import SchedulerManager
from schemas import (
    BudgetIn,
    BudgetOut,
    BudgetPatch,
    CategoryOut,
    EntryIn,
    EntryOut,
    EntryPatch,
)
from services import (
    BudgetService,
    BudgetWriteFailed,
    CategoryService,
    EntryFilters,
    LedgerService,
    NotFound,
    ReconciliationFailed,
    StoreUnavailable,
    ValidationFailed,
    get_current_user_id,
)

logger = logging.getLogger(__name__)

SERVICE_ERRORS = (NotFound, ValidationFailed, StoreUnavailable, ReconciliationFailed)

app = FastAPI(title="Budget Ledger")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    return x_user_id or get_current_user_id()


def http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, NotFound):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, BudgetWriteFailed):
        return HTTPException(
            status_code=500,
            detail={
                "error": str(exc),
                "entry_id": exc.entry_id,
                "entry_committed": exc.entry_committed,
            },
        )
    if isinstance(exc, (StoreUnavailable, ReconciliationFailed)):
        return HTTPException(status_code=503, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    with session_scope() as session:
        added = CategoryService(session).ensure_defaults()
    if added:
        logger.info(f"categories_seeded: added={added}")
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@app.get("/api/categories", response_model=list[CategoryOut])
def api_categories(db: Session = Depends(get_db)):
    try:
        return CategoryService(db).list_all()
    except SERVICE_ERRORS as exc:
        raise http_error(exc) from exc


@app.get("/api/entries", response_model=list[EntryOut])
def api_entries(
    limit: Optional[int] = Query(default=None, ge=1, le=500),
    query: Optional[str] = Query(default=None, max_length=200),
    category_id: Optional[str] = None,
    type: Optional[str] = Query(default=None, pattern="^(income|expense)$"),
    sort_by: str = Query(default="date", pattern="^(date|amount)$"),
    order: str = Query(default="desc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
):
    filters = EntryFilters(
        type=type,
        category_id=category_id,
        query=query,
        sort_by=sort_by,
        order=order,
    )
    try:
        return LedgerService(db, user_id).list_entries(filters, limit)
    except SERVICE_ERRORS as exc:
        raise http_error(exc) from exc


@app.post("/api/entries", response_model=EntryOut, status_code=201)
def api_record_entry(
    data: EntryIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
):
    try:
        return LedgerService(db, user_id).record_entry(data)
    except SERVICE_ERRORS as exc:
        raise http_error(exc) from exc


@app.patch("/api/entries/{entry_id}", response_model=EntryOut)
def api_edit_entry(
    entry_id: int,
    patch: EntryPatch,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
):
    try:
        return LedgerService(db, user_id).edit_entry(entry_id, patch)
    except SERVICE_ERRORS as exc:
        raise http_error(exc) from exc


@app.delete("/api/entries/{entry_id}", status_code=204)
def api_remove_entry(
    entry_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
):
    try:
        LedgerService(db, user_id).remove_entry(entry_id)
    except SERVICE_ERRORS as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/budgets", response_model=list[BudgetOut])
def api_budgets(db: Session = Depends(get_db), user_id: str = Depends(get_user_id)):
    try:
        return BudgetService(db, user_id).list_all()
    except SERVICE_ERRORS as exc:
        raise http_error(exc) from exc


@app.post("/api/budgets", response_model=BudgetOut, status_code=201)
def api_create_budget(
    data: BudgetIn,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
):
    try:
        return BudgetService(db, user_id).create(data)
    except SERVICE_ERRORS as exc:
        raise http_error(exc) from exc


@app.patch("/api/budgets/{budget_id}", response_model=BudgetOut)
def api_update_budget(
    budget_id: int,
    data: BudgetPatch,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
):
    try:
        return BudgetService(db, user_id).update(budget_id, data)
    except SERVICE_ERRORS as exc:
        raise http_error(exc) from exc


@app.delete("/api/budgets/{budget_id}", status_code=204)
def api_delete_budget(
    budget_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
):
    try:
        BudgetService(db, user_id).delete(budget_id)
    except SERVICE_ERRORS as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.post("/api/budgets/{budget_id}/reset", response_model=BudgetOut)
def api_reset_budget(
    budget_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
):
    try:
        return BudgetService(db, user_id).reset_spending(budget_id)
    except SERVICE_ERRORS as exc:
        raise http_error(exc) from exc


@app.post("/api/budgets/{budget_id}/recompute", response_model=BudgetOut)
def api_recompute_budget(
    budget_id: int,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
):
    try:
        return BudgetService(db, user_id).recompute_from_ledger(budget_id)
    except SERVICE_ERRORS as exc:
        raise http_error(exc) from exc


@app.get("/api/reports/category-totals")
def api_category_totals(
    db: Session = Depends(get_db), user_id: str = Depends(get_user_id)
):
    try:
        return LedgerService(db, user_id).category_totals()
    except SERVICE_ERRORS as exc:
        raise http_error(exc) from exc


@app.get("/api/reports/monthly-totals")
def api_monthly_totals(
    months: Optional[int] = Query(default=None, ge=1, le=120),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
):
    months_back = months or get_settings().report_months
    try:
        return LedgerService(db, user_id).monthly_totals(months_back)
    except SERVICE_ERRORS as exc:
        raise http_error(exc) from exc


@app.get("/api/reports/income-vs-expense")
def api_income_vs_expense(
    db: Session = Depends(get_db), user_id: str = Depends(get_user_id)
):
    try:
        return LedgerService(db, user_id).income_vs_expense()
    except SERVICE_ERRORS as exc:
        raise http_error(exc) from exc


@app.get("/api/reports/largest-expenses")
def api_largest_expenses(
    limit: int = Query(default=LARGEST_EXPENSES_LIMIT, ge=1, le=50),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_user_id),
):
    try:
        return LedgerService(db, user_id).largest_expenses(limit)
    except SERVICE_ERRORS as exc:
        raise http_error(exc) from exc


@app.get("/api/reports/budget-progress")
def api_budget_progress(
    db: Session = Depends(get_db), user_id: str = Depends(get_user_id)
):
    try:
        return LedgerService(db, user_id).budget_progress()
    except SERVICE_ERRORS as exc:
        raise http_error(exc) from exc
