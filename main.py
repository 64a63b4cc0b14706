import logging
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette import status

from cache import UserScopedCache
from config import ALLOWED_PAGE_SIZES, get_settings
from database import get_db
from errors import LedgerError, MonthlyBalanceNotFoundError, NotFoundError
from locking import KeyedLocks
from periods import previous_month
from scheduler import SchedulerManager
from schemas import (
    AdjustmentCreateIn,
    AdjustmentOut,
    AdjustmentPageOut,
    AdjustmentUpdateIn,
    BatchSummaryOut,
    DateRangeIn,
    MonthlyBalanceOut,
    MonthlyBalancePageOut,
)
from services import (
    BatchSummary,
    ExpenseAdjustmentService,
    MonthlyBalanceService,
    Page,
)


logger = logging.getLogger(__name__)

app = FastAPI(title="Expenses Ledger")

# month totals for completed adjustments, dropped per user on every write
adjustment_cache = UserScopedCache()
adjustment_locks = KeyedLocks()


@app.exception_handler(LedgerError)
def ledger_error_handler(request: Request, exc: LedgerError):
    if exc.status_code >= 500:
        logger.error(f"request_failed: {request.method} {request.url.path} {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.payload())


@app.exception_handler(RequestValidationError)
def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "validation_error",
            "detail": jsonable_encoder(exc.errors()),
        },
    )


@app.exception_handler(Exception)
def server_error_handler(request: Request, exc: Exception):
    logger.exception(f"unhandled exception: {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "internal_error",
            "detail": "An unexpected error occurred.",
        },
    )


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    if get_settings().scheduler_enabled:
        scheduler_manager.start()
    else:
        logger.info("Scheduler disabled")


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def balance_service(db: Session = Depends(get_db)) -> MonthlyBalanceService:
    return MonthlyBalanceService(db)


def adjustment_service(db: Session = Depends(get_db)) -> ExpenseAdjustmentService:
    return ExpenseAdjustmentService(db, cache=adjustment_cache, locks=adjustment_locks)


def _summary_out(summary: BatchSummary, message: str) -> BatchSummaryOut:
    return BatchSummaryOut(
        message=message,
        year=summary.year,
        month=summary.month,
        generated=summary.generated,
        existing=summary.existing,
        failed_user_ids=summary.failed_user_ids,
    )


def _balance_page(page: Page) -> MonthlyBalancePageOut:
    return MonthlyBalancePageOut(
        content=[MonthlyBalanceOut.model_validate(row) for row in page.items],
        page=page.page,
        size=page.size,
        total_elements=page.total_elements,
        total_pages=page.total_pages,
    )


def _adjustment_page(
    service: ExpenseAdjustmentService, page: Page
) -> AdjustmentPageOut:
    return AdjustmentPageOut(
        content=service.describe(page.items),
        page=page.page,
        size=page.size,
        total_elements=page.total_elements,
        total_pages=page.total_pages,
    )


@app.post("/api/monthly-balance/generate", response_model=BatchSummaryOut)
def generate_all_balances(
    year: Optional[int] = None,
    month: Optional[int] = None,
    service: MonthlyBalanceService = Depends(balance_service),
):
    summary = service.generate_for_all_users(year, month)
    return _summary_out(
        summary, f"Monthly balances generated for all users for {summary.label}"
    )


@app.post("/api/monthly-balance/generate/{user_id}", response_model=MonthlyBalanceOut)
def generate_user_balance(
    user_id: str,
    year: Optional[int] = None,
    month: Optional[int] = None,
    service: MonthlyBalanceService = Depends(balance_service),
):
    return service.generate_for_user(user_id, year, month)


@app.get("/api/monthly-balance/previous", response_model=MonthlyBalanceOut)
def previous_month_balance(
    user_id: str, service: MonthlyBalanceService = Depends(balance_service)
):
    balance = service.previous_month_balance(user_id)
    if balance is None:
        year, month = previous_month()
        raise MonthlyBalanceNotFoundError(user_id, year, month)
    return balance


@app.get("/api/monthly-balance/latest", response_model=MonthlyBalanceOut)
def latest_balance(
    user_id: str, service: MonthlyBalanceService = Depends(balance_service)
):
    balance = service.latest_for_user(user_id)
    if balance is None:
        raise NotFoundError(f"No monthly balance stored for user '{user_id}'")
    return balance


@app.get("/api/monthly-balance/all", response_model=MonthlyBalancePageOut)
def list_balances(
    user_id: str,
    page: Optional[int] = None,
    size: Optional[int] = None,
    service: MonthlyBalanceService = Depends(balance_service),
):
    return _balance_page(service.list_for_user(user_id, page, size))


@app.post(
    "/api/expense-adjustment",
    response_model=AdjustmentOut,
    status_code=status.HTTP_201_CREATED,
)
def create_adjustment(
    payload: AdjustmentCreateIn,
    service: ExpenseAdjustmentService = Depends(adjustment_service),
):
    adjustment = service.create(payload)
    return service.describe([adjustment])[0]


@app.put("/api/expense-adjustment", response_model=AdjustmentOut)
def update_adjustment(
    payload: AdjustmentUpdateIn,
    service: ExpenseAdjustmentService = Depends(adjustment_service),
):
    adjustment = service.update(payload)
    return service.describe([adjustment])[0]


@app.get("/api/expense-adjustment/page-sizes")
def page_sizes():
    return {"allowed": list(ALLOWED_PAGE_SIZES)}


@app.get("/api/expense-adjustment/user/{user_id}", response_model=AdjustmentPageOut)
def adjustments_for_user(
    user_id: str,
    page: Optional[int] = None,
    size: Optional[int] = None,
    service: ExpenseAdjustmentService = Depends(adjustment_service),
):
    return _adjustment_page(service, service.list_by_user(user_id, page, size))


@app.get(
    "/api/expense-adjustment/expense/{user_id}/{expense_id}",
    response_model=list[AdjustmentOut],
)
def adjustments_for_expense(
    user_id: str,
    expense_id: int,
    service: ExpenseAdjustmentService = Depends(adjustment_service),
):
    return service.describe(service.list_by_expense(user_id, expense_id))


@app.post("/api/expense-adjustment/range", response_model=AdjustmentPageOut)
def adjustments_in_range(
    payload: DateRangeIn,
    page: Optional[int] = None,
    size: Optional[int] = None,
    service: ExpenseAdjustmentService = Depends(adjustment_service),
):
    result = service.list_by_date_range(
        payload.user_id, payload.start_date, payload.end_date, page, size
    )
    return _adjustment_page(service, result)


@app.get("/api/expense-adjustment/total/expense/{expense_id}")
def completed_total_for_expense(
    expense_id: int,
    service: ExpenseAdjustmentService = Depends(adjustment_service),
):
    total = service.total_completed_for_expense(expense_id)
    return {"expense_id": expense_id, "total": str(total)}


@app.get("/api/expense-adjustment/total/month/{user_id}/{year}/{month}")
def completed_total_for_month(
    user_id: str,
    year: int,
    month: int,
    service: ExpenseAdjustmentService = Depends(adjustment_service),
):
    total = service.total_completed_for_month(user_id, year, month)
    return {"user_id": user_id, "year": year, "month": month, "total": str(total)}


@app.get("/api/expense-adjustment/{user_id}/{adjustment_id}", response_model=AdjustmentOut)
def get_adjustment(
    user_id: str,
    adjustment_id: int,
    service: ExpenseAdjustmentService = Depends(adjustment_service),
):
    return service.describe([service.get(user_id, adjustment_id)])[0]


@app.delete("/api/expense-adjustment/{user_id}/{adjustment_id}")
def delete_adjustment(
    user_id: str,
    adjustment_id: int,
    service: ExpenseAdjustmentService = Depends(adjustment_service),
):
    service.delete(user_id, adjustment_id)
    return {"message": "Expense adjustment deleted successfully", "id": adjustment_id}


def main() -> None:
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
