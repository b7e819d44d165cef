import logging
import traceback
from datetime import date, datetime
from typing import Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from sqlalchemy.orm import Session
from starlette.background import BackgroundTask
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import Settings, get_settings
from csv_utils import export_filename
from database import get_db, init_db
from errors import (
    DuplicateBudget,
    DuplicateIdentity,
    InvalidCredentials,
    NotFound,
    TokenInvalid,
    ValidationFailed,
)
from models import ExpenseCategory, User
from scheduler import SchedulerManager
from schemas import (
    BudgetIn,
    BudgetUpdate,
    CopyPreviousIn,
    ExpenseFilters,
    ExpenseIn,
    ExpenseUpdate,
    LoginIn,
    PasswordChangeIn,
    ProfileUpdateIn,
    RefreshIn,
    SignupIn,
)
from services import (
    DEFAULT_PAGE_SIZE,
    MAX_YEAR,
    MIN_YEAR,
    BudgetService,
    ExpenseService,
    ExportService,
    SummaryService,
    UserService,
    budget_to_dict,
    expense_to_dict,
    remove_export_file,
    user_to_dict,
)
from tokens import generate_token_pair, verify_refresh_token, verify_token

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Expense Tracker API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[get_settings().client_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    init_db()
    scheduler_manager.start()
    logger.info(f"app_started: environment={get_settings().environment}")


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def _fail(status_code: int, message: str, errors: Optional[list] = None) -> JSONResponse:
    body: dict[str, object] = {"success": False, "message": message}
    if errors:
        body["errors"] = errors
    return JSONResponse(status_code=status_code, content=body)


def _ok(data: Optional[dict] = None, message: Optional[str] = None) -> dict:
    body: dict[str, object] = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body


@app.exception_handler(ValidationFailed)
def validation_failed_handler(request: Request, exc: ValidationFailed):
    return _fail(exc.status_code, str(exc), exc.errors)


@app.exception_handler(DuplicateIdentity)
@app.exception_handler(DuplicateBudget)
@app.exception_handler(InvalidCredentials)
@app.exception_handler(TokenInvalid)
@app.exception_handler(NotFound)
def domain_error_handler(request: Request, exc: ValueError):
    return _fail(exc.status_code, str(exc))


def _error_field(loc: tuple) -> str:
    parts = [str(part) for part in loc if part not in ("body", "query", "path", "header")]
    return ".".join(parts) or "body"


def _error_message(msg: str) -> str:
    prefix = "Value error, "
    return msg[len(prefix):] if msg.startswith(prefix) else msg


@app.exception_handler(RequestValidationError)
def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": _error_field(err.get("loc", ())), "message": _error_message(err["msg"])}
        for err in exc.errors()
    ]
    return _fail(400, "Validation failed", errors)


@app.exception_handler(StarletteHTTPException)
def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404:
        return _fail(404, "Route not found")
    return _fail(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"unhandled_error: path={request.url.path}")
    body: dict[str, object] = {"success": False, "message": "Internal Server Error"}
    if not get_settings().is_production:
        body["stack"] = "".join(
            traceback.format_exception(type(exc), exc, exc.__traceback__)
        )
    return JSONResponse(status_code=500, content=body)


def get_current_user(
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> User:
    if not authorization or not authorization.startswith("Bearer "):
        raise TokenInvalid("Access token required")
    claims = verify_token(authorization[len("Bearer "):].strip(), settings)
    user = db.get(User, claims["userId"])
    if not user:
        raise TokenInvalid("User not found")
    return user


def _auth_payload(user: User, settings: Settings) -> dict:
    return {"user": user_to_dict(user), **generate_token_pair(user, settings)}


@app.get("/health")
def health(settings: Settings = Depends(get_settings)):
    return {
        "status": "OK",
        "timestamp": datetime.utcnow().isoformat() + "Z",
        "environment": settings.environment,
    }


@app.post("/auth/signup", status_code=201)
def signup(
    payload: SignupIn,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    user = UserService(db, settings).register(payload)
    return _ok(_auth_payload(user, settings), "User registered successfully")


@app.post("/auth/login")
def login(
    payload: LoginIn,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    user = UserService(db, settings).authenticate(payload.email, payload.password)
    return _ok(_auth_payload(user, settings), "Login successful")


@app.post("/auth/refresh")
def refresh(
    payload: RefreshIn,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    claims = verify_refresh_token(payload.refresh_token, settings)
    user = db.get(User, claims["userId"])
    if not user:
        raise TokenInvalid("User not found")
    return _ok(generate_token_pair(user, settings), "Token refreshed successfully")


@app.get("/auth/me")
def me(user: User = Depends(get_current_user)):
    return _ok({"user": user_to_dict(user)})


@app.put("/auth/profile")
def update_profile(
    payload: ProfileUpdateIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    user = UserService(db, settings).update_profile(user, payload)
    return _ok({"user": user_to_dict(user)}, "Profile updated successfully")


@app.put("/auth/change-password")
def change_password(
    payload: PasswordChangeIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    UserService(db, settings).change_password(user, payload)
    return _ok(message="Password changed successfully")


@app.get("/expenses")
def list_expenses(
    page: int = Query(1),
    limit: int = Query(DEFAULT_PAGE_SIZE),
    category: Optional[ExpenseCategory] = Query(None),
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    sort_by: str = Query("date", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    result = ExpenseService(db, user.id).list(
        page=page,
        limit=limit,
        category=category,
        start_date=start_date,
        end_date=end_date,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return _ok(
        {
            "expenses": [expense_to_dict(e) for e in result.items],
            "pagination": result.pagination(),
        }
    )


@app.post("/expenses", status_code=201)
def create_expense(
    payload: ExpenseIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    expense, alerts = ExpenseService(db, user.id).create(payload)
    body = _ok({"expense": expense_to_dict(expense)}, "Expense created successfully")
    if alerts:
        body["budgetAlerts"] = alerts
    return body


@app.get("/expenses/stats")
def expense_stats(
    period: str = Query("month"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _ok(ExpenseService(db, user.id).stats(period))


@app.get("/expenses/search")
def search_expenses(
    q: Optional[str] = Query(None),
    page: int = Query(1),
    limit: int = Query(DEFAULT_PAGE_SIZE),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    result = ExpenseService(db, user.id).search(q, page=page, limit=limit)
    return _ok(
        {
            "expenses": [expense_to_dict(e) for e in result.items],
            "pagination": result.pagination(),
            "query": q,
        }
    )


@app.get("/expenses/{expense_id}")
def get_expense(
    expense_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    expense = ExpenseService(db, user.id).get(expense_id)
    return _ok({"expense": expense_to_dict(expense)})


@app.put("/expenses/{expense_id}")
def update_expense(
    expense_id: int,
    payload: ExpenseUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    expense = ExpenseService(db, user.id).update(expense_id, payload)
    return _ok({"expense": expense_to_dict(expense)}, "Expense updated successfully")


@app.delete("/expenses/{expense_id}")
def delete_expense(
    expense_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ExpenseService(db, user.id).delete(expense_id)
    return _ok(message="Expense deleted successfully")


@app.get("/budgets")
def list_budgets(
    month_year: Optional[str] = Query(None, alias="monthYear"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    service = BudgetService(db, user.id)
    budgets = service.list(month_year)
    return _ok({"budgets": [budget_to_dict(b, service.today) for b in budgets]})


@app.post("/budgets", status_code=201)
def create_budget(
    payload: BudgetIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    service = BudgetService(db, user.id)
    budget = service.create(payload)
    return _ok({"budget": budget_to_dict(budget, service.today)}, "Budget created successfully")


@app.get("/budgets/status")
def budget_status(
    month_year: Optional[str] = Query(None, alias="monthYear"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    service = BudgetService(db, user.id)
    target = month_year or service.current_month_year
    return _ok({"monthYear": target, "budgetStatus": service.status(target)})


@app.get("/budgets/alerts")
def budget_alerts(
    month_year: Optional[str] = Query(None, alias="monthYear"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    service = BudgetService(db, user.id)
    target = month_year or service.current_month_year
    alerts = service.alerts(target)
    return _ok({"monthYear": target, "alerts": alerts, "alertCount": len(alerts)})


@app.get("/budgets/recommendations")
def budget_recommendations(
    months: int = Query(3),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _ok(BudgetService(db, user.id).recommend(months))


@app.post("/budgets/copy-previous", status_code=201)
def copy_previous_budget(
    payload: CopyPreviousIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    service = BudgetService(db, user.id)
    budget = service.copy_previous_month(payload.category)
    return _ok(
        {"budget": budget_to_dict(budget, service.today)},
        "Budget copied from previous month successfully",
    )


@app.get("/budgets/{budget_id}")
def get_budget(
    budget_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _ok({"budget": BudgetService(db, user.id).detail(budget_id)})


@app.put("/budgets/{budget_id}")
def update_budget(
    budget_id: int,
    payload: BudgetUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    service = BudgetService(db, user.id)
    budget = service.update(budget_id, payload)
    return _ok({"budget": budget_to_dict(budget, service.today)}, "Budget updated successfully")


@app.delete("/budgets/{budget_id}")
def delete_budget(
    budget_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    BudgetService(db, user.id).delete(budget_id)
    return _ok(message="Budget deleted successfully")


@app.get("/summary/dashboard")
def summary_dashboard(
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    return _ok(SummaryService(db, user.id).dashboard())


@app.get("/summary/monthly")
def summary_monthly(
    year: Optional[int] = Query(None, ge=MIN_YEAR, le=MAX_YEAR),
    month: Optional[int] = Query(None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _ok(SummaryService(db, user.id).monthly(year, month))


@app.get("/summary/category")
def summary_category(
    period: Optional[str] = Query("month"),
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _ok(SummaryService(db, user.id).category_summary(period, start_date, end_date))


@app.get("/summary/trends")
def summary_trends(
    period: str = Query("year"),
    year: Optional[int] = Query(None, ge=MIN_YEAR, le=MAX_YEAR),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _ok(SummaryService(db, user.id).trends(period, year))


@app.get("/summary/payment-methods")
def summary_payment_methods(
    period: Optional[str] = Query("month"),
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _ok(SummaryService(db, user.id).payment_methods(period, start_date, end_date))


def _attachment(path_name: str) -> dict[str, str]:
    return {"Content-Disposition": f'attachment; filename="{path_name}"'}


@app.get("/export/expenses/csv")
def export_expenses_csv(
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    category: Optional[ExpenseCategory] = Query(None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    filters = ExpenseFilters(category=category, start_date=start_date, end_date=end_date)
    path = ExportService(db, user, settings).expenses_csv(filters)
    return FileResponse(
        path,
        media_type="text/csv",
        filename=path.name,
        background=BackgroundTask(remove_export_file, path),
    )


@app.get("/export/expenses/json")
def export_expenses_json(
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    category: Optional[ExpenseCategory] = Query(None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    filters = ExpenseFilters(category=category, start_date=start_date, end_date=end_date)
    data = ExportService(db, user, settings).expenses_json(filters)
    return JSONResponse(
        content=data, headers=_attachment(export_filename("expenses", "json"))
    )


@app.get("/export/budgets/csv")
def export_budgets_csv(
    month_year: Optional[str] = Query(None, alias="monthYear"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    path = ExportService(db, user, settings).budgets_csv(month_year)
    return FileResponse(
        path,
        media_type="text/csv",
        filename=path.name,
        background=BackgroundTask(remove_export_file, path),
    )


@app.get("/export/complete")
def export_complete(
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    data = ExportService(db, user, settings).complete(start_date, end_date)
    return JSONResponse(
        content=data, headers=_attachment(export_filename("complete-export", "json"))
    )


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=get_settings().port, reload=False)


if __name__ == "__main__":
    main()
