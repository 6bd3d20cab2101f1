import logging
from dataclasses import asdict
from typing import Iterator, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, sessionmaker

import actions
from actions import ActionResult
from aggregation import (
    account_stats,
    budget_usage,
    category_report,
    daily_spending,
    monthly_rollup,
    overview,
)
from auth import (
    SESSION_COOKIE_NAME,
    AuthService,
    issue_session_token,
    session_cookie_options,
)
from config import Settings, get_settings
from csrf import generate_csrf_token, validate_csrf_token
from currencies import CurrencyService
from database import build_engine, build_sessionmaker
from insights import InsightGenerator
from models import User
from schemas import (
    BudgetIn,
    BudgetOut,
    ExpenseIn,
    ExpenseOut,
    LoginIn,
    ProfileOut,
    ProfileUpdateIn,
    SignupIn,
    UserOut,
)
from services import PersistenceError

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

CSRF_HEADER = "X-CSRF-Token"

STATUS_BY_CODE = {
    actions.INVALID_CREDENTIALS: 401,
    actions.EMAIL_IN_USE: 409,
    actions.USER_NOT_FOUND: 404,
    actions.NOT_FOUND: 404,
    actions.INVALID_INPUT: 400,
    actions.PERSISTENCE_ERROR: 503,
}


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()


def failure_response(result: ActionResult) -> JSONResponse:
    status = STATUS_BY_CODE.get(result.code, 400)
    logger.info(f"action_failed: code={result.code} status={status}")
    return JSONResponse(
        status_code=status, content={"success": False, "error": result.error}
    )


def profile_payload(user: User) -> dict[str, object]:
    return ProfileOut(
        id=user.id, name=user.name, email=user.email, bio=user.bio or ""
    ).model_dump()


def get_db(request: Request) -> Iterator[Session]:
    factory: sessionmaker = request.app.state.session_factory
    db = factory()
    try:
        yield db
    finally:
        db.close()


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def optional_user(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> Optional[User]:
    token = request.cookies.get(SESSION_COOKIE_NAME)
    try:
        return AuthService(db, settings).current_user(token)
    except PersistenceError:
        # an unreadable user store reads as logged out
        logger.warning("session_lookup_failed: reason=persistence_error")
        return None


def require_user(user: Optional[User] = Depends(optional_user)) -> User:
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


def require_csrf(
    request: Request,
    user: User = Depends(require_user),
    settings: Settings = Depends(get_app_settings),
) -> User:
    token = request.headers.get(CSRF_HEADER, "")
    if not validate_csrf_token(token, user.id, settings=settings):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")
    return user


def _start_session(response: JSONResponse, user: User, settings: Settings) -> None:
    response.set_cookie(
        SESSION_COOKIE_NAME,
        issue_session_token(user.id, settings),
        **session_cookie_options(settings),
    )


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    insight_generator: Optional[InsightGenerator] = None,
) -> FastAPI:
    settings = settings or get_settings()
    if session_factory is None:
        session_factory = build_sessionmaker(build_engine(settings.database_url))

    app = FastAPI(title="Budget Tracker", version=APP_VERSION)
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.insight_generator = insight_generator or InsightGenerator(settings)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        messages = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ())[1:]) or 'body'}: {err.get('msg')}"
            for err in exc.errors()
        )
        return JSONResponse(
            status_code=400, content={"success": False, "error": messages}
        )

    @app.get("/api/health")
    def health():
        return {"status": "ok", "version": APP_VERSION}

    @app.post("/api/auth/signup")
    def signup(payload: SignupIn, db: Session = Depends(get_db)):
        result = actions.signup(db, payload, settings)
        if not result.success:
            return failure_response(result)
        response = JSONResponse(
            status_code=201,
            content={
                "success": True,
                "user": UserOut.model_validate(result.data).model_dump(),
            },
        )
        _start_session(response, result.data, settings)
        return response

    @app.post("/api/auth/login")
    def login(payload: LoginIn, db: Session = Depends(get_db)):
        result = actions.login(db, payload, settings)
        if not result.success:
            return failure_response(result)
        response = JSONResponse(
            content={
                "success": True,
                "user": UserOut.model_validate(result.data).model_dump(),
            }
        )
        _start_session(response, result.data, settings)
        return response

    @app.post("/api/auth/logout")
    def logout():
        response = JSONResponse(content={"success": True})
        response.delete_cookie(SESSION_COOKIE_NAME, path="/")
        return response

    @app.get("/api/auth/me")
    def me(user: Optional[User] = Depends(optional_user)):
        if user is None:
            return {"user": None}
        return {"user": UserOut.model_validate(user).model_dump()}

    @app.get("/api/csrf")
    def csrf_token(user: User = Depends(require_user)):
        return {"csrf_token": generate_csrf_token(user.id, settings=settings)}

    @app.get("/api/profile")
    def read_profile(user: User = Depends(require_user), db: Session = Depends(get_db)):
        result = actions.get_profile(db, user.id)
        if not result.success:
            return failure_response(result)
        return {"success": True, "user": profile_payload(result.data)}

    @app.patch("/api/profile")
    def update_profile(
        payload: ProfileUpdateIn,
        user: User = Depends(require_csrf),
        db: Session = Depends(get_db),
    ):
        result = actions.update_profile(db, user.id, payload)
        if not result.success:
            return failure_response(result)
        return {"success": True, "user": profile_payload(result.data)}

    @app.get("/api/expenses")
    def list_expenses(user: User = Depends(require_user), db: Session = Depends(get_db)):
        result = actions.list_expenses(db, user.id)
        if not result.success:
            return failure_response(result)
        return [ExpenseOut.model_validate(e).model_dump(mode="json") for e in result.data]

    @app.post("/api/expenses")
    def create_expense(
        payload: ExpenseIn,
        user: User = Depends(require_csrf),
        db: Session = Depends(get_db),
    ):
        result = actions.add_expense(db, user.id, payload, settings)
        if not result.success:
            return failure_response(result)
        return JSONResponse(
            status_code=201,
            content=ExpenseOut.model_validate(result.data).model_dump(mode="json"),
        )

    @app.delete("/api/expenses/{expense_id}")
    def delete_expense(
        expense_id: str,
        user: User = Depends(require_csrf),
        db: Session = Depends(get_db),
    ):
        result = actions.delete_expense(db, user.id, expense_id)
        if not result.success:
            return failure_response(result)
        return {"success": True, "message": result.data}

    @app.get("/api/budgets")
    def list_budgets(user: User = Depends(require_user), db: Session = Depends(get_db)):
        result = actions.list_budgets(db, user.id)
        if not result.success:
            return failure_response(result)
        return [BudgetOut.model_validate(b).model_dump(mode="json") for b in result.data]

    @app.post("/api/budgets")
    def save_budget(
        payload: BudgetIn,
        user: User = Depends(require_csrf),
        db: Session = Depends(get_db),
    ):
        result = actions.add_budget(db, user.id, payload, settings)
        if not result.success:
            return failure_response(result)
        return BudgetOut.model_validate(result.data).model_dump(mode="json")

    @app.delete("/api/budgets/{budget_id}")
    def delete_budget(
        budget_id: str,
        user: User = Depends(require_csrf),
        db: Session = Depends(get_db),
    ):
        result = actions.delete_budget(db, user.id, budget_id)
        if not result.success:
            return failure_response(result)
        return {"success": True, "message": result.data}

    def _snapshot_or_fail(db: Session, user: User):
        result = actions.financial_snapshot(db, user.id)
        if not result.success:
            raise HTTPException(
                status_code=STATUS_BY_CODE[result.code], detail=result.error
            )
        return result.data

    @app.get("/api/summary")
    def summary(user: User = Depends(require_user), db: Session = Depends(get_db)):
        snapshot = _snapshot_or_fail(db, user)
        return {
            "total_spent": snapshot.total_spent,
            "total_budget": snapshot.total_budget,
            "category_summary": snapshot.category_summary,
            "overview": asdict(overview(snapshot)),
            "budget_usage": [asdict(row) for row in budget_usage(snapshot)],
        }

    @app.get("/api/reports/monthly")
    def monthly_report(user: User = Depends(require_user), db: Session = Depends(get_db)):
        snapshot = _snapshot_or_fail(db, user)
        rows = monthly_rollup(snapshot.expenses, snapshot.budgets)
        return [asdict(row) for row in rows]

    @app.get("/api/reports/categories")
    def categories_report(
        user: User = Depends(require_user), db: Session = Depends(get_db)
    ):
        snapshot = _snapshot_or_fail(db, user)
        report = category_report(snapshot.expenses, snapshot.budgets)
        return {category: asdict(totals) for category, totals in report.items()}

    @app.get("/api/insights")
    async def insights(
        request: Request,
        user: User = Depends(require_user),
        db: Session = Depends(get_db),
    ):
        snapshot = await run_in_threadpool(_snapshot_or_fail, db, user)
        generator: InsightGenerator = request.app.state.insight_generator
        report = await generator.generate(snapshot)
        return report.model_dump()

    @app.get("/api/savings")
    async def savings(
        request: Request,
        user: User = Depends(require_user),
        db: Session = Depends(get_db),
    ):
        snapshot = await run_in_threadpool(_snapshot_or_fail, db, user)
        generator: InsightGenerator = request.app.state.insight_generator
        report = await generator.saving_opportunities(snapshot)
        return report.model_dump()

    @app.get("/api/stats")
    def stats(user: User = Depends(require_user), db: Session = Depends(get_db)):
        snapshot = _snapshot_or_fail(db, user)
        return asdict(account_stats(snapshot.expenses))

    @app.get("/api/trends")
    def trends(user: User = Depends(require_user), db: Session = Depends(get_db)):
        snapshot = _snapshot_or_fail(db, user)
        return [asdict(row) for row in daily_spending(snapshot.expenses)]

    @app.get("/api/categories")
    def categories():
        return {
            "categories": list(settings.categories),
            "allow_custom": settings.allow_custom_categories,
        }

    @app.get("/api/currencies")
    def currencies():
        items, used_fallback = CurrencyService().list_currencies()
        return {
            "currencies": [asdict(c) for c in items],
            "used_fallback": used_fallback,
        }

    return app


app = create_app()
