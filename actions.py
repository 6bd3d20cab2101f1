"""Caller-facing operations.

Each action returns an ``ActionResult`` instead of raising, so the web layer
can show an inline message for auth and persistence failures.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.orm import Session

from aggregation import FinancialSnapshot, build_snapshot
from auth import AuthService, EmailInUse, InvalidCredentials, UserNotFound
from categories import CategoryAmbiguous, CategoryNotAllowed, normalize_category
from config import Settings
from schemas import BudgetIn, ExpenseIn, LoginIn, ProfileUpdateIn, SignupIn
from services import BudgetService, ExpenseService, NotFoundOnDelete, PersistenceError

logger = logging.getLogger(__name__)

OK = "ok"
INVALID_CREDENTIALS = "invalid_credentials"
EMAIL_IN_USE = "email_in_use"
USER_NOT_FOUND = "user_not_found"
NOT_FOUND = "not_found"
INVALID_INPUT = "invalid_input"
PERSISTENCE_ERROR = "persistence_error"


@dataclass(frozen=True)
class ActionResult:
    success: bool
    data: Any = None
    error: Optional[str] = None
    code: str = OK

    @classmethod
    def ok(cls, data: Any = None) -> "ActionResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, code: str, error: str) -> "ActionResult":
        return cls(success=False, error=error, code=code)


def login(session: Session, data: LoginIn, settings: Optional[Settings] = None) -> ActionResult:
    try:
        user = AuthService(session, settings).login(data.email, data.password)
    except InvalidCredentials as exc:
        return ActionResult.fail(INVALID_CREDENTIALS, str(exc))
    except PersistenceError:
        logger.exception("login_error")
        return ActionResult.fail(PERSISTENCE_ERROR, "An error occurred during login")
    return ActionResult.ok(user)


def signup(session: Session, data: SignupIn, settings: Optional[Settings] = None) -> ActionResult:
    try:
        user = AuthService(session, settings).signup(data.name, data.email, data.password)
    except EmailInUse as exc:
        return ActionResult.fail(EMAIL_IN_USE, str(exc))
    except PersistenceError:
        logger.exception("signup_error")
        return ActionResult.fail(PERSISTENCE_ERROR, "An error occurred during signup")
    return ActionResult.ok(user)


def get_profile(session: Session, user_id: str) -> ActionResult:
    try:
        user = AuthService(session).get_profile(user_id)
    except UserNotFound as exc:
        return ActionResult.fail(USER_NOT_FOUND, str(exc))
    except PersistenceError:
        logger.exception("get_profile_error")
        return ActionResult.fail(PERSISTENCE_ERROR, "Failed to fetch user profile")
    return ActionResult.ok(user)


def update_profile(session: Session, user_id: str, data: ProfileUpdateIn) -> ActionResult:
    try:
        user = AuthService(session).update_profile(user_id, data)
    except UserNotFound as exc:
        return ActionResult.fail(USER_NOT_FOUND, str(exc))
    except EmailInUse as exc:
        return ActionResult.fail(EMAIL_IN_USE, str(exc))
    except PersistenceError:
        logger.exception("update_profile_error")
        return ActionResult.fail(
            PERSISTENCE_ERROR, "An error occurred while updating profile"
        )
    return ActionResult.ok(user)


def _category_for(raw: str, settings: Optional[Settings]) -> str:
    if settings is None:
        return normalize_category(raw)
    return normalize_category(
        raw, settings.categories, allow_custom=settings.allow_custom_categories
    )


def list_expenses(session: Session, user_id: str) -> ActionResult:
    try:
        return ActionResult.ok(ExpenseService(session).list(user_id))
    except PersistenceError:
        return ActionResult.fail(PERSISTENCE_ERROR, "Failed to fetch expenses")


def add_expense(
    session: Session, user_id: str, data: ExpenseIn, settings: Optional[Settings] = None
) -> ActionResult:
    try:
        category = _category_for(data.category, settings)
    except (CategoryNotAllowed, CategoryAmbiguous) as exc:
        return ActionResult.fail(INVALID_INPUT, str(exc))
    try:
        expense = ExpenseService(session).create(
            user_id, data.model_copy(update={"category": category})
        )
    except PersistenceError:
        return ActionResult.fail(PERSISTENCE_ERROR, "Failed to add expense")
    logger.info(f"expense_added: user_id={user_id} expense_id={expense.id}")
    return ActionResult.ok(expense)


def delete_expense(session: Session, user_id: str, expense_id: str) -> ActionResult:
    try:
        if not ExpenseService(session).delete(expense_id, user_id=user_id):
            raise NotFoundOnDelete("Expense not found or unauthorized")
    except (NotFoundOnDelete, PersistenceError) as exc:
        logger.warning(f"expense_delete_failed: expense_id={expense_id} reason={exc}")
        code = NOT_FOUND if isinstance(exc, NotFoundOnDelete) else PERSISTENCE_ERROR
        return ActionResult.fail(code, "Failed to delete expense")
    return ActionResult.ok("Expense deleted successfully")


def list_budgets(session: Session, user_id: str) -> ActionResult:
    try:
        return ActionResult.ok(BudgetService(session).list(user_id))
    except PersistenceError:
        return ActionResult.fail(PERSISTENCE_ERROR, "Failed to fetch budgets")


def add_budget(
    session: Session, user_id: str, data: BudgetIn, settings: Optional[Settings] = None
) -> ActionResult:
    try:
        category = _category_for(data.category, settings)
    except (CategoryNotAllowed, CategoryAmbiguous) as exc:
        return ActionResult.fail(INVALID_INPUT, str(exc))
    try:
        budget = BudgetService(session).upsert(
            user_id, data.model_copy(update={"category": category})
        )
    except PersistenceError:
        return ActionResult.fail(PERSISTENCE_ERROR, "Failed to add budget")
    logger.info(f"budget_saved: user_id={user_id} category={category}")
    return ActionResult.ok(budget)


def delete_budget(session: Session, user_id: str, budget_id: str) -> ActionResult:
    try:
        if not BudgetService(session).delete(budget_id, user_id=user_id):
            raise NotFoundOnDelete("Budget not found or unauthorized")
    except (NotFoundOnDelete, PersistenceError) as exc:
        logger.warning(f"budget_delete_failed: budget_id={budget_id} reason={exc}")
        code = NOT_FOUND if isinstance(exc, NotFoundOnDelete) else PERSISTENCE_ERROR
        return ActionResult.fail(code, "Failed to delete budget")
    return ActionResult.ok("Budget deleted successfully")


def financial_snapshot(session: Session, user_id: str) -> ActionResult:
    try:
        expenses = ExpenseService(session).list(user_id)
        budgets = BudgetService(session).list(user_id)
    except PersistenceError:
        return ActionResult.fail(PERSISTENCE_ERROR, "Failed to fetch financial data")
    snapshot: FinancialSnapshot = build_snapshot(expenses, budgets)
    return ActionResult.ok(snapshot)
