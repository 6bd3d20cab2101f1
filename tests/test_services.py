from datetime import date

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

import actions
from config import get_settings
from database import Base
from models import Budget, BudgetPeriod
from schemas import BudgetIn, ExpenseIn
from services import BudgetService, ExpenseService, PersistenceError, UserService


def make_engine():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return engine


def test_user_lookup_by_email_and_id() -> None:
    with Session(make_engine()) as session:
        users = UserService(session)
        created = users.create("Ada", "ada@example.com", "hash")

        assert created.created_at is not None
        assert users.find_by_email("ada@example.com").id == created.id
        assert users.find_by_email("ADA@example.com") is None
        assert users.find_by_id(created.id).name == "Ada"
        assert users.find_by_id("not-a-real-id") is None
        assert users.find_by_id("") is None


def test_user_update_only_touches_present_fields() -> None:
    with Session(make_engine()) as session:
        users = UserService(session)
        user = users.create("Ada", "ada@example.com", "hash")
        users.update(user.id, {"bio": "Loves budgets"})

        updated = users.update(user.id, {"name": "Ada L.", "email": None})

        assert updated.name == "Ada L."
        assert updated.email == "ada@example.com"
        assert updated.bio == "Loves budgets"
        assert users.update(user.id, {}).name == "Ada L."
        assert users.update("missing", {"name": "x"}) is None


def test_expenses_are_listed_newest_first_per_user() -> None:
    with Session(make_engine()) as session:
        expenses = ExpenseService(session)
        expenses.create(
            "u1", ExpenseIn(amount=10, category="Food", date=date(2024, 3, 1))
        )
        expenses.create(
            "u1", ExpenseIn(amount=20, category="Travel", date=date(2024, 3, 9))
        )
        expenses.create(
            "u2", ExpenseIn(amount=99, category="Food", date=date(2024, 3, 5))
        )

        listed = expenses.list("u1")

        assert [e.amount for e in listed] == [20, 10]
        assert all(e.created_at is not None for e in listed)


def test_expense_delete_reports_whether_a_record_was_removed() -> None:
    with Session(make_engine()) as session:
        expenses = ExpenseService(session)
        created = expenses.create(
            "u1", ExpenseIn(amount=10, category="Food", date=date(2024, 3, 1))
        )

        assert expenses.delete(created.id, user_id="u2") is False
        assert expenses.delete(created.id, user_id="u1") is True
        assert expenses.delete(created.id) is False
        assert expenses.delete("does-not-exist") is False
        assert expenses.list("u1") == []


def test_budget_upsert_keeps_one_row_per_category() -> None:
    with Session(make_engine()) as session:
        budgets = BudgetService(session)
        first = budgets.upsert(
            "u1", BudgetIn(category="Rent", amount=800, period=BudgetPeriod.monthly)
        )
        second = budgets.upsert(
            "u1", BudgetIn(category="Rent", amount=900, period=BudgetPeriod.yearly)
        )
        budgets.upsert("u2", BudgetIn(category="Rent", amount=100))

        count = session.scalar(
            select(func.count())
            .select_from(Budget)
            .where(Budget.user_id == "u1", Budget.category == "Rent")
        )
        assert count == 1
        assert second.id == first.id
        assert second.created_at == first.created_at

        rent = budgets.find_by_category("u1", "Rent")
        assert rent.amount == 900
        assert rent.period == BudgetPeriod.yearly
        assert len(budgets.list("u2")) == 1


def test_budget_delete() -> None:
    with Session(make_engine()) as session:
        budgets = BudgetService(session)
        created = budgets.upsert("u1", BudgetIn(category="Food", amount=50))

        assert budgets.delete(created.id, user_id="u1") is True
        assert budgets.delete(created.id, user_id="u1") is False
        assert budgets.find_by_category("u1", "Food") is None


def test_database_failures_surface_as_persistence_error() -> None:
    engine = create_engine("sqlite:///:memory:")

    with Session(engine) as session:
        with pytest.raises(PersistenceError) as excinfo:
            ExpenseService(session).list("u1")

    assert isinstance(excinfo.value.__cause__, OperationalError)


def test_rent_budget_upsert_under_default_settings(monkeypatch) -> None:
    monkeypatch.delenv("BUDGET_ALLOW_CUSTOM_CATEGORIES", raising=False)
    get_settings.cache_clear()
    try:
        with Session(make_engine()) as session:
            first = actions.add_budget(
                session,
                "u1",
                BudgetIn(category="Rent", amount=800, period=BudgetPeriod.monthly),
                get_settings(),
            )
            second = actions.add_budget(
                session,
                "u1",
                BudgetIn(category="Rent", amount=900, period=BudgetPeriod.yearly),
                get_settings(),
            )

            assert first.success and second.success
            [rent] = BudgetService(session).list("u1")
            assert (rent.category, rent.amount, rent.period) == (
                "Rent",
                900,
                BudgetPeriod.yearly,
            )
    finally:
        get_settings.cache_clear()
