from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models import Budget, Expense, User
from schemas import BudgetIn, ExpenseIn

logger = logging.getLogger(__name__)

USER_UPDATABLE_FIELDS = ("name", "email", "password_hash", "bio")


class PersistenceError(RuntimeError):
    pass


class NotFoundOnDelete(ValueError):
    pass


@contextmanager
def db_errors(session: Session, action: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error(f"db_error: action={action} error={exc.__class__.__name__}")
        raise PersistenceError("Database error") from exc


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def find_by_email(self, email: str) -> Optional[User]:
        with db_errors(self.session, "find_user_by_email"):
            return self.session.scalar(select(User).where(User.email == email))

    def find_by_id(self, user_id: Optional[str]) -> Optional[User]:
        if not user_id or not isinstance(user_id, str):
            return None
        with db_errors(self.session, "find_user_by_id"):
            return self.session.get(User, user_id)

    def create(self, name: str, email: str, password_hash: str) -> User:
        user = User(name=name, email=email, password_hash=password_hash)
        with db_errors(self.session, "create_user"):
            self.session.add(user)
            self.session.commit()
            self.session.refresh(user)
        return user

    def update(self, user_id: str, fields: dict[str, object]) -> Optional[User]:
        user = self.find_by_id(user_id)
        if user is None:
            return None
        changes = {
            key: value
            for key, value in fields.items()
            if key in USER_UPDATABLE_FIELDS and value is not None
        }
        if not changes:
            return user
        with db_errors(self.session, "update_user"):
            for key, value in changes.items():
                setattr(user, key, value)
            self.session.commit()
            self.session.refresh(user)
        return user


class ExpenseService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list(self, user_id: str) -> list[Expense]:
        stmt = (
            select(Expense)
            .where(Expense.user_id == user_id)
            .order_by(Expense.date.desc(), Expense.created_at.desc())
        )
        with db_errors(self.session, "list_expenses"):
            return list(self.session.scalars(stmt).all())

    def create(self, user_id: str, data: ExpenseIn) -> Expense:
        expense = Expense(
            user_id=user_id,
            amount=data.amount,
            category=data.category,
            description=data.description,
            date=data.date,
        )
        with db_errors(self.session, "create_expense"):
            self.session.add(expense)
            self.session.commit()
            self.session.refresh(expense)
        return expense

    def delete(self, expense_id: str, user_id: Optional[str] = None) -> bool:
        with db_errors(self.session, "delete_expense"):
            expense = self.session.get(Expense, expense_id) if expense_id else None
            if expense is None:
                return False
            if user_id is not None and expense.user_id != user_id:
                return False
            self.session.delete(expense)
            self.session.commit()
        return True


class BudgetService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list(self, user_id: str) -> list[Budget]:
        with db_errors(self.session, "list_budgets"):
            return list(
                self.session.scalars(
                    select(Budget).where(Budget.user_id == user_id)
                ).all()
            )

    def find_by_category(self, user_id: str, category: str) -> Optional[Budget]:
        stmt = select(Budget).where(
            Budget.user_id == user_id, Budget.category == category
        )
        with db_errors(self.session, "find_budget_by_category"):
            return self.session.scalar(stmt)

    def upsert(self, user_id: str, data: BudgetIn) -> Budget:
        existing = self.find_by_category(user_id, data.category)
        with db_errors(self.session, "upsert_budget"):
            if existing:
                existing.amount = data.amount
                existing.period = data.period
                self.session.commit()
                self.session.refresh(existing)
                return existing

            budget = Budget(
                user_id=user_id,
                category=data.category,
                amount=data.amount,
                period=data.period,
            )
            self.session.add(budget)
            self.session.commit()
            self.session.refresh(budget)
        return budget

    def delete(self, budget_id: str, user_id: Optional[str] = None) -> bool:
        with db_errors(self.session, "delete_budget"):
            budget = self.session.get(Budget, budget_id) if budget_id else None
            if budget is None:
                return False
            if user_id is not None and budget.user_id != user_id:
                return False
            self.session.delete(budget)
            self.session.commit()
        return True
