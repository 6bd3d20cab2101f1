import datetime as dt
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import BudgetPeriod

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class SignupIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=6, max_length=200)


class LoginIn(BaseModel):
    email: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=200)


class ProfileUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    email: Optional[str] = Field(
        default=None, max_length=255, pattern=EMAIL_PATTERN
    )
    password: Optional[str] = Field(default=None, min_length=6, max_length=200)
    bio: Optional[str] = Field(default=None, max_length=1000)


class ExpenseIn(BaseModel):
    amount: float = Field(..., ge=0, allow_inf_nan=False)
    category: str = Field(..., min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    date: dt.date


class BudgetIn(BaseModel):
    category: str = Field(..., min_length=1, max_length=100)
    amount: float = Field(..., ge=0, allow_inf_nan=False)
    period: BudgetPeriod = BudgetPeriod.monthly


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: str


class ProfileOut(UserOut):
    bio: str = ""


class ExpenseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    amount: float
    category: str
    description: str
    date: dt.date


class BudgetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    category: str
    amount: float
    period: BudgetPeriod


class InsightItem(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)


class InsightReport(BaseModel):
    insights: list[InsightItem] = Field(default_factory=list)
    recommendations: list[InsightItem] = Field(default_factory=list)
    used_fallback: bool = False


class SavingOpportunityOut(BaseModel):
    category: str
    amount: float
    potential_savings: float = Field(..., ge=0)
    percentage: float
    reason: str


class SavingsReport(BaseModel):
    opportunities: list[SavingOpportunityOut] = Field(default_factory=list)
    used_fallback: bool = False
