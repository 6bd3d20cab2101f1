from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional, Protocol

from pydantic import BaseModel, ValidationError

from aggregation import (
    FinancialSnapshot,
    recent_expenses,
    safe_amount,
    saving_opportunities,
)
from config import Settings, get_settings
from schemas import InsightItem, InsightReport, SavingOpportunityOut, SavingsReport

logger = logging.getLogger(__name__)

RECENT_EXPENSE_LIMIT = 10
HIGH_SPENDING_THRESHOLD = 1000.0
APPROACHING_LIMIT_RATIO = 90.0
UNDER_BUDGET_RATIO = 50.0

SYSTEM_PROMPT = (
    "You are a careful personal finance assistant. "
    "Answer only with a single JSON object and no other text."
)


class InsightGenerationFailure(RuntimeError):
    pass


class TextClient(Protocol):
    async def complete(
        self, prompt: str, *, temperature: float, max_tokens: int
    ) -> str: ...


class OpenAITextClient:
    def __init__(self, api_key: str, model: str) -> None:
        from openai import AsyncOpenAI

        self.model = model
        self._client = AsyncOpenAI(api_key=api_key, max_retries=0)

    async def complete(self, prompt: str, *, temperature: float, max_tokens: int) -> str:
        response = await self._client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=temperature,
            max_tokens=max_tokens,
        )
        return response.choices[0].message.content or ""


def _money(amount: float) -> str:
    return f"${amount:,.2f}"


def _period_label(budget) -> str:
    period = getattr(budget, "period", None) or "monthly"
    return getattr(period, "value", period)


def rule_based_insights(snapshot: FinancialSnapshot) -> InsightReport:
    insights: list[InsightItem] = []
    recommendations: list[InsightItem] = []

    if not snapshot.expenses:
        insights.append(
            InsightItem(
                title="No Expenses Yet",
                description="You have not recorded any expenses. Add a few to get personalized insights.",
            )
        )
        recommendations.append(
            InsightItem(
                title="Start Tracking",
                description="Begin recording your expenses to receive tailored advice.",
            )
        )
        return InsightReport(insights=insights, recommendations=recommendations)

    total_spent = snapshot.total_spent
    total_budget = snapshot.total_budget
    if total_budget > 0:
        used = total_spent / total_budget * 100
        if total_spent > total_budget:
            insights.append(
                InsightItem(
                    title="Over Budget",
                    description=(
                        f"You have spent {_money(total_spent)} against a total budget of "
                        f"{_money(total_budget)}, exceeding it by {_money(total_spent - total_budget)}."
                    ),
                )
            )
            recommendations.append(
                InsightItem(
                    title="Review Your Budget",
                    description="Adjust your budget categories to better reflect your spending patterns.",
                )
            )
        elif used > APPROACHING_LIMIT_RATIO:
            insights.append(
                InsightItem(
                    title="Approaching Budget Limit",
                    description=f"You have used {used:.0f}% of your total budget.",
                )
            )
            recommendations.append(
                InsightItem(
                    title="Slow Down Spending",
                    description="Hold off on non-essential purchases until your next budget period.",
                )
            )
        elif used < UNDER_BUDGET_RATIO:
            insights.append(
                InsightItem(
                    title="Under Budget",
                    description=f"You have used only {used:.0f}% of your total budget. Nice work.",
                )
            )
            recommendations.append(
                InsightItem(
                    title="Save the Difference",
                    description="Consider moving part of your unused budget into savings.",
                )
            )
    else:
        recommendations.append(
            InsightItem(
                title="Set a Budget",
                description="Create budgets for your main categories to track spending against a limit.",
            )
        )

    if snapshot.category_summary:
        top_category, top_amount = max(
            snapshot.category_summary.items(), key=lambda item: item[1]
        )
        insights.append(
            InsightItem(
                title="Top Spending Category",
                description=f"Your highest spending is in {top_category} at {_money(top_amount)}.",
            )
        )

    for category, amount in snapshot.category_summary.items():
        if amount > HIGH_SPENDING_THRESHOLD:
            insights.append(
                InsightItem(
                    title=f"High Spending in {category}",
                    description=f"You have spent a significant amount in {category}. Consider reducing expenses in this area.",
                )
            )
            recommendations.append(
                InsightItem(
                    title=f"Limit {category} Spending",
                    description=f"Try to limit your spending in {category} to stay within your budget.",
                )
            )

    recommendations.append(
        InsightItem(
            title="Track Your Spending",
            description="Regularly review your expenses to identify areas for potential savings.",
        )
    )
    return InsightReport(insights=insights, recommendations=recommendations)


def build_prompt(snapshot: FinancialSnapshot) -> str:
    breakdown = "\n".join(
        f"- {category}: {_money(amount)}"
        for category, amount in sorted(
            snapshot.category_summary.items(), key=lambda item: item[1], reverse=True
        )
    ) or "- none"
    recent = "\n".join(
        f"- {e.date} | {getattr(e, 'category', '')} | {_money(safe_amount(e.amount))} | "
        f"{getattr(e, 'description', '') or ''}"
        for e in recent_expenses(snapshot.expenses, RECENT_EXPENSE_LIMIT)
    ) or "- none"
    return f"""Analyze this user's spending and give practical advice.

Total spent: {_money(snapshot.total_spent)}
Total budget: {_money(snapshot.total_budget)}

Spending by category:
{breakdown}

Most recent expenses (date | category | amount | description):
{recent}

Respond with JSON shaped exactly like:
{{"insights": [{{"title": "...", "description": "..."}}],
  "recommendations": [{{"title": "...", "description": "..."}}]}}
Give 2 to 4 items in each list."""


def build_savings_prompt(snapshot: FinancialSnapshot) -> str:
    budgets = "\n".join(
        f"- {b.category}: {_money(safe_amount(b.amount))} ({_period_label(b)})"
        for b in snapshot.budgets
    ) or "- none"
    spending = "\n".join(
        f"- {category}: {_money(amount)}"
        for category, amount in snapshot.category_summary.items()
    ) or "- none"
    return f"""Find the best opportunities for this user to save money.

Budgets:
{budgets}

Spending by category:
{spending}

Respond with JSON shaped exactly like:
{{"opportunities": [{{"category": "...", "amount": 0, "potential_savings": 0,
  "percentage": 0, "reason": "..."}}]}}
List at most 3 opportunities, largest potential savings first."""


def _extract_json(text: str) -> dict:
    cleaned = (text or "").replace("```json", "").replace("```", "").strip()
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end <= start:
        raise InsightGenerationFailure("Response did not contain a JSON object")
    try:
        payload = json.loads(cleaned[start : end + 1])
    except json.JSONDecodeError as exc:
        raise InsightGenerationFailure("Response JSON could not be parsed") from exc
    if not isinstance(payload, dict):
        raise InsightGenerationFailure("Response JSON is not an object")
    return payload


class _InsightPayload(BaseModel):
    insights: list[InsightItem]
    recommendations: list[InsightItem]


class _SavingsPayload(BaseModel):
    opportunities: list[SavingOpportunityOut]


def parse_insight_response(text: str) -> InsightReport:
    payload = _extract_json(text)
    try:
        parsed = _InsightPayload.model_validate(payload)
    except ValidationError as exc:
        raise InsightGenerationFailure("Response is missing insight arrays") from exc
    if not parsed.insights and not parsed.recommendations:
        raise InsightGenerationFailure("Response contained no insights")
    return InsightReport(
        insights=parsed.insights, recommendations=parsed.recommendations
    )


def parse_savings_response(text: str) -> SavingsReport:
    payload = _extract_json(text)
    try:
        parsed = _SavingsPayload.model_validate(payload)
    except ValidationError as exc:
        raise InsightGenerationFailure("Response is missing opportunities") from exc
    if not parsed.opportunities:
        raise InsightGenerationFailure("Response contained no opportunities")
    ordered = sorted(
        parsed.opportunities, key=lambda o: o.potential_savings, reverse=True
    )
    return SavingsReport(opportunities=ordered[:3])


def heuristic_savings(snapshot: FinancialSnapshot) -> SavingsReport:
    return SavingsReport(
        opportunities=[
            SavingOpportunityOut(
                category=o.category,
                amount=o.amount,
                potential_savings=o.potential_savings,
                percentage=o.percentage,
                reason=o.reason,
            )
            for o in saving_opportunities(snapshot)
        ]
    )


class InsightGenerator:
    """Asks the text model for advice and falls back to local rules on any failure."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[TextClient] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._client = client

    def _get_client(self) -> TextClient:
        if self._client is not None:
            return self._client
        if not self.settings.openai_api_key:
            raise InsightGenerationFailure("No API key configured")
        self._client = OpenAITextClient(
            self.settings.openai_api_key, self.settings.openai_model
        )
        return self._client

    async def _complete(self, prompt: str) -> str:
        client = self._get_client()
        try:
            return await asyncio.wait_for(
                client.complete(
                    prompt,
                    temperature=self.settings.insight_temperature,
                    max_tokens=self.settings.insight_max_tokens,
                ),
                timeout=self.settings.insight_timeout_secs,
            )
        except asyncio.TimeoutError as exc:
            raise InsightGenerationFailure("Text generation timed out") from exc
        except Exception as exc:
            raise InsightGenerationFailure(
                f"Text generation failed: {exc.__class__.__name__}"
            ) from exc

    async def generate(self, snapshot: FinancialSnapshot) -> InsightReport:
        try:
            report = parse_insight_response(await self._complete(build_prompt(snapshot)))
        except InsightGenerationFailure as exc:
            logger.warning(f"insights_fallback: reason={exc}")
            fallback = rule_based_insights(snapshot)
            return fallback.model_copy(update={"used_fallback": True})
        logger.info(
            f"insights_generated: insights={len(report.insights)} "
            f"recommendations={len(report.recommendations)}"
        )
        return report

    async def saving_opportunities(self, snapshot: FinancialSnapshot) -> SavingsReport:
        try:
            return parse_savings_response(
                await self._complete(build_savings_prompt(snapshot))
            )
        except InsightGenerationFailure as exc:
            logger.warning(f"savings_fallback: reason={exc}")
            fallback = heuristic_savings(snapshot)
            return fallback.model_copy(update={"used_fallback": True})
