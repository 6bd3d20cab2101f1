import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

DEFAULT_CATEGORIES = (
    "Food",
    "Transportation",
    "Housing",
    "Entertainment",
    "Shopping",
    "Utilities",
    "Healthcare",
    "Education",
    "Travel",
    "Other",
)


class Settings:
    def __init__(
        self,
        database_url: str,
        session_secret: str,
        environment: str,
        openai_api_key: Optional[str],
        openai_model: str,
        insight_timeout_secs: float,
        insight_temperature: float,
        insight_max_tokens: int,
        categories: tuple[str, ...],
        allow_custom_categories: bool,
        currency_timeout_secs: float,
    ) -> None:
        self.database_url = database_url
        self.session_secret = session_secret
        self.environment = environment
        self.openai_api_key = openai_api_key
        self.openai_model = openai_model
        self.insight_timeout_secs = insight_timeout_secs
        self.insight_temperature = insight_temperature
        self.insight_max_tokens = insight_max_tokens
        self.categories = categories
        self.allow_custom_categories = allow_custom_categories
        self.currency_timeout_secs = currency_timeout_secs

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGET_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _parse_categories(raw: Optional[str]) -> tuple[str, ...]:
    if not raw:
        return DEFAULT_CATEGORIES
    names = [part.strip() for part in raw.split(",")]
    return tuple(name for name in names if name) or DEFAULT_CATEGORIES


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("BUDGET_DATABASE_URL")
    if not database_url:
        database_url = f"sqlite:///{_ensure_data_dir() / 'budget.db'}"
    session_secret = os.getenv(
        "BUDGET_SESSION_SECRET",
        "3c1f0f8e2b7d4a4c9a61e0b5d2f7c8a9e4b3d2c1f0a9b8c7d6e5f4a3b2c1d0e9",
    )
    environment = os.getenv("BUDGET_ENV", "development")
    openai_api_key = os.getenv("BUDGET_OPENAI_API_KEY") or None
    openai_model = os.getenv("BUDGET_OPENAI_MODEL", "gpt-4o-mini")
    insight_timeout_secs = float(os.getenv("BUDGET_INSIGHT_TIMEOUT_SECS", "10"))
    insight_temperature = float(os.getenv("BUDGET_INSIGHT_TEMPERATURE", "0.7"))
    insight_max_tokens = int(os.getenv("BUDGET_INSIGHT_MAX_TOKENS", "1000"))
    categories = _parse_categories(os.getenv("BUDGET_CATEGORIES"))
    allow_custom_categories = _env_flag(
        "BUDGET_ALLOW_CUSTOM_CATEGORIES", default=True
    )
    currency_timeout_secs = float(os.getenv("BUDGET_CURRENCY_TIMEOUT_SECS", "8"))
    return Settings(
        database_url=database_url,
        session_secret=session_secret,
        environment=environment,
        openai_api_key=openai_api_key,
        openai_model=openai_model,
        insight_timeout_secs=insight_timeout_secs,
        insight_temperature=insight_temperature,
        insight_max_tokens=insight_max_tokens,
        categories=categories,
        allow_custom_categories=allow_custom_categories,
        currency_timeout_secs=currency_timeout_secs,
    )
