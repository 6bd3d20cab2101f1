from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from urllib.error import URLError
from urllib.request import Request, urlopen

from config import get_settings

logger = logging.getLogger(__name__)

CURRENCIES_URL = "https://api.frankfurter.app/currencies"

FALLBACK_CURRENCIES: dict[str, str] = {
    "USD": "US Dollar",
    "EUR": "Euro",
    "GBP": "British Pound",
    "JPY": "Japanese Yen",
    "CAD": "Canadian Dollar",
    "AUD": "Australian Dollar",
    "CHF": "Swiss Franc",
    "CNY": "Chinese Yuan",
    "INR": "Indian Rupee",
    "MXN": "Mexican Peso",
}

CURRENCY_SYMBOLS: dict[str, str] = {
    "USD": "$", "EUR": "€", "GBP": "£", "JPY": "¥", "CAD": "C$",
    "AUD": "A$", "CNY": "¥", "INR": "₹", "BRL": "R$", "RUB": "₽",
    "KRW": "₩", "MXN": "Mex$", "CHF": "Fr", "SGD": "S$", "HKD": "HK$",
    "SEK": "kr", "NOK": "kr", "DKK": "kr", "PLN": "zł", "ZAR": "R",
    "NZD": "NZ$", "THB": "฿", "TRY": "₺", "IDR": "Rp", "MYR": "RM",
    "PHP": "₱", "CZK": "Kč", "HUF": "Ft", "ILS": "₪",
}


@dataclass(frozen=True)
class Currency:
    code: str
    name: str
    symbol: str


def currency_symbol(code: str) -> str:
    return CURRENCY_SYMBOLS.get(code.upper(), code.upper())


def format_amount(amount: float, code: str = "USD") -> str:
    symbol = currency_symbol(code)
    sign = "-" if amount < 0 else ""
    return f"{sign}{symbol}{abs(amount):,.2f}"


class CurrencyService:
    def __init__(self) -> None:
        self.settings = get_settings()

    def list_currencies(self) -> tuple[list[Currency], bool]:
        """Return the currency list and whether the hard-coded fallback was used."""
        try:
            mapping = _fetch_currencies(timeout=self.settings.currency_timeout_secs)
            used_fallback = False
        except RuntimeError as exc:
            logger.warning(f"currencies_fallback: reason={exc}")
            mapping = FALLBACK_CURRENCIES
            used_fallback = True
        currencies = [
            Currency(code=code, name=name, symbol=currency_symbol(code))
            for code, name in mapping.items()
        ]
        currencies.sort(key=lambda c: c.name)
        return currencies, used_fallback


@lru_cache(maxsize=1)
def _fetch_currencies(*, timeout: float) -> dict[str, str]:
    req = Request(CURRENCIES_URL, headers={"Accept": "application/json"})
    try:
        with urlopen(req, timeout=timeout) as resp:
            payload = json.loads(resp.read().decode("utf-8"))
    except (URLError, TimeoutError, json.JSONDecodeError) as exc:
        raise RuntimeError("Failed to fetch currency list") from exc

    if not isinstance(payload, dict) or not payload:
        raise RuntimeError("Unexpected currency provider response")
    return {str(code): str(name) for code, name in payload.items()}
