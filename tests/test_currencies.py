import currencies
from currencies import FALLBACK_CURRENCIES, CurrencyService, format_amount


def test_format_amount_uses_symbol_and_sign() -> None:
    assert format_amount(1234.5) == "$1,234.50"
    assert format_amount(-3, "eur") == "-€3.00"
    assert format_amount(10, "XYZ") == "XYZ10.00"


def test_currency_list_falls_back_when_provider_fails(monkeypatch) -> None:
    def boom(*, timeout):
        raise RuntimeError("Failed to fetch currency list")

    monkeypatch.setattr(currencies, "_fetch_currencies", boom)

    listed, used_fallback = CurrencyService().list_currencies()

    assert used_fallback is True
    assert {c.code for c in listed} == set(FALLBACK_CURRENCIES)
    names = [c.name for c in listed]
    assert names == sorted(names)


def test_currency_list_from_provider(monkeypatch) -> None:
    monkeypatch.setattr(
        currencies,
        "_fetch_currencies",
        lambda *, timeout: {"USD": "United States Dollar", "EUR": "Euro"},
    )

    listed, used_fallback = CurrencyService().list_currencies()

    assert used_fallback is False
    assert [(c.code, c.symbol) for c in listed] == [("EUR", "€"), ("USD", "$")]
