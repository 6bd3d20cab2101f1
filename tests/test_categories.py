import pytest

import categories
from categories import CategoryAmbiguous, CategoryNotAllowed, normalize_category
from config import DEFAULT_CATEGORIES, get_settings


def test_exact_match_is_case_insensitive() -> None:
    assert normalize_category("food", DEFAULT_CATEGORIES, allow_custom=False) == "Food"
    assert normalize_category("  HOUSING ", DEFAULT_CATEGORIES, allow_custom=False) == "Housing"


def test_single_typo_resolves_to_closest_category() -> None:
    assert normalize_category("Foood", DEFAULT_CATEGORIES, allow_custom=False) == "Food"
    assert normalize_category("Utilites", DEFAULT_CATEGORIES, allow_custom=False) == "Utilities"


def test_tied_typo_is_ambiguous() -> None:
    with pytest.raises(CategoryAmbiguous):
        normalize_category("Bat", ["Cat", "Hat"], allow_custom=False)


def test_unknown_category_depends_on_custom_flag() -> None:
    with pytest.raises(CategoryNotAllowed):
        normalize_category("Pets", DEFAULT_CATEGORIES, allow_custom=False)

    assert normalize_category(" Pets ", DEFAULT_CATEGORIES, allow_custom=True) == "Pets"


def test_blank_category_is_rejected() -> None:
    with pytest.raises(CategoryNotAllowed):
        normalize_category("   ", DEFAULT_CATEGORIES, allow_custom=True)


def test_custom_categories_are_allowed_by_default(monkeypatch) -> None:
    monkeypatch.delenv("BUDGET_ALLOW_CUSTOM_CATEGORIES", raising=False)
    get_settings.cache_clear()
    try:
        settings = get_settings()
        assert settings.allow_custom_categories is True
        assert normalize_category("Rent") == "Rent"
    finally:
        get_settings.cache_clear()


def test_explicit_arguments_skip_settings_lookup(monkeypatch) -> None:
    def no_settings():
        raise AssertionError("settings should not be read")

    monkeypatch.setattr(categories, "get_settings", no_settings)

    assert normalize_category("food", ["Food"], allow_custom=False) == "Food"
