from typing import Optional, Sequence

from rapidfuzz.distance import Levenshtein

from config import get_settings


class CategoryNotAllowed(ValueError):
    pass


class CategoryAmbiguous(ValueError):
    pass


def normalize_category(
    raw: str,
    allowed: Optional[Sequence[str]] = None,
    *,
    allow_custom: Optional[bool] = None,
) -> str:
    """Map user input onto the configured category list.

    Matching is case-insensitive and tolerates a single typo. Stored values
    stay plain strings, so names off the list pass through unless
    ``allow_custom`` is turned off.
    """
    if allowed is None or allow_custom is None:
        settings = get_settings()
        if allowed is None:
            allowed = settings.categories
        if allow_custom is None:
            allow_custom = settings.allow_custom_categories

    name = (raw or "").strip()
    if not name:
        raise CategoryNotAllowed("Category is required")

    input_lower = name.lower()
    for candidate in allowed:
        if candidate.lower() == input_lower:
            return candidate

    best_distance: Optional[int] = None
    best: list[str] = []
    for candidate in allowed:
        dist = int(Levenshtein.distance(input_lower, candidate.lower()))
        if best_distance is None or dist < best_distance:
            best_distance = dist
            best = [candidate]
        elif dist == best_distance:
            best.append(candidate)

    if best_distance is not None and best_distance <= 1:
        if len(best) > 1:
            options = ", ".join(sorted(best))
            raise CategoryAmbiguous(
                f"Category '{name}' is ambiguous; matches: {options}"
            )
        return best[0]

    if allow_custom:
        return name
    raise CategoryNotAllowed(f"Unknown category '{name}'")
