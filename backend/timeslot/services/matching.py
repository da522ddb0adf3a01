import unicodedata
from collections.abc import Sequence


def normalize_text(text: str | None) -> str:
    """Strip accents, lowercase and trim so "Dermatología " matches "dermatologia"."""
    decomposed = unicodedata.normalize("NFD", text or "")
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.lower().strip()


def _resolve(user_text: str, candidates: Sequence[str]) -> str | None:
    target = normalize_text(user_text)
    if not target:
        return None

    partial = None
    for candidate in candidates:
        normalized = normalize_text(candidate)
        if normalized == target:
            return candidate
        # First partial match in catalog order wins, there is no scoring.
        if partial is None and normalized and (target in normalized or normalized in target):
            partial = candidate
    return partial


def resolve_area(user_text: str, areas: Sequence[str]) -> str | None:
    return _resolve(user_text, areas)


def resolve_professional(area: str, user_text: str, professionals: Sequence[str]) -> str | None:
    # `professionals` is already scoped to `area` by the caller.
    return _resolve(user_text, professionals)
