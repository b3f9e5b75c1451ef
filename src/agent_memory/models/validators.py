"""Shared Pydantic types and validators for reuse across models.

Centralises tag normalisation and the constrained scalar types so every
model speaks the same language.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BeforeValidator, Field

# ---------------------------------------------------------------------------
# Tag normalisation
# ---------------------------------------------------------------------------


def normalize_tags(v: Any) -> list[str] | None:
    """Accept ``str | list | None`` and return a clean ``list[str]`` (or None).

    * ``"a, b, c"`` → ``["a", "b", "c"]``
    * ``["a", None, " b "]`` → ``["a", "b"]``
    * ``None`` / ``""`` / ``[]`` → ``None``
    """
    if v is None:
        return None
    if isinstance(v, str):
        tags = [t.strip() for t in v.split(",") if t.strip()]
    elif isinstance(v, list | tuple):
        tags = [s for item in v if item is not None and (s := str(item).strip())]
    else:
        return None
    return tags or None


Tags = Annotated[list[str] | None, BeforeValidator(normalize_tags)]
"""Flexible tag input: accepts str, list or None and yields list[str] or None."""


# ---------------------------------------------------------------------------
# Numeric types
# ---------------------------------------------------------------------------

UnitFloat = Annotated[float, Field(ge=0.0, le=1.0)]
"""Float in [0.0, 1.0] for scores and thresholds."""

NonNegativeInt = Annotated[int, Field(ge=0)]
"""Non-negative integer for counts."""


# ---------------------------------------------------------------------------
# String constraints
# ---------------------------------------------------------------------------

MemoryId = Annotated[str, Field(min_length=1)]
"""Non-empty memory identifier."""

UserId = Annotated[str, Field(min_length=1)]
"""Non-empty owning principal."""


# ---------------------------------------------------------------------------
# Literal enums
# ---------------------------------------------------------------------------

MemoryType = Literal["code", "conversation", "preference", "general"]
