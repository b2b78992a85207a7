"""Exercise catalog rules: names, ownership and payload sanitizing."""

import re
import unicodedata
from collections.abc import Iterable

from pydantic import BaseModel

from liftlog_mcp.liftlog.exceptions import AuthorizationError
from liftlog_mcp.liftlog.models import CatalogExercise

MAX_EXERCISE_NAME_LENGTH = 120

# Records without an owner are shared library/seed data.
UNOWNED_RECORDS_EDITABLE = True

_DECIMAL_RE = re.compile(r"^-?\d*\.?\d+$")


class NameValidation(BaseModel):
    trimmed_name: str
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def normalize_name(value: str) -> str:
    """Lower-case, strip diacritics and surrounding whitespace."""
    decomposed = unicodedata.normalize("NFD", value.lower())
    return "".join(c for c in decomposed if not unicodedata.combining(c)).strip()


def validate_exercise_name(
    raw_name: str,
    existing: Iterable[CatalogExercise],
    exclude_id: str | None = None,
) -> NameValidation:
    trimmed = raw_name.strip()
    if not trimmed:
        return NameValidation(trimmed_name=trimmed, error="Name is required")
    if len(trimmed) > MAX_EXERCISE_NAME_LENGTH:
        return NameValidation(trimmed_name=trimmed, error="Name is too long")

    key = normalize_name(trimmed)
    for exercise in existing:
        if exercise.id != exclude_id and normalize_name(exercise.name or "") == key:
            return NameValidation(
                trimmed_name=trimmed, error="Exercise with this name already exists"
            )

    return NameValidation(trimmed_name=trimmed)


def can_edit(owner_id: str | None, user_id: str | None) -> bool:
    if not owner_id:
        return UNOWNED_RECORDS_EDITABLE
    if not user_id:
        return False
    return owner_id == user_id


def ensure_can_edit(owner_id: str | None, user_id: str | None) -> None:
    if not can_edit(owner_id, user_id):
        raise AuthorizationError(f"User {user_id!r} cannot modify a record owned by {owner_id!r}")


def build_catalog_exercise(data: dict) -> CatalogExercise:
    """Sanitize loosely typed input into a catalog entry with defaults."""
    name = data.get("name")
    primary = data.get("primary_muscle")
    secondary = data.get("secondary_muscles")
    equipment = data.get("equipment")
    category = data.get("category")
    instructions = data.get("instructions")

    return CatalogExercise(
        id=data.get("id") if isinstance(data.get("id"), str) else None,
        name=name.strip() if isinstance(name, str) else "",
        primary_muscle=primary if isinstance(primary, str) else "Full Body",
        secondary_muscles=(
            [m for m in secondary if isinstance(m, str)] if isinstance(secondary, list) else []
        ),
        equipment=equipment if isinstance(equipment, str) else "Other",
        category=category if isinstance(category, str) else "Strength",
        instructions=(instructions.strip() or None) if isinstance(instructions, str) else None,
        tracking_type="time" if data.get("tracking_type") == "time" else "reps",
        user_id=data.get("user_id") if isinstance(data.get("user_id"), str) else None,
    )


def parse_locale_decimal(raw_value: str) -> float | None:
    """Parse "12,5" or "12.5"; return None for anything that is not a number."""
    trimmed = raw_value.strip()
    if not trimmed:
        return None
    normalized = trimmed.replace(",", ".", 1)
    if not _DECIMAL_RE.match(normalized):
        return None
    return float(normalized)
