"""Display-name and contact helpers shared by provisioning, archival and restore."""

import re
from collections.abc import Mapping
from typing import Any, NamedTuple

CONTACT_COLUMNS = ("contact_number", "phone_number", "mobile", "contact")


class NameParts(NamedTuple):
    first_name: str | None
    middle_name: str | None
    last_name: str | None


def clean_text(value: Any) -> str | None:
    """Trimmed string, or None for non-strings and blank strings."""
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def build_full_name(
    first_name: str | None,
    middle_name: str | None,
    last_name: str | None,
    suffix: str | None = None,
) -> str:
    """Join the non-blank name parts with single spaces, suffix last."""
    parts = [clean_text(p) for p in (first_name, middle_name, last_name, suffix)]
    return " ".join(p for p in parts if p)


def compute_full_name(row: Mapping[str, Any], key_column: str = "user_id") -> str | None:
    """Best display name for a stored account row.

    Tries, in order: ``name``, first/middle/last joined, ``username``,
    ``email``, then ``"User <id>"``.  Returns None if even the id is missing.

    Example:
        >>> compute_full_name({"user_id": 42, "name": None, "first_name": "Lee"})
        'Lee'
    """
    name = clean_text(row.get("name"))
    if name:
        return name

    joined = build_full_name(row.get("first_name"), row.get("middle_name"), row.get("last_name"))
    if joined:
        return joined

    for column in ("username", "email"):
        value = clean_text(row.get(column))
        if value:
            return value

    user_id = row.get(key_column)
    if user_id is None or isinstance(user_id, bool):
        return None
    return f"User {user_id}"


def normalize_contact(row: Mapping[str, Any]) -> str | None:
    """First non-blank value among the legacy contact-number columns."""
    for column in CONTACT_COLUMNS:
        value = clean_text(row.get(column))
        if value:
            return value
    return None


def split_name_parts(name: str | None) -> NameParts:
    """Split a display name into first, middle and last parts.

    One word is a first name; two words are first and last; anything longer
    puts the inner words in the middle name.
    """
    words = (name or "").split()
    if not words:
        return NameParts(None, None, None)
    if len(words) == 1:
        return NameParts(words[0], None, None)
    if len(words) == 2:
        return NameParts(words[0], None, words[1])
    return NameParts(words[0], " ".join(words[1:-1]), words[-1])


def normalize_role(value: Any) -> str:
    """Canonical ``users.role`` value for a stored role label."""
    role = clean_text(value)
    if not role:
        return "user"
    lowered = role.lower()
    if lowered in ("it_admin", "it-admin", "it admin"):
        return "admin"
    return re.sub(r"[\s/-]+", "_", lowered)
