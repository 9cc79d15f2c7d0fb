"""
SQL policy – the analysis query is a fixed ``SELECT *`` over one table.

Rules:
    1. The table name comes from configuration, never from the user.
    2. It must be a plain identifier, optionally schema-qualified.
    3. When an allowlist is configured, the table must be on it.
    4. Identifiers are always double-quoted in the generated statement.
"""

from __future__ import annotations

import re

from app.core.config import settings

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def validate_table_name(table: str, allowed: list[str] | None = None) -> list[str]:
    """
    Split *table* into its identifier parts after checking the policy.

    Raises ValueError on an empty, malformed or non-allowlisted name.
    """
    name = (table or "").strip()
    if not name:
        raise ValueError("Table name is empty.")

    parts = name.split(".")
    if len(parts) > 2 or not all(_IDENTIFIER.match(p) for p in parts):
        raise ValueError(f"Invalid table name: {table!r}")

    allowed = settings.allowed_tables_list if allowed is None else allowed
    if allowed and name.lower() not in allowed and parts[-1].lower() not in allowed:
        raise ValueError(f"Table not allowed: {name}")

    return parts


def build_select_all(table: str, allowed: list[str] | None = None) -> str:
    """Return ``SELECT * FROM "<table>"`` for a policy-checked table name."""
    parts = validate_table_name(table, allowed)
    quoted = ".".join(f'"{p}"' for p in parts)
    return f"SELECT * FROM {quoted}"
