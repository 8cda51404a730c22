"""Shared state-machine helpers for the request workflows."""

from __future__ import annotations

from marketpoints.errors import ConflictError


def validate_transition(
    transitions: dict[str, list[str]],
    current_status: str,
    target_status: str,
) -> None:
    """Raise ConflictError unless ``current_status -> target_status`` is allowed."""
    valid = transitions.get(current_status, [])
    if target_status not in valid:
        raise ConflictError(
            f"Request is already {current_status}; cannot move to {target_status}"
        )


def clean_text(value: str | None) -> str | None:
    """Strip surrounding whitespace; blank strings become None."""
    if value is None:
        return None
    value = value.strip()
    return value or None
