"""Helpers for the denormalized comma-joined specialty string."""

from collections.abc import Iterable


def split_speciality_names(value: str | None) -> list[str]:
    """Parse ``"Cardiology, Dermatology"`` into trimmed, non-empty names."""
    if not value:
        return []
    return [name.strip() for name in value.split(",") if name.strip()]


def union_names(*groups: Iterable[str | None]) -> list[str]:
    """Merge name lists keeping first-seen order and dropping repeats."""
    merged: dict[str, None] = {}
    for group in groups:
        for name in group:
            if name:
                merged.setdefault(name.strip(), None)
    return [name for name in merged if name]


def join_speciality_names(names: Iterable[str]) -> str:
    return ", ".join(names)
