"""Column helpers shared by the ORM models."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def enum_type(enum_cls, *, name: str) -> Enum:
    """Store str-enums by value as VARCHAR so SQLite and PostgreSQL behave the same."""
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        create_constraint=False,
        length=32,
        values_callable=lambda members: [member.value for member in members],
    )
