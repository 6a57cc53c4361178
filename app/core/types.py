"""Column types that behave the same on PostgreSQL and SQLite."""
import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import CHAR, DateTime, Enum, TypeDecorator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def string_enum(enum_cls: type[PyEnum]) -> Enum:
    """VARCHAR-backed enum column storing the member *values*."""
    return Enum(
        enum_cls,
        native_enum=False,
        create_constraint=False,
        length=32,
        values_callable=lambda members: [m.value for m in members],
    )


class GUID(TypeDecorator):
    """Stores UUIDs as CHAR(36), hands back ``uuid.UUID`` objects."""

    impl = CHAR(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if not isinstance(value, uuid.UUID):
            value = uuid.UUID(str(value))
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        return uuid.UUID(str(value))


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes.

    SQLite drops tzinfo on the way out, so naive values read back are
    tagged as UTC again. Anything bound is normalised to UTC first.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
