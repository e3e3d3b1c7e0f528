"""Column types for values SQLite cannot store faithfully on its own."""
from datetime import timezone
from decimal import Decimal

from sqlalchemy import JSON, DateTime, Enum, String
from sqlalchemy.types import TypeDecorator


class Money(TypeDecorator):
    """Exact Decimal kept as text; a NUMERIC column on SQLite round-trips through float."""

    impl = String
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else Decimal(value)


class UTCDateTime(TypeDecorator):
    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class JSONValue(TypeDecorator):
    """Stores an immutable value object as JSON; subclasses say how."""

    impl = JSON
    cache_ok = True

    def dump(self, value) -> dict:
        raise NotImplementedError

    def load(self, data: dict):
        raise NotImplementedError

    def process_bind_param(self, value, dialect):
        return None if value is None else self.dump(value)

    def process_result_value(self, value, dialect):
        return None if value is None else self.load(value)


def enum_column(enum_cls) -> Enum:
    """Persist a str enum by its value rather than its member name."""
    return Enum(
        enum_cls,
        native_enum=False,
        length=32,
        values_callable=lambda members: [m.value for m in members],
    )
