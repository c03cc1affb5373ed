"""JSON column type for raw insight arrays, consolidated reports and analytics snapshots.

Stored as JSONB on PostgreSQL and as generic JSON on other dialects, which is
what the in-memory SQLite test engine uses.
"""

import logging
from typing import Any

from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Dialect
from sqlalchemy.types import JSON, TypeDecorator

logger = logging.getLogger(__name__)


class JSONType(TypeDecorator):
    """Holds a dict or list; anything else is written as SQL NULL."""

    impl = JSON(none_as_null=True)
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB(none_as_null=True))
        return dialect.type_descriptor(JSON(none_as_null=True))

    def process_bind_param(self, value: Any, dialect: Dialect) -> dict | list | None:
        if value is None or isinstance(value, dict | list):
            return value

        # A scalar here means a caller passed a field value instead of its array/object
        logger.warning(f"Dropping {type(value).__name__} value bound to a JSON column; storing NULL")
        return None

    def process_result_value(self, value: Any, dialect: Dialect) -> dict | list | None:
        if value is None or isinstance(value, dict | list):
            return value

        logger.error(f"JSON column returned {type(value).__name__}: {repr(value)[:100]}")
        raise TypeError(f"JSON column returned {type(value).__name__}; expected a dict or list")
