"""Column helpers shared by the ORM models."""

from datetime import datetime, timezone

from sqlalchemy import Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import JSON
import ulid

JSONType = JSONB(astext_type=Text()).with_variant(JSON(), "sqlite")


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def new_ulid() -> str:
    return str(ulid.ULID())
