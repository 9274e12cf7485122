"""Shared helpers for the repositories."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from sqlalchemy import Table
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..errors import PersistenceFailure


@contextmanager
def transaction(engine: Engine, operation: str) -> Iterator[Connection]:
    """engine.begin() that maps driver errors to PersistenceFailure.

    IntegrityError is re-raised untouched: unique constraints are how the
    repositories detect duplicate deliveries and concurrent alert creation.
    """
    try:
        with engine.begin() as conn:
            yield conn
    except IntegrityError:
        raise
    except SQLAlchemyError as e:
        raise PersistenceFailure(operation, e) from e


def dialect_insert(engine: Engine, table: Table):
    """INSERT construct supporting ON CONFLICT for the engine's dialect."""
    name = engine.dialect.name
    if name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"Upsert not supported for dialect {name}")
    return insert(table)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything in the service is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_utc(value: datetime) -> datetime:
    """Normalise before a write: SQLite stores the wall time and drops the offset."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def from_epoch(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, timezone.utc)
