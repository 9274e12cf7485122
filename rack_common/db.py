from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url

from .config import Settings, get_settings


logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None


def build_engine(database_url: str) -> Engine:
    url = make_url(database_url)

    kwargs: dict = {"pool_pre_ping": True, "future": True}
    if url.get_backend_name() == "sqlite":
        # Worker threads share the engine; each checks out its own connection.
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs["pool_recycle"] = 300

    engine = create_engine(url, **kwargs)

    # Log connection parameters without the password.
    logger.info(
        "[DB] Engine created backend=%s host=%s db=%s",
        url.get_backend_name(),
        url.host,
        url.database,
    )

    # Connection probe: makes it visible in logs whether the service reaches the DB.
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("[DB] Connection test OK")
    except Exception:
        logger.exception("[DB] Connection test FAILED")

    return engine


def get_engine(settings: Optional[Settings] = None) -> Engine:
    """Singleton engine for the configured DATABASE_URL."""
    global _engine

    if _engine is None:
        settings = settings or get_settings()
        _engine = build_engine(settings.database_url)
    return _engine


def dispose_engine() -> None:
    global _engine

    if _engine is not None:
        _engine.dispose()
        _engine = None
