from __future__ import annotations

import os
import threading
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from src.db.models import Base


def get_database_url() -> str:
    return os.environ.get("DATABASE_URL", "sqlite:///./data/cardexpenses.db")


_LOCK = threading.Lock()
_ENGINE: Engine | None = None
_SESSION_FACTORY: sessionmaker | None = None


def _make_engine(url: str) -> Engine:
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    if url.startswith("sqlite:///") and not url.startswith("sqlite:///:memory:"):
        db_file = url[len("sqlite:///") :]
        parent = os.path.dirname(db_file)
        if parent:
            os.makedirs(parent, exist_ok=True)
    return create_engine(url, future=True, connect_args=connect_args)


def init_engine(url: Optional[str] = None) -> Engine:
    """Create the process-wide engine once; later calls return the existing one."""
    global _ENGINE, _SESSION_FACTORY
    with _LOCK:
        if _ENGINE is None:
            _ENGINE = _make_engine(url or get_database_url())
            _SESSION_FACTORY = sessionmaker(bind=_ENGINE, class_=Session, autoflush=False, autocommit=False)
        return _ENGINE


def get_engine() -> Engine:
    return init_engine()


def get_session() -> Session:
    init_engine()
    assert _SESSION_FACTORY is not None
    return _SESSION_FACTORY()


def init_db(url: Optional[str] = None) -> None:
    # Ensure tables exist (create missing).
    engine = init_engine(url)
    Base.metadata.create_all(bind=engine)
