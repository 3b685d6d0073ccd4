"""
SQLite snapshot database: one process-wide engine and sessionmaker.
The file lives at database.path from config, else ~/.imsakiyah/imsakiyah.db.
"""
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

logger = logging.getLogger(__name__)

Base = declarative_base()

_engine = None
_SessionLocal = None

DEFAULT_DB_PATH = Path.home() / ".imsakiyah" / "imsakiyah.db"


@contextmanager
def session_scope() -> Iterator[Session]:
    """One unit of work: commit when the block finishes, roll back if it raises."""
    if _SessionLocal is None:
        raise RuntimeError("Snapshot database is not open; call init_db() first")
    session = _SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def sqlite_url(config_data: Optional[dict]) -> str:
    configured = ((config_data or {}).get("database") or {}).get("path")
    path = Path(configured).expanduser().resolve() if configured else DEFAULT_DB_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{path}"


def init_db(config_data: Optional[dict] = None, db_url: Optional[str] = None) -> None:
    """Open the database (db_url wins over config_data) and create missing tables. Idempotent."""
    global _engine, _SessionLocal

    if _engine is not None:
        return

    url = db_url or sqlite_url(config_data)
    # timers write from their own threads
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    _engine = create_engine(url, connect_args=connect_args)

    # registers the snapshot tables on Base
    from imsakiyah.prayer import models  # noqa: F401

    Base.metadata.create_all(_engine)
    _SessionLocal = sessionmaker(bind=_engine, autoflush=False, expire_on_commit=False)
    logger.info(f"Snapshot database ready at {url}")


def close_db() -> None:
    """Dispose the engine so init_db() can open another database."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None
