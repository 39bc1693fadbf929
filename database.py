"""
database.py: SQLAlchemy model and helpers for the recent-search history.

Uses whatever DATABASE_URL points at (PostgreSQL in production);
falls back to a local SQLite file so development needs no server.
Only the newest HISTORY_LIMIT rows are kept.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, DateTime, Integer, String, create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

logger = logging.getLogger("seo-analyzer")

HISTORY_LIMIT = 10


class Base(DeclarativeBase):
    pass


class SearchHistory(Base):
    __tablename__ = "search_history"

    id         = Column(Integer, primary_key=True, autoincrement=True)
    url        = Column(String(2048), nullable=False)
    keyword    = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), index=True)


def make_session_factory(database_url: str) -> sessionmaker:
    """Create the engine, the tables and a session factory for database_url."""
    # Railway (and some other hosts) expose postgres:// but SQLAlchemy requires postgresql://
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)

    engine = create_engine(
        database_url,
        # SQLite needs this flag; ignored by Postgres
        connect_args={"check_same_thread": False} if database_url.startswith("sqlite") else {},
        pool_pre_ping=True,
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


class HistoryStore:
    """
    Synchronous; call from async code via run_in_executor.
    The engine is created on first use so importing the app touches no database.
    """

    def __init__(self, database_url: str, limit: int = HISTORY_LIMIT):
        self.database_url = database_url
        self.limit = limit
        self._session_factory: Optional[sessionmaker] = None
        self._lock = threading.Lock()

    @property
    def session_factory(self) -> sessionmaker:
        with self._lock:
            if self._session_factory is None:
                self._session_factory = make_session_factory(self.database_url)
        return self._session_factory

    def save(self, url: str, keyword: Optional[str] = None) -> None:
        """Record a search and trim older rows. Failures are logged, never raised."""
        try:
            db = self.session_factory()
        except Exception as e:
            logger.error(f"History database unavailable: {type(e).__name__}: {e}")
            return
        try:
            db.add(SearchHistory(url=url, keyword=keyword or ""))
            db.flush()
            stale = (
                db.query(SearchHistory.id)
                .order_by(SearchHistory.id.desc())
                .offset(self.limit)
                .all()
            )
            if stale:
                db.query(SearchHistory).filter(
                    SearchHistory.id.in_([row.id for row in stale])
                ).delete(synchronize_session=False)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"History save failed for {url}: {type(e).__name__}: {e}")
        finally:
            db.close()

    def recent(self) -> list[dict]:
        """Newest first. An unreachable database reads as an empty history."""
        try:
            db = self.session_factory()
        except Exception as e:
            logger.error(f"History database unavailable: {type(e).__name__}: {e}")
            return []
        try:
            rows = (
                db.query(SearchHistory)
                .order_by(SearchHistory.id.desc())
                .limit(self.limit)
                .all()
            )
        except Exception as e:
            logger.error(f"History read failed: {type(e).__name__}: {e}")
            return []
        finally:
            db.close()

        return [
            {
                "url": row.url,
                "keyword": row.keyword or "",
                "timestamp": row.created_at.isoformat() if row.created_at else None,
            }
            for row in rows
        ]
