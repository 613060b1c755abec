"""Database base configuration"""
from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from issuerelay.config import settings

engine = create_engine(
    settings.database_url,
    connect_args={"check_same_thread": False} if "sqlite" in settings.database_url else {},
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _ensure_unique_indexes(bind=None):
    """
    Best-effort schema hardening for databases created before the unique
    constraints existed on the model:
    - one issue number per team
    - one linked issue per external url

    We use UNIQUE INDEXes because they are the most portable (and SQLite-friendly).
    """
    bind = bind or engine
    with bind.begin() as conn:
        stmts = [
            "CREATE UNIQUE INDEX IF NOT EXISTS uq_issues_team_number "
            "ON issues(team_id, number)",
            "CREATE UNIQUE INDEX IF NOT EXISTS uq_linked_issues_url "
            "ON linked_issues(url)",
        ]
        for sql in stmts:
            try:
                conn.exec_driver_sql(sql)
            except Exception:
                # Some dialects may not support IF NOT EXISTS; try without it.
                try:
                    conn.exec_driver_sql(sql.replace(" IF NOT EXISTS", ""))
                except Exception:
                    # Index already exists under the constraint's name; do not block startup.
                    pass


def init_db(bind=None):
    """Initialize database"""
    # Ensure all models are imported so SQLAlchemy metadata is populated.
    # (Without this, create_all() may create no tables in some import orders.)
    import issuerelay.models  # noqa: F401  (import for side-effects)

    Base.metadata.create_all(bind=bind or engine)
    _ensure_unique_indexes(bind)


def utcnow() -> datetime:
    """UTC 'now' as tz-naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
