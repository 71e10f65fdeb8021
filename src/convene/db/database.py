from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy.pool import NullPool

from convene.config import get_database_url

DATABASE_URL = get_database_url()


class Base(DeclarativeBase):
    pass


def build_engine(url: str, **kwargs):
    """
    Engine for ``url``. SQLite connections are shared across the threads
    FastAPI runs sync endpoints on, so the same-thread check is disabled there.
    """
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    # NullPool: every session gets a fresh connection, nothing survives a reload.
    kwargs.setdefault("poolclass", NullPool)
    return create_engine(url, connect_args=connect_args, echo=False, **kwargs)


engine = build_engine(DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)


def get_db():
    """One session per request; services commit, this only closes."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
