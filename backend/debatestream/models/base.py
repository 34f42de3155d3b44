from __future__ import annotations

from sqlmodel import SQLModel, create_engine
from sqlalchemy.engine import Engine
from debatestream.config import Settings

_settings = Settings()


def make_engine(url: str) -> Engine:
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


engine: Engine = make_engine(_settings.resolved_database_url())


def init_db(target: Engine | None = None) -> None:
    # Register every table on the metadata
    from debatestream.models import caption, discussion_summary, room  # noqa: F401

    target = target or engine
    if target.dialect.name == "sqlite":
        # WAL lets the caption writers and readers overlap
        with target.begin() as conn:
            conn.exec_driver_sql("PRAGMA journal_mode=WAL;")
            conn.exec_driver_sql("PRAGMA synchronous=NORMAL;")
    SQLModel.metadata.create_all(target)
