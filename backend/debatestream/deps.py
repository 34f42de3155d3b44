from __future__ import annotations

from typing import Callable, Iterator

from sqlmodel import Session

from debatestream.models.base import engine

SessionFactory = Callable[[], Session]


def new_session() -> Session:
    return Session(engine)


def get_session() -> Iterator[Session]:
    with Session(engine) as session:
        yield session
