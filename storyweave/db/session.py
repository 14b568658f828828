from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from storyweave.db.base import Base


def make_engine(database_url: str) -> Engine:
    return create_engine(database_url, future=True)


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def create_schema(engine: Engine) -> None:
    from storyweave.db import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
