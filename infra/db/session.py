from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy.pool import StaticPool
from app.settings import settings

engine = create_engine(
    f"sqlite:///{settings.SQLITE_PATH}", echo=False, future=True)
SessionLocal = sessionmaker(
    bind=engine, autoflush=False, autocommit=False, future=True)


class Base(DeclarativeBase):
    pass


def make_session_factory(url: str = "sqlite:///:memory:") -> sessionmaker:
    # in-memory sqlite needs a single shared connection across sessions
    kwargs = {}
    if url.endswith(":memory:"):
        kwargs = {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
    eng = create_engine(url, echo=False, future=True, **kwargs)
    init_db(eng)
    return sessionmaker(bind=eng, autoflush=False, autocommit=False, future=True)


def init_db(bind=None):
    from infra.db.models import (  # noqa: F401
        AiTokenUsageRecord,
        CandidateProfileRecord,
        CandidateRecord,
        InterviewRecord,
        JobRecord,
    )
    Base.metadata.create_all(bind=bind or engine)
