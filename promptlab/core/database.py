from __future__ import annotations
from datetime import datetime
from sqlalchemy import create_engine, Column, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool


Base = declarative_base()


class AttemptRow(Base):
    __tablename__ = "attempts"
    __table_args__ = (UniqueConstraint("user_id", "attempt", name="uq_attempts_user_attempt"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(128), nullable=False, index=True)
    attempt = Column(Integer, nullable=False)
    # Full AttemptRecord as JSON; replaced wholesale on every upsert
    payload = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class DatasetRow(Base):
    __tablename__ = "datasets"
    # One custom dataset per user
    user_id = Column(String(128), primary_key=True)
    samples_json = Column(Text, nullable=False)
    metadata_json = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


def make_engine(database_url: str) -> Engine:
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, future=True)
    kwargs = {"connect_args": {"check_same_thread": False}}
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection, otherwise every session sees an empty database
        kwargs["poolclass"] = StaticPool
    return create_engine(database_url, future=True, **kwargs)


def make_session_factory(engine: Engine) -> sessionmaker:
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
