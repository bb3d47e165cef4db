from __future__ import annotations

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from pharmrota import database as db
from pharmrota.database import Base, StaffBase


def _memory_engine():
    return create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


@pytest.fixture()
def memory_db(monkeypatch):
    """In-memory rota and staff databases wired into the database module."""
    rota_engine = _memory_engine()
    staff_engine = _memory_engine()
    Session = sessionmaker(bind=rota_engine, expire_on_commit=False, future=True)
    StaffSession = sessionmaker(bind=staff_engine, expire_on_commit=False, future=True)

    monkeypatch.setattr(db, "rota_engine", rota_engine)
    monkeypatch.setattr(db, "staff_engine", staff_engine)
    monkeypatch.setattr(db, "SessionLocal", Session)
    monkeypatch.setattr(db, "StaffSessionLocal", StaffSession)

    Base.metadata.create_all(rota_engine)
    StaffBase.metadata.create_all(staff_engine)

    session = Session()
    staff_session = StaffSession()
    try:
        yield {
            "session": session,
            "staff_session": staff_session,
            "Session": Session,
            "StaffSession": StaffSession,
        }
    finally:
        session.close()
        staff_session.close()
        rota_engine.dispose()
        staff_engine.dispose()
