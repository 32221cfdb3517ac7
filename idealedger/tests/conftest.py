from __future__ import annotations

import pytest
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from idealedger import services
from idealedger.db import make_engine, make_session_factory
from idealedger.models import Base, User

# ---------------------------------------------------------------------------
# Fixtures: in-memory SQLite database
# ---------------------------------------------------------------------------


@pytest.fixture()
def engine():
    eng = make_engine("sqlite:///:memory:", poolclass=StaticPool)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture()
def session(session_factory):
    sess = session_factory()
    try:
        yield sess
    finally:
        sess.close()


@pytest.fixture()
def make_user(session: Session):
    def _make(name: str, email: str | None = None, password: str = "s3cret") -> User:
        return services.signup(session, email or f"{name.lower()}@example.com", password, name)
    return _make


@pytest.fixture()
def alice(make_user) -> User:
    return make_user("Alice")


@pytest.fixture()
def bob(make_user) -> User:
    return make_user("Bob")


@pytest.fixture()
def carol(make_user) -> User:
    return make_user("Carol")


@pytest.fixture()
def solar_kiosk(session: Session, alice: User) -> dict:
    return services.create_idea(
        session, alice.id, name="Solar Kiosk", description="Off-grid charging stalls",
        problem_category="energy", solution="Rent solar-powered kiosks to vendors",
        visibility="private",
    )
