"""
Shared pytest fixtures for the AFT Workflow Service test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - actors: one Actor per workflow role
    - headers_for: trusted-proxy identity headers for an Actor
"""

import pytest

from aft import create_app
from aft.models import db as _db
from aft.workflow.signature import Actor

REQUESTOR_ID = 1


def make_actor(user_id: int, role: str, primary_role: str | None = None) -> Actor:
    return Actor(
        id=user_id,
        role=role,
        primary_role=primary_role,
        display_name=f"{role.replace('_', ' ').title()} {user_id}",
        email=f"{role}{user_id}@example.test",
    )


def headers_for(actor: Actor) -> dict:
    headers = {
        "X-User-Id": str(actor.id),
        "X-User-Role": actor.role,
        "X-User-Name": actor.display_name,
        "X-User-Email": actor.email,
    }
    if actor.primary_role:
        headers["X-User-Primary-Role"] = actor.primary_role
    return headers


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def actors():
    """One actor per workflow role; the requestor owns every test request."""
    return {
        "requestor": make_actor(REQUESTOR_ID, "requestor"),
        "other_requestor": make_actor(2, "requestor"),
        "dao": make_actor(10, "dao"),
        "approver": make_actor(11, "approver"),
        "cpso": make_actor(12, "cpso"),
        "dta": make_actor(20, "dta"),
        "dta2": make_actor(21, "dta"),
        "sme": make_actor(30, "sme"),
        "media_custodian": make_actor(40, "media_custodian"),
        "admin": make_actor(99, "admin"),
    }
