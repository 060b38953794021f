"""
Shared pytest fixtures for the Taskboard Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test app context, tables recreated afterwards (autouse)
    - client: Flask test client
    - tenant / admin / member / outsider: tenant and users
    - make_user, actor, auth_headers: helpers for service and API tests
    - board: a kanban board owned by admin, with member on it
"""

import os

import pytest

# Fixed Fernet key so directory bind passwords can be encrypted in tests
os.environ.setdefault("ENCRYPTION_KEY", "MDEyMzQ1Njc4OTAxMjM0NTY3ODkwMTIzNDU2Nzg5MDE=")

from taskboard import create_app  # noqa: E402
from taskboard.models import db as _db  # noqa: E402
from taskboard.models.auth import Tenant, User  # noqa: E402
from taskboard.services.policy import Actor  # noqa: E402


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
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
    return app.test_client()


# ── Tenants & users ──────────────────────────────────────────────────────


def _create_user(tenant, username, role="user", **kw):
    user = User(
        tenant_id=tenant.id,
        email=kw.pop("email", f"{username}@example.com"),
        username=username,
        full_name=kw.pop("full_name", username.title()),
        role=role,
        **kw,
    )
    _db.session.add(user)
    _db.session.commit()
    return user


@pytest.fixture()
def tenant():
    t = Tenant(name="Acme", slug="acme")
    _db.session.add(t)
    _db.session.commit()
    return t


@pytest.fixture()
def other_tenant():
    t = Tenant(name="Globex", slug="globex")
    _db.session.add(t)
    _db.session.commit()
    return t


@pytest.fixture()
def make_user(tenant):
    """Factory: make_user("bob", role="user", tenant=None, **fields)."""
    def _make(username, role="user", tenant_obj=None, **kw):
        return _create_user(tenant_obj or tenant, username, role, **kw)
    return _make


@pytest.fixture()
def admin(make_user):
    return make_user("alice", role="admin")


@pytest.fixture()
def member(make_user):
    return make_user("bob")


@pytest.fixture()
def outsider(make_user):
    """Same tenant, not on any board."""
    return make_user("carol")


@pytest.fixture()
def actor():
    """actor(user) -> Actor"""
    return Actor.from_user


@pytest.fixture()
def auth_headers():
    """auth_headers(user) -> Authorization header dict with a fresh access token."""
    from taskboard.services.jwt_service import generate_access_token

    def _headers(user):
        token = generate_access_token(user.id, user.tenant_id, user.role)
        return {"Authorization": f"Bearer {token}"}
    return _headers


# ── Boards ───────────────────────────────────────────────────────────────


@pytest.fixture()
def board(admin, member):
    """Kanban board (To Do / In Progress / Done) created by admin, member added."""
    from taskboard.services import board_service

    result = board_service.create_board(
        Actor.from_user(admin), {"title": "Sprint Board", "member_ids": [member.id]},
    )
    return result.entity


@pytest.fixture()
def columns(board):
    """The board's columns in position order: [todo, doing, done]."""
    return list(board.columns)
