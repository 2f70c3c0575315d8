"""
Shared pytest fixtures for the fire-safety contract management test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - site / other_site: Contractor → Client → Branch with one active user per side
    - contractor_actor / client_actor: Actor values for the site's users
"""

from dataclasses import dataclass

import pytest

from firesafe import create_app
from firesafe.core.actor import CLIENT, CONTRACTOR, Actor
from firesafe.models import db as _db
from firesafe.models.party import Branch, Client, Contractor, User


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


# ── Party fixtures ───────────────────────────────────────────────────────


@dataclass
class Site:
    contractor_id: int
    client_id: int
    branch_id: int
    contractor_user_id: int
    client_user_id: int


def _make_site(name="Main Street Branch", email_prefix="site"):
    contractor = Contractor(company_name="Blaze Guard Ltd")
    _db.session.add(contractor)
    _db.session.flush()
    company = Client(contractor_id=contractor.id, company_name="Harbour Foods")
    _db.session.add(company)
    _db.session.flush()
    branch = Branch(client_id=company.id, name=name)
    contractor_user = User(email=f"{email_prefix}-tech@blazeguard.test", role=CONTRACTOR,
                           contractor_id=contractor.id)
    client_user = User(email=f"{email_prefix}-owner@harbour.test", role=CLIENT,
                       client_id=company.id)
    _db.session.add_all([branch, contractor_user, client_user])
    _db.session.flush()
    return Site(
        contractor_id=contractor.id,
        client_id=company.id,
        branch_id=branch.id,
        contractor_user_id=contractor_user.id,
        client_user_id=client_user.id,
    )


@pytest.fixture()
def site():
    return _make_site()


@pytest.fixture()
def other_site():
    """A second, unrelated branch (different contractor and client)."""
    return _make_site(name="Dockside Branch", email_prefix="other")


@pytest.fixture()
def contractor_actor(site):
    return Actor(user_id=site.contractor_user_id, role=CONTRACTOR)


@pytest.fixture()
def client_actor(site):
    return Actor(user_id=site.client_user_id, role=CLIENT)
