"""
Pytest fixtures for CRM backend tests.

Provides test database setup, staff fixtures by role, customer factories,
and bearer-token helpers for the Flask test client.
"""

import itertools

import pytest

from crm import create_app
from crm.extensions import db
from crm.models import CallLog, Customer, Team
from crm.permissions import Role
from crm.services import auth_service
from crm.time_utils import utcnow


PASSWORD = "Password123"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DAILY_CUSTOMER_LIMIT': 50,
        'BULK_UPLOAD_MAX_ROWS': 500,
        'ALLOCATION_BATCH_SIZE': 500,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
    """bcrypt's minimum cost keeps fixture users cheap."""
    monkeypatch.setattr(auth_service, "BCRYPT_ROUNDS", 4)


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def make_user(db_session):
    """Factory: make_user(Role.EMPLOYEE, department=..., team=...)."""
    counter = itertools.count(1)

    def _make(role=Role.EMPLOYEE, *, name=None, department=None, team=None, is_active=True):
        n = next(counter)
        slug = f"{role.value.lower()}{n}"
        user = auth_service.create_user(
            username=slug,
            email=f"{slug}@crm.test",
            password=PASSWORD,
            name=name or slug,
            role=role,
            department=department,
            team_id=team.id if team else None,
        )
        user.is_active = is_active
        db_session.commit()
        return user

    return _make


@pytest.fixture(scope='function')
def make_team(db_session):
    counter = itertools.count(1)

    def _make(name=None, department=None):
        team = Team(name=name or f"team-{next(counter)}", department=department)
        db_session.add(team)
        db_session.commit()
        return team

    return _make


@pytest.fixture(scope='function')
def make_customer(db_session):
    """Factory for customers in any holder state, bypassing the quota guard."""
    counter = itertools.count(1000)

    def _make(holder=None, *, is_public=False, phone=None, name=None, site=None, created_at=None):
        n = next(counter)
        now = utcnow()
        customer = Customer(
            name=name or f"customer-{n}",
            phone=phone or f"0101234{n:04d}",
            assigned_user_id=holder.id if holder else None,
            assigned_at=now if holder else None,
            is_public=is_public,
            public_at=now if is_public else None,
            assigned_site=site,
            created_at=created_at or now,
        )
        db_session.add(customer)
        db_session.commit()
        return customer

    return _make


@pytest.fixture(scope='function')
def log_call(db_session):
    def _log(customer, user, content="통화 완료 - 관심 있음", outcome="CONNECTED"):
        entry = CallLog(customer_id=customer.id, user_id=user.id, content=content, outcome=outcome)
        db_session.add(entry)
        db_session.commit()
        return entry

    return _log


@pytest.fixture(scope='function')
def admin(make_user):
    return make_user(Role.ADMIN, name="관리자")


@pytest.fixture(scope='function')
def ceo(make_user):
    return make_user(Role.CEO, name="대표")


@pytest.fixture(scope='function')
def head(make_user):
    return make_user(Role.HEAD, name="본부장", department="영업1본부")


@pytest.fixture(scope='function')
def employee(make_user):
    return make_user(Role.EMPLOYEE, name="직원A")


@pytest.fixture(scope='function')
def login(client):
    """login(user) -> Authorization headers for that user."""
    def _login(user):
        token = get_auth_token(client, user.username, PASSWORD)
        assert token, f"login failed for {user.username}"
        return auth_headers(token)

    return _login


def get_auth_token(client, username: str, password: str) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json['data']['token']
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
