"""
Pytest fixtures for ERP backend tests.

Provides the in-memory database, a test client, users with bearer tokens,
and a small catalog (partners, items, chart of accounts).
"""

import pytest

from erp import create_app
from erp.extensions import db
from erp.models import Account, Item, Partner
from erp.services import account_service, inventory_service, permission_service
from erp.services.auth_service import create_user
from erp.services.session_service import create_session

PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    log_dir = tmp_path_factory.mktemp("logs")
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'ERROR_LOG_PATH': str(log_dir / "db-error.log"),
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


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


# =============================================================================
# USERS / TOKENS
# =============================================================================


@pytest.fixture(scope='function')
def admin_user(db_session):
    return create_user("admin", PASSWORD, name="Administrator", role="admin", rounds=4)


@pytest.fixture(scope='function')
def staff_user(db_session):
    """Staff user with no permission rows; tests grant what they need."""
    return create_user("staff", PASSWORD, name="Staff", role="staff", rounds=4)


@pytest.fixture(scope='function')
def admin_headers(admin_user):
    _, token = create_session(admin_user.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def staff_headers(staff_user):
    _, token = create_session(staff_user.id)
    return auth_headers(token)


def grant(user, resource: str, *actions: str):
    """Replace the user's grant on resource with exactly actions."""
    return permission_service.set_user_permission(user.id, resource, actions)


def get_auth_token(client, username: str, password: str) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


# =============================================================================
# CATALOG
# =============================================================================


@pytest.fixture(scope='function')
def customer(db_session):
    partner = Partner(name="Acme Retail", type="customer", is_active=True)
    db_session.add(partner)
    db_session.commit()
    return partner


@pytest.fixture(scope='function')
def supplier(db_session):
    partner = Partner(name="Beta Wholesale", type="supplier", is_active=True)
    db_session.add(partner)
    db_session.commit()
    return partner


@pytest.fixture(scope='function')
def item_a(db_session):
    item = Item(code="ITEM-001", name="Widget", unit_price=1000, cost_price=600, unit="ea", min_stock_level=5)
    db_session.add(item)
    db_session.commit()
    return item


@pytest.fixture(scope='function')
def item_b(db_session):
    item = Item(code="ITEM-002", name="Gadget", unit_price=500, cost_price=300, unit="ea", min_stock_level=0)
    db_session.add(item)
    db_session.commit()
    return item


@pytest.fixture(scope='function')
def accounts(db_session):
    """Default chart of accounts keyed by code."""
    account_service.seed_default_accounts()
    return {a.code: a for a in db_session.query(Account).all()}


def set_stock(item, quantity: int):
    """Bring an item's on-hand quantity to `quantity` through a manual count."""
    inventory_service.set_counted_quantity(item.id, quantity)
    return quantity
