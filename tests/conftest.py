import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
import uuid

from config import TestingConfig
from storefront import create_app
from storefront.database import get_session
from storefront.models import (
    Account, AccountRole, Coupon, DeliveryLocation, LocationStatus, Product
)


@pytest.fixture(scope='function')
def app():
    """Application with a fresh in-memory database per test."""
    app = create_app(TestingConfig)
    yield app


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session(app):
    """Database session bound to the test app."""
    session = get_session()
    yield session
    session.rollback()
    session.remove()


@pytest.fixture(scope='function')
def persistence(app):
    return app.extensions['persistence']


@pytest.fixture(scope='function')
def login(client):
    """Simulate the external auth provider writing the session."""
    def _login(sub=None, email=None, first_name='Test', last_name='Shopper'):
        sub = sub or f'sess-{uuid.uuid4().hex[:12]}'
        email = email or f'{sub}@example.com'
        with client.session_transaction() as sess:
            sess['auth_sub'] = sub
            sess['auth_email'] = email
            sess['auth_first_name'] = first_name
            sess['auth_last_name'] = last_name
        return sub, email
    return _login


@pytest.fixture(scope='function')
def products(session):
    """Catalog: p1 at 120, p2 at 1500, p3 at 450."""
    rows = [
        Product(id='p1', name='Linen Shirt', price=Decimal('120.00'), is_active=True),
        Product(id='p2', name='Leather Boots', price=Decimal('1500.00'), is_active=True),
        Product(id='p3', name='Canvas Tote', price=Decimal('450.00'), is_active=True),
    ]
    session.add_all(rows)
    session.commit()
    return {p.id: p for p in rows}


@pytest.fixture(scope='function')
def nairobi(session):
    location = DeliveryLocation(
        city_name='Nairobi',
        shipping_amount=Decimal('200.00'),
        pickup_location='Moi Avenue Shop 4',
        pickup_phone='+254700000001',
        status=LocationStatus.ACTIVE.value,
    )
    session.add(location)
    session.commit()
    return location


@pytest.fixture(scope='function')
def closed_location(session):
    location = DeliveryLocation(
        city_name='Kisumu',
        shipping_amount=Decimal('350.00'),
        status=LocationStatus.INACTIVE.value,
    )
    session.add(location)
    session.commit()
    return location


@pytest.fixture(scope='function')
def make_coupon(session):
    """Factory for coupons; extra keyword arguments go to the model."""
    def _make(code, discount_type, value, **kwargs):
        coupon = Coupon(
            code=code,
            discount_type=discount_type,
            value=Decimal(str(value)),
            used_count=kwargs.pop('used_count', 0),
            is_active=kwargs.pop('is_active', True),
            **kwargs
        )
        session.add(coupon)
        session.commit()
        return coupon
    return _make


@pytest.fixture(scope='function')
def save20(make_coupon):
    """SAVE20: 20% off, minimum 1000, capped at 5000."""
    now = datetime.now(timezone.utc)
    return make_coupon(
        'SAVE20', 'percentage', 20,
        min_order_amount=Decimal('1000'),
        max_discount_amount=Decimal('5000'),
        starts_at=now - timedelta(days=1),
        expires_at=now + timedelta(days=30),
    )


@pytest.fixture(scope='function')
def flat500(make_coupon):
    """FLAT500: 500 off orders of 2000 or more."""
    return make_coupon('FLAT500', 'fixed', 500, min_order_amount=Decimal('2000'))


@pytest.fixture(scope='function')
def account(session):
    suffix = uuid.uuid4().hex[:8]
    account = Account(
        session_ref=f'sess-{suffix}',
        email=f'shopper-{suffix}@example.com',
        first_name='Wanjiru',
        last_name='Kamau',
        role=AccountRole.CUSTOMER.value,
    )
    session.add(account)
    session.commit()
    return account
