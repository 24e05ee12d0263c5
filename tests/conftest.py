import hashlib
import hmac
import json
import time

import pytest
from werkzeug.security import generate_password_hash

from app import create_app
from reviewhub.database.database import db
from reviewhub.models.auth import User
from reviewhub.models.business import BusinessAccount, unique_public_path
from reviewhub.routes import stripe as provider

WEBHOOK_SECRET = 'whsec_test_secret'
ADMIN_EMAIL = 'root@reviewhub.test'
PASSWORD = 'correct-horse-battery'
REDIRECT_URL = 'https://search.google.com/local/writereview?placeid=ChIJtest'

TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite://',
    'SECRET_KEY': 'test',
    'STRIPE_SECRET_KEY': 'sk_test_123',
    'STRIPE_WEBHOOK_SECRET': WEBHOOK_SECRET,
    'STRIPE_PRICE_ID': 'price_123',
    'SUPER_ADMIN_EMAILS': ADMIN_EMAIL,
    'RATELIMIT_ENABLED': False,
    'SCHEDULER_ENABLED': False,
    'MAIL_SUPPRESS_SEND': True,
    'MAIL_DEFAULT_SENDER': 'noreply@reviewhub.test',
}


@pytest.fixture
def app():
    app = create_app(dict(TEST_CONFIG))
    yield app
    scheduler = app.extensions.get('notification_scheduler')
    if scheduler is not None and scheduler.running:
        scheduler.shutdown(wait=True)
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


def create_business(email='owner@cafeluna.test', name='Cafe Luna', status='active',
                    threshold=4, redirect=REDIRECT_URL, **fields):
    user = User(email=email, full_name='Luna Owner', password_hash=generate_password_hash(PASSWORD))
    db.session.add(user)
    db.session.flush()
    business = BusinessAccount(
        user_id=user.id,
        business_name=name,
        contact_email='hello@' + email.split('@')[1],
        public_path=unique_public_path(name),
        review_threshold=threshold,
        google_review_url=redirect,
        status=status,
        **fields
    )
    db.session.add(business)
    db.session.commit()
    return business


@pytest.fixture
def make_business(ctx):
    return create_business


@pytest.fixture
def seed(app):
    """Create a business outside any long-lived context; returns its ids."""
    def _seed(**kwargs):
        with app.app_context():
            business = create_business(**kwargs)
            return {'business_id': business.id, 'user_id': business.user_id,
                    'email': business.owner.email, 'public_path': business.public_path}
    return _seed


def wait_for(condition, timeout=5):
    deadline = time.monotonic() + timeout
    while not condition():
        if time.monotonic() > deadline:
            return False
        time.sleep(0.01)
    return True


def login(client, email, password=PASSWORD):
    return client.post('/auth/login', json={'email': email, 'password': password})


def sign_payload(payload, secret=WEBHOOK_SECRET, timestamp=None):
    timestamp = timestamp or int(time.time())
    signature = hmac.new(secret.encode(), f'{timestamp}.{payload}'.encode(), hashlib.sha256).hexdigest()
    return f't={timestamp},v1={signature}'


def post_event(client, event, secret=WEBHOOK_SECRET, signature=None):
    payload = json.dumps(event)
    headers = {'Content-Type': 'application/json'}
    header = signature if signature is not None else sign_payload(payload, secret)
    if header:
        headers['Stripe-Signature'] = header
    return client.post('/billing/webhook', data=payload, headers=headers)


class FakeProvider:
    """Stands in for Stripe's subscription API."""

    def __init__(self):
        self.subscriptions = {}
        self.fetch_calls = 0
        self.error = None

    def set(self, subscription_id, status, customer='cus_123', period_end=1893456000):
        self.subscriptions[subscription_id] = provider.ProviderSubscription(
            id=subscription_id,
            customer_id=customer,
            status=status,
            current_period_end=provider._from_timestamp(period_end),
        )

    def fetch_subscription(self, subscription_id):
        self.fetch_calls += 1
        if self.error is not None:
            raise self.error
        return self.subscriptions[subscription_id]

    def find_customer_subscription(self, customer_id=None, email=None):
        if self.error is not None:
            raise self.error
        matches = [s for s in self.subscriptions.values() if customer_id is None or s.customer_id == customer_id]
        for s in matches:
            if s.status in ('active', 'trialing'):
                return s
        return matches[0] if matches else None


@pytest.fixture
def fake_stripe(monkeypatch):
    fake = FakeProvider()
    monkeypatch.setattr(provider, 'fetch_subscription', fake.fetch_subscription)
    monkeypatch.setattr(provider, 'find_customer_subscription', fake.find_customer_subscription)
    return fake


def subscription_event(event_type, subscription_id='sub_123', status='active', customer='cus_123',
                       period_end=1893456000, event_id=None):
    return {
        'id': event_id or f'evt_{event_type}_{status}',
        'type': event_type,
        'data': {'object': {
            'id': subscription_id,
            'object': 'subscription',
            'customer': customer,
            'status': status,
            'current_period_end': period_end,
        }},
    }


def checkout_event(business_id, user_id, subscription_id='sub_123', customer='cus_123',
                   mode='subscription', event_id='evt_checkout_1'):
    return {
        'id': event_id,
        'type': 'checkout.session.completed',
        'data': {'object': {
            'id': 'cs_test_1',
            'object': 'checkout.session',
            'mode': mode,
            'customer': customer,
            'subscription': subscription_id,
            'metadata': {'business_id': business_id, 'user_id': user_id},
        }},
    }
