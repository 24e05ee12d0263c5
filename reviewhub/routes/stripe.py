import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import stripe
from flask import current_app

from reviewhub.utils.errors import ConfigurationError, UpstreamProviderError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderSubscription:
    """Authoritative subscription state as reported by Stripe."""

    id: str
    customer_id: Optional[str]
    status: str
    current_period_end: Optional[datetime]


def clean_secret(value):
    return (value or '').strip().strip('"').strip("'")


def configure_stripe():
    """
    Set the API key from app config, failing fast when credentials are missing.
    """
    secret_key = clean_secret(current_app.config.get('STRIPE_SECRET_KEY'))
    if not secret_key:
        logger.critical('STRIPE_SECRET_KEY is not set')
        raise ConfigurationError('STRIPE_SECRET_KEY is not set')
    stripe.api_key = secret_key
    return secret_key


def webhook_secret():
    secret = clean_secret(current_app.config.get('STRIPE_WEBHOOK_SECRET'))
    if not secret:
        logger.critical('STRIPE_WEBHOOK_SECRET is not set')
        raise ConfigurationError('STRIPE_WEBHOOK_SECRET is not set')
    return secret


def get_field(obj, key, default=None):
    # Works for both webhook dicts and SDK objects
    if obj is not None and key in obj:
        return obj[key]
    return default


def _from_timestamp(value):
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


def subscription_snapshot(obj):
    """
    Normalize a Stripe subscription (SDK object or webhook payload).

    Newer API versions report the period end on the subscription items
    instead of the subscription itself.
    """
    period_end = get_field(obj, 'current_period_end')
    if period_end is None:
        items = get_field(get_field(obj, 'items'), 'data') or []
        if items:
            period_end = get_field(items[0], 'current_period_end')

    customer = get_field(obj, 'customer')
    if customer is not None and not isinstance(customer, str):
        customer = get_field(customer, 'id')

    return ProviderSubscription(
        id=get_field(obj, 'id'),
        customer_id=customer,
        status=get_field(obj, 'status') or '',
        current_period_end=_from_timestamp(period_end),
    )


def verify_webhook(payload, sig_header):
    """
    Check the Stripe-Signature header against the raw body.

    Raises stripe's SignatureVerificationError on mismatch.
    """
    secret = webhook_secret()
    if not sig_header:
        raise stripe.SignatureVerificationError('No Stripe signature found', sig_header, payload)
    tolerance = current_app.config.get('STRIPE_WEBHOOK_TOLERANCE', stripe.Webhook.DEFAULT_TOLERANCE)
    stripe.WebhookSignature.verify_header(payload, sig_header, secret, tolerance)


def fetch_subscription(subscription_id):
    configure_stripe()
    try:
        return subscription_snapshot(stripe.Subscription.retrieve(subscription_id))
    except stripe.StripeError as e:
        logger.error('Error retrieving subscription %s: %s', subscription_id, e)
        raise UpstreamProviderError(str(e)) from e


def find_customer_subscription(customer_id=None, email=None):
    """
    Latest subscription of a customer, looked up by id or by email.

    Returns None when Stripe knows no subscription for the caller.
    """
    configure_stripe()
    try:
        if not customer_id and email:
            customers = stripe.Customer.list(email=email, limit=1)
            if not customers.data:
                return None
            customer_id = customers.data[0].id
        if not customer_id:
            return None

        subscriptions = stripe.Subscription.list(customer=customer_id, status='all', limit=10)
        candidates = [subscription_snapshot(s) for s in subscriptions.data]
    except stripe.StripeError as e:
        logger.error('Error listing subscriptions for customer %s: %s', customer_id, e)
        raise UpstreamProviderError(str(e)) from e

    if not candidates:
        return None
    # A live subscription wins over older cancelled ones
    for candidate in candidates:
        if candidate.status in ('active', 'trialing'):
            return candidate
    return candidates[0]


def retrieve_checkout_session(session_id):
    configure_stripe()
    try:
        return stripe.checkout.Session.retrieve(session_id)
    except stripe.StripeError as e:
        logger.error('Error retrieving checkout session %s: %s', session_id, e)
        raise UpstreamProviderError(str(e)) from e


def create_checkout_session(business, user, success_url, cancel_url):
    """
    Create a Stripe checkout session for the business subscription.

    Returns (session, customer_id).
    """
    configure_stripe()
    try:
        if business.stripe_customer_id:
            customer_id = business.stripe_customer_id
        else:
            customer = stripe.Customer.create(
                email=user.email,
                name=business.business_name,
                metadata={
                    'business_id': business.id,
                    'user_id': user.id,
                }
            )
            customer_id = customer.id

        if business.custom_subscription_amount:
            line_item = {
                'price_data': {
                    'currency': current_app.config.get('STRIPE_CURRENCY', 'usd'),
                    'product_data': {'name': f'{business.business_name} subscription'},
                    'unit_amount': business.custom_subscription_amount,
                    'recurring': {'interval': 'month'},
                },
                'quantity': 1,
            }
        else:
            price_id = clean_secret(current_app.config.get('STRIPE_PRICE_ID'))
            if not price_id:
                logger.critical('STRIPE_PRICE_ID is not set')
                raise ConfigurationError('STRIPE_PRICE_ID is not set')
            line_item = {'price': price_id, 'quantity': 1}

        session = stripe.checkout.Session.create(
            customer=customer_id,
            line_items=[line_item],
            mode='subscription',
            success_url=success_url,
            cancel_url=cancel_url,
            metadata={
                'business_id': business.id,
                'user_id': user.id,
            }
        )
        return session, customer_id
    except stripe.StripeError as e:
        logger.error('Error creating checkout session for business %s: %s', business.id, e)
        raise UpstreamProviderError(str(e)) from e


def create_customer_portal_session(customer_id, return_url):
    configure_stripe()
    try:
        return stripe.billing_portal.Session.create(
            customer=customer_id,
            return_url=return_url,
        )
    except stripe.StripeError as e:
        logger.error('Error creating portal session for customer %s: %s', customer_id, e)
        raise UpstreamProviderError(str(e)) from e
