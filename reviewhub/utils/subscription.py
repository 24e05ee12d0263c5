"""
Subscription reconciliation.

Translates Stripe subscription lifecycle into BusinessAccount.status. Two
channels feed it: webhook events (push) and explicit status checks (pull).
Every write replaces status, subscription status and timestamps with the
latest provider truth, so re-applying an event leaves the row unchanged
apart from timestamp bookkeeping.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm.exc import StaleDataError

from reviewhub.database.database import db, utcnow
from reviewhub.models.business import (
    BusinessAccount,
    GOOD_SUBSCRIPTION_STATUSES,
    STATUS_ACTIVE,
    STATUS_INACTIVE,
    SUBSCRIPTION_ACTIVE,
    SUBSCRIPTION_CANCELLED,
)
from reviewhub.routes import stripe as provider
from reviewhub.utils.errors import ConcurrentUpdateError, ReviewHubError

logger = logging.getLogger(__name__)

MAX_WRITE_ATTEMPTS = 3


@dataclass
class SubscriptionCheck:
    business: BusinessAccount
    subscribed: bool
    subscription_status: Optional[str]
    subscription_end: Optional[datetime]
    activated: bool

    def to_dict(self):
        return {
            'subscribed': self.subscribed,
            'subscription_status': self.subscription_status,
            'subscription_end': self.subscription_end.isoformat() if self.subscription_end else None,
            'status': self.business.status,
            'activated': self.activated,
        }


def _field(obj, key, default=None):
    if obj is not None and key in obj:
        return obj[key]
    return default


def _object_id(value):
    # Expanded Stripe references arrive as objects, plain ones as ids
    if value is None or isinstance(value, str):
        return value
    return _field(value, 'id')


def _status_for(subscription_status, manual_override):
    if subscription_status in GOOD_SUBSCRIPTION_STATUSES or manual_override:
        return STATUS_ACTIVE
    return STATUS_INACTIVE


def _apply(business_id, mutate):
    """
    Load the business, apply mutate and commit.

    The row carries a version counter; a concurrent writer makes the commit
    fail, in which case the row is re-read and mutate re-applied.
    """
    for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
        business = db.session.get(BusinessAccount, business_id)
        if business is None:
            return None
        mutate(business)
        try:
            db.session.commit()
            return business
        except StaleDataError:
            db.session.rollback()
            logger.warning('Concurrent update on business %s (attempt %d)', business_id, attempt)
    raise ConcurrentUpdateError(f'Could not update business {business_id}')


def _resolve_business(customer_id=None, subscription_id=None):
    business = None
    if customer_id:
        business = BusinessAccount.query.filter_by(stripe_customer_id=customer_id).first()
    if business is None and subscription_id:
        business = BusinessAccount.query.filter_by(stripe_subscription_id=subscription_id).first()
    return business


def _apply_provider_truth(business, snapshot):
    business.subscription_status = snapshot.status
    business.subscription_end_date = snapshot.current_period_end
    business.status = _status_for(snapshot.status, business.manual_override)
    if snapshot.status == SUBSCRIPTION_ACTIVE:
        business.payment_failed_at = None


def apply_checkout_completed(session):
    """
    Activate the business named in the checkout metadata.

    The subscription state is fetched from Stripe rather than trusted from
    the session. Returns the business, or None when the event is dropped.
    """
    if _field(session, 'mode') != 'subscription':
        logger.info('Ignoring checkout session %s (mode=%s)', _field(session, 'id'), _field(session, 'mode'))
        return None

    metadata = _field(session, 'metadata') or {}
    business_id = _field(metadata, 'business_id')
    user_id = _field(metadata, 'user_id')
    if not business_id or not user_id:
        logger.warning('Checkout session %s has no business/user metadata', _field(session, 'id'))
        return None

    business = db.session.get(BusinessAccount, business_id)
    if business is None or business.user_id != user_id:
        logger.warning('Checkout session %s references unknown business %s for user %s',
                       _field(session, 'id'), business_id, user_id)
        return None

    subscription_id = _object_id(_field(session, 'subscription'))
    if not subscription_id:
        logger.warning('Checkout session %s completed without a subscription', _field(session, 'id'))
        return None

    snapshot = provider.fetch_subscription(subscription_id)
    customer_id = _object_id(_field(session, 'customer')) or snapshot.customer_id

    def mutate(b):
        if customer_id:
            b.stripe_customer_id = customer_id
        b.stripe_subscription_id = subscription_id
        b.subscription_status = snapshot.status
        b.subscription_end_date = snapshot.current_period_end
        b.status = STATUS_ACTIVE

    business = _apply(business_id, mutate)
    logger.info('Business %s subscription activated (subscription=%s, end=%s)',
                business_id, subscription_id, snapshot.current_period_end)
    return business


def _invoice_subscription_id(invoice):
    subscription_id = _object_id(_field(invoice, 'subscription'))
    if subscription_id:
        return subscription_id
    details = _field(_field(invoice, 'parent'), 'subscription_details')
    return _object_id(_field(details, 'subscription'))


def apply_payment_failed(invoice):
    """Record the failure; the account stays live through the grace period."""
    customer_id = _object_id(_field(invoice, 'customer'))
    subscription_id = _invoice_subscription_id(invoice)
    business = _resolve_business(customer_id, subscription_id)
    if business is None:
        logger.warning('Payment failed for unknown customer %s (invoice %s)', customer_id, _field(invoice, 'id'))
        return None

    def mutate(b):
        b.payment_failed_at = utcnow()

    business = _apply(business.id, mutate)
    logger.info('Payment failure recorded for business %s', business.id)
    return business


def apply_subscription_deleted(subscription):
    """Terminal: cancelled and inactive. Failure history is kept."""
    snapshot = provider.subscription_snapshot(subscription)
    business = _resolve_business(snapshot.customer_id, snapshot.id)
    if business is None:
        logger.warning('Subscription %s deleted for unknown customer %s', snapshot.id, snapshot.customer_id)
        return None

    def mutate(b):
        b.subscription_status = SUBSCRIPTION_CANCELLED
        b.status = STATUS_INACTIVE

    business = _apply(business.id, mutate)
    logger.info('Business %s deactivated due to subscription cancellation', business.id)
    return business


def apply_subscription_updated(subscription):
    snapshot = provider.subscription_snapshot(subscription)
    business = _resolve_business(snapshot.customer_id, snapshot.id)
    if business is None:
        logger.warning('Subscription %s updated for unknown customer %s', snapshot.id, snapshot.customer_id)
        return None

    def mutate(b):
        if snapshot.id:
            b.stripe_subscription_id = snapshot.id
        _apply_provider_truth(b, snapshot)

    business = _apply(business.id, mutate)
    logger.info('Business %s settings updated (status=%s, subscription_status=%s)',
                business.id, business.status, snapshot.status)
    return business


def check_subscription(business_id):
    """
    Pull the caller's subscription from Stripe and apply it immediately.

    Closes the window where checkout succeeded but the webhook has not
    arrived yet. UpstreamProviderError propagates to the caller.
    """
    business = db.session.get(BusinessAccount, business_id)
    if business is None:
        return None
    previous_status = business.status

    if business.stripe_subscription_id:
        snapshot = provider.fetch_subscription(business.stripe_subscription_id)
        # The stored subscription may have been replaced by a newer one
        if snapshot.status not in GOOD_SUBSCRIPTION_STATUSES and business.stripe_customer_id:
            newer = provider.find_customer_subscription(customer_id=business.stripe_customer_id)
            if newer is not None and newer.status in GOOD_SUBSCRIPTION_STATUSES:
                snapshot = newer
    else:
        email = None if business.stripe_customer_id else business.owner.email
        snapshot = provider.find_customer_subscription(customer_id=business.stripe_customer_id, email=email)

    if snapshot is None:
        def mutate(b):
            b.status = _status_for(b.subscription_status, b.manual_override)
    else:
        def mutate(b):
            if snapshot.customer_id and not b.stripe_customer_id:
                b.stripe_customer_id = snapshot.customer_id
            if snapshot.id:
                b.stripe_subscription_id = snapshot.id
            _apply_provider_truth(b, snapshot)

    business = _apply(business_id, mutate)
    activated = previous_status != STATUS_ACTIVE and business.status == STATUS_ACTIVE
    if activated:
        logger.info('Business %s activated by subscription check', business_id)

    return SubscriptionCheck(
        business=business,
        subscribed=snapshot is not None and snapshot.status in GOOD_SUBSCRIPTION_STATUSES,
        subscription_status=business.subscription_status,
        subscription_end=business.subscription_end_date,
        activated=activated,
    )


def set_manual_override(business_id, granted):
    def mutate(b):
        b.manual_override = bool(granted)
        b.status = _status_for(b.subscription_status, b.manual_override)

    business = _apply(business_id, mutate)
    if business is not None:
        logger.info('Manual override %s for business %s', 'granted' if granted else 'revoked', business_id)
    return business


def sync_all_subscriptions():
    """
    Pull-check every business that has a Stripe reference.

    Used by the nightly job so missed webhooks converge.
    """
    business_ids = [
        row.id for row in BusinessAccount.query.filter(
            db.or_(
                BusinessAccount.stripe_customer_id.isnot(None),
                BusinessAccount.stripe_subscription_id.isnot(None),
            )
        ).all()
    ]

    synced = 0
    for business_id in business_ids:
        try:
            check_subscription(business_id)
            synced += 1
        except ReviewHubError as e:
            db.session.rollback()
            logger.error('Subscription sync failed for business %s: %s', business_id, e)
    return synced


def attach_customer(business_id, customer_id):
    """Store the Stripe customer created for a checkout."""
    def mutate(b):
        b.stripe_customer_id = customer_id

    return _apply(business_id, mutate)
