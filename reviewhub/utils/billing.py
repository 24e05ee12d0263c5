import json
import logging

import stripe
from flask import Blueprint, jsonify, request, url_for
from flask_login import login_required, current_user
from sqlalchemy.exc import IntegrityError

from reviewhub.database.database import db
from reviewhub.models.business import BusinessAccount
from reviewhub.models.finance import WebhookEvent
from reviewhub.routes import stripe as provider
from reviewhub.utils.account_state import load_account_state
from reviewhub.utils.errors import BusinessNotFound, InvalidSignature, ReviewHubError, ValidationError
from reviewhub.utils.subscription import (
    apply_checkout_completed,
    apply_payment_failed,
    apply_subscription_deleted,
    apply_subscription_updated,
    attach_customer,
    check_subscription,
)

logger = logging.getLogger(__name__)

billing_bp = Blueprint('billing', __name__)

EVENT_HANDLERS = {
    'checkout.session.completed': apply_checkout_completed,
    'invoice.payment_failed': apply_payment_failed,
    'customer.subscription.deleted': apply_subscription_deleted,
    'customer.subscription.updated': apply_subscription_updated,
}


def _own_business():
    business = BusinessAccount.query.filter_by(user_id=current_user.id).first()
    if business is None:
        raise BusinessNotFound()
    return business


@billing_bp.route('/', methods=['GET'])
@login_required
def billing():
    """Subscription view of the caller's business"""
    business = _own_business()
    return jsonify({
        'status': business.status,
        'subscribed': business.is_active,
        'subscription_status': business.subscription_status,
        'subscription_end': business.subscription_end_date.isoformat() if business.subscription_end_date else None,
        'payment_failed_at': business.payment_failed_at.isoformat() if business.payment_failed_at else None,
        'has_customer': bool(business.stripe_customer_id),
    })


@billing_bp.route('/create-checkout-session', methods=['POST'])
@login_required
def create_checkout():
    """Create Stripe checkout session"""
    business = _own_business()

    # Pass session_id in success URL
    success_url = url_for('billing.success', _external=True) + '?session_id={CHECKOUT_SESSION_ID}'
    cancel_url = url_for('billing.billing', _external=True)

    session, customer_id = provider.create_checkout_session(business, current_user, success_url, cancel_url)
    if business.stripe_customer_id != customer_id:
        attach_customer(business.id, customer_id)

    return jsonify({'checkout_url': session.url})


@billing_bp.route('/create-portal-session', methods=['POST'])
@login_required
def create_portal():
    """Create Stripe customer portal session"""
    business = _own_business()
    if not business.stripe_customer_id:
        raise ValidationError('No subscription found for this business')

    return_url = url_for('billing.billing', _external=True)
    portal_session = provider.create_customer_portal_session(business.stripe_customer_id, return_url)
    return jsonify({'portal_url': portal_session.url})


@billing_bp.route('/success')
@login_required
def success():
    """Checkout success: apply the session without waiting for the webhook"""
    business = _own_business()
    session_id = request.args.get('session_id')

    if session_id:
        checkout_session = provider.retrieve_checkout_session(session_id)
        metadata = provider.get_field(checkout_session, 'metadata')
        if not metadata or provider.get_field(metadata, 'business_id') != business.id:
            raise ValidationError('Checkout session does not belong to this business')
        apply_checkout_completed(checkout_session)

    return jsonify(load_account_state(current_user).to_dict())


@billing_bp.route('/check-subscription', methods=['POST'])
@login_required
def check():
    """Pull the current subscription from Stripe and refresh the account state"""
    business = _own_business()
    result = check_subscription(business.id)

    payload = result.to_dict()
    payload['account'] = load_account_state(current_user, route=request.args.get('route')).to_dict()
    return jsonify(payload)


def _already_processed(event_id):
    return event_id is not None and WebhookEvent.query.filter_by(event_id=event_id).first() is not None


def _record_event(event_id, event_type, business):
    if event_id is None:
        return
    db.session.add(WebhookEvent(
        event_id=event_id,
        event_type=event_type,
        business_id=business.id if business is not None else None,
    ))
    try:
        db.session.commit()
    except IntegrityError:
        # A concurrent delivery of the same event got there first
        db.session.rollback()


@billing_bp.route('/webhook', methods=['POST'])
def webhook():
    """Stripe webhook handler"""
    # Both Stripe keys must be configured before any event is accepted
    provider.configure_stripe()
    payload = request.get_data(as_text=True)
    sig_header = request.headers.get('Stripe-Signature')

    try:
        provider.verify_webhook(payload, sig_header)
    except stripe.SignatureVerificationError as e:
        logger.warning('Webhook signature verification failed: %s', e)
        raise InvalidSignature()

    try:
        event = json.loads(payload)
    except ValueError:
        return jsonify({'error': 'Invalid payload'}), 400
    if not isinstance(event, dict) or not isinstance(event.get('data', {}), dict):
        return jsonify({'error': 'Invalid payload'}), 400

    event_id = event.get('id')
    event_type = event.get('type')
    logger.info('Webhook signature verified (event=%s, type=%s)', event_id, event_type)

    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        logger.info('Unhandled event type %s', event_type)
        return jsonify({'received': True}), 200

    if _already_processed(event_id):
        logger.info('Event %s already processed', event_id)
        return jsonify({'received': True}), 200

    try:
        business = handler(event.get('data', {}).get('object', {}))
    except Exception as e:
        db.session.rollback()
        logger.exception('Error processing webhook event %s (%s)', event_id, event_type)
        body = e.to_dict() if isinstance(e, ReviewHubError) else {'error': 'Webhook processing failed'}
        return jsonify(body), 500

    _record_event(event_id, event_type, business)
    return jsonify({'received': True}), 200
