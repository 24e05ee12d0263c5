import logging
import secrets
from functools import wraps

from flask import Blueprint, current_app, jsonify, url_for
from flask_login import login_required, current_user

from reviewhub.database.database import db
from reviewhub.models.business import BusinessAccount
from reviewhub.models.reviews import Review
from reviewhub.routes.auth import create_business_user
from reviewhub.utils.account_state import load_account_state
from reviewhub.utils.email_notification import send_user_credentials
from reviewhub.utils.errors import BusinessNotFound, NotificationDeliveryError, ValidationError
from reviewhub.utils.payload import json_body
from reviewhub.utils.subscription import set_manual_override

logger = logging.getLogger(__name__)

admin_bp = Blueprint('admin', __name__)


def super_admin_required(view):
    @wraps(view)
    @login_required
    def wrapped(*args, **kwargs):
        if not load_account_state(current_user).is_super_admin:
            return jsonify({'error': 'Access denied'}), 403
        return view(*args, **kwargs)
    return wrapped


def _business_or_404(business_id):
    business = db.session.get(BusinessAccount, business_id)
    if business is None:
        raise BusinessNotFound()
    return business


@admin_bp.route('/businesses', methods=['GET'])
@super_admin_required
def list_businesses():
    counts = dict(
        db.session.query(Review.business_id, db.func.count(Review.id))
        .group_by(Review.business_id)
        .all()
    )
    businesses = BusinessAccount.query.order_by(BusinessAccount.created_at.desc()).all()

    rows = []
    for business in businesses:
        row = business.to_dict()
        row['owner_email'] = business.owner.email if business.owner else None
        row['review_count'] = counts.get(business.id, 0)
        rows.append(row)
    return jsonify({'businesses': rows})


@admin_bp.route('/businesses/<business_id>/override', methods=['POST'])
@super_admin_required
def override(business_id):
    _business_or_404(business_id)
    data = json_body()
    if not isinstance(data.get('granted'), bool):
        raise ValidationError('granted must be true or false', fields={'granted': 'Must be a boolean'})

    business = set_manual_override(business_id, data['granted'])
    return jsonify(business.to_dict())


@admin_bp.route('/businesses/<business_id>/subscription-amount', methods=['POST'])
@super_admin_required
def subscription_amount(business_id):
    business = _business_or_404(business_id)
    amount = json_body().get('amount_cents')

    if amount is not None and (isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0):
        raise ValidationError('Invalid amount', fields={'amount_cents': 'Must be a positive whole number of cents'})

    business.custom_subscription_amount = amount
    db.session.commit()
    logger.info('Subscription amount for business %s set to %s', business_id, amount)
    return jsonify(business.to_dict())


@admin_bp.route('/users', methods=['POST'])
@super_admin_required
def create_user():
    data = json_body()
    temporary_password = secrets.token_urlsafe(12)

    user, business = create_business_user(
        (data.get('email') or '').strip(),
        temporary_password,
        (data.get('business_name') or '').strip(),
        (data.get('full_name') or '').strip(),
    )

    credentials_sent = True
    try:
        send_user_credentials(
            current_app.extensions['mail'],
            user.email,
            user.full_name,
            business.business_name,
            temporary_password,
            url_for('auth.login', _external=True),
        )
    except NotificationDeliveryError as e:
        credentials_sent = False
        logger.error(str(e))

    return jsonify({
        'user_id': user.id,
        'business': business.to_dict(),
        'credentials_sent': credentials_sent,
    }), 201
