import logging
from urllib.parse import urlparse

from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user

from reviewhub.database.database import db
from reviewhub.models.business import BusinessAccount, EDITABLE_FIELDS, slugify, validate_rating_value
from reviewhub.utils.errors import BusinessNotFound, ValidationError

logger = logging.getLogger(__name__)

settings_bp = Blueprint('settings', __name__)


def _own_business():
    business = BusinessAccount.query.filter_by(user_id=current_user.id).first()
    if business is None:
        raise BusinessNotFound()
    return business


def clean_settings(data, business):
    """
    Validate an owner's settings edit. Only EDITABLE_FIELDS are accepted;
    status and subscription columns belong to the reconciler.
    """
    if not isinstance(data, dict):
        raise ValidationError('Expected a JSON object')

    errors = {}
    unknown = sorted(set(data) - set(EDITABLE_FIELDS))
    for key in unknown:
        errors[key] = 'Field cannot be edited'

    cleaned = {}
    if 'business_name' in data:
        name = str(data['business_name'] or '').strip()
        if not name:
            errors['business_name'] = 'Business name is required'
        cleaned['business_name'] = name

    if 'contact_email' in data:
        email = str(data['contact_email'] or '').strip()
        if '@' not in email:
            errors['contact_email'] = 'Enter a valid email address'
        cleaned['contact_email'] = email

    if 'google_review_url' in data:
        url = str(data['google_review_url'] or '').strip()
        if url:
            parsed = urlparse(url)
            if parsed.scheme not in ('http', 'https') or not parsed.netloc:
                errors['google_review_url'] = 'Must be an http(s) URL'
        cleaned['google_review_url'] = url or None

    if 'review_threshold' in data:
        try:
            cleaned['review_threshold'] = validate_rating_value(data['review_threshold'], field='review_threshold')
        except ValidationError as e:
            errors.update(e.fields)

    if 'thank_you_message' in data:
        cleaned['thank_you_message'] = str(data['thank_you_message'] or '').strip() or None

    if 'public_path' in data:
        path = slugify(str(data['public_path'] or ''))
        if not path:
            errors['public_path'] = 'Public path is required'
        else:
            taken = BusinessAccount.query.filter(
                BusinessAccount.public_path == path,
                BusinessAccount.id != business.id,
            ).first()
            if taken:
                errors['public_path'] = 'This path is already taken'
        cleaned['public_path'] = path

    if errors:
        raise ValidationError('Invalid settings', fields=errors)
    return cleaned


@settings_bp.route('/', methods=['GET'])
@login_required
def get_settings():
    return jsonify(_own_business().to_dict())


@settings_bp.route('/', methods=['PUT', 'PATCH'])
@login_required
def update_settings():
    business = _own_business()
    cleaned = clean_settings(request.get_json(silent=True), business)

    for key, value in cleaned.items():
        setattr(business, key, value)
    db.session.commit()

    logger.info('Business %s settings edited: %s', business.id, ', '.join(sorted(cleaned)))
    return jsonify(business.to_dict())
