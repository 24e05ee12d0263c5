import logging

from flask import Blueprint, jsonify
from flask_login import login_user, logout_user, login_required
from werkzeug.security import generate_password_hash, check_password_hash

from reviewhub.database.database import db, utcnow
from reviewhub.models.auth import User
from reviewhub.models.business import BusinessAccount, STATUS_INACTIVE, unique_public_path
from reviewhub.utils.errors import ValidationError
from reviewhub.utils.payload import json_body

logger = logging.getLogger(__name__)

auth_bp = Blueprint('auth', __name__)

MIN_PASSWORD_LENGTH = 8


def create_business_user(email, password, business_name, full_name=''):
    """Create the user and its inactive business account (no subscription)."""
    errors = {}
    if not email or '@' not in email:
        errors['email'] = 'A valid email is required'
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        errors['password'] = f'Password must be at least {MIN_PASSWORD_LENGTH} characters'
    if not business_name:
        errors['business_name'] = 'Business name is required'
    if errors:
        raise ValidationError('Please complete the required fields', fields=errors)

    email = email.strip().lower()
    if User.query.filter_by(email=email).first():
        raise ValidationError('Email already registered', fields={'email': 'Email already registered'})

    user = User(
        email=email,
        full_name=full_name or '',
        password_hash=generate_password_hash(password)
    )
    db.session.add(user)
    db.session.flush()  # Get the user ID

    business = BusinessAccount(
        user_id=user.id,
        business_name=business_name,
        contact_email=email,
        public_path=unique_public_path(business_name),
        status=STATUS_INACTIVE,
    )
    db.session.add(business)
    db.session.commit()

    logger.info('Registered user %s with business %s', user.id, business.id)
    return user, business


@auth_bp.route('/register', methods=['POST'])
def register():
    data = json_body()
    user, business = create_business_user(
        (data.get('email') or '').strip(),
        data.get('password') or '',
        (data.get('business_name') or '').strip(),
        (data.get('full_name') or '').strip(),
    )
    login_user(user)
    return jsonify({'user_id': user.id, 'business': business.to_dict()}), 201


@auth_bp.route('/login', methods=['POST'])
def login():
    data = json_body()
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''

    user = User.query.filter_by(email=email).first()

    if user and check_password_hash(user.password_hash, password):
        user.last_login = utcnow()
        db.session.commit()
        login_user(user)
        return jsonify({'user_id': user.id})

    return jsonify({'error': 'Invalid email or password'}), 401


@auth_bp.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({'status': 'signed_out'})
