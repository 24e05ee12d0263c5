from functools import partial

from flask import Blueprint, current_app, jsonify
from flask_login import login_required, current_user

from reviewhub.database.database import db
from reviewhub.extensions import limiter
from reviewhub.models.business import BusinessAccount
from reviewhub.models.reviews import Review
from reviewhub.utils.errors import BusinessNotFound
from reviewhub.utils.payload import json_body
from reviewhub.utils.review_router import ACTION_CAPTURE, submit_rating
from reviewhub.utils.scheduler import enqueue_review_notification

reviews_bp = Blueprint('reviews', __name__)
public_bp = Blueprint('public', __name__)


def find_public_business(key):
    business = BusinessAccount.query.filter_by(public_path=key.lower()).first()
    if business is None:
        business = db.session.get(BusinessAccount, key)
    if business is None:
        raise BusinessNotFound()
    return business


def _submission_limit():
    return current_app.config.get('REVIEW_RATE_LIMIT', '10 per minute')


@public_bp.route('/<key>', methods=['GET'])
def business_info(key):
    return jsonify(find_public_business(key).public_info())


@public_bp.route('/<key>', methods=['POST'])
@limiter.limit(_submission_limit)
def submit(key):
    business = find_public_business(key)
    data = json_body()

    decision = submit_rating(
        business.id,
        data.get('rating'),
        contact=data,
        notify=partial(enqueue_review_notification, current_app._get_current_object()),
    )

    status = 201 if decision.action == ACTION_CAPTURE else 200
    return jsonify(decision.to_dict()), status


@reviews_bp.route('/', methods=['GET'])
@login_required
def list_reviews():
    business = BusinessAccount.query.filter_by(user_id=current_user.id).first()
    if business is None:
        raise BusinessNotFound()

    reviews = Review.query.filter_by(
        business_id=business.id
    ).order_by(Review.created_at.desc()).all()

    return jsonify({'reviews': [r.to_dict() for r in reviews]})
