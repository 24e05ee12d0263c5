"""
Review routing: redirect happy customers to the public review site, capture
everyone else as a private Review.
"""
import logging
from dataclasses import dataclass
from email.utils import parseaddr
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError

from reviewhub.database.database import db, utcnow
from reviewhub.models.business import BusinessAccount, DEFAULT_THANK_YOU, validate_rating_value
from reviewhub.models.reviews import Review
from reviewhub.utils.email_notification import build_review_notification
from reviewhub.utils.errors import (
    BusinessInactive,
    BusinessNotFound,
    SubmissionLimitExceeded,
    ValidationError,
)

logger = logging.getLogger(__name__)

ACTION_REDIRECT = 'redirect'
ACTION_CAPTURE = 'capture'

CAPTURE_FIELDS = ('name', 'email', 'subject', 'comment')


@dataclass
class ContactInfo:
    name: str = ''
    email: str = ''
    subject: str = ''
    comment: str = ''

    @classmethod
    def from_mapping(cls, data):
        data = data or {}
        return cls(**{f: str(data.get(f) or '').strip() for f in CAPTURE_FIELDS})

    def validate(self):
        errors = {}
        for field in CAPTURE_FIELDS:
            if not getattr(self, field):
                errors[field] = f'{field.capitalize()} is required'
        if self.email and ('@' not in parseaddr(self.email)[1] or ' ' in self.email):
            errors['email'] = 'Enter a valid email address'
        if errors:
            raise ValidationError('Please complete the required fields', fields=errors)


@dataclass
class RatingDecision:
    action: str
    target: Optional[str] = None
    review: Optional[Review] = None
    message: Optional[str] = None

    def to_dict(self):
        if self.action == ACTION_REDIRECT:
            return {'action': self.action, 'target': self.target}
        return {
            'action': self.action,
            'message': self.message,
            'review_id': self.review.id if self.review else None,
        }


def should_redirect(rating, business):
    return rating >= business.review_threshold and bool(business.redirect_url)


def submit_rating(business_id, rating, contact=None, notify: Optional[Callable] = None, today=None):
    """
    Route one customer rating.

    At or above the business threshold with a redirect URL configured the
    customer is sent to the redirect target and nothing is stored; any
    comment fields are discarded. Otherwise the contact fields are required,
    a Review is stored and notify is called with the notification payload.
    A failing notify never fails the submission.
    """
    validate_rating_value(rating)

    business = db.session.get(BusinessAccount, business_id) if business_id else None
    if business is None:
        raise BusinessNotFound()
    if not business.is_active:
        raise BusinessInactive()

    if should_redirect(rating, business):
        logger.info('Rating %d for business %s redirected', rating, business.id)
        return RatingDecision(action=ACTION_REDIRECT, target=business.redirect_url)

    if not isinstance(contact, ContactInfo):
        contact = ContactInfo.from_mapping(contact)
    contact.validate()

    customer_email = contact.email.lower()
    today = today or utcnow().date()
    already_submitted = Review.query.filter_by(
        business_id=business.id,
        customer_email=customer_email,
        submitted_on=today,
    ).first()
    if already_submitted:
        raise SubmissionLimitExceeded()

    review = Review(
        business_id=business.id,
        customer_name=contact.name,
        customer_email=customer_email,
        subject=contact.subject,
        comment=contact.comment,
        rating=rating,
        submitted_on=today,
    )
    db.session.add(review)
    try:
        db.session.commit()
    except IntegrityError:
        # Lost a race against a concurrent submission from the same customer
        db.session.rollback()
        raise SubmissionLimitExceeded()

    logger.info('Captured %d-star review %s for business %s', rating, review.id, business.id)

    if notify is not None:
        try:
            notify(build_review_notification(business, review))
        except Exception as e:
            logger.warning('Could not enqueue notification for review %s: %s', review.id, e)

    return RatingDecision(
        action=ACTION_CAPTURE,
        review=review,
        message=business.thank_you_message or DEFAULT_THANK_YOU,
    )
