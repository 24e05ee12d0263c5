import re

from sqlalchemy.orm import validates

from reviewhub.database.database import db, utcnow, gen_id
from reviewhub.utils.errors import ValidationError

STATUS_ACTIVE = 'active'
STATUS_INACTIVE = 'inactive'

# Provider states that keep a business live
GOOD_SUBSCRIPTION_STATUSES = ('active', 'trialing')
SUBSCRIPTION_ACTIVE = 'active'
SUBSCRIPTION_CANCELLED = 'cancelled'

DEFAULT_THRESHOLD = 4
DEFAULT_THANK_YOU = 'Thank you for your feedback! Your review helps us improve our service.'

# Fields an owner may edit; status and subscription columns are reconciler-only
EDITABLE_FIELDS = (
    'business_name',
    'contact_email',
    'google_review_url',
    'review_threshold',
    'thank_you_message',
    'public_path',
)


def slugify(name):
    slug = (name or '').strip().lower()
    slug = re.sub(r'\s+', '-', slug)
    return re.sub(r'[^a-z0-9-]', '', slug)


def validate_rating_value(value, field='rating'):
    """Ratings and thresholds are plain integers between 1 and 5."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f'{field} must be an integer', fields={field: 'Must be a whole number from 1 to 5'})
    if value < 1 or value > 5:
        raise ValidationError(f'{field} out of range', fields={field: 'Must be between 1 and 5'})
    return value


class BusinessAccount(db.Model):
    __tablename__ = 'business_account'

    id = db.Column(db.String(36), primary_key=True, default=gen_id)
    user_id = db.Column(db.String(36), db.ForeignKey('user.id'), nullable=False, unique=True)
    business_name = db.Column(db.String(200), nullable=False)
    contact_email = db.Column(db.String(120), nullable=False)
    google_review_url = db.Column(db.String(500))
    review_threshold = db.Column(db.Integer, nullable=False, default=DEFAULT_THRESHOLD)
    thank_you_message = db.Column(db.Text)
    public_path = db.Column(db.String(200), unique=True, nullable=False)

    # Reconciler-owned
    status = db.Column(db.String(20), nullable=False, default=STATUS_INACTIVE)
    manual_override = db.Column(db.Boolean, nullable=False, default=False)
    stripe_customer_id = db.Column(db.String(255), unique=True)
    stripe_subscription_id = db.Column(db.String(255))
    subscription_status = db.Column(db.String(50))
    subscription_end_date = db.Column(db.DateTime)
    payment_failed_at = db.Column(db.DateTime)
    custom_subscription_amount = db.Column(db.Integer)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    version = db.Column(db.Integer, nullable=False)

    __mapper_args__ = {'version_id_col': version}

    # Relationships
    owner = db.relationship('User', back_populates='business')
    reviews = db.relationship('Review', back_populates='business', lazy='dynamic')

    @validates('review_threshold')
    def _validate_threshold(self, key, value):
        return validate_rating_value(value, field='review_threshold')

    @validates('status')
    def _validate_status(self, key, value):
        if value not in (STATUS_ACTIVE, STATUS_INACTIVE):
            raise ValidationError(f'Unknown business status: {value}')
        return value

    @property
    def is_active(self):
        return self.status == STATUS_ACTIVE

    @property
    def redirect_url(self):
        return self.google_review_url or None

    def review_count(self):
        return self.reviews.count()

    def to_dict(self):
        return {
            'id': self.id,
            'business_name': self.business_name,
            'contact_email': self.contact_email,
            'google_review_url': self.google_review_url,
            'review_threshold': self.review_threshold,
            'thank_you_message': self.thank_you_message,
            'public_path': self.public_path,
            'status': self.status,
            'manual_override': self.manual_override,
            'subscription_status': self.subscription_status,
            'subscription_end_date': self.subscription_end_date.isoformat() if self.subscription_end_date else None,
            'payment_failed_at': self.payment_failed_at.isoformat() if self.payment_failed_at else None,
            'custom_subscription_amount': self.custom_subscription_amount,
        }

    def public_info(self):
        return {
            'id': self.id,
            'business_name': self.business_name,
            'public_path': self.public_path,
            'review_threshold': self.review_threshold,
            'has_redirect': bool(self.redirect_url),
            'accepting_reviews': self.is_active,
        }


def unique_public_path(name, exclude_id=None):
    base = slugify(name) or 'business'
    candidate = base
    counter = 2
    while True:
        existing = BusinessAccount.query.filter_by(public_path=candidate).first()
        if existing is None or existing.id == exclude_id:
            return candidate
        candidate = f'{base}-{counter}'
        counter += 1
