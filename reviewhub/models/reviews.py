from sqlalchemy.orm import validates

from reviewhub.database.database import db, utcnow, gen_id
from reviewhub.models.business import validate_rating_value


class Review(db.Model):
    __tablename__ = 'review'
    __table_args__ = (
        # One captured review per customer, business and calendar day
        db.UniqueConstraint('business_id', 'customer_email', 'submitted_on', name='uq_review_daily'),
    )

    id = db.Column(db.String(36), primary_key=True, default=gen_id)
    business_id = db.Column(db.String(36), db.ForeignKey('business_account.id'), nullable=False, index=True)
    customer_name = db.Column(db.String(120), nullable=False)
    customer_email = db.Column(db.String(120))
    subject = db.Column(db.String(200))
    comment = db.Column(db.Text)
    rating = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    submitted_on = db.Column(db.Date, nullable=False)

    # Relationships
    business = db.relationship('BusinessAccount', back_populates='reviews')

    @validates('rating')
    def _validate_rating(self, key, value):
        return validate_rating_value(value)

    def to_dict(self):
        return {
            'id': self.id,
            'business_id': self.business_id,
            'customer_name': self.customer_name,
            'customer_email': self.customer_email,
            'subject': self.subject,
            'comment': self.comment,
            'rating': self.rating,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
