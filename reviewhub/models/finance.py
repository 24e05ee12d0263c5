from reviewhub.database.database import db, utcnow


class WebhookEvent(db.Model):
    """Stripe events already applied; redeliveries are acknowledged and skipped."""
    __tablename__ = 'webhook_event'

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.String(255), unique=True, nullable=False)
    event_type = db.Column(db.String(100), nullable=False)
    business_id = db.Column(db.String(36))
    received_at = db.Column(db.DateTime, nullable=False, default=utcnow)
