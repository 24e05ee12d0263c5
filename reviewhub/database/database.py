from datetime import datetime, timezone
import uuid

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def utcnow():
    """Naive UTC timestamp, the form SQLite hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def gen_id():
    return str(uuid.uuid4())
