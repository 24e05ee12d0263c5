from reviewhub.database.database import db, utcnow, gen_id
from flask_login import UserMixin

ROLE_SUPER_ADMIN = 'super_admin'
ROLE_BUSINESS_USER = 'business_user'


class User(UserMixin, db.Model):
    __tablename__ = 'user'

    id = db.Column(db.String(36), primary_key=True, default=gen_id)
    email = db.Column(db.String(120), unique=True, nullable=False)
    full_name = db.Column(db.String(120), nullable=False, default='')
    password_hash = db.Column(db.String(256), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    last_login = db.Column(db.DateTime)

    # Relationships
    business = db.relationship('BusinessAccount', back_populates='owner', uselist=False)
    roles = db.relationship('UserRole', back_populates='user', cascade='all, delete-orphan')


class UserRole(db.Model):
    __tablename__ = 'user_role'
    __table_args__ = (db.UniqueConstraint('user_id', 'role', name='uq_user_role'),)

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(36), db.ForeignKey('user.id'), nullable=False)
    role = db.Column(db.String(30), nullable=False, default=ROLE_BUSINESS_USER)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    user = db.relationship('User', back_populates='roles')
