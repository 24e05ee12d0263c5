"""
Account/session state: role, business and the forced redirect the client
must follow. resolve_account_state is pure; load_account_state gathers its
inputs from the store and app config.
"""
from dataclasses import dataclass
from typing import Iterable, Optional

from flask import current_app

from reviewhub.models.auth import ROLE_BUSINESS_USER, ROLE_SUPER_ADMIN, UserRole
from reviewhub.models.business import BusinessAccount, STATUS_ACTIVE

DASHBOARD_PATH = '/dashboard'
BILLING_PATH = '/billing'
SUBSCRIPTION_REQUIRED_PATH = '/subscription-required'
SUPER_ADMIN_PREFIX = '/super-admin/'

# Business-user pages and their super admin counterparts
SUPER_ADMIN_ROUTES = {
    '/dashboard': '/super-admin/dashboard',
    '/profile': '/super-admin/profile',
    '/settings': '/super-admin/settings',
}


@dataclass(frozen=True)
class Identity:
    user_id: str
    email: str


@dataclass(frozen=True)
class AccountState:
    role: str
    business: Optional[BusinessAccount]
    redirect: Optional[str]

    @property
    def is_super_admin(self):
        return self.role == ROLE_SUPER_ADMIN

    def to_dict(self):
        return {
            'role': self.role,
            'business': self.business.to_dict() if self.business is not None else None,
            'redirect': self.redirect,
        }


def parse_admin_emails(value):
    if not value:
        return frozenset()
    if isinstance(value, str):
        value = value.strip().strip('"').strip("'").replace(',', ' ').split()
    return frozenset(e.strip().lower() for e in value if e.strip())


def resolve_role(identity, admin_emails, role_records: Iterable[str] = ()):
    if identity.email and identity.email.lower() in admin_emails:
        return ROLE_SUPER_ADMIN
    if ROLE_SUPER_ADMIN in role_records:
        return ROLE_SUPER_ADMIN
    return ROLE_BUSINESS_USER


def resolve_account_state(identity, business, review_count, admin_emails, role_records=(), route=None):
    """
    Derive role and forced redirect for a resolved identity.

    An inactive business with no captured reviews is sent to the
    subscription-required page; once it has history it is sent to billing.
    No redirect is returned when route already is the target.
    """
    role = resolve_role(identity, admin_emails, role_records)
    target = None

    if role == ROLE_SUPER_ADMIN:
        if route in SUPER_ADMIN_ROUTES:
            target = SUPER_ADMIN_ROUTES[route]
    else:
        if business is None or business.status != STATUS_ACTIVE:
            target = BILLING_PATH if business is not None and review_count > 0 else SUBSCRIPTION_REQUIRED_PATH
        elif route and route.startswith(SUPER_ADMIN_PREFIX):
            target = DASHBOARD_PATH

    if target is not None and target == route:
        target = None
    return AccountState(role=role, business=business, redirect=target)


def load_account_state(user, route=None):
    business = BusinessAccount.query.filter_by(user_id=user.id).first()
    review_count = business.review_count() if business is not None else 0
    roles = [r.role for r in UserRole.query.filter_by(user_id=user.id).all()]
    return resolve_account_state(
        Identity(user_id=user.id, email=user.email),
        business,
        review_count,
        parse_admin_emails(current_app.config.get('SUPER_ADMIN_EMAILS')),
        role_records=roles,
        route=route,
    )
