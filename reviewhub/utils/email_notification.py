import logging
import socket
from contextlib import contextmanager
from email.utils import parseaddr

from flask import current_app
from flask_mail import Message
from markupsafe import escape

from reviewhub.utils.errors import NotificationDeliveryError

logger = logging.getLogger(__name__)

DEFAULT_NOTIFICATION_TIMEOUT = 10


@contextmanager
def smtp_timeout(seconds):
    """Bound socket operations for SMTP connections opened inside the block."""
    previous = socket.getdefaulttimeout()
    socket.setdefaulttimeout(seconds)
    try:
        yield
    finally:
        socket.setdefaulttimeout(previous)


def _timeout():
    return current_app.config.get('NOTIFICATION_TIMEOUT', DEFAULT_NOTIFICATION_TIMEOUT)


def build_review_notification(business, review):
    """
    Snapshot of everything the notification job needs, so it never touches
    the session of the request that created the review.
    """
    owner = business.owner
    return {
        'review_id': review.id,
        'business_id': business.id,
        'business_name': business.business_name,
        'contact_email': business.contact_email,
        'owner_email': owner.email if owner else None,
        'owner_name': owner.full_name if owner else None,
        'customer_name': review.customer_name,
        'customer_email': review.customer_email,
        'rating': review.rating,
        'subject': review.subject,
        'comment': review.comment,
    }


def _review_block(notification, include_customer=False):
    stars = '⭐' * int(notification['rating'])
    rows = []
    if include_customer:
        rows.append(f"<p><strong>Customer:</strong> {escape(notification['customer_name'])}</p>")
    rows.append(f"<p><strong>Rating:</strong> {stars} ({notification['rating']}/5)</p>")
    if notification.get('subject'):
        rows.append(f"<p><strong>Subject:</strong> {escape(notification['subject'])}</p>")
    if notification.get('comment'):
        rows.append(f"<p><strong>Comment:</strong> {escape(notification['comment'])}</p>")
    if include_customer and notification.get('customer_email'):
        rows.append(f"<p><strong>Email:</strong> {escape(notification['customer_email'])}</p>")
    return f"""
            <div style="background-color: #f9f9f9; padding: 20px; border-radius: 8px; margin: 20px 0;">
                {''.join(rows)}
            </div>
    """


def business_recipients(notification):
    recipients = []
    for address in (notification.get('owner_email'), notification.get('contact_email')):
        if address and address.lower() not in [r.lower() for r in recipients]:
            recipients.append(address)
    return recipients


def send_review_notification(mail, notification):
    """
    Send the customer confirmation and the owner notification.

    Returns the message ids; raises NotificationDeliveryError on failure.
    """
    business_name = notification['business_name']
    sender_address = parseaddr(current_app.config.get('MAIL_DEFAULT_SENDER') or '')[1]
    message_ids = {'customer': None, 'business': None}

    customer_body = f"""
    <html>
        <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
            <h2 style="color: #333;">Thank you for your feedback!</h2>
            <p>Hi {escape(notification['customer_name'])},</p>
            <p>Thank you for taking the time to leave us a review. We truly appreciate your feedback!</p>
            {_review_block(notification)}
            <p>Best regards,<br>The {escape(business_name)} Team</p>
        </body>
    </html>
    """

    owner_body = f"""
    <html>
        <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
            <h2 style="color: #333;">New Review Received!</h2>
            <p>Hi {escape(notification.get('owner_name') or business_name)},</p>
            <p>You've received a new review for <strong>{escape(business_name)}</strong>:</p>
            {_review_block(notification, include_customer=True)}
            <p>You can view and manage all your reviews in your dashboard.</p>
        </body>
    </html>
    """

    try:
        if notification.get('customer_email'):
            msg = Message(
                subject=f"Thank you for your review - {business_name}",
                recipients=[notification['customer_email']],
                html=customer_body,
                sender=(business_name, sender_address) if sender_address else None,
            )
            with smtp_timeout(_timeout()):
                mail.send(msg)
            message_ids['customer'] = msg.msgId

        recipients = business_recipients(notification)
        if recipients:
            msg = Message(
                subject=f"New {notification['rating']}-star review received for {business_name}",
                recipients=recipients,
                html=owner_body,
            )
            with smtp_timeout(_timeout()):
                mail.send(msg)
            message_ids['business'] = msg.msgId
        else:
            logger.info('No business recipients for review %s', notification['review_id'])
    except Exception as e:
        raise NotificationDeliveryError(f"Failed to send notification for review {notification['review_id']}: {e}") from e

    return message_ids


def deliver_review_notification(app, notification):
    """Job entry point: delivery failures are logged, never raised."""
    with app.app_context():
        try:
            ids = send_review_notification(app.extensions['mail'], notification)
            logger.info('Review notification sent for %s: %s', notification['review_id'], ids)
        except NotificationDeliveryError as e:
            logger.error(str(e))


def send_user_credentials(mail, email, full_name, business_name, temporary_password, login_url):
    body = f"""
    <html>
        <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
            <h2>Welcome to {escape(business_name)}'s review dashboard</h2>
            <p>Hello {escape(full_name or email)},</p>
            <p>An account has been created for you.</p>
            <div style="background-color: #f8f9fa; padding: 15px; border-left: 4px solid #007bff; margin: 20px 0;">
                <p><strong>Email:</strong> {escape(email)}</p>
                <p><strong>Temporary password:</strong> {escape(temporary_password)}</p>
            </div>
            <p>Please sign in at <a href="{escape(login_url)}">{escape(login_url)}</a> and change your password.</p>
        </body>
    </html>
    """
    try:
        msg = Message(subject='Your account credentials', recipients=[email], html=body)
        with smtp_timeout(_timeout()):
            mail.send(msg)
        return msg.msgId
    except Exception as e:
        raise NotificationDeliveryError(f'Failed to send credentials to {email}: {e}') from e
