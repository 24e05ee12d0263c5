"""
Error taxonomy shared by the routes, the review router and the reconciler.

Each error carries the HTTP status it maps to; app-level handlers render
them as JSON.
"""


class ReviewHubError(Exception):
    status_code = 500
    public_message = 'Internal error'
    # False keeps internal detail out of responses
    expose_message = True

    def __init__(self, message=None):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message

    def to_dict(self):
        return {'error': self.message if self.expose_message else self.public_message}


class ValidationError(ReviewHubError):
    status_code = 400
    public_message = 'Validation failed'

    def __init__(self, message=None, fields=None):
        super().__init__(message)
        self.fields = fields or {}

    def to_dict(self):
        payload = super().to_dict()
        if self.fields:
            payload['fields'] = self.fields
        return payload


class BusinessNotFound(ReviewHubError):
    status_code = 404
    public_message = 'Business not found'


class BusinessInactive(ReviewHubError):
    status_code = 409
    public_message = 'Reviews are temporarily unavailable for this business'


class SubmissionLimitExceeded(ReviewHubError):
    status_code = 429
    public_message = 'You have already left feedback for this business today'


class InvalidSignature(ReviewHubError):
    status_code = 400
    public_message = 'Invalid signature'


class ConfigurationError(ReviewHubError):
    status_code = 500
    public_message = 'Service misconfigured'
    expose_message = False


class NotificationDeliveryError(ReviewHubError):
    public_message = 'Notification delivery failed'


class UpstreamProviderError(ReviewHubError):
    status_code = 502
    public_message = 'Unable to reach the payment provider'
    expose_message = False


class ConcurrentUpdateError(ReviewHubError):
    status_code = 500
    public_message = 'Concurrent update, please retry'
