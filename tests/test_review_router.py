from datetime import date, timedelta

import pytest

from reviewhub.database.database import db
from reviewhub.models.reviews import Review
from reviewhub.utils.errors import (
    BusinessInactive,
    BusinessNotFound,
    SubmissionLimitExceeded,
    ValidationError,
)
from reviewhub.utils.review_router import ACTION_CAPTURE, ACTION_REDIRECT, submit_rating
from tests.conftest import REDIRECT_URL


def contact(email='jane@example.com', **overrides):
    data = {'name': 'Jane Doe', 'email': email, 'subject': 'Slow service', 'comment': 'Waited 40 minutes.'}
    data.update(overrides)
    return data


@pytest.mark.parametrize('threshold', [1, 2, 3, 4, 5])
@pytest.mark.parametrize('rating', [1, 2, 3, 4, 5])
def test_redirects_only_at_or_above_threshold(make_business, rating, threshold):
    business = make_business(threshold=threshold)

    decision = submit_rating(business.id, rating, contact=contact())

    if rating >= threshold:
        assert decision.action == ACTION_REDIRECT
        assert decision.target == REDIRECT_URL
    else:
        assert decision.action == ACTION_CAPTURE


def test_high_rating_without_redirect_url_is_captured(make_business):
    business = make_business(redirect=None)

    decision = submit_rating(business.id, 5, contact=contact())

    assert decision.action == ACTION_CAPTURE
    assert Review.query.filter_by(business_id=business.id).count() == 1


def test_high_rating_redirects_and_persists_nothing(make_business):
    business = make_business(threshold=4)
    notifications = []

    decision = submit_rating(business.id, 5, contact=contact(comment='Loved it'), notify=notifications.append)

    assert decision.to_dict() == {'action': 'redirect', 'target': REDIRECT_URL}
    assert Review.query.count() == 0
    assert notifications == []


def test_low_rating_captures_review_and_notifies(make_business):
    business = make_business(threshold=4)
    notifications = []

    decision = submit_rating(business.id, 2, contact=contact(), notify=notifications.append)

    assert decision.action == ACTION_CAPTURE
    reviews = Review.query.filter_by(business_id=business.id).all()
    assert len(reviews) == 1
    assert reviews[0].rating == 2
    assert reviews[0].customer_email == 'jane@example.com'
    assert len(notifications) == 1
    assert notifications[0]['review_id'] == reviews[0].id
    assert notifications[0]['contact_email'] == business.contact_email
    assert notifications[0]['comment'] == 'Waited 40 minutes.'


def test_capture_uses_business_thank_you_message(make_business):
    business = make_business(thank_you_message='Thanks, we will call you back.')

    decision = submit_rating(business.id, 1, contact=contact())

    assert decision.message == 'Thanks, we will call you back.'


def test_notification_failure_does_not_fail_submission(make_business):
    business = make_business()

    def broken(_):
        raise RuntimeError('smtp down')

    decision = submit_rating(business.id, 2, contact=contact(), notify=broken)

    assert decision.action == ACTION_CAPTURE
    assert Review.query.count() == 1


def test_inactive_business_is_rejected(make_business):
    business = make_business(status='inactive')

    with pytest.raises(BusinessInactive):
        submit_rating(business.id, 2, contact=contact())
    assert Review.query.count() == 0


def test_unknown_business_is_rejected(make_business):
    with pytest.raises(BusinessNotFound):
        submit_rating('missing-id', 2, contact=contact())


@pytest.mark.parametrize('rating', [0, 6, -1, '5', 4.5, True, None])
def test_invalid_rating_is_rejected(make_business, rating):
    business = make_business()

    with pytest.raises(ValidationError) as exc:
        submit_rating(business.id, rating, contact=contact())
    assert 'rating' in exc.value.fields


def test_capture_reports_each_missing_field(make_business):
    business = make_business()

    with pytest.raises(ValidationError) as exc:
        submit_rating(business.id, 2, contact={'name': 'Jane'})

    assert set(exc.value.fields) == {'email', 'subject', 'comment'}
    assert Review.query.count() == 0


def test_capture_rejects_malformed_email(make_business):
    business = make_business()

    with pytest.raises(ValidationError) as exc:
        submit_rating(business.id, 2, contact=contact(email='not-an-email'))
    assert 'email' in exc.value.fields


def test_one_captured_review_per_customer_per_day(make_business):
    business = make_business()
    today = date(2026, 3, 14)
    submit_rating(business.id, 2, contact=contact(), today=today)

    with pytest.raises(SubmissionLimitExceeded):
        submit_rating(business.id, 1, contact=contact(email='JANE@example.com'), today=today)

    decision = submit_rating(business.id, 1, contact=contact(), today=today + timedelta(days=1))
    assert decision.action == ACTION_CAPTURE
    assert Review.query.count() == 2


def test_daily_limit_is_per_business(make_business):
    first = make_business()
    second = make_business(email='owner@bakery.test', name='Corner Bakery')

    submit_rating(first.id, 2, contact=contact())
    decision = submit_rating(second.id, 2, contact=contact())

    assert decision.action == ACTION_CAPTURE


def test_review_rejects_out_of_range_rating_on_construction(make_business):
    business = make_business()

    with pytest.raises(ValidationError):
        Review(business_id=business.id, customer_name='X', rating=9, submitted_on=date.today())
    db.session.rollback()
