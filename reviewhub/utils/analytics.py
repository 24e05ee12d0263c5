from datetime import timedelta

from reviewhub.database.database import utcnow
from reviewhub.models.reviews import Review


def get_review_analytics(business_id, recent_limit=5):
    """
    Summary of captured reviews for a business:
    - total and average rating
    - distribution per star
    - count in the last 30 days and the most recent reviews
    """
    reviews = Review.query.filter_by(
        business_id=business_id
    ).order_by(Review.created_at.desc()).all()

    counts = {
        'total_reviews': len(reviews),
        'average_rating': 0,
        'rating_distribution': {str(star): 0 for star in range(1, 6)},
        'last_30_days': 0,
        'recent_reviews': [r.to_dict() for r in reviews[:recent_limit]],
    }

    cutoff = utcnow() - timedelta(days=30)
    for review in reviews:
        counts['rating_distribution'][str(review.rating)] += 1
        if review.created_at >= cutoff:
            counts['last_30_days'] += 1

    if reviews:
        counts['average_rating'] = round(
            sum(r.rating for r in reviews) / len(reviews), 1
        )

    return counts
