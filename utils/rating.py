"""Deterministic official rating computation from citizen feedback."""
from __future__ import annotations

from typing import Dict, Iterable

from models import Feedback, User
from storage import store

RATING_MIN = 1
RATING_MAX = 5


def average_rating(feedbacks: Iterable[Feedback]) -> float:
    ratings = [item.rating for item in feedbacks]
    if not ratings:
        return 0.0
    return sum(ratings) / len(ratings)


def rating_summary(official_id: str) -> Dict:
    feedbacks = store.list_official_feedback(official_id)
    if not feedbacks:
        return {"average_rating": 0, "total_ratings": 0}
    return {
        "average_rating": round(average_rating(feedbacks), 1),
        "total_ratings": len(feedbacks),
    }


def credit_resolution(official_id: str) -> User | None:
    """Recompute the official's rating over all feedback and count one more solved case."""
    with store.user_lock(official_id):
        official = store.get_user(official_id)
        if official is None:
            return None
        official.rating = average_rating(store.list_official_feedback(official_id))
        official.solved_count = (official.solved_count or 0) + 1
        return store.save_user(official)


def refresh_official_rating(official_id: str) -> User | None:
    with store.user_lock(official_id):
        official = store.get_user(official_id)
        if official is None:
            return None
        official.rating = average_rating(store.list_official_feedback(official_id))
        return store.save_user(official)
