"""Running average rating per tasker."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from marketplace_service.core.exceptions import ServiceError
from marketplace_service.logging import get_logger

if TYPE_CHECKING:
    from marketplace_service.services.marketplace_store import MarketplaceStore

MIN_RATING = 1
MAX_RATING = 5

_SCHEMA = """
CREATE TABLE IF NOT EXISTS tasker_ratings (
    tasker_id TEXT PRIMARY KEY,
    rating REAL NOT NULL DEFAULT 0,
    review_count INTEGER NOT NULL DEFAULT 0 CHECK (review_count >= 0)
);
"""


def validate_rating(value: object) -> int:
    """Return value as a rating or raise VALIDATION_ERROR."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ServiceError(
            "VALIDATION_ERROR",
            "rating must be an integer",
            400,
            {"field": "rating"},
        )
    if not MIN_RATING <= value <= MAX_RATING:
        raise ServiceError(
            "VALIDATION_ERROR",
            f"rating must be between {MIN_RATING} and {MAX_RATING}",
            400,
            {"field": "rating", "value": value},
        )
    return value


class RatingAggregator:
    """
    Maintains (rating, review_count) per tasker incrementally.

    The read-modify-write runs inside the store's unit of work, which holds
    SQLite's write lock, so concurrent completions for one tasker are
    serialized and no update is lost. Aggregates are never recomputed from
    the review history.
    """

    def __init__(self, store: MarketplaceStore) -> None:
        self._store = store
        self._logger = get_logger(__name__)
        store.executescript(_SCHEMA)

    def apply_rating(self, tasker_id: str, new_rating: int) -> dict[str, Any]:
        """Fold one rating into the tasker's running average."""
        validate_rating(new_rating)

        with self._store.unit_of_work() as db:
            row = db.execute(
                "SELECT rating, review_count FROM tasker_ratings WHERE tasker_id = ?",
                (tasker_id,),
            ).fetchone()
            current_rating = float(row["rating"]) if row is not None else 0.0
            review_count = int(row["review_count"]) if row is not None else 0

            new_count = review_count + 1
            new_average = (current_rating * review_count + new_rating) / new_count

            db.execute(
                "INSERT INTO tasker_ratings (tasker_id, rating, review_count) VALUES (?, ?, ?) "
                "ON CONFLICT (tasker_id) DO UPDATE SET "
                "rating = excluded.rating, review_count = excluded.review_count",
                (tasker_id, new_average, new_count),
            )

        self._logger.info(
            "Rating applied",
            extra={"tasker_id": tasker_id, "rating": new_average, "review_count": new_count},
        )
        return {"tasker_id": tasker_id, "rating": new_average, "review_count": new_count}

    def get_rating(self, tasker_id: str) -> dict[str, Any]:
        """Return the tasker's aggregate; zero reviews when none exist."""
        row = self._store.query_one(
            "SELECT rating, review_count FROM tasker_ratings WHERE tasker_id = ?",
            (tasker_id,),
        )
        if row is None:
            return {"tasker_id": tasker_id, "rating": 0.0, "review_count": 0}
        return {
            "tasker_id": tasker_id,
            "rating": float(row["rating"]),
            "review_count": int(row["review_count"]),
        }
