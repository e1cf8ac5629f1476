"""
Commentary job model and priority scoring.
"""
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

BASE_PRIORITY = 5
MAX_PRIORITY = 10
MIN_PRIORITY = 1

# Sections readers engage with most
HIGH_PRIORITY_CATEGORIES = {"politics", "business", "technology", "health"}

# (max age in hours, bonus)
RECENCY_BONUSES = [
    (6, 3),
    (24, 2),
    (48, 1),
]


@dataclass
class CommentaryJob:
    """An article waiting for generated commentary."""
    entity_id: str
    title: str
    content: str = ""
    category: Optional[str] = None
    priority: int = BASE_PRIORITY
    enqueued_at: float = field(default_factory=time.time)

    @classmethod
    def from_article(cls, article: Dict[str, Any], priority: int) -> "CommentaryJob":
        return cls(
            entity_id=str(article["id"]),
            title=article.get("title") or "",
            content=article.get("abstract") or article.get("content") or "",
            category=article.get("section"),
            priority=priority,
        )


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def calculate_priority(article: Dict[str, Any], now: Optional[datetime] = None) -> int:
    """
    Score an article for commentary generation, 1-10.

    Newer articles, high-value sections and engagement raise the score.
    """
    now = now or datetime.now(timezone.utc)
    priority = BASE_PRIORITY

    published = _parse_timestamp(article.get("created_at") or article.get("published_at"))
    if published is not None:
        age_hours = (now - published).total_seconds() / 3600
        for max_age, bonus in RECENCY_BONUSES:
            if age_hours < max_age:
                priority += bonus
                break

    if (article.get("section") or "").lower() in HIGH_PRIORITY_CATEGORIES:
        priority += 2

    if (article.get("views") or 0) > 100:
        priority += 1
    if (article.get("shares") or 0) > 10:
        priority += 1

    return min(priority, MAX_PRIORITY)
