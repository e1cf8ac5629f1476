"""
NYT Top Stories client
Fetches upstream articles and maps them to the stored article shape
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests

from config.settings import settings

logger = logging.getLogger("news_client")

REQUEST_TIMEOUT = 30


class NewsAPIError(Exception):
    """Raised when the upstream news API call fails."""
    pass


def _parse_published(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    # Stored naive, UTC
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def transform_article(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Map one NYT result to the stored article fields."""
    return {
        "id": raw.get("uri") or str(uuid.uuid4()),
        "title": raw.get("title") or "",
        "abstract": raw.get("abstract"),
        "content": raw.get("abstract"),
        "section": (raw.get("section") or "").lower() or None,
        "url": raw.get("url"),
        "byline": raw.get("byline"),
        "published_at": _parse_published(raw.get("published_date")),
    }


def fetch_top_stories(section: str = "home", limit: int = 20) -> List[Dict[str, Any]]:
    """
    Fetch top stories for a section.

    Raises:
        NewsAPIError: On missing key, transport or HTTP failure
    """
    if not settings.nyt_api_key:
        raise NewsAPIError("NYT_API_KEY is not configured")
    if not section or section == "all":
        section = "home"

    try:
        response = requests.get(
            f"{settings.nyt_base_url}/{section}.json",
            params={"api-key": settings.nyt_api_key},
            timeout=REQUEST_TIMEOUT,
        )
        response.raise_for_status()
        results = response.json().get("results") or []
    except (requests.RequestException, ValueError) as e:
        logger.error(f"NYT fetch failed for section '{section}': {e}")
        raise NewsAPIError(str(e)) from e

    articles = [transform_article(raw) for raw in results[:limit]]
    logger.info(f"Fetched {len(articles)} {section} articles from NYT")
    return articles
