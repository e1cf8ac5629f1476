"""
Unit tests for the background commentary worker and priority scoring.
"""
import threading
import time
from types import SimpleNamespace
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest

from newsdesk.commentary import CommentaryJob, CommentaryWorker, calculate_priority
from newsdesk.commentary.llm import (
    CommentaryAPIError,
    CommentaryProvider,
    CommentaryRateLimitError,
    NullCommentaryProvider,
    build_commentary_prompt,
)
from newsdesk.ratelimit import TokenBucketRateLimiter


NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# Fakes
# =============================================================================

class FakeStore:
    def __init__(self, articles: Optional[List[Dict[str, Any]]] = None):
        self.articles = articles or []
        self.saved: Dict[str, str] = {}

    def get_recent_articles(self, limit: int) -> List[Dict[str, Any]]:
        return self.articles[:limit]

    def save_commentary(self, article_id: str, commentary: str) -> bool:
        self.saved[article_id] = commentary
        return True


class FakeProvider(CommentaryProvider):
    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls: List[str] = []

    def generate(self, job: CommentaryJob, style: str = "analyst") -> Optional[str]:
        self.calls.append(job.entity_id)
        response = self.responses.pop(0) if self.responses else f"Commentary on {job.title}"
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def provider_name(self) -> str:
        return "fake"

    @property
    def is_available(self) -> bool:
        return True


def article(article_id, title=None, section="world", hours_old=72, **extra):
    data = {
        "id": article_id,
        "title": title or f"Article {article_id}",
        "abstract": "Summary",
        "section": section,
        "created_at": (NOW - timedelta(hours=hours_old)).isoformat(),
        "commentary": None,
    }
    data.update(extra)
    return data


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def limiter():
    return TokenBucketRateLimiter(tokens_per_minute=100_000, default_timeout=0.05)


@pytest.fixture
def worker(store, provider, limiter):
    return CommentaryWorker(store, provider, limiter, daily_quota=100)


# =============================================================================
# Priority scoring
# =============================================================================

def test_priority_base():
    assert calculate_priority({"id": "a"}, now=NOW) == 5


def test_priority_recency_bonuses():
    assert calculate_priority(article("a", hours_old=1), now=NOW) == 8
    assert calculate_priority(article("a", hours_old=12), now=NOW) == 7
    assert calculate_priority(article("a", hours_old=30), now=NOW) == 6
    assert calculate_priority(article("a", hours_old=72), now=NOW) == 5


def test_priority_section_and_engagement():
    assert calculate_priority(article("a", section="Politics"), now=NOW) == 7
    assert calculate_priority(article("a", views=150, shares=20), now=NOW) == 7
    assert calculate_priority(article("a", views=100, shares=10), now=NOW) == 5


def test_priority_is_capped():
    hot = article("a", section="technology", hours_old=1, views=500, shares=50)
    assert calculate_priority(hot, now=NOW) == 10


def test_priority_accepts_naive_datetimes_as_utc():
    naive = {"id": "a", "published_at": (NOW - timedelta(hours=2)).replace(tzinfo=None)}
    assert calculate_priority(naive, now=NOW) == 8


def test_priority_ignores_unparseable_dates():
    assert calculate_priority({"id": "a", "created_at": "not a date"}, now=NOW) == 5


def test_job_from_article():
    job = CommentaryJob.from_article(article(42, title="Budget vote", section="politics"), priority=7)
    assert job.entity_id == "42"
    assert job.content == "Summary"
    assert job.category == "politics"
    assert "Budget vote" in build_commentary_prompt(job)


# =============================================================================
# Queueing
# =============================================================================

def test_enqueue_skips_existing_commentary_and_duplicates(worker):
    added = worker.enqueue([
        article("a"),
        article("b", commentary="Already written"),
        article("a"),
        {"title": "No id"},
    ])
    assert added == 1
    assert worker.enqueue([article("a")]) == 0
    assert worker.queue_length == 1
    assert worker.is_queued("a")


def test_highest_priority_processed_first(worker, provider):
    worker.enqueue([
        article("old", hours_old=100),
        article("fresh", section="politics", hours_old=1),
    ])
    assert worker.process_next() == "processed"
    assert provider.calls == ["fresh"]


def test_equal_priority_is_first_in_first_out(worker, provider):
    worker.enqueue([article("first"), article("second")])
    worker.process_next()
    worker.process_next()
    assert provider.calls == ["first", "second"]


def test_process_saves_commentary(worker, store):
    worker.enqueue([article("a", title="Rates rise")])
    assert worker.process_next() == "processed"
    assert store.saved == {"a": "Commentary on Rates rise"}
    assert worker.processed_today == 1
    assert worker.queue_length == 0


def test_process_empty_queue(worker):
    assert worker.process_next() == "empty"


def test_empty_commentary_is_skipped(store, limiter):
    worker = CommentaryWorker(store, FakeProvider([None]), limiter)
    worker.enqueue([article("a")])
    assert worker.process_next() == "skipped"
    assert store.saved == {}


# =============================================================================
# Failures
# =============================================================================

def test_transient_failure_requeues_with_lower_priority(store, limiter):
    provider = FakeProvider([CommentaryRateLimitError("429")])
    worker = CommentaryWorker(store, provider, limiter)
    worker.enqueue([article("a", section="politics")])

    assert worker.process_next() == "requeued"
    assert worker.queue_length == 1
    assert worker.get_stats()["queue_priorities"][0]["priority"] == 6
    assert worker.failed_total == 1

    assert worker.process_next() == "processed"
    assert "a" in store.saved


def test_transient_failure_at_lowest_priority_is_dropped(store, limiter):
    provider = FakeProvider([TimeoutError("slow")] * 10)
    worker = CommentaryWorker(store, provider, limiter)
    worker.enqueue([article("a")])

    outcomes = [worker.process_next() for _ in range(5)]

    # Starts at 5: requeued at 4, 3, 2, 1, then dropped
    assert outcomes == ["requeued", "requeued", "requeued", "requeued", "dropped"]
    assert worker.queue_length == 0


def test_limiter_timeout_is_transient(store, provider):
    limiter = TokenBucketRateLimiter(tokens_per_minute=10_000, default_timeout=0.05)
    limiter.execute_request(lambda: None, estimated_cost=10_000)
    worker = CommentaryWorker(store, provider, limiter)
    worker.enqueue([article("a")])

    assert worker.process_next() == "requeued"
    assert provider.calls == []


def test_permanent_failure_is_dropped(store, limiter):
    provider = FakeProvider([CommentaryAPIError("bad request")])
    worker = CommentaryWorker(store, provider, limiter)
    worker.enqueue([article("a")])

    assert worker.process_next() == "dropped"
    assert worker.queue_length == 0
    assert worker.failed_total == 1


def test_save_failure_is_dropped(provider, limiter):
    store = FakeStore()
    store.save_commentary = MagicMock(side_effect=RuntimeError("db locked"))
    worker = CommentaryWorker(store, provider, limiter)
    worker.enqueue([article("a")])

    assert worker.process_next() == "dropped"
    assert worker.processed_today == 0


# =============================================================================
# Daily quota
# =============================================================================

def test_daily_quota_stops_processing(store, provider, limiter):
    worker = CommentaryWorker(store, provider, limiter, daily_quota=1)
    worker.enqueue([article("a"), article("b")])

    assert worker.process_next() == "processed"
    assert worker.process_next() == "quota"
    # Still queued for tomorrow
    assert worker.queue_length == 1


def test_daily_quota_resets_on_new_day(store, provider, limiter):
    current = {"day": date(2024, 3, 1)}
    worker = CommentaryWorker(
        store, provider, limiter, daily_quota=1, today=lambda: current["day"]
    )
    worker.enqueue([article("a"), article("b")])
    worker.process_next()
    assert worker.process_next() == "quota"

    current["day"] = date(2024, 3, 2)
    assert worker.process_next() == "processed"
    assert worker.processed_today == 1


def test_day_rollover_is_consistent_across_threads(store, provider, limiter):
    current = {"day": date(2024, 3, 1)}
    worker = CommentaryWorker(
        store, provider, limiter, daily_quota=10, today=lambda: current["day"]
    )
    worker.enqueue([article(str(i)) for i in range(5)])
    worker.process_next()
    worker.process_next()
    assert worker.processed_today == 2

    current["day"] = date(2024, 3, 2)
    stop = threading.Event()

    def poll_stats():
        while not stop.is_set():
            worker.get_stats()

    pollers = [threading.Thread(target=poll_stats) for _ in range(4)]
    for t in pollers:
        t.start()
    try:
        outcomes = [worker.process_next() for _ in range(3)]
    finally:
        stop.set()
        for t in pollers:
            t.join(2)

    assert outcomes == ["processed"] * 3
    assert worker.processed_today == 3
    assert worker.get_stats()["processed_today"] == 3


# =============================================================================
# Population and stats
# =============================================================================

def test_populate_queue_adds_articles_without_commentary(worker, store):
    store.articles = [
        article("a"),
        article("b", commentary="Done"),
        article("c"),
    ]
    assert worker.populate_queue() == 2
    assert worker.populate_queue() == 0
    assert worker.queue_length == 2


def test_populate_queue_survives_store_errors(provider, limiter):
    store = FakeStore()
    store.get_recent_articles = MagicMock(side_effect=RuntimeError("db down"))
    worker = CommentaryWorker(store, provider, limiter)
    assert worker.populate_queue() == 0


def test_stats(worker):
    worker.enqueue([article("a", title="Top story", section="business", views=500)])
    stats = worker.get_stats()

    assert stats["is_running"] is False
    assert stats["provider"] == "fake"
    assert stats["queue_length"] == 1
    assert stats["max_daily_commentaries"] == 100
    assert stats["queue_priorities"] == [{"title": "Top story", "priority": 8}]


def test_start_and_stop(store, limiter):
    store.articles = [article("a")]
    worker = CommentaryWorker(store, FakeProvider(), limiter, tick_interval=0.01)
    worker.start()
    try:
        deadline = time.monotonic() + 2
        while "a" not in store.saved and time.monotonic() < deadline:
            time.sleep(0.01)
        assert store.saved.get("a")
    finally:
        worker.stop()
    assert worker.is_running is False


def test_null_provider_generates_nothing():
    provider = NullCommentaryProvider()
    assert provider.is_available is False
    assert provider.generate(CommentaryJob("a", "Title")) is None


def test_claude_provider_strips_response():
    from newsdesk.commentary.llm.claude import ClaudeCommentaryProvider

    client = MagicMock()
    client.messages.create.return_value = SimpleNamespace(
        content=[SimpleNamespace(text="  Sharp analysis.  ")]
    )
    provider = ClaudeCommentaryProvider(api_key="test", client=client)

    assert provider.generate(CommentaryJob("a", "Title", category="business")) == "Sharp analysis."
    kwargs = client.messages.create.call_args.kwargs
    assert kwargs["model"] == ClaudeCommentaryProvider.MODEL
    assert "business" in kwargs["messages"][0]["content"]


def test_claude_provider_empty_response_is_none():
    from newsdesk.commentary.llm.claude import ClaudeCommentaryProvider

    client = MagicMock()
    client.messages.create.return_value = SimpleNamespace(content=[])
    provider = ClaudeCommentaryProvider(api_key="test", client=client)

    assert provider.generate(CommentaryJob("a", "Title")) is None
