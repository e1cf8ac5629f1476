"""
Background commentary worker.

Fills in AI commentary for articles that lack it, one article per tick,
through the shared rate limiter and under a daily quota.
"""
import heapq
import itertools
import logging
import threading
import time
from datetime import date
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Tuple

from newsdesk.cache.core import Priority
from newsdesk.ratelimit import RateLimitedError, TokenBucketRateLimiter

from .llm import CommentaryProvider, CommentaryRateLimitError, build_commentary_prompt
from .models import MIN_PRIORITY, CommentaryJob, calculate_priority

logger = logging.getLogger("commentary.worker")

# Failures worth retrying later at a lower priority
TRANSIENT_ERRORS = (RateLimitedError, CommentaryRateLimitError, TimeoutError)

RECENT_ARTICLES_SCAN = 50


class ArticleStore(Protocol):
    """Data access the worker needs."""

    def get_recent_articles(self, limit: int) -> List[Dict[str, Any]]:
        ...

    def save_commentary(self, article_id: str, commentary: str) -> bool:
        ...


class CommentaryWorker:
    """
    Priority queue of articles awaiting commentary, drained on a timer.

    Handles:
    - Scoring and queueing articles without commentary
    - Generating one commentary per tick at background priority
    - Requeueing on transient failures with decayed priority
    - Periodic rescans for articles that were never queued
    """

    def __init__(
        self,
        article_store: ArticleStore,
        provider: CommentaryProvider,
        rate_limiter: TokenBucketRateLimiter,
        daily_quota: int = 100,
        tick_interval: float = 30.0,
        populate_interval: float = 600.0,
        today: Callable[[], date] = date.today,
    ):
        """
        Args:
            article_store: Reads recent articles and saves commentary
            provider: Generates the commentary text
            rate_limiter: Shared budget for the text-generation API
            daily_quota: Max commentaries generated per local day
            tick_interval: Seconds between queue ticks once started
            populate_interval: Seconds between full rescans once started
            today: Local-date source, injectable for tests
        """
        self.article_store = article_store
        self.provider = provider
        self.rate_limiter = rate_limiter
        self.daily_quota = daily_quota
        self.tick_interval = tick_interval
        self.populate_interval = populate_interval
        self._today = today

        self._lock = threading.Lock()
        self._queue: List[Tuple[int, int, CommentaryJob]] = []
        self._queued_ids: set = set()
        self._sequence = itertools.count()

        self._quota_day = today()
        self.processed_today = 0
        self.failed_total = 0

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def queue_length(self) -> int:
        with self._lock:
            return len(self._queue)

    # ===== Queue =====

    def _push(self, job: CommentaryJob) -> None:
        """Caller holds the lock."""
        heapq.heappush(self._queue, (-job.priority, next(self._sequence), job))
        self._queued_ids.add(job.entity_id)

    def is_queued(self, entity_id: Any) -> bool:
        with self._lock:
            return str(entity_id) in self._queued_ids

    def enqueue(self, entities: Iterable[Dict[str, Any]]) -> int:
        """
        Queue every article that has no commentary and is not queued yet.

        Returns:
            Number of articles added
        """
        added = 0
        with self._lock:
            for article in entities:
                if article.get("commentary") or article.get("id") is None:
                    continue
                if str(article["id"]) in self._queued_ids:
                    continue
                self._push(CommentaryJob.from_article(article, calculate_priority(article)))
                added += 1
            queue_length = len(self._queue)

        if added:
            logger.info(f"Added {added} articles to commentary queue. Queue size: {queue_length}")
        return added

    def _pop(self) -> Optional[CommentaryJob]:
        with self._lock:
            if not self._queue:
                return None
            _, _, job = heapq.heappop(self._queue)
            self._queued_ids.discard(job.entity_id)
            return job

    def _requeue(self, job: CommentaryJob) -> bool:
        """Reinsert with one less priority; jobs already at the floor are dropped."""
        if job.priority <= MIN_PRIORITY:
            return False
        job.priority -= 1
        with self._lock:
            if job.entity_id in self._queued_ids:
                return True
            self._push(job)
        return True

    # ===== Processing =====

    def _roll_quota_day(self) -> None:
        """Reset the daily counter when the date changes. Caller holds the lock."""
        today = self._today()
        if today != self._quota_day:
            self._quota_day = today
            self.processed_today = 0
            logger.info("Daily commentary counter reset")

    def quota_exhausted(self) -> bool:
        with self._lock:
            self._roll_quota_day()
            return self.processed_today >= self.daily_quota

    def _generate(self, job: CommentaryJob) -> Optional[str]:
        prompt = build_commentary_prompt(job)
        return self.rate_limiter.execute_request(
            lambda: self.provider.generate(job),
            text=prompt,
            priority=Priority.LOW,
            request_type="completion",
        )

    def process_next(self) -> str:
        """
        Generate commentary for the highest-priority queued article.

        Returns:
            One of "empty", "quota", "processed", "skipped", "requeued", "dropped"
        """
        if self.queue_length == 0:
            return "empty"

        if self.quota_exhausted():
            logger.info(f"Daily commentary limit reached: {self.processed_today}/{self.daily_quota}")
            return "quota"

        job = self._pop()
        if job is None:
            return "empty"

        title = job.title[:50]
        try:
            logger.info(f"Generating commentary for: \"{title}\"")
            commentary = self._generate(job)
        except TRANSIENT_ERRORS as e:
            self.failed_total += 1
            if self._requeue(job):
                logger.warning(f"Transient failure for \"{title}\", requeued at priority {job.priority}: {e}")
                return "requeued"
            logger.warning(f"Dropping \"{title}\" after repeated transient failures: {e}")
            return "dropped"
        except Exception as e:
            self.failed_total += 1
            logger.error(f"Failed to generate commentary for \"{title}\": {e}")
            return "dropped"

        if not commentary:
            logger.warning(f"Empty commentary generated for \"{title}\"")
            return "skipped"

        try:
            self.article_store.save_commentary(job.entity_id, commentary)
        except Exception as e:
            self.failed_total += 1
            logger.error(f"Failed to save commentary for \"{title}\": {e}")
            return "dropped"

        with self._lock:
            self._roll_quota_day()
            self.processed_today += 1
        logger.info(f"Commentary generated and saved for: \"{title[:30]}\"")
        return "processed"

    def populate_queue(self) -> int:
        """
        Scan recent articles and queue any still lacking commentary.

        Returns:
            Number of articles added
        """
        try:
            articles = self.article_store.get_recent_articles(RECENT_ARTICLES_SCAN)
        except Exception as e:
            logger.error(f"Failed to populate commentary queue: {e}")
            return 0

        missing = [a for a in articles if not a.get("commentary")]
        if not missing:
            return 0
        added = self.enqueue(missing)
        logger.info(f"Found {len(missing)} articles needing commentary ({added} new)")
        return added

    # ===== Timer =====

    def start(self) -> None:
        """Start the background loop."""
        if self.is_running:
            logger.warning("Commentary worker already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name="commentary-worker",
            daemon=True,
        )
        self._thread.start()
        logger.info("Starting background commentary worker")

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=2.0)
            self._thread = None
        logger.info("Commentary worker stopped")

    def _run(self) -> None:
        self.populate_queue()
        last_populate = time.monotonic()
        while not self._stop_event.wait(self.tick_interval):
            if time.monotonic() - last_populate >= self.populate_interval:
                self.populate_queue()
                last_populate = time.monotonic()
            try:
                self.process_next()
            except Exception as e:
                logger.error(f"Commentary worker tick failed: {e}")

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            self._roll_quota_day()
            processed_today = self.processed_today
            top = heapq.nsmallest(5, self._queue)
            queue_length = len(self._queue)
        return {
            "is_running": self.is_running,
            "provider": self.provider.provider_name,
            "queue_length": queue_length,
            "processed_today": processed_today,
            "max_daily_commentaries": self.daily_quota,
            "failed_total": self.failed_total,
            "queue_priorities": [
                {"title": job.title[:30], "priority": job.priority}
                for _, _, job in top
            ],
        }


# Global worker instance
_commentary_worker: Optional[CommentaryWorker] = None


def get_commentary_worker() -> CommentaryWorker:
    """Get or create the global commentary worker."""
    global _commentary_worker
    if _commentary_worker is None:
        from config.settings import settings
        from newsdesk.crud import SqlArticleStore
        from newsdesk.ratelimit import get_rate_limiter
        from .llm import get_commentary_provider

        _commentary_worker = CommentaryWorker(
            article_store=SqlArticleStore(),
            provider=get_commentary_provider(),
            rate_limiter=get_rate_limiter(),
            daily_quota=settings.commentary_daily_quota,
            tick_interval=settings.commentary_tick_seconds,
            populate_interval=settings.commentary_populate_seconds,
        )
    return _commentary_worker
