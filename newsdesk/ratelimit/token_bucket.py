"""
Token-bucket budget and priority queue for the text-generation API.

Each request costs an estimated number of tokens drawn from a per-minute
budget. Requests that fit are run at once; the rest wait in a priority
queue until a refill frees enough budget, or until their timeout expires.
"""
import heapq
import itertools
import logging
import math
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from newsdesk.cache.core import Priority

logger = logging.getLogger("ratelimit.token_bucket")

# Configuration
DEFAULT_TOKENS_PER_MINUTE = 5500  # Provider hard limit is 6000
DEFAULT_WINDOW_SECONDS = 60.0
DEFAULT_QUEUE_TIMEOUT = 30.0
DEFAULT_HEALTHY_FLOOR = 1000
DEFAULT_DRAIN_INTERVAL = 5.0
DEFAULT_ESTIMATED_TOKENS = 200
MIN_ESTIMATED_TOKENS = 50

# Per-request-type overhead added to the prompt estimate
REQUEST_OVERHEAD = {
    "completion": 50,    # Response generation
    "analysis": 30,
    "summary": 40,
}

# Dispatch order: lower rank first
PRIORITY_RANK = {
    Priority.HIGH: 0,
    Priority.NORMAL: 1,
    Priority.LOW: 2,
}


class RateLimitedError(Exception):
    """Raised when a request cannot get budget from the limiter."""

    def __init__(self, message: str, retry_after: float = DEFAULT_WINDOW_SECONDS):
        super().__init__(message)
        self.retry_after = retry_after


class QueueTimeoutError(RateLimitedError):
    """Raised when a queued request is not admitted before its timeout."""
    pass


def estimate_tokens(text: Optional[str], request_type: str = "completion") -> int:
    """
    Approximate the token cost of a request.

    Roughly four characters per token, plus a fixed overhead per type.
    """
    if not text:
        return MIN_ESTIMATED_TOKENS
    return math.ceil(len(text) / 4) + REQUEST_OVERHEAD.get(request_type, 50)


@dataclass
class QueuedRequest:
    """A request waiting for budget."""
    id: str
    estimated_cost: int
    priority: Priority
    enqueued_at: float
    deadline: float
    state: str = "queued"   # queued | admitted | timed_out | rejected
    window: int = 0         # Budget window the cost was debited from
    error: Optional[Exception] = None
    admitted: threading.Event = field(default_factory=threading.Event)


class TokenBucketRateLimiter:
    """
    Per-minute token budget with a priority queue for overflow.

    Usage:
        limiter = TokenBucketRateLimiter(tokens_per_minute=5500)
        limiter.start()
        text = limiter.execute_request(
            lambda: client.generate(prompt),
            text=prompt,
            priority="high",
        )
    """

    def __init__(
        self,
        tokens_per_minute: int = DEFAULT_TOKENS_PER_MINUTE,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        default_timeout: float = DEFAULT_QUEUE_TIMEOUT,
        healthy_floor: int = DEFAULT_HEALTHY_FLOOR,
        drain_interval: float = DEFAULT_DRAIN_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            tokens_per_minute: Budget per window
            window_seconds: Length of one budget window
            default_timeout: Seconds a queued request waits before failing
            healthy_floor: Remaining budget above which the limiter is healthy
            drain_interval: Seconds between periodic queue drains once started
            clock: Monotonic time source, injectable for tests
        """
        self.capacity = tokens_per_minute
        self.window_seconds = window_seconds
        self.default_timeout = default_timeout
        self.healthy_floor = healthy_floor
        self.drain_interval = drain_interval
        self._clock = clock

        self._lock = threading.Lock()
        self._remaining = tokens_per_minute
        self._window_start = clock()
        self._window_id = 0
        self._queue: List[Tuple[int, int, QueuedRequest]] = []
        self._sequence = itertools.count()

        self._stop_event = threading.Event()
        self._timer: Optional[threading.Thread] = None

        self._metrics = {
            "requests_completed": 0,
            "requests_queued": 0,
            "tokens_used": 0,
            "errors": 0,
            "timeouts": 0,
            "avg_wait_ms": 0.0,
        }

    # ===== Budget =====

    @property
    def remaining(self) -> int:
        with self._lock:
            return self._remaining

    @property
    def queue_length(self) -> int:
        with self._lock:
            return len(self._queue)

    def estimate_tokens(self, text: Optional[str], request_type: str = "completion") -> int:
        return estimate_tokens(text, request_type)

    def seconds_until_refill(self) -> float:
        elapsed = self._clock() - self._window_start
        return max(0.0, self.window_seconds - elapsed)

    def refill(self) -> int:
        """
        Start a new budget window and drain the queue.

        Returns:
            Number of queued requests admitted
        """
        with self._lock:
            self._remaining = self.capacity
            self._window_start = self._clock()
            self._window_id += 1
        logger.debug(f"Token bucket refilled: {self.capacity} tokens available")
        return self.drain()

    def drain(self) -> int:
        """
        Admit queued requests in priority order while the head fits.

        Stops at the first request whose cost exceeds the remaining budget.
        """
        admitted = 0
        with self._lock:
            while self._queue:
                _, _, entry = self._queue[0]
                if entry.estimated_cost > self._remaining:
                    break
                heapq.heappop(self._queue)
                self._remaining -= entry.estimated_cost
                self._metrics["tokens_used"] += entry.estimated_cost
                entry.state = "admitted"
                entry.window = self._window_id
                entry.admitted.set()
                admitted += 1
        if admitted:
            logger.info(f"Admitted {admitted} queued requests, tokens remaining: {self.remaining}")
        return admitted

    # ===== Execution =====

    def execute_request(
        self,
        fn: Callable[[], Any],
        estimated_cost: Optional[int] = None,
        priority: Any = Priority.NORMAL,
        timeout: Optional[float] = None,
        text: Optional[str] = None,
        request_type: str = "completion",
    ) -> Any:
        """
        Run ``fn`` once the budget allows it.

        Args:
            fn: The upstream call
            estimated_cost: Explicit token cost; overrides the text estimate
            priority: Priority or "low"/"normal"/"high"
            timeout: Max seconds to wait in the queue
            text: Prompt text used to estimate the cost
            request_type: Overhead class for the estimate

        Returns:
            Whatever ``fn`` returns

        Raises:
            QueueTimeoutError: If the request was not admitted in time
            RateLimitedError: If the cost exceeds capacity, or the queue was
                cleared while waiting
            Exception: Any error from ``fn`` is propagated
        """
        if estimated_cost is None:
            estimated_cost = (
                estimate_tokens(text, request_type) if text is not None
                else DEFAULT_ESTIMATED_TOKENS
            )
        if estimated_cost > self.capacity:
            # Could never be admitted, and would block the queue head until its timeout
            logger.warning(f"Rejected request costing {estimated_cost} tokens (capacity {self.capacity})")
            raise RateLimitedError(
                f"Request cost {estimated_cost} exceeds capacity {self.capacity}",
                retry_after=self.window_seconds,
            )
        priority = Priority.coerce(priority)
        timeout = self.default_timeout if timeout is None else timeout
        request_id = f"req_{uuid.uuid4().hex[:12]}"
        started = self._clock()

        with self._lock:
            if self._remaining >= estimated_cost:
                self._remaining -= estimated_cost
                self._metrics["tokens_used"] += estimated_cost
                window = self._window_id
                entry = None
            else:
                entry = QueuedRequest(
                    id=request_id,
                    estimated_cost=estimated_cost,
                    priority=priority,
                    enqueued_at=started,
                    deadline=started + timeout,
                )
                heapq.heappush(
                    self._queue,
                    (PRIORITY_RANK[priority], next(self._sequence), entry),
                )
                self._metrics["requests_queued"] += 1
                queue_length = len(self._queue)

        if entry is None:
            logger.debug(f"Executing immediate request {request_id} ({estimated_cost} tokens)")
            return self._run(fn, estimated_cost, window, request_id, started)

        logger.info(f"Queued request {request_id} ({priority.value}), queue length: {queue_length}")
        entry.admitted.wait(timeout)

        with self._lock:
            if entry.state == "queued":
                self._remove(entry)
                entry.state = "timed_out"
                self._metrics["timeouts"] += 1
            state, window = entry.state, entry.window

        if state == "timed_out":
            logger.warning(f"Request {request_id} timed out in queue after {timeout}s")
            # The entry may have been the head blocking smaller requests
            self.drain()
            raise QueueTimeoutError(
                f"Request {request_id} timed out in queue",
                retry_after=self.seconds_until_refill(),
            )
        if state == "rejected":
            raise entry.error

        return self._run(fn, estimated_cost, window, request_id, started)

    def _run(
        self,
        fn: Callable[[], Any],
        cost: int,
        window: int,
        request_id: str,
        started: float,
    ) -> Any:
        try:
            result = fn()
        except Exception as e:
            with self._lock:
                self._metrics["errors"] += 1
                # Failed calls do not count against the budget of their window
                if window == self._window_id:
                    self._remaining = min(self.capacity, self._remaining + cost)
                    self._metrics["tokens_used"] -= cost
            logger.error(f"Request {request_id} failed: {e}")
            self.drain()
            raise

        wait_ms = (self._clock() - started) * 1000
        with self._lock:
            self._metrics["requests_completed"] += 1
            self._metrics["avg_wait_ms"] = (self._metrics["avg_wait_ms"] + wait_ms) / 2
        return result

    def _remove(self, entry: QueuedRequest) -> None:
        """Remove an entry from the heap. Caller holds the lock."""
        self._queue = [item for item in self._queue if item[2] is not entry]
        heapq.heapify(self._queue)

    def can_handle(self, estimated_cost: int) -> bool:
        """True if a request of this size would run now or join a short queue."""
        with self._lock:
            return self._remaining >= estimated_cost or len(self._queue) < 10

    def clear_queue(self) -> int:
        """Reject every queued request. Returns the number rejected."""
        with self._lock:
            entries = [item[2] for item in self._queue]
            self._queue = []
            for entry in entries:
                entry.state = "rejected"
                entry.error = RateLimitedError("Queue cleared")
                entry.admitted.set()
        if entries:
            logger.info(f"Queue cleared, rejected {len(entries)} requests")
        return len(entries)

    # ===== Timers =====

    def start(self) -> None:
        """Start the refill/drain timer thread."""
        if self._timer is not None and self._timer.is_alive():
            return
        self._stop_event.clear()
        self._timer = threading.Thread(
            target=self._timer_loop,
            name="token-bucket-refill",
            daemon=True,
        )
        self._timer.start()
        logger.info(f"Rate limiter started with {self.capacity} tokens/window")

    def stop(self) -> None:
        """Stop timers and reject anything still queued."""
        self._stop_event.set()
        if self._timer is not None:
            self._timer.join(timeout=1.0)
            self._timer = None
        self.clear_queue()

    def _timer_loop(self) -> None:
        while True:
            wait = min(self.drain_interval, self.seconds_until_refill())
            if self._stop_event.wait(wait):
                return
            try:
                if self.seconds_until_refill() <= 0:
                    self.refill()
                else:
                    self.drain()
            except Exception as e:
                logger.error(f"Rate limiter tick failed: {e}")

    # ===== Observability =====

    def get_status(self) -> Dict[str, Any]:
        """Current budget, queue and counters."""
        with self._lock:
            remaining = self._remaining
            queue_length = len(self._queue)
            queued_tokens = sum(item[2].estimated_cost for item in self._queue)
            metrics = dict(self._metrics)

        healthy = remaining > self.healthy_floor
        utilization = (self.capacity - remaining) / self.capacity * 100 if self.capacity else 0
        return {
            "available_tokens": remaining,
            "capacity": self.capacity,
            "queue_length": queue_length,
            "queued_tokens": queued_tokens,
            "utilization_percent": round(utilization, 2),
            "seconds_until_refill": round(self.seconds_until_refill(), 1),
            "metrics": metrics,
            "healthy": healthy,
            "status": "healthy" if healthy else "limited",
        }


# Global rate limiter instance
_rate_limiter: Optional[TokenBucketRateLimiter] = None


def get_rate_limiter() -> TokenBucketRateLimiter:
    """Get or create the global rate limiter."""
    global _rate_limiter
    if _rate_limiter is None:
        from config.settings import settings
        _rate_limiter = TokenBucketRateLimiter(
            tokens_per_minute=settings.ai_tokens_per_minute,
            default_timeout=settings.ai_queue_timeout_seconds,
            healthy_floor=settings.ai_healthy_floor,
            drain_interval=settings.ai_drain_interval_seconds,
        )
    return _rate_limiter
