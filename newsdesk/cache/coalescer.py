"""
Single-flight coalescing of concurrent cache misses.

When several threads miss on the same key at once, the first one computes
and the rest wait for its result instead of calling upstream again.
"""
import threading
import time
import logging
from typing import Dict, Optional, Callable, Any
from dataclasses import dataclass, field

logger = logging.getLogger("cache.coalescer")


@dataclass
class InFlightCompute:
    """A computation currently running for one key."""
    done: threading.Event = field(default_factory=threading.Event)
    result: Optional[Any] = None
    error: Optional[BaseException] = None
    started_at: float = field(default_factory=time.monotonic)
    waiters: int = 0


class RequestCoalescer:
    """
    Shares one compute call between concurrent callers of the same key.

    The first caller (leader) runs ``compute_fn``; followers block on the
    leader's event and receive the same value or the same exception.
    """

    def __init__(self, timeout: float = 30.0):
        """
        Args:
            timeout: Max seconds a follower waits for the leader
        """
        self._in_flight: Dict[str, InFlightCompute] = {}
        self._lock = threading.Lock()
        self._timeout = timeout
        self._coalesced = 0

    def run(self, key: str, compute_fn: Callable[[], Any]) -> Any:
        """
        Run ``compute_fn`` for ``key`` or join the call already running.

        Raises:
            TimeoutError: If a follower waits longer than the timeout
            Exception: Whatever the leader's ``compute_fn`` raised
        """
        with self._lock:
            in_flight = self._in_flight.get(key)
            if in_flight is not None:
                in_flight.waiters += 1
                self._coalesced += 1
                is_leader = False
            else:
                in_flight = InFlightCompute()
                self._in_flight[key] = in_flight
                is_leader = True

        if is_leader:
            try:
                in_flight.result = compute_fn()
            except Exception as e:
                in_flight.error = e
            finally:
                with self._lock:
                    self._in_flight.pop(key, None)
                in_flight.done.set()

            if in_flight.error is not None:
                raise in_flight.error
            return in_flight.result

        logger.debug(f"Joining in-flight compute for {key} (waiters: {in_flight.waiters})")
        if not in_flight.done.wait(timeout=self._timeout):
            logger.error(f"Timeout waiting for coalesced compute: {key}")
            raise TimeoutError(f"Compute for {key} timed out after {self._timeout}s")

        if in_flight.error is not None:
            raise in_flight.error
        return in_flight.result

    @property
    def active(self) -> int:
        with self._lock:
            return len(self._in_flight)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "in_flight": len(self._in_flight),
                "coalesced": self._coalesced,
            }
