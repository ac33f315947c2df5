"""
Resilience primitives for calls to the drug reference service.

  - RetryPolicy     – attempt budget and exponential backoff with jitter.
  - CircuitBreaker  – shared failure counter that short-circuits calls to a
                      failing upstream until a cooldown has elapsed.
  - resilient_call  – wraps any zero-argument callable with both.

Both objects are plain instances, so each client (or each test) owns its own
state instead of sharing a module-level singleton.
"""

import logging
import random
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, TypeVar

import requests

from medivision.services.errors import CircuitOpenError, RetriesExhaustedError, RetryableStatusError

logger = logging.getLogger("medivision.resilience")

T = TypeVar("T")

# Transient faults worth another attempt. Other requests errors (bad URL,
# bad header) are permanent and propagate on the first attempt.
RETRYABLE_EXCEPTIONS = (RetryableStatusError, requests.ConnectionError, requests.Timeout)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 0.5     # seconds
    max_jitter: float = 0.1     # seconds
    jitter: Callable[[float], float] = field(
        default=lambda ceiling: random.uniform(0, ceiling), compare=False, repr=False,
    )

    def delay_for(self, attempt: int) -> float:
        """Backoff before retrying after the zero-based ``attempt`` failed."""
        return self.base_delay * (2 ** attempt) + self.jitter(self.max_jitter)

    def with_attempts(self, max_attempts: int) -> "RetryPolicy":
        return RetryPolicy(max_attempts, self.base_delay, self.max_jitter, self.jitter)


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker.

    Closed: calls pass through. After ``threshold`` recorded failures the
    breaker opens and rejects calls until ``cooldown`` seconds have passed
    since the last failure; it then goes half-open and admits a single
    probe. A success anywhere resets the count to zero.
    """

    def __init__(self, threshold: int = 5, cooldown: float = 30.0,
                 clock: Callable[[], float] = time.monotonic):
        self.threshold = threshold
        self.cooldown = cooldown
        self._clock = clock
        self._lock = threading.Lock()
        self.failure_count = 0
        self.last_failure: Optional[float] = None
        self._probe_in_flight = False

    @property
    def is_open(self) -> bool:
        with self._lock:
            return self._is_open_locked()

    def _is_open_locked(self) -> bool:
        if self.failure_count < self.threshold:
            return False
        return self.last_failure is not None and (self._clock() - self.last_failure) < self.cooldown

    def allow_request(self) -> bool:
        with self._lock:
            if self.failure_count < self.threshold:
                return True
            if self._is_open_locked() or self._probe_in_flight:
                return False
            self._probe_in_flight = True
            logger.info("Circuit breaker half-open: allowing one probe request.")
            return True

    def record_success(self) -> None:
        with self._lock:
            if self.failure_count:
                logger.info("Circuit breaker reset after %d failure(s).", self.failure_count)
            self.failure_count = 0
            self._probe_in_flight = False

    def release_probe(self) -> None:
        with self._lock:
            self._probe_in_flight = False

    def record_failure(self) -> None:
        with self._lock:
            self.failure_count += 1
            self.last_failure = self._clock()
            self._probe_in_flight = False
            if self.failure_count == self.threshold:
                logger.warning("Circuit breaker opened after %d consecutive failures.", self.failure_count)


def resilient_call(
    fn: Callable[[], T],
    policy: RetryPolicy,
    breaker: CircuitBreaker,
    sleep: Callable[[float], None] = time.sleep,
    retry_on: tuple = RETRYABLE_EXCEPTIONS,
) -> T:
    """
    Run ``fn`` under the retry policy and circuit breaker.

    Raises CircuitOpenError without calling ``fn`` when the breaker is open,
    and RetriesExhaustedError once every attempt raised one of ``retry_on``.
    Any other exception propagates unchanged.
    """
    if not breaker.allow_request():
        raise CircuitOpenError("Circuit breaker open: reference API is unstable.")

    last_exc: Optional[BaseException] = None
    for attempt in range(policy.max_attempts):
        try:
            result = fn()
        except retry_on as exc:
            last_exc = exc
            if attempt == policy.max_attempts - 1:
                break
            delay = policy.delay_for(attempt)
            logger.warning(
                "Reference call failed (attempt %d/%d, %s); retrying in %.2fs",
                attempt + 1, policy.max_attempts, type(exc).__name__, delay,
            )
            sleep(delay)
            continue
        except Exception:
            # Not a transient fault, so not counted against the upstream.
            breaker.release_probe()
            raise
        breaker.record_success()
        return result

    breaker.record_failure()
    raise RetriesExhaustedError(
        f"Reference call failed after {policy.max_attempts} attempt(s): {type(last_exc).__name__}",
        attempts=policy.max_attempts,
    ) from last_exc
