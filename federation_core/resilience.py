import functools
import logging
import random
import threading
import time
from typing import Callable, Optional, Tuple, Type

from .errors import CircuitOpenError

logger = logging.getLogger(__name__)


class RetryWithBackoff:
    """
    Retry logic with exponential backoff and jitter.
    ``retry_if`` narrows which of ``exceptions`` are worth another attempt.
    """

    def __init__(
        self,
        max_retries: int = 3,
        initial_delay: float = 0.1,
        max_delay: float = 2.0,
        backoff_factor: float = 2.0,
        jitter: bool = True,
        exceptions: Tuple[Type[BaseException], ...] = (Exception,),
        retry_if: Optional[Callable[[BaseException], bool]] = None,
    ):
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.jitter = jitter
        self.exceptions = exceptions
        self.retry_if = retry_if

    def __call__(self, func: Callable):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            delay = self.initial_delay
            attempt = 0
            while True:
                try:
                    return func(*args, **kwargs)
                except self.exceptions as exc:
                    if attempt >= self.max_retries:
                        raise
                    if self.retry_if is not None and not self.retry_if(exc):
                        raise

                    wait = delay
                    if self.jitter:
                        wait *= 0.5 + random.random()
                    wait = min(wait, self.max_delay)
                    attempt += 1
                    logger.debug(
                        "[Retry] %s attempt %d/%d failed (%s), sleeping %.2fs",
                        func.__name__, attempt, self.max_retries, exc, wait,
                    )
                    time.sleep(wait)
                    delay *= self.backoff_factor

        return wrapper


class CircuitBreaker:
    """
    Circuit breaker pattern to prevent hammering a node that keeps failing.
    """

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"

    def __init__(
        self,
        name: str = "",
        failure_threshold: int = 5,
        recovery_timeout: float = 10.0,
        exceptions: Tuple[Type[BaseException], ...] = (Exception,),
        failure_if: Optional[Callable[[BaseException], bool]] = None,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.exceptions = exceptions
        # A raised exception that fails this predicate still proves the node answered
        self.failure_if = failure_if

        self._failures = 0
        self._last_failure_time = 0.0
        self._state = self.CLOSED
        self._lock = threading.Lock()

    def __call__(self, func: Callable):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            if not self.allow_request():
                raise CircuitOpenError(self.name)
            try:
                result = func(*args, **kwargs)
            except self.exceptions as exc:
                if self.failure_if is None or self.failure_if(exc):
                    self.record_failure()
                else:
                    self.record_success()
                raise
            self.record_success()
            return result

        return wrapper

    @property
    def state(self) -> str:
        with self._lock:
            return self._state

    def allow_request(self) -> bool:
        with self._lock:
            if self._state == self.OPEN:
                if time.time() - self._last_failure_time > self.recovery_timeout:
                    self._state = self.HALF_OPEN
                    return True
                return False
            return True

    def record_success(self):
        with self._lock:
            self._state = self.CLOSED
            self._failures = 0

    def record_failure(self):
        with self._lock:
            self._failures += 1
            self._last_failure_time = time.time()
            if self._state == self.HALF_OPEN or self._failures >= self.failure_threshold:
                if self._state != self.OPEN:
                    logger.warning("[CircuitBreaker] %s opened after %d failures", self.name, self._failures)
                self._state = self.OPEN


def retry(
    max_retries: int = 3,
    initial_delay: float = 0.1,
    max_delay: float = 2.0,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    retry_if: Optional[Callable[[BaseException], bool]] = None,
):
    """Decorator for retrying functions."""
    return RetryWithBackoff(
        max_retries=max_retries,
        initial_delay=initial_delay,
        max_delay=max_delay,
        exceptions=exceptions,
        retry_if=retry_if,
    )
