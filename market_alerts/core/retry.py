"""Bounded retry with backoff."""

import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple, Type, TypeVar

from market_alerts.core.logger import logger

T = TypeVar('T')


@dataclass(frozen=True)
class RetryPolicy:
    """
    How many times to attempt an operation and how long to wait in between.

    Attributes:
        max_attempts (int): Total attempts, including the first one.
        base_delay (float): Delay unit in seconds.
        backoff (str): ``"linear"`` waits ``n * base_delay`` after attempt n,
                       ``"exponential"`` waits ``base_delay * 2 ** (n - 1)``.
    """
    max_attempts: int = 3
    base_delay: float = 5.0
    backoff: str = "linear"

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given 1-based failed attempt."""
        if self.backoff == "exponential":
            return self.base_delay * (2 ** (attempt - 1))
        return self.base_delay * attempt

    def call(
        self,
        func: Callable[..., T],
        *args: Any,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        sleep: Callable[[float], None] = time.sleep,
        **kwargs: Any,
    ) -> T:
        """
        Invoke ``func`` until it succeeds or attempts run out.

        The last exception is re-raised once ``max_attempts`` is reached. No
        wait follows the final attempt.
        """
        name = getattr(func, "__name__", repr(func))
        last_exc: Optional[BaseException] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return func(*args, **kwargs)
            except retry_on as e:
                last_exc = e
                if attempt == self.max_attempts:
                    logger.error(f"'{name}' failed after {self.max_attempts} attempts: {e}")
                    break

                delay = self.delay_for(attempt)
                logger.warning(
                    f"'{name}' failed (attempt {attempt}/{self.max_attempts}): {e}. "
                    f"Retrying in {delay:g} seconds..."
                )
                sleep(delay)

        assert last_exc is not None
        raise last_exc

