"""Rate limiting for forced key-set refreshes.

Tokens carrying random key ids would otherwise turn every request into an
outbound JWKS fetch. The gate lets one forced refresh through per interval and
counts the rest.
"""

import threading
import time
from collections.abc import Callable
from typing import Final

from tessera.core.logging import get_logger

_DEFAULT_INTERVAL: Final[float] = 10.0
_DEFAULT_ALERT_THRESHOLD: Final[int] = 5

logger = get_logger("tessera.verifier.refresh_gate")


class RefreshGate:
    """Thread-safe limiter allowing at most one refresh per ``min_interval``."""

    def __init__(
        self,
        min_interval: float = _DEFAULT_INTERVAL,
        alert_threshold: int = _DEFAULT_ALERT_THRESHOLD,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if min_interval <= 0:
            raise ValueError(f"min_interval must be positive, got {min_interval}")
        if alert_threshold < 1:
            raise ValueError(f"alert_threshold must be at least 1, got {alert_threshold}")

        self._min_interval = min_interval
        self._alert_threshold = alert_threshold
        self._clock = clock

        self._lock = threading.Lock()
        self._next_allowed_at: float | None = None
        self._denied: int = 0

    @property
    def denied(self) -> int:
        """Refreshes denied since the last allowed one."""
        return self._denied

    def allow(self) -> bool:
        """Return True and start a new interval if a refresh may run now."""
        now = self._clock()
        with self._lock:
            if self._next_allowed_at is not None and now < self._next_allowed_at:
                self._denied += 1
                if self._denied == self._alert_threshold:
                    logger.warning(
                        "Key-set refresh throttled",
                        denied=self._denied,
                        min_interval=self._min_interval,
                    )
                return False

            self._next_allowed_at = now + self._min_interval
            self._denied = 0
            return True
