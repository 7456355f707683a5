"""TLS cipher-suite fallback.

Robots ship different firmware generations that accept different TLS
configurations.  The negotiator remembers which suite to try next and
decides, from a connection error, whether another suite is worth trying.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Sequence

from pyroomba._constants import ROBOT_CIPHERS

_logger = logging.getLogger(__name__)


class CipherDecision(enum.Enum):
    RETRY_WITH_NEXT = "retry-with-next"
    FATAL = "fatal"


def is_cipher_rejection(error: BaseException) -> bool:
    """Heuristic: the error text mentions TLS or a rejected client identifier.

    The transport offers no structured error code for these cases, so the
    message is the only signal.
    """
    text = str(error).lower()
    return "tls" in text or "identifier rejected" in text


class CipherNegotiator:
    """Ordered cipher suites plus the index of the one to use next."""

    def __init__(
        self,
        suites: Sequence[str] = ROBOT_CIPHERS,
        *,
        is_retryable: Callable[[BaseException], bool] = is_cipher_rejection,
    ) -> None:
        if not suites:
            raise ValueError("At least one cipher suite is required")
        self._suites = tuple(suites)
        self._is_retryable = is_retryable
        self._index = 0

    @property
    def suites(self) -> tuple[str, ...]:
        return self._suites

    @property
    def index(self) -> int:
        return self._index

    @property
    def current(self) -> str:
        return self._suites[self._index]

    @property
    def max_attempts(self) -> int:
        """Connection attempts allowed per borrow: one per suite."""
        return len(self._suites)

    def classify(self, error: BaseException) -> CipherDecision:
        if self._is_retryable(error):
            return CipherDecision.RETRY_WITH_NEXT
        return CipherDecision.FATAL

    def advance(self) -> str:
        """Move to the next suite (wrapping) and return it."""
        self._index = (self._index + 1) % len(self._suites)
        _logger.debug("Cipher suite advanced to %s (index %d)", self.current, self._index)
        return self.current
