# Backoff Policy
import asyncio
import random
import re

from fleetheal.core.exceptions import PermanentRemoteError, TransientRemoteError
from fleetheal.core.types import ErrorKind

# =============================================================================
# Error Classifier
# =============================================================================


class ErrorClassifier:
    """
    Maps a remote error to TRANSIENT / PERMANENT / UNKNOWN.

    Typed exceptions are trusted first; the message is matched against two
    disjoint pattern sets otherwise. Only known-transient conditions are
    retried: UNKNOWN fails fast like PERMANENT.
    """

    PATTERNS: dict[ErrorKind, list[str]] = {
        ErrorKind.PERMANENT: [
            r"access\s+(is\s+)?denied",
            r"logon\s+failure",
            r"\b1326\b",
            r"domain\s+(was\s+)?not\s+found",
            r"(specified\s+)?domain\s+(either\s+)?does\s+not\s+exist",
            r"\b1355\b",
            r"object\s+(was\s+)?not\s+found",
            r"cannot\s+find\s+an\s+object",
        ],
        ErrorKind.TRANSIENT: [
            r"rpc\s+server\s+is\s+unavailable",
            r"rpc[\s_-]+(server[\s_-]+)?unavailable",
            r"\b1722\b",
            r"network\s+path\s+was\s+not\s+found",
            r"network[\s_-]+path[\s_-]+not[\s_-]+found",
            r"connection\s+(failed|refused|reset)",
            r"could\s+not\s+connect",
            r"unable\s+to\s+contact",
            r"time[d]?\s*out",
        ],
    }

    # PERMANENT is checked first: a message matching both is never retried.
    _COMPILED: list[tuple[ErrorKind, list[re.Pattern[str]]]] = [
        (kind, [re.compile(p, re.IGNORECASE) for p in patterns])
        for kind, patterns in PATTERNS.items()
    ]

    @classmethod
    def classify(cls, error: str | BaseException | None) -> ErrorKind:
        if error is None:
            return ErrorKind.UNKNOWN

        if isinstance(error, BaseException):
            if isinstance(error, PermanentRemoteError):
                return ErrorKind.PERMANENT
            if isinstance(error, TransientRemoteError):
                return ErrorKind.TRANSIENT
            if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
                return ErrorKind.TRANSIENT
            if isinstance(error, PermissionError):
                return ErrorKind.PERMANENT
            message = str(error)
        else:
            message = error

        for kind, patterns in cls._COMPILED:
            for pattern in patterns:
                if pattern.search(message):
                    return kind

        return ErrorKind.UNKNOWN


def classify(error: str | BaseException | None) -> ErrorKind:
    """Classify an error message or exception for retry purposes."""
    return ErrorClassifier.classify(error)


def is_retryable(kind: ErrorKind) -> bool:
    return kind is ErrorKind.TRANSIENT


# =============================================================================
# Delay
# =============================================================================


def compute_delay(
    attempt: int,
    initial: float,
    maximum: float,
    jitter: bool = False,
    rng: random.Random | None = None,
) -> float:
    """
    Exponential backoff: ``min(initial * 2**attempt, maximum)``.

    ``attempt`` counts from 0, so initial=2, maximum=30 gives
    2, 4, 8, 16, 30, 30, ...

    With ``jitter`` the capped delay is scaled by a random factor in
    [0.5, 1.0], which keeps the cap and desynchronises nodes that failed
    together.
    """
    if attempt < 0:
        raise ValueError("attempt must be non-negative")

    # Cap the exponent before multiplying so huge attempt numbers cannot overflow.
    if initial <= 0:
        delay = 0.0
    elif attempt >= 64:
        delay = float(maximum)
    else:
        delay = min(initial * (2**attempt), maximum)

    if jitter and delay > 0:
        delay *= (rng or random).uniform(0.5, 1.0)

    return float(delay)
