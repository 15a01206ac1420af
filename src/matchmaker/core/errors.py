from __future__ import annotations


class MatchmakingError(Exception):
    """Base class for errors surfaced by the matchmaking core."""


class InvalidInputError(MatchmakingError, ValueError):
    """Empty interests or a malformed participant id. Never retried."""


class ConflictError(MatchmakingError):
    """Duplicate live registration, self-match, or a lost compare-and-commit."""


class NotFoundError(MatchmakingError, LookupError):
    """Unknown participant or session id."""


class StoreUnavailableError(MatchmakingError):
    """The session store could not be read or written."""


class InvariantViolation(AssertionError):
    """
    Internal state contradicts a core invariant. Programming error: never caught
    inside the core.
    """


def check(condition: bool, message: str) -> None:
    if not condition:
        raise InvariantViolation(message)
