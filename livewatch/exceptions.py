"""Exception hierarchy for livewatch."""

from __future__ import annotations


class LivewatchError(Exception):
    """
    Base class for all livewatch errors.
    """


class EntityNotFound(LivewatchError):
    """
    Raised when an operation references a streamer with no stored or remote record.
    """

    def __init__(self, uid: int) -> None:
        super().__init__(f"Streamer {uid} not found")
        self.uid = uid


class FetchFailure(LivewatchError):
    """
    External state fetch failed or timed out.
    """


class DeliveryFailure(LivewatchError):
    """
    Transport could not deliver a message to one recipient.
    """


class StoreInvariantError(LivewatchError, AssertionError):
    """
    Reverse index disagrees with the authoritative subscription records.

    This is a programming error and must never be caught and ignored.
    """
