"""Cooperative cancellation for a single run."""

import asyncio

from .errors import RunCancelled


class CancelToken:
    """
    Cancellation signal threaded through every network call of a run.

    Signalling is one-way: once cancelled, a token stays cancelled.
    A new run always gets a new token.
    """

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self):
        self._event.set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise RunCancelled()
