"""Cooperative stop signal shared between the queue driver and running tasks."""

from __future__ import annotations

from threading import Event
from typing import Callable

from batchpilot.errors import CommunicationLost, StoppedByUser


class CancellationToken:
    """Broadcast stop flag: set by one actor, consulted by many readers."""

    def set(self) -> None:
        raise NotImplementedError

    def is_set(self) -> bool:
        raise NotImplementedError

    def check_or_fail(self, context: str = "") -> None:
        if self.is_set():
            raise StoppedByUser(context)


class LocalCancellationToken(CancellationToken):
    """Token for readers that share memory with the stop requester."""

    def __init__(self) -> None:
        self._event = Event()

    def set(self) -> None:
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()


class RemoteCancellationToken(CancellationToken):
    """Token answered by a request/response round trip to the queue driver.

    A failed round trip counts as a stop request: the task must not keep
    driving the target unattended.
    """

    def __init__(
        self,
        query: Callable[[], bool],
        *,
        request_stop: Callable[[], None] | None = None,
        log: Callable[[str], None] | None = None,
    ) -> None:
        self._query = query
        self._request_stop = request_stop
        self._log = log
        self._latched = False

    def set(self) -> None:
        self._latched = True
        if self._request_stop is None:
            return
        try:
            self._request_stop()
        except Exception as exc:
            self._emit(f"stop request could not be delivered: {exc}")

    def is_set(self) -> bool:
        try:
            return self._ask("")
        except CommunicationLost:
            return True

    def check_or_fail(self, context: str = "") -> None:
        if self._ask(context):
            self._emit(f"stop signal received ({context})")
            raise StoppedByUser(context)

    def _ask(self, context: str) -> bool:
        if self._latched:
            return True
        try:
            stopped = bool(self._query())
        except Exception as exc:
            self._latched = True
            self._emit(f"could not check stop signal ({context}), assuming stop: {exc}")
            raise CommunicationLost(context) from exc
        if stopped:
            self._latched = True
        return stopped

    def _emit(self, message: str) -> None:
        if self._log is not None:
            self._log(message)
