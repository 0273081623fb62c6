"""
Module with utilities for waiting on events that are signalled by other threads.

sshfs_server reports that it is ready by printing a token on stdout, and reports that
it failed by exiting. Both are observed by separate watcher threads while the thread
that started the mount blocks until one of them has something to say:

def start():
    q = EventQueue()

    # These threads signal SERVER_CONNECTED and PROCESS_EXIT, respectively.
    start_thread(watch_stdout, q)
    start_thread(watch_exit, q)

    try:
        q.expect(Event.SERVER_CONNECTED)
    except UnexpectedEvent as e:
        ...
    finally:
        q.close()

Whichever event is posted first is the one that is handled. Closing the queue afterwards
disengages the other watcher, whose late notification is then silently dropped.
"""

from __future__ import annotations

from enum import auto, Enum
import queue
import threading
from typing import Any, Tuple, Union


class Event(Enum):
    """Types of events."""

    SERVER_CONNECTED = auto()
    PROCESS_EXIT = auto()

    EXCEPTION = auto()


class UnexpectedEvent(Exception):
    """Exception raised when an event occurs that is not being waited upon."""

    def __init__(
        self,
        message: str,
        expected_event: Event,
        actual_event: Event,
        actual_value: Any,
    ) -> None:
        """Instantiate the exception with a description of what happened."""
        super().__init__(message, expected_event, actual_event, actual_value)

        self.message = message

        self.expected_event = expected_event
        self.actual_event = actual_event
        self.actual_value = actual_value


class EventQueue:
    """Thread-safe queue of events that can be notified of and waited upon."""

    def __init__(self) -> None:
        """Instantiate a new EventQueue."""
        self._queue: queue.Queue[Tuple[Event, Any]] = queue.Queue()

        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def notify(self, event: Event, value: Any = None) -> bool:
        """
        Post an event and any associated value to the queue.

        Returns False if the queue was closed and the event was dropped.
        """
        with self._lock:
            if self._closed:
                return False

            self._queue.put((event, value))
            return True

    def exception(self, exception: Union[Exception, str]) -> bool:
        """Post an exception event to the queue."""
        if isinstance(exception, Exception):
            return self.notify(Event.EXCEPTION, exception)
        else:
            return self.notify(Event.EXCEPTION, RuntimeError(exception))

    def expect(self, expected_event: Event) -> Any:
        """Wait for the next event on the queue and check if it matches."""
        event, value = self._queue.get()

        if event == expected_event:
            return value
        elif event == Event.EXCEPTION:
            raise value
        else:
            raise UnexpectedEvent(
                f"expected {expected_event}, but got {event}",
                expected_event,
                event,
                value,
            )

    def close(self) -> None:
        """Stop accepting events and discard any that have not been handled yet."""
        with self._lock:
            self._closed = True

            while True:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    break
