"""Readiness-based event loop dispatching socket events to handlers."""

from __future__ import annotations

import select
import threading
from collections import deque
from enum import IntFlag
from typing import Callable, Union

from rtsproxy import logger


class Event(IntFlag):
    """Readiness conditions a handler can be registered for and told about."""

    IN = select.POLLIN
    OUT = select.POLLOUT
    ERR = select.POLLERR
    HUP = select.POLLHUP
    RDHUP = getattr(select, "POLLRDHUP", 0x2000)


Handler = Callable[[Event], None]
Pollable = Union[int, "object"]


def _fileno(sock: Pollable) -> int:
    if isinstance(sock, int):
        return sock
    return sock.fileno()


class EventLoop:
    """Waits for readiness on registered file descriptors and runs their handlers.

    Deferred tasks queued with :meth:`add_task` run after each batch of events.
    """

    def __init__(self) -> None:
        self._poller = select.poll()
        self._handlers: dict[int, Handler] = {}
        self._tasks: deque[Callable[[], None]] = deque()
        self._tasks_lock = threading.Lock()
        self._running = False
        self._closed = False

    def __enter__(self) -> "EventLoop":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def add_task(self, task: Callable[[], None]) -> None:
        """Queue ``task`` to run after the current batch of events."""
        with self._tasks_lock:
            self._tasks.append(task)

    def process_tasks(self) -> None:
        """Run queued tasks until the queue is empty."""
        while True:
            with self._tasks_lock:
                if not self._tasks:
                    return
                task = self._tasks.popleft()
            task()

    def set(self, sock: Pollable, events: Event, handler: Handler | None = None) -> None:
        """Register ``sock`` for ``events`` or change its registration.

        Without ``handler`` the handler already registered for ``sock`` is kept.
        """
        try:
            fd = _fileno(sock)
        except (OSError, ValueError) as exc:
            logger.error(f"event registration failed: {exc}")
            return
        if handler is None:
            if fd not in self._handlers:
                raise ValueError(f"no handler registered for file descriptor {fd}")
            handler = self._handlers[fd]
        try:
            self._poller.register(fd, int(events))
        except (OSError, ValueError) as exc:
            logger.error(f"event registration failed: {exc}")
            return
        self._handlers[fd] = handler

    def remove(self, sock: Pollable) -> None:
        """Stop watching ``sock``."""
        try:
            fd = _fileno(sock)
        except (OSError, ValueError):
            logger.error("event removal failed: socket has no file descriptor")
            return
        self._handlers.pop(fd, None)
        try:
            self._poller.unregister(fd)
        except (KeyError, OSError, ValueError):
            logger.error("event removal failed")

    def run_once(self, timeout: float | None = None) -> int:
        """Wait up to ``timeout`` seconds, dispatch events, then run tasks.

        ``None`` or a negative timeout waits without limit. Returns the number
        of events dispatched.
        """
        timeout_ms = None if timeout is None or timeout < 0 else int(timeout * 1000)
        ready = self._poller.poll(timeout_ms)
        dispatched = 0
        for fd, mask in ready:
            if mask & select.POLLNVAL:
                self._handlers.pop(fd, None)
                try:
                    self._poller.unregister(fd)
                except KeyError:
                    pass
                continue
            handler = self._handlers.get(fd)
            if handler is None:
                continue
            handler(Event(mask & sum(Event)))
            dispatched += 1
        self.process_tasks()
        return dispatched

    def run(self, timeout: float | None = None) -> None:
        """Dispatch events until :meth:`stop` is called or waiting fails."""
        self._running = True
        while self._running:
            try:
                self.run_once(timeout)
            except OSError as exc:
                logger.error(f"event wait failed: {exc}")
                break
        self._running = False

    def stop(self) -> None:
        """Make :meth:`run` return after the current iteration."""
        self._running = False

    def close(self) -> None:
        """Forget every registration and pending task."""
        if self._closed:
            return
        for fd in list(self._handlers):
            try:
                self._poller.unregister(fd)
            except KeyError:
                pass
        self._handlers.clear()
        with self._tasks_lock:
            self._tasks.clear()
        self._running = False
        self._closed = True