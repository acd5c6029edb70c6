# quotesync/connectivity.py
"""Connectivity state pushed by the device sensor and fanned out to subscribers.

The sensor calls :meth:`ConnectivityMonitor.publish` from whatever thread it
owns.  Publishing only enqueues; a single dispatcher thread applies each state
and delivers it to subscribers, so transitions reach every subscriber exactly
once and in the order the sensor raised them.
"""

from __future__ import annotations

import itertools
import logging
import queue
import threading
from dataclasses import dataclass
from typing import Callable, Protocol


@dataclass(frozen=True)
class ConnectivityState:
    connected: bool = False
    reachable: bool = False

    @property
    def online(self) -> bool:
        return self.connected and self.reachable

    def to_dict(self) -> dict:
        return {
            "connected": self.connected,
            "reachable": self.reachable,
            "online": self.online,
        }


OFFLINE = ConnectivityState(False, False)

Callback = Callable[[ConnectivityState], None]


class Sensor(Protocol):
    def start(self, publish: Callable[[bool, bool], None]) -> None: ...


_STOP = object()


class ConnectivityMonitor:
    """Owns the current connectivity state; one instance per host, injected."""

    def __init__(self, sensor: Sensor | None = None, initial: ConnectivityState = OFFLINE) -> None:
        self._lock = threading.Lock()
        self._state = initial
        self._subscribers: dict[int, Callback] = {}
        # subscribers still waiting for their initial state
        self._unprimed: set[int] = set()
        self._ids = itertools.count(1)
        self._queue: queue.Queue = queue.Queue()
        self._thread = threading.Thread(
            target=self._dispatch_loop, daemon=True, name="connectivity-dispatch"
        )
        self._thread.start()
        self.sensor_failed = False
        if sensor is not None:
            try:
                sensor.start(self.publish)
            except Exception:
                logging.exception("connectivity sensor failed to start; assuming offline")
                self.sensor_failed = True
                with self._lock:
                    self._state = OFFLINE

    def current(self) -> ConnectivityState:
        with self._lock:
            return self._state

    def publish(self, connected: bool, reachable: bool | None = None) -> None:
        """Sensor entry point.  ``reachable=None`` means the same as ``connected``."""
        if reachable is None:
            reachable = connected
        self._queue.put(("state", ConnectivityState(bool(connected), bool(reachable))))

    def subscribe(self, callback: Callback) -> Callable[[], None]:
        """Register ``callback``; it first receives the state current at delivery."""
        with self._lock:
            sub_id = next(self._ids)
            self._subscribers[sub_id] = callback
            self._unprimed.add(sub_id)
        self._queue.put(("initial", sub_id))

        def unsubscribe() -> None:
            with self._lock:
                self._subscribers.pop(sub_id, None)
                self._unprimed.discard(sub_id)

        return unsubscribe

    def flush(self, timeout: float | None = None) -> bool:
        """Block until every queued delivery has run.  Returns False on timeout."""
        done = threading.Event()
        self._queue.put(("barrier", done))
        return done.wait(timeout)

    def stop(self) -> None:
        self._queue.put((_STOP, None))
        self._thread.join(timeout=5)

    def _deliver(self, callback: Callback, state: ConnectivityState) -> None:
        try:
            callback(state)
        except Exception:
            logging.exception("connectivity subscriber %r failed", callback)

    def _dispatch_loop(self) -> None:
        while True:
            kind, value = self._queue.get()
            if kind is _STOP:
                return
            if kind == "barrier":
                value.set()
            elif kind == "initial":
                with self._lock:
                    callback = self._subscribers.get(value)
                    self._unprimed.discard(value)
                    state = self._state
                if callback is not None:
                    self._deliver(callback, state)
            elif kind == "state":
                with self._lock:
                    if value == self._state:
                        continue
                    previous, self._state = self._state, value
                    targets = [
                        cb for sid, cb in self._subscribers.items()
                        if sid not in self._unprimed
                    ]
                logging.info(
                    "connectivity %s -> %s",
                    "online" if previous.online else "offline",
                    "online" if value.online else "offline",
                )
                for callback in targets:
                    self._deliver(callback, value)
