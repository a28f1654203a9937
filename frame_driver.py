from __future__ import annotations

import logging
import threading
import time

from input_buffer import InputBufferTracker
from input_map import InputMap

logger = logging.getLogger(__name__)

TICK_HZ = 60


class FrameDriver:
    """
    Turns raw, asynchronous key events into one "just pressed" set per frame.

    Listener callbacks (pynput threads) call `press()` / `release()` at any time;
    the tick thread calls `poll()` at a fixed rate, which drains the pending keys,
    maps them to actions and advances the tracker exactly once.
    """

    def __init__(self, tracker: InputBufferTracker, input_map: InputMap | None = None):
        self._lock = threading.Lock()
        self.tracker = tracker
        # None: follow whatever map the tracker holds (it is replaced when config loads)
        self._input_map = input_map
        self._pending: set[str] = set()
        self.currently_pressed: set[str] = set()

    @property
    def input_map(self) -> InputMap:
        return self._input_map if self._input_map is not None else self.tracker.input_map

    def press(self, key: str):
        key = (key or "").strip().lower()
        if not key:
            return
        with self._lock:
            # OS key-repeat re-sends presses while a key is held; only the first counts.
            if key in self.currently_pressed:
                return
            self.currently_pressed.add(key)
            self._pending.add(key)

    def release(self, key: str):
        key = (key or "").strip().lower()
        if not key:
            return
        with self._lock:
            self.currently_pressed.discard(key)

    def drain(self) -> set[str]:
        with self._lock:
            keys = self._pending
            self._pending = set()
        return keys

    def poll(self, now: float | None = None) -> list[str]:
        """Advance the tracker by one frame. Returns the sequences completed on it."""
        actions = self.input_map.actions_for_keys(self.drain())
        return self.tracker.tick(actions, now=now)

    def run(self, stop: threading.Event, hz: int = TICK_HZ):
        period = 1.0 / max(1, int(hz))
        next_at = time.perf_counter()
        while not stop.is_set():
            try:
                self.poll()
            except Exception:
                # A bad frame must not kill the tick thread
                logger.exception("Frame tick failed")
            next_at += period
            delay = next_at - time.perf_counter()
            if delay > 0:
                stop.wait(delay)
            else:
                # Fell behind (debugger, sleep); don't try to catch up with a burst of ticks.
                next_at = time.perf_counter()
