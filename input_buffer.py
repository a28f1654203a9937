from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from input_map import InputMap, split_inputs

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_WINDOW = 0.15  # seconds
DEFAULT_BUFFER_FRAMES = 6
DEFAULT_SEQUENCE_TIMEOUT = 0.5  # seconds between consecutive presses
MIN_SEQUENCE_TIMEOUT = 0.1
SEQUENCE_KEY_SEPARATOR = ","


@dataclass
class TrackedAction:
    action_id: str
    last_pressed_time: float = 0.0
    last_pressed_frame: int = 0
    # Starts consumed: registering must not produce a phantom buffered press.
    consumed: bool = True


@dataclass
class SequenceState:
    target_sequence: list[str]
    timeout: float = DEFAULT_SEQUENCE_TIMEOUT
    name: str | None = None
    # Always a strict prefix of target_sequence.
    current_inputs: list[str] = field(default_factory=list)
    last_input_time: float = 0.0
    evaluated_frame: int = -1
    completed_frame: int = -1

    @property
    def progress(self) -> float:
        if not self.target_sequence:
            return 0.0
        return len(self.current_inputs) / float(len(self.target_sequence))

    def is_stale(self, now: float) -> bool:
        return bool(self.current_inputs) and (now - self.last_input_time) > self.timeout


def _norm(action) -> str:
    return str(action or "").strip().lower()


def _norm_sequence(actions) -> list[str]:
    if isinstance(actions, str):
        return split_inputs(actions)
    return [a for a in (_norm(x) for x in (actions or [])) if a]


def _floor_timeout(timeout) -> float:
    try:
        t = float(timeout)
    except (TypeError, ValueError):
        t = DEFAULT_SEQUENCE_TIMEOUT
    return max(MIN_SEQUENCE_TIMEOUT, t)


def sequence_key(actions) -> str:
    return SEQUENCE_KEY_SEPARATOR.join(_norm_sequence(actions))


class InputBufferTracker:
    """
    Buffered-input and combo tracker, advanced once per frame by a host driver.

    - Owns the tracked-action records (last press time/frame + consumed flag)
    - Owns the sequence states (partial progress + inter-press timeout)
    - `tick()` is the only place presses are observed; everything else reads state
      or flips `consumed`.
    - Emits plain-dict events via an optional callback (WebSocket, etc.)

    Nothing here raises on bad input: unknown actions, empty sequences and untracked
    queries return False / -1 (with a warning where the caller probably made a mistake).
    """

    def __init__(self, input_map: InputMap | None = None, *, clock: Callable[[], float] | None = None):
        # The frame driver ticks from its own thread while the UI socket thread
        # may consume/peek/clear concurrently.
        self._lock = threading.RLock()
        self.input_map = input_map if input_map is not None else InputMap.default()
        self._clock = clock or time.perf_counter

        self._tracked: dict[str, TrackedAction] = {}
        self._sequences: dict[str, SequenceState] = {}

        self._frame = 0
        self._now = 0.0
        self._just_pressed: frozenset[str] = frozenset()

        self._emit: Callable[[dict[str, Any]], None] | None = None

    # -------------------------
    # Emission helpers
    # -------------------------

    def set_emitter(self, emit_func: Callable[[dict[str, Any]], None] | None):
        """Set an event emitter callback. It must be thread-safe."""
        self._emit = emit_func

    def _send(self, msg: dict[str, Any]):
        if self._emit:
            try:
                self._emit(msg)
            except Exception:
                # Never let UI plumbing crash the frame tick
                logger.debug("Emitter raised while sending message", exc_info=True)

    # -------------------------
    # Read-only views
    # -------------------------

    @property
    def current_frame(self) -> int:
        return self._frame

    @property
    def just_pressed(self) -> frozenset[str]:
        return self._just_pressed

    def tracked_actions(self) -> dict[str, TrackedAction]:
        with self._lock:
            return dict(self._tracked)

    def sequences(self) -> dict[str, SequenceState]:
        with self._lock:
            return dict(self._sequences)

    def _now_or_clock(self, now: float | None) -> float:
        return self._clock() if now is None else float(now)

    def set_input_map(self, input_map: InputMap) -> list[str]:
        """
        Swap the input map, dropping tracked actions and sequences it no longer knows.

        Returns the action names and sequence keys that were dropped.
        """
        with self._lock:
            self.input_map = input_map
            dropped = [a for a in self._tracked if not input_map.has_action(a)]
            for a in dropped:
                del self._tracked[a]
            stale = [
                key
                for key, state in self._sequences.items()
                if not all(input_map.has_action(a) for a in state.target_sequence)
            ]
            for key in stale:
                del self._sequences[key]
        if dropped or stale:
            logger.warning("Input map change dropped: %s", ", ".join(dropped + stale))
        return dropped + stale

    # -------------------------
    # Action buffer
    # -------------------------

    def register_action(self, action: str) -> bool:
        name = _norm(action)
        if not self.input_map.has_action(name):
            logger.warning("Cannot buffer unknown input action %r", action)
            return False
        with self._lock:
            # Re-registering resets the record; it is not additive.
            self._tracked[name] = TrackedAction(action_id=name)
        return True

    def unregister_action(self, action: str) -> bool:
        with self._lock:
            return self._tracked.pop(_norm(action), None) is not None

    def is_tracked(self, action: str) -> bool:
        with self._lock:
            return _norm(action) in self._tracked

    def _elapsed_time(self, rec: TrackedAction, now: float | None) -> float:
        return self._now_or_clock(now) - rec.last_pressed_time

    def _elapsed_frames(self, rec: TrackedAction) -> int:
        return self._frame - rec.last_pressed_frame

    def is_buffered(self, action: str, window: float = DEFAULT_BUFFER_WINDOW, *, now: float | None = None) -> bool:
        with self._lock:
            rec = self._tracked.get(_norm(action))
            if rec is None or rec.consumed:
                return False
            return self._elapsed_time(rec, now) <= max(0.0, float(window))

    def is_buffered_frames(self, action: str, frames: int = DEFAULT_BUFFER_FRAMES) -> bool:
        with self._lock:
            rec = self._tracked.get(_norm(action))
            if rec is None or rec.consumed:
                return False
            return self._elapsed_frames(rec) <= max(0, int(frames))

    def consume_buffered_input(
        self, action: str, window: float = DEFAULT_BUFFER_WINDOW, *, now: float | None = None
    ) -> bool:
        with self._lock:
            if not self.is_buffered(action, window, now=now):
                return False
            return self._consume_unlocked(_norm(action))

    def consume_buffered_input_frames(self, action: str, frames: int = DEFAULT_BUFFER_FRAMES) -> bool:
        with self._lock:
            if not self.is_buffered_frames(action, frames):
                return False
            return self._consume_unlocked(_norm(action))

    def _consume_unlocked(self, name: str) -> bool:
        self._tracked[name].consumed = True
        self._send({"type": "action_consumed", "action": name, "frame": self._frame})
        return True

    def peek_buffered_input(self, action: str, window: float = DEFAULT_BUFFER_WINDOW, *, now: float | None = None) -> bool:
        """Same as `is_buffered()`; reads as "look, don't consume" at the call site."""
        return self.is_buffered(action, window, now=now)

    def peek_buffered_input_frames(self, action: str, frames: int = DEFAULT_BUFFER_FRAMES) -> bool:
        return self.is_buffered_frames(action, frames)

    def time_since_pressed(self, action: str, *, now: float | None = None) -> float:
        with self._lock:
            rec = self._tracked.get(_norm(action))
            if rec is None:
                return -1.0
            return self._elapsed_time(rec, now)

    def frames_since_pressed(self, action: str) -> int:
        with self._lock:
            rec = self._tracked.get(_norm(action))
            if rec is None:
                return -1
            return self._elapsed_frames(rec)

    def advance(self, just_pressed: Iterable[str], now: float, frame: int) -> list[str]:
        """
        Record this frame's presses on the tracked actions. Returns the actions updated.

        Normally called from `tick()`; exposed for hosts that run their own sequence logic.
        """
        with self._lock:
            return self._advance_unlocked({_norm(a) for a in just_pressed or ()}, now, frame)

    def _advance_unlocked(self, pressed: set[str] | frozenset[str], now: float, frame: int) -> list[str]:
        updated: list[str] = []
        for name in sorted(pressed):
            rec = self._tracked.get(name)
            if rec is None:
                continue
            rec.last_pressed_time = now
            rec.last_pressed_frame = frame
            rec.consumed = False
            updated.append(name)
            self._send({"type": "action_pressed", "action": name, "frame": frame})
        return updated

    # -------------------------
    # Sequences
    # -------------------------

    def _validate_sequence(self, actions) -> list[str] | None:
        seq = _norm_sequence(actions)
        if not seq:
            logger.warning("Ignoring empty input sequence")
            return None
        unknown = [a for a in seq if not self.input_map.has_action(a)]
        if unknown:
            logger.warning("Input sequence %r uses unknown actions: %s", seq, ", ".join(unknown))
            return None
        return seq

    def register_sequence(self, actions, timeout: float | None = None, *, name: str | None = None) -> bool:
        seq = self._validate_sequence(actions)
        if seq is None:
            return False
        with self._lock:
            self._ensure_sequence(seq, timeout, name=name)
        return True

    def _ensure_sequence(self, seq: list[str], timeout: float | None, *, name: str | None = None) -> SequenceState:
        key = sequence_key(seq)
        state = self._sequences.get(key)
        if state is None:
            state = SequenceState(
                target_sequence=list(seq),
                timeout=_floor_timeout(DEFAULT_SEQUENCE_TIMEOUT if timeout is None else timeout),
                name=name,
            )
            self._sequences[key] = state
        else:
            # Keep progress; only refresh the settings.
            if timeout is not None:
                state.timeout = _floor_timeout(timeout)
            if name:
                state.name = name
        return state

    def unregister_sequence(self, actions) -> bool:
        with self._lock:
            return self._sequences.pop(sequence_key(actions), None) is not None

    def is_sequence_just_completed(self, actions, timeout: float | None = None) -> bool:
        """
        True only on the frame `actions` was completed in order.

        Sequences not registered yet are registered on first use, so this can be polled
        straight from a per-frame update without a setup step.
        """
        seq = self._validate_sequence(actions)
        if seq is None:
            return False
        with self._lock:
            state = self._ensure_sequence(seq, timeout)
            return self._evaluate_sequence(state, self._now)

    def _evaluate_sequence(self, state: SequenceState, now: float) -> bool:
        # At most one evaluation per frame, however many times the sequence is polled.
        if state.evaluated_frame == self._frame:
            return state.completed_frame == self._frame
        state.evaluated_frame = self._frame

        target = state.target_sequence
        # Declared order breaks ties when several of the sequence's actions land on one frame.
        new_input = next((a for a in target if a in self._just_pressed), None)
        if new_input is None:
            return False

        if state.is_stale(now):
            state.current_inputs = []

        # Any of the sequence's own actions refreshes the timer, matching or not.
        state.last_input_time = now

        expected = len(state.current_inputs)
        if expected < len(target) and target[expected] == new_input:
            state.current_inputs.append(new_input)
            if len(state.current_inputs) == len(target):
                state.current_inputs = []
                state.completed_frame = self._frame
                self._send(
                    {
                        "type": "sequence_complete",
                        "sequence": sequence_key(target),
                        "name": state.name or "",
                        "frame": self._frame,
                    }
                )
                return True
        elif new_input == target[0]:
            # Wrong step, but it opens a fresh attempt.
            state.current_inputs = [new_input]
        else:
            state.current_inputs = []

        self._send(
            {
                "type": "sequence_progress",
                "sequence": sequence_key(target),
                "name": state.name or "",
                "progress": state.progress,
            }
        )
        return False

    def get_sequence_progress(self, actions, *, now: float | None = None) -> float:
        seq = _norm_sequence(actions)
        if not seq:
            logger.warning("Cannot report progress for an empty input sequence")
            return -1.0
        with self._lock:
            state = self._sequences.get(sequence_key(seq))
            if state is None:
                return 0.0
            if state.is_stale(self._now_or_clock(now)):
                state.current_inputs = []
            return state.progress

    def expire_stale(self, now: float | None = None) -> list[str]:
        """Reset every sequence whose partial progress has gone silent past its timeout."""
        with self._lock:
            return self._expire_stale_unlocked(self._now_or_clock(now))

    def _expire_stale_unlocked(self, now: float) -> list[str]:
        expired: list[str] = []
        for key, state in self._sequences.items():
            if state.is_stale(now):
                state.current_inputs = []
                expired.append(key)
                self._send({"type": "sequence_reset", "sequence": key, "name": state.name or ""})
        return expired

    # -------------------------
    # Frame tick
    # -------------------------

    def tick(self, just_pressed: Iterable[str] = (), now: float | None = None, frame: int | None = None) -> list[str]:
        # Thread-safe wrapper
        with self._lock:
            return self._tick_unlocked(just_pressed, now, frame)

    def _tick_unlocked(self, just_pressed: Iterable[str], now: float | None, frame: int | None) -> list[str]:
        """
        Advance one frame.

        `just_pressed` is the set of actions the host saw go down this frame. Order:
        1) tracked actions record the press (buffer becomes available)
        2) every registered sequence consumes the frame's presses
        3) sequences idle past their timeout are reset, even without another press

        Frame numbers must increase; a repeated or older `frame` is logged and
        treated as the next frame so its presses still reach the sequences.

        Returns the keys of the sequences completed on this frame.
        """
        now = self._now_or_clock(now)
        next_frame = self._frame + 1
        if frame is not None:
            frame = int(frame)
            if frame > self._frame:
                next_frame = frame
            else:
                logger.warning("Frame %d does not follow frame %d; ticking as frame %d", frame, self._frame, next_frame)
        self._frame = next_frame
        self._now = now
        self._just_pressed = frozenset(a for a in (_norm(x) for x in just_pressed or ()) if a)

        self._advance_unlocked(self._just_pressed, now, self._frame)

        completed: list[str] = []
        for key, state in list(self._sequences.items()):
            if self._evaluate_sequence(state, now):
                completed.append(key)

        self._expire_stale_unlocked(now)
        return completed

    def clear_all(self):
        """Forget every tracked action and sequence (e.g. on scene change)."""
        with self._lock:
            self._tracked.clear()
            self._sequences.clear()
            self._just_pressed = frozenset()
        self._send({"type": "buffers_cleared"})
