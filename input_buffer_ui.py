from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from input_buffer import DEFAULT_BUFFER_WINDOW


@dataclass
class Status:
    text: str
    color: str  # ready|buffered|progress|neutral


def _format_s_brief(s: float | int | None) -> str:
    if s is None or s < 0:
        return "—"
    if s < 1.0:
        return f"{s * 1000:.0f}ms"
    return f"{s:.2f}s"


def tracked_actions(tracker, *, window: float = DEFAULT_BUFFER_WINDOW) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    for name, rec in sorted(tracker.tracked_actions().items()):
        out.append(
            {
                "action": name,
                "consumed": bool(rec.consumed),
                "buffered": tracker.peek_buffered_input(name, window),
                "last_pressed_frame": int(rec.last_pressed_frame),
                "since": _format_s_brief(tracker.time_since_pressed(name)) if rec.last_pressed_frame else "—",
            }
        )
    return out


def sequences(tracker) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    for key, state in sorted(tracker.sequences().items()):
        # Progress first: the query resets stale attempts, which `matched` must reflect.
        progress = tracker.get_sequence_progress(state.target_sequence)
        out.append(
            {
                "sequence": key,
                "name": state.name or "",
                "actions": list(state.target_sequence),
                "matched": len(state.current_inputs),
                "progress": progress,
                "timeout_ms": int(round(state.timeout * 1000)),
            }
        )
    return out


def get_status(tracker, *, window: float = DEFAULT_BUFFER_WINDOW) -> Status:
    buffered = [a["action"] for a in tracked_actions(tracker, window=window) if a["buffered"]]
    if buffered:
        return Status(text="Buffered: " + ", ".join(buffered), color="buffered")

    in_progress = [s for s in sequences(tracker) if s["matched"] > 0]
    if in_progress:
        best = max(in_progress, key=lambda s: s["progress"])
        label = best["name"] or best["sequence"]
        return Status(text=f"{label}: {best['matched']}/{len(best['actions'])}", color="progress")

    if not tracker.tracked_actions() and not tracker.sequences():
        return Status(text="Nothing tracked", color="neutral")
    return Status(text="Ready", color="ready")


def init_payload(tracker) -> dict[str, Any]:
    st = get_status(tracker)
    return {
        "type": "init",
        "frame": tracker.current_frame,
        "actions": tracker.input_map.to_dict(),
        "tracked": tracked_actions(tracker),
        "sequences": sequences(tracker),
        "status": st.text,
        "color": st.color,
    }
