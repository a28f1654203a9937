from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from input_buffer import DEFAULT_SEQUENCE_TIMEOUT
from input_map import InputMap, split_inputs

logger = logging.getLogger(__name__)

CONFIG_VERSION = 1


def _as_float(x: Any, default: float) -> float:
    try:
        return float(x)
    except Exception:
        return float(default)


def _clean_bindings(obj: Any) -> dict[str, list[str]]:
    out: dict[str, list[str]] = {}
    if not isinstance(obj, dict):
        return out
    for k, v in obj.items():
        action = str(k).strip().lower()
        if not action:
            continue
        if isinstance(v, str):
            keys = split_inputs(v)
        elif isinstance(v, list):
            keys = [str(x).strip().lower() for x in v if str(x).strip()]
        else:
            keys = []
        out[action] = keys
    return out


def load_config(tracker, path: Path) -> None:
    """
    Load bindings, buffered actions and named sequences from `path` into the tracker.

    This function owns JSON schema compatibility and sanitization. A missing file
    leaves the tracker as it is; a broken one resets it to the default input map.
    """
    try:
        if not path.exists():
            return

        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("config root must be an object")

        # Bindings first: registration below is validated against them.
        bindings = data.get("bindings")
        if bindings is not None:
            tracker.set_input_map(InputMap.from_bindings(_clean_bindings(bindings)))

        buffered = data.get("buffered_actions", [])
        if isinstance(buffered, list):
            for action in buffered:
                tracker.register_action(str(action))

        # sequences: {key: {"actions": [...] | "a, b", "timeout": s, "name": str}}
        seqs = data.get("sequences", {})
        if isinstance(seqs, dict):
            for key, v in seqs.items():
                if isinstance(v, dict):
                    actions = v.get("actions") or key
                    timeout = _as_float(v.get("timeout"), DEFAULT_SEQUENCE_TIMEOUT)
                    name = str(v.get("name") or "").strip() or None
                else:
                    actions, timeout, name = key, DEFAULT_SEQUENCE_TIMEOUT, None
                tracker.register_sequence(actions, timeout, name=name)
    except Exception:
        logger.exception("Failed to load input config; resetting to safe defaults")
        tracker.clear_all()
        tracker.set_input_map(InputMap.default())


def save_config(tracker, path: Path) -> None:
    """
    Persist bindings, buffered actions and sequences (not their progress) to `path`.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "version": CONFIG_VERSION,
            "bindings": tracker.input_map.to_dict(),
            "buffered_actions": sorted(tracker.tracked_actions()),
            "sequences": {
                key: {
                    "actions": list(state.target_sequence),
                    "timeout": state.timeout,
                    "name": state.name or "",
                }
                for key, state in sorted(tracker.sequences().items())
            },
        }
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    except Exception:
        logger.exception("Failed to save input config")


def save_data(path: Path, data: Any) -> bool:
    """Write a JSON save file. Returns False (and logs) instead of raising."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        return True
    except Exception:
        logger.exception("Failed to write save file %s", path)
        return False


def load_data(path: Path, default: Any = None) -> Any:
    """Read a JSON save file, falling back to `default` when it is missing or unreadable."""
    try:
        if not path.exists():
            return default
        return json.loads(path.read_text(encoding="utf-8"))
    except Exception:
        logger.exception("Failed to read save file %s", path)
        return default
