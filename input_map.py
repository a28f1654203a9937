from __future__ import annotations

from dataclasses import dataclass, field

# action -> key tokens (as produced by `normalize_key()` / the mouse normalizer)
DEFAULT_BINDINGS: dict[str, list[str]] = {
    "up": ["w", "up"],
    "down": ["s", "down"],
    "left": ["a", "left"],
    "right": ["d", "right"],
    "jump": ["space"],
    "dash": ["shift", "rmb"],
    "attack": ["j", "lmb"],
    "special": ["k"],
    "interact": ["e"],
}


def normalize_key(key) -> str:
    """
    Normalize pynput keyboard events to our internal string tokens.

    pynput uses a mix of types:
    - KeyCode: usually has .char (may be None for non-character keys)
    - Key: has .name (e.g. "space", "shift")
    Some edge cases on Windows can produce KeyCode with char=None and no .name.
    This function must never throw (listener callbacks should not crash).
    """
    try:
        ch = getattr(key, "char", None)
        if isinstance(ch, str) and ch:
            return ch.lower()

        name = getattr(key, "name", None)
        if isinstance(name, str) and name:
            # "shift_r" / "ctrl_l" -> bind both sides to the same token
            return name.lower().removesuffix("_l").removesuffix("_r")

        # Fallback: stringify.
        # - "Key.space" -> "space"
        # - "'a'" -> "a"
        s = str(key)
        s = s.replace("Key.", "").strip().strip("'").strip('"')
        return s.lower()
    except Exception:
        return ""


def split_inputs(raw: str) -> list[str]:
    """
    Split a user-entered sequence string into action tokens.

    Accepts commas, `>` and whitespace as separators, so all of these are equivalent:

    - `split_inputs("down, right, attack") -> ["down", "right", "attack"]`
    - `split_inputs("down > right > attack") -> ["down", "right", "attack"]`
    - `split_inputs("down right attack") -> ["down", "right", "attack"]`
    """
    s = (raw or "").replace(">", ",")
    out: list[str] = []
    for part in s.split(","):
        for token in part.split():
            token = token.strip().lower()
            if token:
                out.append(token)
    return out


@dataclass
class InputMap:
    """
    The set of input actions the host knows about, and which raw keys trigger them.

    The tracker only asks two things of it: whether an action exists (registration
    is rejected otherwise) and which actions a frame's raw key presses map to.
    """

    bindings: dict[str, set[str]] = field(default_factory=dict)

    @classmethod
    def from_bindings(cls, bindings: dict[str, list[str]] | None) -> InputMap:
        imap = cls()
        for action, keys in (bindings or {}).items():
            imap.add_action(action, keys)
        return imap

    @classmethod
    def default(cls) -> InputMap:
        return cls.from_bindings(DEFAULT_BINDINGS)

    def has_action(self, action: str) -> bool:
        return (action or "").strip().lower() in self.bindings

    def add_action(self, action: str, keys=None) -> bool:
        name = (action or "").strip().lower()
        if not name:
            return False
        bound = self.bindings.setdefault(name, set())
        for k in keys or []:
            k = str(k or "").strip().lower()
            if k:
                bound.add(k)
        return True

    def remove_action(self, action: str) -> bool:
        return self.bindings.pop((action or "").strip().lower(), None) is not None

    def actions(self) -> list[str]:
        return sorted(self.bindings)

    def actions_for_key(self, key: str) -> set[str]:
        k = (key or "").strip().lower()
        if not k:
            return set()
        # An action's own name always counts as a binding for itself
        # (lets hosts that already speak in actions skip the key layer).
        return {a for a, keys in self.bindings.items() if k in keys or k == a}

    def actions_for_keys(self, keys) -> set[str]:
        out: set[str] = set()
        for k in keys or []:
            out |= self.actions_for_key(k)
        return out

    def to_dict(self) -> dict[str, list[str]]:
        return {a: sorted(keys) for a, keys in sorted(self.bindings.items())}
