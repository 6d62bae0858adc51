from __future__ import annotations

from dataclasses import dataclass

_ALIASES = {
    "escape": "esc",
    "return": "enter",
    "bs": "backspace",
    " ": "space",
    "del": "delete",
}


@dataclass(frozen=True)
class Key:
    """One keystroke as delivered by the terminal front end.

    ``name`` is either a single character (case preserved, so ``G`` is a
    shifted ``g``) or a named key such as ``enter``, ``esc`` or ``backspace``.
    """

    name: str
    ctrl: bool = False
    shift: bool = False
    alt: bool = False

    @classmethod
    def parse(cls, text: str) -> Key:
        """Parse chords such as ``ctrl+shift+m``, ``shift+enter`` or ``G``."""
        if text in ("+", " "):
            return cls(_ALIASES.get(text, text))
        *mods, name = text.split("+")
        mods = [m.strip().lower() for m in mods]
        ctrl = "ctrl" in mods
        shift = "shift" in mods
        alt = "alt" in mods
        name = _ALIASES.get(name.lower(), name) if len(name) > 1 else name
        if len(name) == 1 and shift and name.isalpha() and not ctrl:
            name, shift = name.upper(), False
        return cls(name=name, ctrl=ctrl, shift=shift, alt=alt)

    @property
    def chord(self) -> str:
        parts = [m for m, on in (("ctrl", self.ctrl), ("shift", self.shift), ("alt", self.alt)) if on]
        name = self.name.lower() if self.ctrl and len(self.name) == 1 else self.name
        return "+".join([*parts, name])

    @property
    def char(self) -> str | None:
        """The character this key types, or None for commands and named keys."""
        if self.ctrl or self.alt:
            return None
        if self.name == "space":
            return " "
        if len(self.name) == 1 and self.name.isprintable():
            return self.name
        return None

    @property
    def is_digit(self) -> bool:
        return self.char is not None and self.char.isdigit()

    def __str__(self) -> str:
        return self.chord
