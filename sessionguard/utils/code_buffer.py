"""
Fixed-Length Code Entry Buffer.

Backs every MFA input (TOTP codes, recovery codes, email verification
codes): one character per slot, focus auto-advances on entry, backspace
on an empty slot steps back and clears the previous one, and a paste is
only accepted when it fills every slot exactly.
"""

from __future__ import annotations

import string
from typing import Optional

from sessionguard.models.enums import CodeMode

_DIGITS: frozenset[str] = frozenset(string.digits)
_ALPHANUMERIC: frozenset[str] = frozenset(string.ascii_letters + string.digits)


class CodeBuffer:
    """Slot-per-character code accumulator.

    Parameters
    ----------
    length:
        Number of slots (must be at least 1).
    mode:
        ``CodeMode.NUMERIC`` accepts digits only; ``CodeMode.ALPHANUMERIC``
        accepts ASCII letters and digits and stores letters upper-cased.
    """

    def __init__(self, length: int = 6, mode: CodeMode = CodeMode.NUMERIC) -> None:
        self._length: int = self._check_length(length)
        self._mode: CodeMode = CodeMode(mode)
        self._slots: list[str] = [""] * self._length
        self.focus: int = 0

    @property
    def length(self) -> int:
        return self._length

    @property
    def mode(self) -> CodeMode:
        return self._mode

    @property
    def slots(self) -> tuple[str, ...]:
        return tuple(self._slots)

    def set_length(self, length: int) -> None:
        self._length = self._check_length(length)
        self.reset()

    def set_mode(self, mode: CodeMode) -> None:
        self._mode = CodeMode(mode)
        self.reset()

    def put(self, index: int, char: str) -> bool:
        """Store *char* in slot *index*.

        Returns ``True`` when the character was accepted.  Characters
        outside the active class and out-of-range indexes are ignored.
        """
        if not 0 <= index < self._length:
            return False
        normalized = self._normalize(char)
        if normalized is None:
            return False

        self._slots[index] = normalized
        if index < self._length - 1:
            self.focus = index + 1
        else:
            self.focus = index
        return True

    def clear(self, index: int) -> None:
        """Backspace at slot *index*."""
        if not 0 <= index < self._length:
            return
        if self._slots[index]:
            self._slots[index] = ""
            self.focus = index
        elif index > 0:
            self._slots[index - 1] = ""
            self.focus = index - 1

    def paste(self, raw: str) -> bool:
        """Fill every slot from *raw* after filtering it to the active class.

        Anything that does not filter down to exactly ``length``
        characters is ignored; there is no partial fill.
        """
        filtered = [c for c in (self._normalize(ch) for ch in raw) if c is not None]
        if len(filtered) != self._length:
            return False
        self._slots = filtered
        self.focus = self._length - 1
        return True

    def reset(self) -> None:
        self._slots = [""] * self._length
        self.focus = 0

    def value(self) -> str:
        return "".join(self._slots)

    def is_complete(self) -> bool:
        return all(self._slots)

    def _normalize(self, char: str) -> Optional[str]:
        if len(char) != 1:
            return None
        if self._mode is CodeMode.NUMERIC:
            return char if char in _DIGITS else None
        return char.upper() if char in _ALPHANUMERIC else None

    @staticmethod
    def _check_length(length: int) -> int:
        if length < 1:
            raise ValueError("Code length must be at least 1")
        return length

    def __repr__(self) -> str:
        # Contents are credentials; never include them.
        return f"CodeBuffer(length={self._length}, mode={self._mode.value}, complete={self.is_complete()})"
