"""Game controller state tracking: buttons, stick axes, plugging and paks."""

from __future__ import annotations

from dataclasses import dataclass, field

PAK_INSERTED = 0x01
PAK_NOT_INSERTED = 0x02


def _int8(value: int) -> int:
    return ((value + 0x80) & 0xFF) - 0x80


@dataclass
class _PortState:
    present: bool = False
    flags: int = 0


@dataclass
class _InputState:
    down: int = 0
    x: int = 0
    y: int = 0


@dataclass
class Controller:
    """State of one controller port, comparing the latest poll with the one before."""

    number: int = 0
    _port: _PortState = field(default_factory=_PortState, repr=False)
    _last_port: _PortState = field(default_factory=_PortState, repr=False)
    _input: _InputState = field(default_factory=_InputState, repr=False)
    _last_input: _InputState = field(default_factory=_InputState, repr=False)

    def update(self, present: bool, flags: int, buttons: int, x: int, y: int) -> None:
        """Record a new poll result; the current state becomes the previous one."""
        if not -128 <= x <= 127 or not -128 <= y <= 127:
            raise ValueError("stick axes must fit into a signed byte")
        self._last_port = self._port
        self._port = _PortState(bool(present), flags & 0xFF)
        self._last_input = self._input
        self._input = _InputState(buttons, x, y)

    def down(self) -> int:
        return self._input.down

    def changed(self) -> int:
        return self._input.down ^ self._last_input.down

    def pressed(self) -> int:
        return self.changed() & self._input.down

    def released(self) -> int:
        return self.changed() & self._last_input.down

    def x(self) -> int:
        return self._input.x

    def y(self) -> int:
        return self._input.y

    def dx(self) -> int:
        return _int8(self._input.x - self._last_input.x)

    def dy(self) -> int:
        return _int8(self._input.y - self._last_input.y)

    def present(self) -> bool:
        return self._port.present

    def plugged(self) -> bool:
        return self._port.present and not self._last_port.present

    def unplugged(self) -> bool:
        return not self._port.present and self._last_port.present

    def pak_inserted(self) -> bool:
        return bool(self._port.flags & PAK_INSERTED) and not self._last_port.flags & PAK_INSERTED

    def pak_removed(self) -> bool:
        return bool(self._port.flags & PAK_NOT_INSERTED) and bool(
            self._last_port.flags & PAK_INSERTED
        )