"""Serial keypad helper for Mopii-style button boxes.

The keypad sends ASCII digits.  :class:`SerialKeypadSource` maps them onto the
experiment's response keys so the keypad can take part in the response race
next to the keyboard and the touch screen.
"""
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

import serial
from psychopy import logging

from .engine import PollingSource

DEFAULT_KEY_MAP: Dict[str, str] = {"1": "q", "2": "p"}
MAX_BUFFER: int = 128


class SerialKeypadSource(PollingSource):
    """Non-blocking reader for a keypad that sends ASCII digits over serial."""

    name = "serial_keypad"

    def __init__(
        self,
        port: str,
        baudrate: int = 9600,
        *,
        key_map: Optional[Mapping[str, str]] = None,
        encoding: str = "ascii",
        device: Any = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.port = port
        self.baudrate = baudrate
        self.key_map = dict(key_map or DEFAULT_KEY_MAP)
        self.encoding = encoding
        if device is None:
            device = serial.Serial(port=port, baudrate=baudrate, timeout=0)
        self._device = device
        self._buffer = ""

    @classmethod
    def open_or_none(
        cls, port: Optional[str], baudrate: int = 9600, **kwargs: Any
    ) -> Optional["SerialKeypadSource"]:
        """Open the keypad on ``port``; log a warning and return ``None`` if that fails."""

        if not port:
            return None
        try:
            return cls(port, baudrate, **kwargs)
        except serial.SerialException as exc:
            logging.warning(f"Could not open serial keypad on {port}: {exc}")
            return None

    def close(self) -> None:
        """Close the underlying serial port."""

        self.unbind()
        self._device.close()

    def reset(self) -> None:
        self._read_all()
        self._buffer = ""

    def poll(self) -> Optional[str]:
        """Return the mapped key of the first known digit received since the last poll."""

        self._buffer += self._read_all()
        for idx, char in enumerate(self._buffer):
            if char in self.key_map:
                self._buffer = self._buffer[idx + 1 :]
                return self.key_map[char]
        # nothing usable; keep the buffer bounded
        if len(self._buffer) > MAX_BUFFER:
            self._buffer = self._buffer[-MAX_BUFFER // 2 :]
        return None

    def _read_all(self) -> str:
        """Read and decode any bytes currently waiting on the serial buffer."""

        try:
            waiting = self._device.in_waiting
            data = self._device.read(waiting) if waiting else b""
        except serial.SerialException as exc:
            logging.warning(f"Serial keypad read failed: {exc}")
            return ""
        if not data:
            return ""
        return data.decode(self.encoding, errors="ignore")


__all__ = ["DEFAULT_KEY_MAP", "SerialKeypadSource"]
