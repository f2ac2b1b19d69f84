"""
Tests for the serial keypad response source, using an in-memory device.
"""
from __future__ import annotations

import asyncio

import serial

from color_toj.engine import ResponseRace
from color_toj.serial_keypad import SerialKeypadSource

from .conftest import FakeClock


class FakeSerialDevice:
    """Byte buffer standing in for a ``serial.Serial`` port."""

    def __init__(self) -> None:
        self.pending = b""
        self.closed = False

    def feed(self, data: bytes) -> None:
        self.pending += data

    @property
    def in_waiting(self) -> int:
        return len(self.pending)

    def read(self, size: int) -> bytes:
        data, self.pending = self.pending[:size], self.pending[size:]
        return data

    def close(self) -> None:
        self.closed = True


class BrokenSerialDevice(FakeSerialDevice):
    @property
    def in_waiting(self) -> int:
        raise serial.SerialException("device disconnected")


def keypad(device=None):
    return SerialKeypadSource("COM1", device=device or FakeSerialDevice(), interval_s=0.0)


def test_digits_map_to_response_keys():
    device = FakeSerialDevice()
    source = keypad(device)

    device.feed(b"x1\r\n2")

    assert source.poll() == "q"
    assert source.poll() == "p"
    assert source.poll() is None


def test_custom_key_map():
    device = FakeSerialDevice()
    source = SerialKeypadSource("COM1", key_map={"7": "left"}, device=device)

    device.feed(b"17")

    assert source.poll() == "left"


def test_reset_discards_pending_input():
    device = FakeSerialDevice()
    source = keypad(device)
    device.feed(b"1")

    source.reset()

    assert source.poll() is None


def test_noise_does_not_hide_later_digits():
    device = FakeSerialDevice()
    source = keypad(device)

    device.feed(b"x" * 500)
    assert source.poll() is None
    device.feed(b"2")

    assert source.poll() == "p"


def test_read_errors_are_reported_as_no_input():
    assert keypad(BrokenSerialDevice()).poll() is None


def test_open_or_none_without_port():
    assert SerialKeypadSource.open_or_none(None) is None
    assert SerialKeypadSource.open_or_none("/dev/no-such-keypad") is None


def test_keypad_takes_part_in_the_response_race():
    device = FakeSerialDevice()
    source = keypad(device)
    race = ResponseRace(FakeClock())

    async def scenario():
        task = asyncio.ensure_future(race.run([source], valid_keys=("q", "p")))
        await asyncio.sleep(0)
        device.feed(b"2")
        return await task

    captured = asyncio.run(scenario())

    assert (captured.key, captured.source) == ("p", "serial_keypad")
    assert not source.is_bound


def test_close_releases_the_device():
    device = FakeSerialDevice()
    source = keypad(device)

    source.close()

    assert device.closed
