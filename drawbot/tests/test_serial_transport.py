"""Tests for the pyserial transport.

A fake port object replaces ``serial.Serial``; the listener thread runs
for real against it.
"""

from __future__ import annotations

import queue
from typing import Any

import pytest
import serial

from drawbot.configs.loader import ConnectionConfig
from drawbot.errors import SessionActiveError, TransportError
from drawbot.hardware.transport import (
    ConnectionChanged,
    DataReceived,
    SerialTransport,
)


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeSerial:
    """Minimal stand-in for :class:`serial.Serial`."""

    def __init__(self, port: str, baudrate: int, **kwargs: Any) -> None:
        self.port = port
        self.baudrate = baudrate
        self.kwargs = kwargs
        self.is_open = True
        self.written: list[bytes] = []
        self.incoming: queue.Queue[bytes] = queue.Queue()
        self.fail_read: Exception | None = None
        self.fail_write: Exception | None = None

    def readline(self) -> bytes:
        if self.fail_read is not None:
            raise self.fail_read
        try:
            return self.incoming.get(timeout=0.01)
        except queue.Empty:
            return b""

    def write(self, data: bytes) -> int:
        if self.fail_write is not None:
            raise self.fail_write
        self.written.append(data)
        return len(data)

    def flush(self) -> None:
        pass

    def close(self) -> None:
        self.is_open = False


class FakeFactory:
    def __init__(self) -> None:
        self.port: FakeSerial | None = None
        self.error: Exception | None = None

    def __call__(self, port: str, baudrate: int, **kwargs: Any) -> FakeSerial:
        if self.error is not None:
            raise self.error
        self.port = FakeSerial(port, baudrate, **kwargs)
        return self.port


def _next_event(link: SerialTransport, kind: type, timeout: float = 2.0) -> Any:
    while True:
        event = link.events.get(timeout=timeout)
        if isinstance(event, kind):
            return event


@pytest.fixture()
def factory() -> FakeFactory:
    return FakeFactory()


@pytest.fixture()
def link(factory: FakeFactory):
    t = SerialTransport(
        "/dev/ttyFAKE", 9600, read_timeout_s=0.05, write_timeout_s=1.0,
        serial_factory=factory,
    )
    t.connect()
    yield t
    t.disconnect()


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------


class TestConnection:
    def test_opens_port(self, link: SerialTransport, factory: FakeFactory) -> None:
        assert link.is_connected
        assert factory.port is not None
        assert factory.port.port == "/dev/ttyFAKE"
        assert factory.port.baudrate == 9600
        assert factory.port.kwargs == {"timeout": 0.05, "write_timeout": 1.0}
        assert _next_event(link, ConnectionChanged) == ConnectionChanged(True)

    def test_open_failure(self, factory: FakeFactory) -> None:
        factory.error = serial.SerialException("port busy")
        t = SerialTransport("/dev/ttyFAKE", serial_factory=factory)
        with pytest.raises(TransportError, match="port busy"):
            t.connect()
        assert not t.is_connected

    def test_device_override(self, factory: FakeFactory) -> None:
        t = SerialTransport("/dev/ttyA", serial_factory=factory)
        t.connect("/dev/ttyB")
        try:
            assert factory.port is not None and factory.port.port == "/dev/ttyB"
        finally:
            t.disconnect()

    def test_disconnect(self, link: SerialTransport, factory: FakeFactory) -> None:
        link.disconnect()
        assert not link.is_connected
        assert factory.port is not None and not factory.port.is_open
        event = _next_event(link, ConnectionChanged)
        while event.connected:
            event = _next_event(link, ConnectionChanged)
        assert event.reason == "closed"

    def test_disconnect_twice(self, link: SerialTransport) -> None:
        link.disconnect()
        link.disconnect()

    def test_context_manager(self, factory: FakeFactory) -> None:
        with SerialTransport("/dev/ttyFAKE", serial_factory=factory) as t:
            assert t.is_connected
        assert not t.is_connected

    def test_from_config(self) -> None:
        cfg = ConnectionConfig(
            port="/dev/rfcomm0", baudrate=115200,
            read_timeout_s=0.1, write_timeout_s=3.0,
        )
        t = SerialTransport.from_config(cfg)
        assert (t.port, t.baudrate, t.write_timeout_s) == ("/dev/rfcomm0", 115200, 3.0)


# ---------------------------------------------------------------------------
# I/O
# ---------------------------------------------------------------------------


class TestIO:
    def test_send_appends_newline(self, link: SerialTransport, factory: FakeFactory) -> None:
        link.send("G1 X1")
        assert factory.port is not None
        assert factory.port.written == [b"G1 X1\n"]

    def test_send_not_connected(self) -> None:
        t = SerialTransport("/dev/ttyFAKE")
        with pytest.raises(TransportError, match="Not connected"):
            t.send("G1 X1")

    def test_write_failure(self, link: SerialTransport, factory: FakeFactory) -> None:
        assert factory.port is not None
        factory.port.fail_write = serial.SerialTimeoutException("write timeout")
        with pytest.raises(TransportError, match="write timeout"):
            link.send("G1 X1")

    def test_received_lines(self, link: SerialTransport, factory: FakeFactory) -> None:
        assert factory.port is not None
        factory.port.incoming.put(b"ok\r\n")
        factory.port.incoming.put(b"\r\n")
        factory.port.incoming.put(b"error:20\n")
        assert _next_event(link, DataReceived) == DataReceived("ok")
        assert _next_event(link, DataReceived) == DataReceived("error:20")

    def test_read_failure_reports_lost_link(
        self, link: SerialTransport, factory: FakeFactory,
    ) -> None:
        assert factory.port is not None
        factory.port.fail_read = serial.SerialException("device disconnected")
        event = _next_event(link, ConnectionChanged)
        while event.connected:
            event = _next_event(link, ConnectionChanged)
        assert "device disconnected" in event.reason
        assert not link.is_connected


class TestOwnership:
    def test_claim_and_release(self) -> None:
        t = SerialTransport("/dev/ttyFAKE")
        a, b = object(), object()
        t.claim(a)
        t.claim(a)
        with pytest.raises(SessionActiveError):
            t.claim(b)
        t.release(b)
        assert t.owner is a
        t.release(a)
        t.claim(b)
        assert t.owner is b
