"""Line-oriented device link.

Handles:
    - Serial connection through pyserial (``SerialTransport``)
    - A listener thread turning received lines into events
    - Connection-state events (link opened, closed or lost)
    - Ownership: one transmission session per transport at a time

Everything the device says, and every change of link state, lands on
``Transport.events`` as :class:`DataReceived` or
:class:`ConnectionChanged`.  The stream controller drains that queue on
its own tick, so no callback ever runs on the listener thread.
"""

from __future__ import annotations

import logging
import queue
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable

import serial

from drawbot.configs.loader import ConnectionConfig
from drawbot.errors import SessionActiveError, TransportError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class DataReceived:
    """One line received from the device, line terminator removed."""

    line: str


@dataclass(frozen=True, slots=True)
class ConnectionChanged:
    """Link opened or closed.  ``reason`` is empty for a clean change."""

    connected: bool
    reason: str = ""


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------


class Transport(ABC):
    """Abstract line transport.

    Subclasses implement :meth:`connect`, :meth:`send`,
    :meth:`disconnect` and :attr:`is_connected`, and report incoming
    data through :meth:`post`.
    """

    def __init__(self) -> None:
        self.events: queue.Queue[Any] = queue.Queue()
        self._owner: object | None = None
        self._owner_lock = threading.Lock()

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """True while the link is open."""

    @abstractmethod
    def connect(self, device: str | None = None) -> None:
        """Open the link; raises :class:`TransportError` on failure."""

    @abstractmethod
    def send(self, line: str) -> None:
        """Write one line (terminator appended).

        Raises
        ------
        TransportError
            Link closed or write failed.
        """

    @abstractmethod
    def disconnect(self) -> None:
        """Close the link.  Safe to call when already closed."""

    def post(self, event: Any) -> None:
        """Queue an event for the session owning this transport."""
        self.events.put(event)

    # -- session ownership ---------------------------------------------

    @property
    def owner(self) -> object | None:
        return self._owner

    def claim(self, owner: object) -> None:
        """Reserve the transport for *owner*'s session."""
        with self._owner_lock:
            if self._owner is not None and self._owner is not owner:
                raise SessionActiveError(
                    "Transport already carries an active session"
                )
            self._owner = owner

    def release(self, owner: object) -> None:
        with self._owner_lock:
            if self._owner is owner:
                self._owner = None

    def __enter__(self) -> Transport:
        self.connect()
        return self

    def __exit__(self, *args: Any) -> None:
        self.disconnect()


# ---------------------------------------------------------------------------
# Serial implementation
# ---------------------------------------------------------------------------


class SerialTransport(Transport):
    """Transport over a serial port.

    Parameters
    ----------
    port : str
        Device path, e.g. ``/dev/ttyUSB0`` or ``COM3``.
    baudrate : int
        Line speed.
    read_timeout_s : float
        ``readline`` timeout; bounds how long :meth:`disconnect` waits
        for the listener to notice the stop flag.
    write_timeout_s : float
        Blocking-write timeout; an expired write raises
        :class:`TransportError`.
    serial_factory : callable
        Constructor for the port object.  Defaults to
        :class:`serial.Serial`.

    Examples
    --------
    >>> with SerialTransport("/dev/ttyUSB0", 115200) as link:
    ...     link.send("G0 X10 Y10")
    """

    def __init__(
        self,
        port: str,
        baudrate: int = 115200,
        read_timeout_s: float = 0.1,
        write_timeout_s: float = 2.0,
        serial_factory: Callable[..., Any] | None = None,
    ) -> None:
        super().__init__()
        self.port = port
        self.baudrate = baudrate
        self.read_timeout_s = read_timeout_s
        self.write_timeout_s = write_timeout_s
        self._factory = serial_factory or serial.Serial
        self._serial: Any | None = None
        self._write_lock = threading.Lock()
        self._listener: threading.Thread | None = None
        self._stop = threading.Event()

    @classmethod
    def from_config(cls, cfg: ConnectionConfig) -> SerialTransport:
        return cls(
            port=cfg.port,
            baudrate=cfg.baudrate,
            read_timeout_s=cfg.read_timeout_s,
            write_timeout_s=cfg.write_timeout_s,
        )

    @property
    def is_connected(self) -> bool:
        ser = self._serial
        return ser is not None and bool(getattr(ser, "is_open", True))

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def connect(self, device: str | None = None) -> None:
        """Open the serial port and start the listener thread.

        Parameters
        ----------
        device : str | None
            Overrides the port given at construction.
        """
        if self.is_connected:
            return
        if device is not None:
            self.port = device
        try:
            self._serial = self._factory(
                self.port,
                self.baudrate,
                timeout=self.read_timeout_s,
                write_timeout=self.write_timeout_s,
            )
        except (serial.SerialException, OSError, ValueError) as exc:
            self._serial = None
            raise TransportError(
                f"Cannot open {self.port} at {self.baudrate} baud: {exc}"
            ) from exc

        logger.info("Connected to %s at %d baud", self.port, self.baudrate)
        self._stop.clear()
        self._listener = threading.Thread(
            target=self._listen, daemon=True, name="drawbot-serial-rx",
        )
        self._listener.start()
        self.post(ConnectionChanged(connected=True))

    def disconnect(self) -> None:
        """Stop the listener and close the port."""
        if self._serial is None:
            return
        self._stop.set()
        if (
            self._listener is not None
            and self._listener is not threading.current_thread()
        ):
            self._listener.join(timeout=2.0)
        self._listener = None
        self._close_port()
        logger.info("Disconnected from %s", self.port)
        self.post(ConnectionChanged(connected=False, reason="closed"))

    def _close_port(self) -> None:
        ser, self._serial = self._serial, None
        if ser is None:
            return
        try:
            ser.close()
        except (serial.SerialException, OSError) as exc:
            logger.debug("Error closing %s: %s", self.port, exc)

    # ------------------------------------------------------------------
    # I/O
    # ------------------------------------------------------------------

    def send(self, line: str) -> None:
        ser = self._serial
        if ser is None:
            raise TransportError(f"Not connected to {self.port}")
        payload = f"{line}\n".encode("ascii", errors="replace")
        try:
            with self._write_lock:
                ser.write(payload)
                ser.flush()
        except (serial.SerialException, OSError) as exc:
            raise TransportError(f"Write to {self.port} failed: {exc}") from exc
        logger.debug("-> %s", line)

    def _listen(self) -> None:
        """Background reader; posts one event per non-empty line."""
        while not self._stop.is_set():
            ser = self._serial
            if ser is None:
                return
            try:
                raw = ser.readline()
            except (serial.SerialException, OSError, TypeError) as exc:
                if self._stop.is_set():
                    return
                logger.error("Connection to %s lost: %s", self.port, exc)
                self._close_port()
                self.post(ConnectionChanged(connected=False, reason=str(exc)))
                return
            if not raw:
                continue
            line = raw.decode("ascii", errors="replace").strip()
            if line:
                logger.debug("<- %s", line)
                self.post(DataReceived(line))
