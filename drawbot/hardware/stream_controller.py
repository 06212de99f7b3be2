"""Ack-paced command streaming -- one line in flight at a time.

Session lifecycle::

    IDLE -> INITIALIZING -> SENDING <-> AWAITING_ACK -> COMPLETED
                 \\             \\            /
                  +-------------- PAUSED ---+
    any active state -> STOPPED | ERROR

INITIALIZING
    ``control_lines`` (soft reset, unlock) are written without waiting,
    then ``reset_settle_s`` elapses.  The ``prologue`` lines and a pen-up
    are then sent ack-paced; their acknowledgements do not count as
    toolpath progress.

SENDING / AWAITING_ACK
    Comment and blank lines are logged, never transmitted.  Every other
    line is sent verbatim and the controller waits for an ack token or
    an error line.  A missing ack after ``ack_timeout_s`` is logged and
    counted, and the stream moves on.  After the last line the
    ``trailer`` is written fire-and-forget.

PAUSED
    Ticks keep draining events every ``poll_interval_s`` but send nothing
    and check no timeout.  A pending settle or command delay is kept as an
    absolute deadline, so pause/resume requests never shorten it.

All work happens in :meth:`CommandStreamController.tick`, which runs on
the scheduler.  Incoming device lines, connection changes and
pause/resume/stop requests are queued on ``transport.events`` and
drained at the start of every tick in arrival order.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Iterable

from drawbot.configs.loader import StreamingConfig
from drawbot.errors import SessionActiveError, TransportError
from drawbot.hardware.scheduler import Scheduler, TimerHandle
from drawbot.hardware.transport import ConnectionChanged, DataReceived, Transport
from drawbot.utils.logging_config import pop_context, push_context

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


class StreamState(Enum):
    """Transmission session state."""

    IDLE = auto()
    INITIALIZING = auto()
    SENDING = auto()
    AWAITING_ACK = auto()
    PAUSED = auto()
    COMPLETED = auto()
    STOPPED = auto()
    ERROR = auto()


ACTIVE_STATES = frozenset({
    StreamState.INITIALIZING,
    StreamState.SENDING,
    StreamState.AWAITING_ACK,
    StreamState.PAUSED,
})
TERMINAL_STATES = frozenset({
    StreamState.COMPLETED,
    StreamState.STOPPED,
    StreamState.ERROR,
})


class StreamRequest(Enum):
    """Control requests posted to the transport event queue."""

    PAUSE = auto()
    RESUME = auto()
    STOP = auto()


@dataclass
class TransmissionSession:
    """Mutable bookkeeping of one streamed program.

    ``current_index`` is the next line to consider; ``processed`` counts
    toolpath lines that were acked, answered with an error, or timed out.
    """

    lines: list[str]
    total: int = 0
    current_index: int = 0
    sent: int = 0
    processed: int = 0
    acks: int = 0
    errors: int = 0
    timeouts: int = 0
    logged: int = 0
    waiting_for_ack: bool = False
    ack_received: bool = False
    last_send_time: float = 0.0
    last_line: str = ""
    state: StreamState = StreamState.IDLE
    resume_state: StreamState | None = None
    error: str | None = None
    hold_until: float = 0.0
    control_sent: bool = False
    prologue: list[str] = field(default_factory=list)
    prologue_index: int = 0
    started_at: float = 0.0
    finished_at: float | None = None

    @property
    def active(self) -> bool:
        return self.state in ACTIVE_STATES


@dataclass(frozen=True)
class StreamProgress:
    """Snapshot handed to progress and state callbacks."""

    state: StreamState = StreamState.IDLE
    total: int = 0
    current_index: int = 0
    sent: int = 0
    processed: int = 0
    errors: int = 0
    timeouts: int = 0
    logged: int = 0
    error: str | None = None

    @property
    def fraction(self) -> float:
        return self.processed / self.total if self.total else 0.0


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


class CommandStreamController:
    """Stream G-code lines to a device, one acknowledged line at a time.

    Parameters
    ----------
    transport : Transport
        Connected line transport.
    scheduler : Scheduler
        Timer source; every tick runs on it.
    config : StreamingConfig
        Timeouts, delays, control sequences and ack vocabulary.
    pen_up_z : float
        Pen height used for the initial and emergency pen-up.
    """

    def __init__(
        self,
        transport: Transport,
        scheduler: Scheduler,
        config: StreamingConfig | None = None,
        pen_up_z: float = 5.0,
    ) -> None:
        self._transport = transport
        self._sched = scheduler
        self._cfg = config if config is not None else StreamingConfig()
        self._pen_up_line = f"G0 Z{pen_up_z:.2f}"
        self._ack_tokens = frozenset(t.lower() for t in self._cfg.ack_tokens)
        self._error_prefixes = tuple(p.lower() for p in self._cfg.error_prefixes)
        self._session: TransmissionSession | None = None
        self._pending: TimerHandle | None = None
        self._lock = threading.RLock()
        self._done = threading.Event()
        self._done.set()
        self._progress_cb: Callable[[StreamProgress], None] | None = None
        self._state_cb: Callable[[StreamProgress], None] | None = None
        self._error_cb: Callable[[str], None] | None = None

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    @property
    def session(self) -> TransmissionSession | None:
        return self._session

    @property
    def state(self) -> StreamState:
        s = self._session
        return s.state if s is not None else StreamState.IDLE

    @property
    def progress(self) -> StreamProgress:
        s = self._session
        if s is None:
            return StreamProgress()
        return StreamProgress(
            state=s.state,
            total=s.total,
            current_index=s.current_index,
            sent=s.sent,
            processed=s.processed,
            errors=s.errors,
            timeouts=s.timeouts,
            logged=s.logged,
            error=s.error,
        )

    def set_progress_callback(
        self, callback: Callable[[StreamProgress], None] | None,
    ) -> None:
        self._progress_cb = callback

    def set_state_callback(
        self, callback: Callable[[StreamProgress], None] | None,
    ) -> None:
        self._state_cb = callback

    def set_error_callback(self, callback: Callable[[str], None] | None) -> None:
        self._error_cb = callback

    def _fire(self, callback: Callable[[Any], None] | None, arg: Any) -> None:
        if callback is None:
            return
        try:
            callback(arg)
        except Exception as exc:  # noqa: BLE001
            logger.error("Stream callback error: %s", exc)

    # ------------------------------------------------------------------
    # Public control
    # ------------------------------------------------------------------

    def start(self, lines: Iterable[str]) -> TransmissionSession:
        """Begin streaming *lines*.

        Multi-line strings are split.  The first tick is scheduled
        immediately.

        Raises
        ------
        SessionActiveError
            A session is already running on this controller or transport.
        TransportError
            The transport is not connected.
        """
        with self._lock:
            if self._session is not None and self._session.active:
                raise SessionActiveError("A transmission session is active")
            if not self._transport.is_connected:
                raise TransportError("Transport is not connected")
            self._transport.claim(self)

            flat: list[str] = []
            for line in lines:
                flat.extend(line.splitlines() or [""])
            self._discard_stale_events()

            s = TransmissionSession(lines=flat, total=len(flat))
            s.prologue = [*self._cfg.prologue, self._pen_up_line]
            s.started_at = self._sched.now()
            self._session = s
            self._done.clear()
            logger.info("Streaming %d lines", s.total)
            self._set_state(s, StreamState.INITIALIZING)
            self._reschedule(0.0)
            return s

    def pause(self) -> None:
        """Hold after the line currently in flight is answered."""
        self._request(StreamRequest.PAUSE)

    def resume(self) -> None:
        self._request(StreamRequest.RESUME)

    def stop(self) -> None:
        """Abort: empty the queue, lift the pen and send the emergency lines."""
        self._request(StreamRequest.STOP)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the session reaches a terminal state."""
        return self._done.wait(timeout)

    def _request(self, request: StreamRequest) -> None:
        with self._lock:
            if self._session is None or not self._session.active:
                logger.debug("Ignoring %s: no active session", request.name)
                return
            self._transport.post(request)
            self._reschedule(0.0)

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def tick(self) -> None:
        """Advance the session by one step.  Runs on the scheduler."""
        with self._lock:
            s = self._session
            if s is None:
                return
            try:
                self._tick(s)
            except TransportError as exc:
                logger.error("Transport failure while streaming: %s", exc)
                self._abort(s, StreamState.STOPPED, f"Send failed: {exc}")
            except Exception as exc:
                logger.exception("Unexpected stream failure")
                self._abort(s, StreamState.ERROR, f"Internal error: {exc}")

    def _tick(self, s: TransmissionSession) -> None:
        self._sched.cancel(self._pending)
        self._pending = None
        self._drain_events(s)
        if s.state in TERMINAL_STATES:
            return
        if s.state is StreamState.PAUSED:
            # drain-only polling; disconnects and stop still land while paused
            self._reschedule(self._cfg.poll_interval_s)
            return

        now = self._sched.now()
        if now < s.hold_until:
            self._reschedule(s.hold_until - now)
            return
        if s.waiting_for_ack:
            if now - s.last_send_time < self._cfg.ack_timeout_s:
                self._reschedule(self._cfg.poll_interval_s)
                return
            self._on_timeout(s)
        elif s.ack_received:
            s.ack_received = False
            if self._cfg.command_delay_s > 0:
                if s.state is StreamState.AWAITING_ACK:
                    self._set_state(s, StreamState.SENDING)
                s.hold_until = now + self._cfg.command_delay_s
                self._reschedule(self._cfg.command_delay_s)
                return

        if s.state is StreamState.INITIALIZING:
            if self._step_prologue(s, now):
                return
            self._set_state(s, StreamState.SENDING)
        self._send_next(s, now)

    def _step_prologue(self, s: TransmissionSession, now: float) -> bool:
        """Send the next initialization line; False once all are done."""
        if not s.control_sent:
            s.control_sent = True
            if self._cfg.control_lines:
                for line in self._cfg.control_lines:
                    self._transport.send(line)
                s.hold_until = now + self._cfg.reset_settle_s
                self._reschedule(self._cfg.reset_settle_s)
                return True
        if s.prologue_index < len(s.prologue):
            line = s.prologue[s.prologue_index]
            s.prologue_index += 1
            self._transport.send(line)
            s.waiting_for_ack = True
            s.last_send_time = now
            s.last_line = line
            self._reschedule(self._cfg.poll_interval_s)
            return True
        return False

    def _send_next(self, s: TransmissionSession, now: float) -> None:
        while s.current_index < len(s.lines):
            line = s.lines[s.current_index].rstrip("\r\n")
            stripped = line.strip()
            if not stripped or stripped.startswith(";"):
                if stripped:
                    logger.info("G-code: %s", stripped[1:].strip())
                s.logged += 1
                s.current_index += 1
                continue

            self._transport.send(line)
            s.sent += 1
            s.current_index += 1
            s.waiting_for_ack = True
            s.last_send_time = now
            s.last_line = line
            push_context(line=f"{s.current_index}/{s.total}")
            self._set_state(s, StreamState.AWAITING_ACK)
            self._fire(self._progress_cb, self.progress)
            self._reschedule(self._cfg.poll_interval_s)
            return
        self._complete(s)

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    def _discard_stale_events(self) -> None:
        while True:
            try:
                self._transport.events.get_nowait()
            except queue.Empty:
                return

    def _drain_events(self, s: TransmissionSession) -> None:
        while s.state not in TERMINAL_STATES:
            try:
                event = self._transport.events.get_nowait()
            except queue.Empty:
                return
            if isinstance(event, DataReceived):
                self._on_line(s, event.line)
            elif isinstance(event, ConnectionChanged):
                if not event.connected:
                    reason = event.reason or "link closed"
                    logger.error("Transport disconnected: %s", reason)
                    self._abort(
                        s, StreamState.STOPPED, f"Transport disconnected: {reason}",
                    )
            elif event is StreamRequest.PAUSE:
                if s.state is not StreamState.PAUSED:
                    s.resume_state = s.state
                    self._set_state(s, StreamState.PAUSED)
            elif event is StreamRequest.RESUME:
                if s.state is StreamState.PAUSED:
                    self._set_state(
                        s, s.resume_state or StreamState.SENDING,
                    )
                    s.resume_state = None
            elif event is StreamRequest.STOP:
                self._emergency_stop(s)
            else:
                logger.debug("Ignoring unknown event %r", event)

    def _on_line(self, s: TransmissionSession, line: str) -> None:
        text = line.strip()
        low = text.lower()
        in_prologue = s.state is StreamState.INITIALIZING or (
            s.state is StreamState.PAUSED
            and s.resume_state is StreamState.INITIALIZING
        )
        if low in self._ack_tokens:
            if not s.waiting_for_ack:
                logger.debug("Stray ack %r ignored", text)
                return
            s.waiting_for_ack = False
            s.ack_received = True
            s.acks += 1
            if not in_prologue:
                s.processed += 1
                self._fire(self._progress_cb, self.progress)
        elif low == "error" or low.startswith(self._error_prefixes):
            logger.warning("Device error after %r: %s", s.last_line, text)
            s.errors += 1
            if s.waiting_for_ack:
                s.waiting_for_ack = False
                s.ack_received = True
                if not in_prologue:
                    s.processed += 1
                    self._fire(self._progress_cb, self.progress)
        else:
            logger.info("Device: %s", text)

    def _on_timeout(self, s: TransmissionSession) -> None:
        logger.warning(
            "No ack for %r after %.1f s; continuing",
            s.last_line,
            self._cfg.ack_timeout_s,
        )
        s.waiting_for_ack = False
        s.timeouts += 1
        if s.state is not StreamState.INITIALIZING:
            s.processed += 1
            self._fire(self._progress_cb, self.progress)

    # ------------------------------------------------------------------
    # Termination
    # ------------------------------------------------------------------

    def _complete(self, s: TransmissionSession) -> None:
        for line in self._cfg.trailer:
            try:
                self._transport.send(line)
            except TransportError as exc:
                logger.warning("Trailer %r not sent: %s", line, exc)
                break
        logger.info(
            "Stream complete: %d sent, %d errors, %d timeouts",
            s.sent,
            s.errors,
            s.timeouts,
        )
        self._finish(s, StreamState.COMPLETED)

    def _emergency_stop(self, s: TransmissionSession) -> None:
        logger.warning("Stopping stream at line %d of %d", s.current_index, s.total)
        s.lines.clear()
        s.waiting_for_ack = False
        for line in (self._pen_up_line, *self._cfg.emergency):
            try:
                self._transport.send(line)
            except TransportError as exc:
                logger.warning("Emergency line %r not sent: %s", line, exc)
                break
        self._finish(s, StreamState.STOPPED)

    def _abort(self, s: TransmissionSession, state: StreamState, message: str) -> None:
        s.error = message
        s.waiting_for_ack = False
        self._finish(s, state)
        self._fire(self._error_cb, message)

    def _finish(self, s: TransmissionSession, state: StreamState) -> None:
        self._sched.cancel(self._pending)
        self._pending = None
        s.finished_at = self._sched.now()
        self._set_state(s, state)
        self._transport.release(self)
        pop_context(["line"])
        self._done.set()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _set_state(self, s: TransmissionSession, state: StreamState) -> None:
        if s.state is state:
            return
        logger.info("Stream state %s -> %s", s.state.name, state.name)
        s.state = state
        self._fire(self._state_cb, self.progress)

    def _reschedule(self, delay: float) -> None:
        self._sched.cancel(self._pending)
        self._pending = self._sched.call_later(delay, self.tick)
