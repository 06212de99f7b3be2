"""Exception hierarchy shared by every drawbot subpackage.

Only :class:`TransportError` is fatal to a transmission session.  The
others are either recovered locally (``ParseError``, ``ProtocolTimeout``,
``ProtocolError``) or reported as a diagnostic result (``InputError``).
"""

from __future__ import annotations


class DrawbotError(Exception):
    """Base exception for all drawbot errors."""

    pass


class ConfigError(DrawbotError):
    """Raised when ``machine.yaml`` fails loading or validation."""

    pass


class InputError(DrawbotError):
    """Image or SVG input could not be decoded."""

    pass


class ParseError(DrawbotError):
    """A numeric setting could not be parsed.

    Never escapes :func:`drawbot.configs.settings.parse_settings`; the
    offending field falls back to its default.
    """

    pass


class KinematicsUnreachable(DrawbotError):
    """Target lies outside the two-link arm envelope."""

    def __init__(self, x: float, y: float, distance: float,
                 min_reach: float, max_reach: float) -> None:
        self.x = x
        self.y = y
        self.distance = distance
        self.min_reach = min_reach
        self.max_reach = max_reach
        super().__init__(
            f"Target ({x:.3f}, {y:.3f}) is unreachable: distance "
            f"{distance:.3f} mm outside [{min_reach:.3f}, {max_reach:.3f}]"
        )


class TransportError(DrawbotError):
    """Connect, send or read failure on the device link."""

    pass


class ProtocolTimeout(DrawbotError):
    """No acknowledgement arrived within the configured timeout."""

    pass


class ProtocolError(DrawbotError):
    """The device answered a command with an error line."""

    pass


class SessionActiveError(DrawbotError):
    """``start()`` called while another session owns the transport."""

    pass
