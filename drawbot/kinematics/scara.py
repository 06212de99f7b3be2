"""Two-link planar (SCARA) kinematics.

Converts machine-frame targets (mm) into shoulder/elbow joint angles
(degrees) and back.  The shoulder joint sits at the configured offset;
``theta1`` is measured from +X, ``theta2`` is the elbow angle relative to
the first link.  A single branch is used everywhere (``theta2 <= 0``), so
consecutive targets never flip the elbow mid-stroke.

Unreachable targets are not an exception by default: :func:`inverse_kinematics`
returns a :class:`JointAngles` with ``valid=False`` and the caller decides.
Use :func:`require_reachable` where an exception reads better.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from drawbot.configs.loader import KinematicsConfig
from drawbot.errors import KinematicsUnreachable

logger = logging.getLogger(__name__)

# Absorbs rounding at the exact envelope boundary (hypot of a target
# placed at L1 + L2 may land a few ULPs outside).
_REACH_EPS = 1e-9


@dataclass(frozen=True, slots=True)
class JointAngles:
    """Result of inverse kinematics.

    Parameters
    ----------
    theta1, theta2 : float
        Shoulder and elbow angles in degrees.  Meaningless when
        ``valid`` is False.
    valid : bool
        False when the target lies outside the reachable annulus.
    """

    theta1: float
    theta2: float
    valid: bool = True


def _distance(x: float, y: float, cfg: KinematicsConfig) -> float:
    return math.hypot(x - cfg.offset_x_mm, y - cfg.offset_y_mm)


def is_reachable(x: float, y: float, cfg: KinematicsConfig) -> bool:
    """Return True when ``(x, y)`` lies within ``[|L1-L2|, L1+L2]``."""
    dist = _distance(x, y, cfg)
    return cfg.min_reach - _REACH_EPS <= dist <= cfg.max_reach + _REACH_EPS


def inverse_kinematics(x: float, y: float, cfg: KinematicsConfig) -> JointAngles:
    """Solve joint angles for a machine-frame target.

    Parameters
    ----------
    x, y : float
        Target position in mm.
    cfg : KinematicsConfig
        Arm lengths and shoulder offset.

    Returns
    -------
    JointAngles
        Angles in degrees, ``valid=False`` when out of reach.
    """
    if not is_reachable(x, y, cfg):
        return JointAngles(0.0, 0.0, valid=False)

    l1 = cfg.arm1_length_mm
    l2 = cfg.arm2_length_mm
    dx = x - cfg.offset_x_mm
    dy = y - cfg.offset_y_mm

    cos_t2 = (dx * dx + dy * dy - l1 * l1 - l2 * l2) / (2.0 * l1 * l2)
    cos_t2 = max(-1.0, min(1.0, cos_t2))
    t2 = -math.acos(cos_t2)
    t1 = math.atan2(dy, dx) - math.atan2(
        l2 * math.sin(t2), l1 + l2 * math.cos(t2),
    )
    return JointAngles(math.degrees(t1), math.degrees(t2))


def forward_kinematics(
    theta1: float, theta2: float, cfg: KinematicsConfig,
) -> tuple[float, float]:
    """Return the pen position (mm) for joint angles in degrees."""
    t1 = math.radians(theta1)
    t2 = math.radians(theta2)
    x = (
        cfg.arm1_length_mm * math.cos(t1)
        + cfg.arm2_length_mm * math.cos(t1 + t2)
        + cfg.offset_x_mm
    )
    y = (
        cfg.arm1_length_mm * math.sin(t1)
        + cfg.arm2_length_mm * math.sin(t1 + t2)
        + cfg.offset_y_mm
    )
    return x, y


def require_reachable(x: float, y: float, cfg: KinematicsConfig) -> JointAngles:
    """Like :func:`inverse_kinematics` but raise when out of reach.

    Raises
    ------
    KinematicsUnreachable
        If the target lies outside the arm envelope.
    """
    angles = inverse_kinematics(x, y, cfg)
    if not angles.valid:
        raise KinematicsUnreachable(
            x, y, _distance(x, y, cfg), cfg.min_reach, cfg.max_reach,
        )
    return angles
