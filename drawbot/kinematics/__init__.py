"""Two-link arm inverse / forward kinematics."""

from drawbot.kinematics.scara import (
    JointAngles,
    forward_kinematics,
    inverse_kinematics,
    is_reachable,
    require_reachable,
)

__all__ = [
    "JointAngles",
    "forward_kinematics",
    "inverse_kinematics",
    "is_reachable",
    "require_reachable",
]
