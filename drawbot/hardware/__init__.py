"""Device link, timer scheduling and ack-paced command streaming."""

from drawbot.hardware.scheduler import (
    LoopScheduler,
    ManualScheduler,
    Scheduler,
    TimerHandle,
)
from drawbot.hardware.stream_controller import (
    CommandStreamController,
    StreamProgress,
    StreamRequest,
    StreamState,
    TransmissionSession,
)
from drawbot.hardware.transport import (
    ConnectionChanged,
    DataReceived,
    SerialTransport,
    Transport,
)

__all__ = [
    "CommandStreamController",
    "ConnectionChanged",
    "DataReceived",
    "LoopScheduler",
    "ManualScheduler",
    "Scheduler",
    "SerialTransport",
    "StreamProgress",
    "StreamRequest",
    "StreamState",
    "TimerHandle",
    "TransmissionSession",
    "Transport",
]
