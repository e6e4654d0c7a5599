from .message import ControlMessage, HeartbeatFrame, ResponseMessage

__all__ = [
    "ControlMessage",
    "HeartbeatFrame",
    "ResponseMessage",
]
