"""Request coordinators, one per command family."""

from .base import OperationState, OperationTracker
from .capture_handler import CaptureHandler
from .interaction_handler import InteractionHandler
from .navigate_handler import NavigateHandler
from .wait_handler import WaitHandler

__all__ = [
    "CaptureHandler",
    "InteractionHandler",
    "NavigateHandler",
    "OperationState",
    "OperationTracker",
    "WaitHandler",
]
