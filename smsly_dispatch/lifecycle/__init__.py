"""
Delivery Lifecycle
==================
Forward-only message state machine.
"""

from .state_machine import (
    ALLOWED_TRANSITIONS,
    DeliveryStateMachine,
    TransitionResult,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "DeliveryStateMachine",
    "TransitionResult",
]
