"""
Dispatcher
==========
Sends queued messages to the provider with bounded retry.
"""

from .dispatcher import DispatchResult, Dispatcher

__all__ = [
    "DispatchResult",
    "Dispatcher",
]
