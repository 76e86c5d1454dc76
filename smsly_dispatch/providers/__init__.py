"""
Messaging Providers
===================
Send-side boundary to the external provider network.
"""

from .base import ProviderAck, ProviderClient
from .http import HttpProviderClient

__all__ = [
    "ProviderAck",
    "ProviderClient",
    "HttpProviderClient",
]
