"""
Python client for the TeamUp chat service.
"""

from .api import ApiError, ChatApiClient
from .controller import ChatController, SendFailedError
from .gateway import GatewayConnection, GatewayError, GatewayTimeout, PendingRequests

__all__ = [
    'ApiError',
    'ChatApiClient',
    'ChatController',
    'GatewayConnection',
    'GatewayError',
    'GatewayTimeout',
    'PendingRequests',
    'SendFailedError',
]
