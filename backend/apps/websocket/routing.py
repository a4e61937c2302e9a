"""
WebSocket URL routing.
"""

from django.urls import re_path

from . import consumers
from .presence import PresenceRegistry


def build_websocket_urlpatterns(presence: PresenceRegistry):
    """
    Route the chat endpoint to consumers sharing one presence registry
    """
    return [
        re_path(r'^ws/chat/$', consumers.ChatConsumer.as_asgi(presence=presence)),
    ]


# Presence of the gateway served by this process
presence_registry = PresenceRegistry()

websocket_urlpatterns = build_websocket_urlpatterns(presence_registry)
