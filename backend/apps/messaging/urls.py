"""
Message URL configuration.
"""

from django.urls import path

from apps.websocket.routing import presence_registry
from .views import (
    ConversationMessagesView,
    SendMessageView,
    MarkConversationReadView,
)

app_name = 'messaging'

urlpatterns = [
    # POST /api/messages/send
    # Send a message by conversation id or receiver id
    path('send', SendMessageView.as_view(presence_registry=presence_registry), name='send'),

    # GET /api/messages/:conversationId
    # Get messages for a specific conversation
    path('<uuid:conversation_id>', ConversationMessagesView.as_view(), name='conversation_messages'),

    # POST /api/messages/:conversationId/read
    # Mark all messages in a conversation as read
    path('<uuid:conversation_id>/read', MarkConversationReadView.as_view(), name='mark_conversation_read'),
]
