"""
WebSocket service for emitting chat events to clients.

Used by the gateway consumer and by the REST send view, so a message stored
through either path reaches connected clients the same way.
"""

import logging
from typing import Dict, Optional, Tuple

from channels.layers import get_channel_layer

from apps.conversations.serializers import ConversationSerializer
from apps.messaging.serializers import MessageSerializer
from apps.messaging.services import chat_store

logger = logging.getLogger(__name__)

PRESENCE_GROUP = 'presence'


def conversation_group(conversation_id) -> str:
    """Get the room name for a conversation"""
    return f'conversation_{conversation_id}'


def user_group(user_id) -> str:
    """Get the room name for a user"""
    return f'user_{user_id}'


def message_event_payloads(message_id, conversation_id) -> Tuple[Dict, Dict]:
    """
    Build the ``new_message`` and ``conversation_updated`` payloads

    Synchronous ORM work; call through ``database_sync_to_async``.
    """
    message = chat_store.load_message_detail(message_id)
    conversation = chat_store.load_conversation_detail(conversation_id)
    return MessageSerializer(message).data, ConversationSerializer(conversation).data


class WebSocketService:
    """
    WebSocket service for real-time updates

    Every event travels through the channel layer as
    ``{'type': <event name>, 'data': ..., 'exclude': <channel name or None>}``;
    the consumer has one handler per event name.
    """

    def __init__(self, channel_layer=None):
        self._channel_layer = channel_layer

    @property
    def channel_layer(self):
        if self._channel_layer is None:
            self._channel_layer = get_channel_layer()
        return self._channel_layer

    async def _group_send(self, group: str, event: str, data: Dict, exclude: Optional[str] = None) -> None:
        if not self.channel_layer:
            logger.warning('Channel layer not configured, dropping %s', event)
            return
        await self.channel_layer.group_send(group, {
            'type': event,
            'data': data,
            'exclude': exclude,
        })

    async def emit_message_sent(
        self,
        message: Dict,
        conversation: Dict,
        receiver_id,
        notify_receiver: bool = True,
        exclude: Optional[str] = None,
    ) -> None:
        """
        Fan out a stored message

        Sends ``new_message`` and ``conversation_updated`` to the conversation
        room and ``message_delivered`` to the receiver's personal room.
        """
        room = conversation_group(message['conversationId'])

        await self._group_send(room, 'new_message', {'message': message}, exclude=exclude)

        if notify_receiver:
            await self._group_send(user_group(receiver_id), 'message_delivered', {
                'messageId': message['id'],
                'conversationId': message['conversationId'],
            })

        await self._group_send(room, 'conversation_updated', {'conversation': conversation}, exclude=exclude)

        logger.info(f'Emitted new message {message["id"]} to {room}')

    async def emit_typing(self, conversation_id, user_id, user_name: str, is_typing: bool, exclude: str) -> None:
        await self._group_send(conversation_group(conversation_id), 'user_typing', {
            'conversationId': str(conversation_id),
            'userId': str(user_id),
            'userName': user_name,
            'isTyping': is_typing,
        }, exclude=exclude)

    async def emit_message_read(self, conversation_id, message_id, user_id, user_name: str, exclude: str) -> None:
        await self._group_send(conversation_group(conversation_id), 'message_read', {
            'conversationId': str(conversation_id),
            'messageId': str(message_id),
            'userId': str(user_id),
            'userName': user_name,
        }, exclude=exclude)

    async def emit_presence(self, event: str, user_id, exclude: str) -> None:
        """Broadcast ``user_online`` / ``user_offline`` to every other connection"""
        await self._group_send(PRESENCE_GROUP, event, {'userId': str(user_id)}, exclude=exclude)


# Create singleton instance
websocket_service = WebSocketService()
