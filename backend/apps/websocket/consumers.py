"""
WebSocket consumer for real-time chat.

Each connection is authenticated by ``JWTAuthMiddleware`` before it reaches
the consumer. Commands from one connection are handled one at a time;
every failure is reported back to that connection only and never closes it.
"""

import logging

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncWebsocketConsumer

from apps.core.exceptions import AppError, AuthorizationError
from apps.messaging.services import chat_store
from .events import CommandError, envelope, error_payload, parse_command
from .presence import PresenceRegistry
from .services import (
    PRESENCE_GROUP,
    conversation_group,
    message_event_payloads,
    user_group,
    websocket_service,
)

logger = logging.getLogger(__name__)

# Close code sent when the handshake carries no valid credential
AUTH_FAILED_CLOSE_CODE = 4001


class ChatConsumer(AsyncWebsocketConsumer):
    """
    Realtime gateway for one client connection

    Init kwargs (via ``as_asgi``):
        presence: the gateway's ``PresenceRegistry``
        events: the ``WebSocketService`` used for fan-out
    """

    presence = None
    events = None

    def __init__(self, *args, presence: PresenceRegistry = None, events=None, **kwargs):
        super().__init__(*args, **kwargs)
        if presence is None:
            raise ValueError('ChatConsumer requires a PresenceRegistry')
        self.presence = presence
        self.events = events or websocket_service
        self.user = None
        self.user_room = None
        self.joined = set()

    async def connect(self):
        """
        Handle new WebSocket connection
        """
        self.user = self.scope.get('user')

        if not self.user:
            # Reject before accepting; no command from this socket is processed
            await self.close(code=AUTH_FAILED_CLOSE_CODE)
            return

        await self.accept()

        self.user_room = user_group(self.user.id)
        await self.channel_layer.group_add(self.user_room, self.channel_name)
        await self.channel_layer.group_add(PRESENCE_GROUP, self.channel_name)

        first_connection = self.presence.add(self.user.id, self.channel_name)

        await self.send(text_data=envelope('authenticated', {
            'userId': str(self.user.id),
            'onlineUsers': sorted(self.presence.online_users()),
        }))

        if first_connection:
            await self.events.emit_presence('user_online', self.user.id, exclude=self.channel_name)

        logger.info(f'User {self.user.id} connected on {self.channel_name}')

    async def disconnect(self, close_code):
        """
        Handle WebSocket disconnection
        """
        if not self.user or self.user_room is None:
            return

        for conversation_id in list(self.joined):
            await self.channel_layer.group_discard(conversation_group(conversation_id), self.channel_name)
        self.joined.clear()

        await self.channel_layer.group_discard(self.user_room, self.channel_name)
        await self.channel_layer.group_discard(PRESENCE_GROUP, self.channel_name)

        if self.presence.remove(self.user.id, self.channel_name):
            await self.events.emit_presence('user_offline', self.user.id, exclude=self.channel_name)

        logger.info(f'User {self.user.id} disconnected (code {close_code})')

    async def receive(self, text_data=None, bytes_data=None):
        """
        Handle incoming WebSocket commands
        """
        try:
            command = parse_command(text_data)
        except CommandError as e:
            logger.warning(f'Rejected frame from {self.user.id}: {e.code} {e.message}')
            await self._send_error(e.error_event, e.message, e.code, e.request_id)
            return

        handler = getattr(self, f'handle_{command.event}')
        try:
            await handler(command)
        except AppError as e:
            logger.warning(f'{command.event} failed for {self.user.id}: {e.code} {e.message}')
            await self._send_error(command.error_event, e.message, e.code, command.request_id)
        except Exception as e:
            logger.error(f'Error handling {command.event} for {self.user.id}: {e}', exc_info=True)
            await self._send_error(command.error_event, f'Failed to handle {command.event}', 'INTERNAL_ERROR', command.request_id)

    async def _send_error(self, event, message, code, request_id=None):
        await self.send(text_data=envelope(event, error_payload(message, code), request_id))

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def handle_join_conversation(self, command):
        conversation_id = command.data['conversationId']
        await database_sync_to_async(chat_store.get_participant_conversation)(conversation_id, self.user)

        await self.channel_layer.group_add(conversation_group(conversation_id), self.channel_name)
        self.joined.add(str(conversation_id))
        logger.info(f'User {self.user.id} joined conversation {conversation_id}')

    async def handle_leave_conversation(self, command):
        conversation_id = str(command.data['conversationId'])
        if conversation_id not in self.joined:
            return
        await self.channel_layer.group_discard(conversation_group(conversation_id), self.channel_name)
        self.joined.discard(conversation_id)

    async def handle_send_message(self, command):
        data = command.data
        result = await database_sync_to_async(chat_store.send_message)(
            self.user,
            data['text'],
            conversation_id=data.get('conversationId'),
            receiver_id=data.get('receiverId'),
            client_message_id=data.get('clientMessageId'),
        )
        message, conversation = await database_sync_to_async(message_event_payloads)(
            result.message.id, result.conversation.id
        )

        # The sender always gets the acknowledgement, joined to the room or not
        await self.send(text_data=envelope('new_message', {'message': message}, command.request_id))
        if not result.created:
            return

        receiver_id = result.message.receiver_id
        await self.events.emit_message_sent(
            message,
            conversation,
            receiver_id,
            notify_receiver=self.presence.is_online(receiver_id),
            exclude=self.channel_name,
        )
        await self.send(text_data=envelope('conversation_updated', {'conversation': conversation}))

    async def _typing(self, command, is_typing: bool):
        conversation_id = str(command.data['conversationId'])
        if conversation_id not in self.joined:
            raise AuthorizationError('Join the conversation first', code='NOT_JOINED')
        await self.events.emit_typing(
            conversation_id, self.user.id, self.user.name, is_typing, exclude=self.channel_name
        )

    async def handle_typing_start(self, command):
        await self._typing(command, True)

    async def handle_typing_stop(self, command):
        await self._typing(command, False)

    async def handle_mark_message_read(self, command):
        message_id = command.data['messageId']
        conversation_id = command.data['conversationId']
        _, changed = await database_sync_to_async(chat_store.mark_message_read)(
            message_id, conversation_id, self.user
        )
        if changed:
            await self.events.emit_message_read(
                conversation_id, message_id, self.user.id, self.user.name, exclude=self.channel_name
            )

    # ------------------------------------------------------------------
    # Channel layer events
    # ------------------------------------------------------------------

    async def _forward(self, name, event):
        if event.get('exclude') == self.channel_name:
            return
        await self.send(text_data=envelope(name, event['data']))

    async def new_message(self, event):
        await self._forward('new_message', event)

    async def message_delivered(self, event):
        await self._forward('message_delivered', event)

    async def conversation_updated(self, event):
        await self._forward('conversation_updated', event)

    async def user_typing(self, event):
        await self._forward('user_typing', event)

    async def message_read(self, event):
        await self._forward('message_read', event)

    async def user_online(self, event):
        await self._forward('user_online', event)

    async def user_offline(self, event):
        await self._forward('user_offline', event)
