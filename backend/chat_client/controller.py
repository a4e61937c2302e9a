"""
Client-side chat state.

``ChatController`` keeps the projections a UI renders (conversations,
active messages, online users, typing users) and mediates sends between
the REST API and the realtime gateway.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set

from asgiref.sync import sync_to_async

from .api import ApiError, ChatApiClient
from .gateway import GatewayConnection, GatewayError

logger = logging.getLogger(__name__)

TYPING_TIMEOUT = 3.0


class SendFailedError(Exception):
    """Neither transport could deliver a message"""

    def __init__(self, message: str, code: str = None):
        self.message = message
        self.code = code
        super().__init__(message)


def _timestamp(value) -> datetime:
    if not value:
        return datetime.min.replace(tzinfo=timezone.utc)
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value.replace('Z', '+00:00'))


class ChatController:
    """
    Chat state for one authenticated session

    Args:
        api: REST client, the primary send path
        gateway: realtime connection, the fallback send path and event source
        user_id: id of the session's user
        typing_timeout: inactivity before ``typing_stop`` is sent
    """

    def __init__(
        self,
        api: ChatApiClient,
        gateway: GatewayConnection,
        user_id: str,
        typing_timeout: float = TYPING_TIMEOUT,
    ):
        self.api = api
        self.gateway = gateway
        self.user_id = str(user_id)
        self.typing_timeout = typing_timeout

        self.conversations: List[Dict] = []
        self.active_conversation_id: Optional[str] = None
        self.messages: List[Dict] = []
        self.online_users: Set[str] = set()
        self.typing_users: Set[str] = set()

        self._typing_conversation_id: Optional[str] = None
        self._typing_timer: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()

        for event, handler in (
            ('authenticated', self._on_authenticated),
            ('new_message', self._on_new_message),
            ('message_delivered', self._on_message_delivered),
            ('conversation_updated', self._on_conversation_updated),
            ('user_typing', self._on_user_typing),
            ('message_read', self._on_message_read),
            ('user_online', self._on_user_online),
            ('user_offline', self._on_user_offline),
        ):
            gateway.on(event, handler)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Connect to the gateway and load the conversation list"""
        await self.gateway.connect()
        await self.refresh_conversations()

    async def close(self) -> None:
        await self.stop_typing()
        for task in list(self._tasks):
            task.cancel()
        await self.gateway.close()

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    async def refresh_conversations(self) -> List[Dict]:
        conversations = await sync_to_async(self.api.list_conversations)()
        self.conversations = self._sorted(conversations)
        return self.conversations

    @staticmethod
    def _sorted(conversations: List[Dict]) -> List[Dict]:
        return sorted(conversations, key=lambda c: _timestamp(c.get('updatedAt')), reverse=True)

    def _upsert_conversation(self, entry: Dict) -> None:
        others = [c for c in self.conversations if c['id'] != entry['id']]
        current = next((c for c in self.conversations if c['id'] == entry['id']), {})
        self.conversations = self._sorted(others + [{**current, **entry}])

    def _list_entry(self, conversation: Dict) -> Dict:
        """Convert a full conversation payload into this user's list entry"""
        participants = conversation.get('participants', [])
        other = next((p for p in participants if str(p['id']) != self.user_id), None)
        return {
            'id': conversation['id'],
            'otherUser': other,
            'lastMessage': conversation.get('lastMessage'),
            'unreadCount': conversation.get('unreadCounts', {}).get(self.user_id, 0),
            'updatedAt': conversation.get('updatedAt'),
        }

    async def open_conversation(self, conversation_id: str) -> List[Dict]:
        """
        Make a conversation active: join its room and load its messages
        """
        conversation_id = str(conversation_id)
        if self.active_conversation_id and self.active_conversation_id != conversation_id:
            await self.stop_typing()
            await self.gateway.emit('leave_conversation', {'conversationId': self.active_conversation_id})

        self.active_conversation_id = conversation_id
        self.typing_users.clear()
        await self.gateway.emit('join_conversation', {'conversationId': conversation_id})
        return await self.refresh_messages()

    async def start_conversation(self, other_user_id: str) -> Dict:
        """Get or create the conversation with another user and open it"""
        conversation = await sync_to_async(self.api.conversation_with)(str(other_user_id))
        self._upsert_conversation(self._list_entry(conversation))
        await self.open_conversation(conversation['id'])
        return conversation

    async def refresh_messages(self) -> List[Dict]:
        if not self.active_conversation_id:
            self.messages = []
            return self.messages
        messages = await sync_to_async(self.api.list_messages)(self.active_conversation_id)
        self.messages = list(messages)
        return self.messages

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def send_message(self, text: str, receiver_id: str = None) -> Dict:
        """
        Send a message to the active conversation, or to ``receiver_id``

        REST is tried first. Only when it fails for a transport or server
        reason is the same message, with the same ``clientMessageId``, sent
        over the gateway and its acknowledgement awaited.

        Raises:
            SendFailedError: If the message could not be delivered
        """
        body = (text or '').strip()
        if not body:
            raise SendFailedError('Message cannot be empty', code='EMPTY_MESSAGE')

        conversation_id = self.active_conversation_id
        if not conversation_id and not receiver_id:
            raise SendFailedError('No conversation selected', code='MISSING_TARGET')

        await self.stop_typing()
        client_message_id = uuid.uuid4().hex

        try:
            message = await sync_to_async(self.api.send_message)(
                body,
                conversation_id=conversation_id,
                receiver_id=None if conversation_id else receiver_id,
                client_message_id=client_message_id,
            )
        except ApiError as e:
            if not e.retryable:
                raise SendFailedError(e.message, code=e.code) from e
            logger.warning(f'REST send failed ({e.message}), falling back to gateway')
            return await self._send_over_gateway(body, conversation_id, receiver_id, client_message_id)

        known = any(c['id'] == message['conversationId'] for c in self.conversations)
        if not conversation_id and not known:
            # Sender has joined no room for a new pair, so no conversation_updated arrives
            await self.refresh_conversations()
        if message['conversationId'] == self.active_conversation_id:
            await self.refresh_messages()
        return message

    async def _send_over_gateway(self, body, conversation_id, receiver_id, client_message_id) -> Dict:
        payload = {'text': body, 'clientMessageId': client_message_id}
        if conversation_id:
            payload['conversationId'] = conversation_id
        else:
            payload['receiverId'] = receiver_id

        try:
            data = await self.gateway.request('send_message', payload)
        except GatewayError as e:
            logger.warning(f'Gateway send failed: {e.message}')
            raise SendFailedError(e.message, code=e.code) from e

        return data['message']

    # ------------------------------------------------------------------
    # Typing
    # ------------------------------------------------------------------

    async def keystroke(self) -> None:
        """
        Record local typing activity in the active conversation

        The first keystroke sends ``typing_start``; every keystroke restarts
        the inactivity timer that sends ``typing_stop``.
        """
        if not self.active_conversation_id:
            return

        if self._typing_conversation_id is None:
            self._typing_conversation_id = self.active_conversation_id
            await self.gateway.emit('typing_start', {'conversationId': self._typing_conversation_id})

        if self._typing_timer is not None:
            self._typing_timer.cancel()
        loop = asyncio.get_running_loop()
        self._typing_timer = loop.call_later(self.typing_timeout, self._typing_expired)

    def _typing_expired(self) -> None:
        self._typing_timer = None
        self._spawn(self.stop_typing())

    @property
    def is_typing(self) -> bool:
        return self._typing_conversation_id is not None

    async def stop_typing(self) -> None:
        if self._typing_timer is not None:
            self._typing_timer.cancel()
            self._typing_timer = None

        conversation_id = self._typing_conversation_id
        if conversation_id is None:
            return
        self._typing_conversation_id = None
        try:
            await self.gateway.emit('typing_stop', {'conversationId': conversation_id})
        except GatewayError as e:
            logger.warning(f'Could not send typing_stop: {e.message}')

    # ------------------------------------------------------------------
    # Read marking
    # ------------------------------------------------------------------

    async def mark_message_read(self, message_id: str) -> None:
        if not self.active_conversation_id:
            return
        await self.gateway.emit('mark_message_read', {
            'messageId': str(message_id),
            'conversationId': self.active_conversation_id,
        })

    async def mark_conversation_read(self) -> List[str]:
        """Mark the active conversation read and clear its unread count"""
        if not self.active_conversation_id:
            return []
        message_ids = await sync_to_async(self.api.mark_read)(self.active_conversation_id)

        for message in self.messages:
            if message['id'] in message_ids and self.user_id not in message.get('readBy', []):
                message['readBy'] = message.get('readBy', []) + [self.user_id]
        for conversation in self.conversations:
            if conversation['id'] == self.active_conversation_id:
                conversation['unreadCount'] = 0
        return message_ids

    # ------------------------------------------------------------------
    # Gateway events
    # ------------------------------------------------------------------

    def _on_authenticated(self, data: Dict) -> None:
        self.online_users = set(data.get('onlineUsers', [])) - {self.user_id}

    def _on_new_message(self, data: Dict) -> None:
        message = data['message']
        if message['conversationId'] == self.active_conversation_id:
            if all(m['id'] != message['id'] for m in self.messages):
                self.messages.append(message)
            if message['sender']['id'] != self.user_id:
                self.typing_users.discard(message['sender']['id'])

        for conversation in self.conversations:
            if conversation['id'] == message['conversationId']:
                conversation['lastMessage'] = message
                conversation['updatedAt'] = message['createdAt']
        self.conversations = self._sorted(self.conversations)

    def _on_message_delivered(self, data: Dict) -> None:
        # Only the receiver's personal room gets this; the list may be stale
        self._spawn(self.refresh_conversations())

    def _on_conversation_updated(self, data: Dict) -> None:
        self._upsert_conversation(self._list_entry(data['conversation']))

    def _on_user_typing(self, data: Dict) -> None:
        if data.get('conversationId', self.active_conversation_id) != self.active_conversation_id:
            return
        if data.get('isTyping'):
            self.typing_users.add(data['userId'])
        else:
            self.typing_users.discard(data['userId'])

    def _on_message_read(self, data: Dict) -> None:
        for message in self.messages:
            if message['id'] == data['messageId'] and data['userId'] not in message.get('readBy', []):
                message['readBy'] = message.get('readBy', []) + [data['userId']]

    def _on_user_online(self, data: Dict) -> None:
        if data['userId'] != self.user_id:
            self.online_users.add(data['userId'])

    def _on_user_offline(self, data: Dict) -> None:
        self.online_users.discard(data['userId'])
        self.typing_users.discard(data['userId'])
