"""
Message views (controllers) for message operations.

The REST send path stores through the same ``ChatStore`` as the realtime
gateway and fans the result out over the channel layer, so connected
clients see REST-sent messages live.
"""

import logging

from adrf.views import APIView as AsyncAPIView
from asgiref.sync import sync_to_async
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework import status
from rest_framework.permissions import AllowAny

from apps.core.exceptions import ChatValidationError
from apps.core.middleware.auth import get_request_user
from .serializers import MessageSerializer, SendMessageSerializer
from .services import chat_store

logger = logging.getLogger(__name__)


class ConversationMessagesView(APIView):
    """
    Get messages for a specific conversation

    GET /api/messages/:conversationId

    Fetching counts as delivery: the caller's incoming messages are added
    to their delivered set before the list is returned.
    """
    permission_classes = [AllowAny]  # Check JWT in middleware

    def get(self, request, conversation_id):
        user = get_request_user(request)
        conversation = chat_store.get_participant_conversation(conversation_id, user)

        chat_store.mark_delivered(conversation, user)
        messages = chat_store.list_messages(conversation)

        return Response({
            'messages': MessageSerializer(messages, many=True).data,
            'count': len(messages),
        })


class SendMessageView(AsyncAPIView):
    """
    Send a message

    POST /api/messages/send
    Body: {conversationId?, receiverId?, text, clientMessageId?}

    Returns 201 with the stored message, or 200 when ``clientMessageId``
    matched a message this sender already stored.

    ``presence_registry`` is the gateway's registry, passed through
    ``as_view()`` so REST sends see the same online users as the consumers.
    """
    permission_classes = [AllowAny]
    presence_registry = None
    events = None

    async def post(self, request):
        from apps.websocket.services import message_event_payloads, websocket_service

        user = await sync_to_async(get_request_user)(request)

        serializer = SendMessageSerializer(data=request.data)
        if not serializer.is_valid():
            raise ChatValidationError.from_serializer_errors(serializer.errors)
        data = serializer.validated_data

        result = await sync_to_async(chat_store.send_message)(
            user,
            data['text'],
            conversation_id=data.get('conversationId'),
            receiver_id=data.get('receiverId'),
            client_message_id=data.get('clientMessageId'),
        )
        message, conversation = await sync_to_async(message_event_payloads)(
            result.message.id, result.conversation.id
        )

        if not result.created:
            return Response({'message': message}, status=status.HTTP_200_OK)

        receiver_id = result.message.receiver_id
        notify_receiver = self.presence_registry is not None and self.presence_registry.is_online(receiver_id)
        try:
            await (self.events or websocket_service).emit_message_sent(
                message,
                conversation,
                receiver_id,
                notify_receiver=notify_receiver,
            )
        except Exception as e:
            # Committed already; a retry with the same key is only acknowledged
            logger.error(f'Failed to fan out message {message["id"]}: {e}', exc_info=True)

        return Response({'message': message}, status=status.HTTP_201_CREATED)


class MarkConversationReadView(APIView):
    """
    Mark all incoming messages in a conversation as read

    POST /api/messages/:conversationId/read
    """
    permission_classes = [AllowAny]

    def post(self, request, conversation_id):
        user = get_request_user(request)
        conversation = chat_store.get_participant_conversation(conversation_id, user)

        message_ids = chat_store.mark_read(conversation, user)
        logger.info(f'User {user.id} read {len(message_ids)} messages in {conversation_id}')

        return Response({
            'success': True,
            'messageIds': message_ids,
        })
