"""
Conversation views (controllers).
"""

from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import AllowAny

from apps.core.middleware.auth import get_request_user
from apps.messaging.services import chat_store
from .serializers import ConversationSerializer, ConversationListSerializer


class ConversationsListView(APIView):
    """
    Get all conversations for the authenticated user

    GET /api/conversations

    Most recently updated first; each entry carries the caller's own
    unread count.
    """
    permission_classes = [AllowAny]  # Check JWT in middleware

    def get(self, request):
        user = get_request_user(request)
        conversations = chat_store.list_conversations(user)

        serializer = ConversationListSerializer(conversations, many=True, context={'user': user})
        return Response({
            'conversations': serializer.data,
            'count': len(serializer.data),
        })


class ConversationWithUserView(APIView):
    """
    Get or create the conversation with another user

    GET /api/conversations/with/:otherUserId
    """
    permission_classes = [AllowAny]

    def get(self, request, other_user_id):
        user = get_request_user(request)
        conversation = chat_store.start_conversation(user, other_user_id)
        conversation = chat_store.load_conversation_detail(conversation.id)

        return Response({'conversation': ConversationSerializer(conversation).data})
