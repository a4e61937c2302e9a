"""
Conversation URL configuration.
"""

from django.urls import path
from .views import ConversationsListView, ConversationWithUserView

app_name = 'conversations'

urlpatterns = [
    # GET /api/conversations
    # Get all conversations for authenticated user
    path('', ConversationsListView.as_view(), name='list'),

    # GET /api/conversations/with/:otherUserId
    # Get or create the conversation with another user
    path('with/<uuid:other_user_id>', ConversationWithUserView.as_view(), name='with_user'),
]
