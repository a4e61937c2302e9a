"""
Conversation serializers for request/response validation.
"""

from rest_framework import serializers

from apps.authentication.serializers import PublicProfileSerializer
from apps.messaging.serializers import MessageSerializer
from .models import Conversation


class ConversationSerializer(serializers.ModelSerializer):
    """Full conversation as broadcast in ``conversation_updated``"""
    participants = serializers.SerializerMethodField()
    lastMessage = MessageSerializer(source='last_message', read_only=True, allow_null=True)
    unreadCounts = serializers.DictField(source='unread_counts', child=serializers.IntegerField(), read_only=True)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)
    updatedAt = serializers.DateTimeField(source='updated_at', read_only=True)

    class Meta:
        model = Conversation
        fields = [
            'id',
            'participants',
            'lastMessage',
            'unreadCounts',
            'createdAt',
            'updatedAt',
        ]
        read_only_fields = fields

    def get_participants(self, instance):
        return PublicProfileSerializer([instance.user_low, instance.user_high], many=True).data


class ConversationListSerializer(serializers.ModelSerializer):
    """
    One conversation as seen by the requesting user

    Expects ``context['user']``.
    """
    otherUser = serializers.SerializerMethodField()
    lastMessage = MessageSerializer(source='last_message', read_only=True, allow_null=True)
    unreadCount = serializers.SerializerMethodField()
    updatedAt = serializers.DateTimeField(source='updated_at', read_only=True)

    class Meta:
        model = Conversation
        fields = [
            'id',
            'otherUser',
            'lastMessage',
            'unreadCount',
            'updatedAt',
        ]
        read_only_fields = fields

    def get_otherUser(self, instance):
        user = self.context['user']
        other = instance.user_high if str(instance.user_low_id) == str(user.id) else instance.user_low
        return PublicProfileSerializer(other).data

    def get_unreadCount(self, instance):
        annotated = getattr(instance, 'unread_for_user', None)
        if annotated is not None:
            return annotated
        return instance.unread_count_for(self.context['user'].id)
