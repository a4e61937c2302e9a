"""
Message serializers for request/response validation.
"""

from rest_framework import serializers

from apps.authentication.serializers import SenderProfileSerializer
from .models import Message


class MessageSerializer(serializers.ModelSerializer):
    """Serializer for Message model"""
    conversationId = serializers.UUIDField(source='conversation_id', read_only=True)
    sender = SenderProfileSerializer(read_only=True)
    receiver = SenderProfileSerializer(read_only=True)
    clientMessageId = serializers.CharField(source='client_message_id', read_only=True, allow_null=True)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)
    deliveredTo = serializers.SerializerMethodField()
    readBy = serializers.SerializerMethodField()

    class Meta:
        model = Message
        fields = [
            'id',
            'conversationId',
            'sender',
            'receiver',
            'text',
            'clientMessageId',
            'createdAt',
            'deliveredTo',
            'readBy',
        ]
        read_only_fields = fields

    def get_deliveredTo(self, instance):
        return [str(user.id) for user in instance.delivered_to.all()]

    def get_readBy(self, instance):
        return [str(user.id) for user in instance.read_by.all()]


class SendMessageSerializer(serializers.Serializer):
    """
    Serializer for sending a message

    ``text`` keeps surrounding whitespace here; the store trims it and then
    checks emptiness and length, so both send paths apply the same bounds.
    """
    conversationId = serializers.UUIDField(required=False, allow_null=True)
    receiverId = serializers.UUIDField(required=False, allow_null=True)
    text = serializers.CharField(
        required=True,
        allow_blank=True,
        trim_whitespace=False,
    )
    clientMessageId = serializers.CharField(required=False, allow_null=True, max_length=64)
