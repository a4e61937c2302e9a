"""
Message models.
"""

import uuid
from django.db import models
from apps.conversations.models import Conversation


class Message(models.Model):
    """
    Message model

    Append-only: after creation only ``delivered_to`` and ``read_by`` change.
    ``client_message_id`` is the sender-chosen idempotency key; a repeated key
    for the same sender maps to the already stored message.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    conversation = models.ForeignKey(
        Conversation,
        on_delete=models.CASCADE,
        related_name='messages'
    )
    sender = models.ForeignKey(
        'authentication.User',
        on_delete=models.CASCADE,
        related_name='sent_messages'
    )
    receiver = models.ForeignKey(
        'authentication.User',
        on_delete=models.CASCADE,
        related_name='received_messages'
    )
    text = models.TextField()
    client_message_id = models.CharField(max_length=64, null=True, blank=True)
    delivered_to = models.ManyToManyField(
        'authentication.User',
        related_name='delivered_messages',
        blank=True
    )
    read_by = models.ManyToManyField(
        'authentication.User',
        related_name='read_messages',
        blank=True
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'messages'
        unique_together = ['sender', 'client_message_id']
        indexes = [
            models.Index(fields=['conversation', 'created_at'], name='messages_conv_created_idx'),
            models.Index(fields=['sender', 'receiver'], name='messages_sender_receiver_idx'),
        ]
        ordering = ['created_at', 'id']

    def __str__(self):
        return f'{self.sender_id}: {self.text[:50]}'
