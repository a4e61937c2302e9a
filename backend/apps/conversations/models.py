"""
Conversation models.
"""

import uuid
from django.db import models


class Conversation(models.Model):
    """
    Two-party conversation

    The participant pair is stored in canonical order (``user_low`` sorts
    before ``user_high`` by string id) so a unique constraint can enforce at
    most one conversation per unordered pair.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user_low = models.ForeignKey(
        'authentication.User',
        on_delete=models.CASCADE,
        related_name='+'
    )
    user_high = models.ForeignKey(
        'authentication.User',
        on_delete=models.CASCADE,
        related_name='+'
    )
    last_message = models.ForeignKey(
        'messaging.Message',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )
    unread_low = models.PositiveIntegerField(default=0)
    unread_high = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'conversations'
        constraints = [
            models.UniqueConstraint(fields=['user_low', 'user_high'], name='uniq_conversation_pair'),
        ]
        indexes = [
            models.Index(fields=['-updated_at'], name='conversations_updated_idx'),
        ]
        ordering = ['-updated_at']

    def __str__(self):
        return f'Conversation {self.id}'

    @staticmethod
    def ordered_pair(user_a_id, user_b_id) -> tuple:
        """Return the two ids in canonical (low, high) order"""
        low, high = sorted([user_a_id, user_b_id], key=str)
        return low, high

    @property
    def participant_ids(self) -> list:
        return [self.user_low_id, self.user_high_id]

    def has_participant(self, user_id) -> bool:
        return str(user_id) in (str(self.user_low_id), str(self.user_high_id))

    def other_participant_id(self, user_id):
        """Return the id of the participant that is not ``user_id``"""
        if str(user_id) == str(self.user_low_id):
            return self.user_high_id
        return self.user_low_id

    def unread_field_for(self, user_id) -> str:
        """Name of the unread counter column belonging to ``user_id``"""
        return 'unread_low' if str(user_id) == str(self.user_low_id) else 'unread_high'

    def unread_count_for(self, user_id) -> int:
        return getattr(self, self.unread_field_for(user_id))

    @property
    def unread_counts(self) -> dict:
        return {
            str(self.user_low_id): self.unread_low,
            str(self.user_high_id): self.unread_high,
        }
