"""
Django admin configuration for conversations app.
"""

from django.contrib import admin
from .models import Conversation


@admin.register(Conversation)
class ConversationAdmin(admin.ModelAdmin):
    """Admin interface for Conversation model"""
    list_display = (
        'id',
        'user_low',
        'user_high',
        'unread_low',
        'unread_high',
        'updated_at',
    )
    search_fields = ('user_low__email', 'user_high__email')
    readonly_fields = ('id', 'last_message', 'created_at', 'updated_at')
    raw_id_fields = ('user_low', 'user_high')
    ordering = ('-updated_at',)

    fieldsets = (
        ('Participants', {
            'fields': ('id', 'user_low', 'user_high')
        }),
        ('Status', {
            'fields': ('last_message', 'unread_low', 'unread_high')
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at')
        }),
    )
