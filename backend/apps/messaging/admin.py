"""
Django admin configuration for messaging app.
"""

from django.contrib import admin
from .models import Message


@admin.register(Message)
class MessageAdmin(admin.ModelAdmin):
    """Admin interface for Message model"""
    list_display = (
        'sender',
        'receiver',
        'conversation',
        'created_at',
        'text_preview'
    )
    search_fields = ('sender__email', 'receiver__email', 'text', 'client_message_id')
    readonly_fields = ('id', 'created_at')
    raw_id_fields = ('conversation', 'sender', 'receiver')
    filter_horizontal = ('delivered_to', 'read_by')
    ordering = ('-created_at',)

    fieldsets = (
        ('Message Information', {
            'fields': ('id', 'conversation', 'client_message_id')
        }),
        ('Participants', {
            'fields': ('sender', 'receiver')
        }),
        ('Content', {
            'fields': ('text',)
        }),
        ('Acknowledgements', {
            'fields': ('delivered_to', 'read_by')
        }),
        ('Timestamps', {
            'fields': ('created_at',)
        }),
    )

    def text_preview(self, obj):
        """Display text preview"""
        return obj.text[:50] + '...' if len(obj.text) > 50 else obj.text
    text_preview.short_description = 'Text Preview'
