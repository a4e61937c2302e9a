"""
Django admin configuration for authentication app.
"""

from django.contrib import admin
from .models import User


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    """Admin interface for User model"""
    list_display = ('email', 'name', 'college_domain', 'year', 'branch', 'created_at')
    list_filter = ('college_domain', 'year')
    search_fields = ('email', 'name')
    readonly_fields = ('id', 'created_at', 'updated_at', 'password_hash')
    ordering = ('-created_at',)

    fieldsets = (
        ('User Information', {
            'fields': ('id', 'email', 'name', 'college_domain')
        }),
        ('Profile', {
            'fields': ('avatar_url', 'year', 'branch')
        }),
        ('Security', {
            'fields': ('password_hash',)
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at')
        }),
    )
