"""
Authentication serializers for request/response validation.
"""

from rest_framework import serializers


class RegisterSerializer(serializers.Serializer):
    """
    Serializer for user registration
    """
    email = serializers.EmailField(required=True)
    password = serializers.CharField(required=True, min_length=8, write_only=True)
    name = serializers.CharField(required=True, max_length=50)
    year = serializers.IntegerField(required=False, default=1, min_value=1, max_value=5)
    branch = serializers.CharField(required=False, default='', allow_blank=True, max_length=100)


class LoginSerializer(serializers.Serializer):
    """
    Serializer for user login
    """
    email = serializers.EmailField(required=True)
    password = serializers.CharField(required=True, write_only=True)


class UserResponseSerializer(serializers.Serializer):
    """
    Serializer for the authenticated user's own data
    """
    id = serializers.CharField()
    email = serializers.EmailField()
    name = serializers.CharField()
    avatarUrl = serializers.CharField(source='avatar_url', allow_null=True)
    year = serializers.IntegerField()
    branch = serializers.CharField()
    collegeDomain = serializers.CharField(source='college_domain')
    createdAt = serializers.DateTimeField(source='created_at')


class PublicProfileSerializer(serializers.Serializer):
    """
    Display fields of a chat participant
    """
    id = serializers.CharField()
    name = serializers.CharField()
    avatarUrl = serializers.CharField(source='avatar_url', allow_null=True)
    year = serializers.IntegerField()
    branch = serializers.CharField()


class SenderProfileSerializer(serializers.Serializer):
    """
    Display fields attached to message senders and receivers
    """
    id = serializers.CharField()
    name = serializers.CharField()
    avatarUrl = serializers.CharField(source='avatar_url', allow_null=True)
