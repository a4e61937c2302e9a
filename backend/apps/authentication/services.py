"""
Authentication service.

Issues access tokens and owns the one credential-decode path shared by the
HTTP middleware and the websocket handshake.
"""

import logging
import jwt
from datetime import datetime, timezone as dt_timezone
from typing import Optional

from django.conf import settings

from apps.core.exceptions import AuthenticationError, ChatValidationError
from .models import User

logger = logging.getLogger(__name__)


class AuthService:
    """
    Authentication service for user registration, login, and token handling
    """

    def register(self, email: str, password: str, name: str, year: int = 1, branch: str = '') -> User:
        """
        Register a new user

        Args:
            email: User's email address; its domain becomes the college
            password: User's password (plain text)
            name: Display name
            year: Study year (1-5)
            branch: Branch of study

        Returns:
            User instance

        Raises:
            ChatValidationError: If validation fails or user already exists
        """
        if not email or not password:
            raise ChatValidationError('Email and password are required')

        if len(password) < 8:
            raise ChatValidationError('Password must be at least 8 characters long')

        email = email.lower()
        if User.objects.filter(email=email).exists():
            raise ChatValidationError('User with this email already exists', code='USER_EXISTS')

        user = User(
            email=email,
            name=name.strip(),
            year=year,
            branch=branch.strip(),
            college_domain=User.domain_of(email),
        )
        user.set_password(password)
        user.save()

        logger.info(f'Registered user {user.id} in college {user.college_domain}')
        return user

    def login(self, email: str, password: str) -> tuple[User, dict]:
        """
        Login user and generate tokens

        Raises:
            AuthenticationError: If credentials are invalid
        """
        if not email or not password:
            raise ChatValidationError('Email and password are required')

        try:
            user = User.objects.get(email=email.lower())
        except User.DoesNotExist:
            raise AuthenticationError('Invalid email or password', code='AUTHENTICATION_FAILED')

        if not user.check_password(password):
            raise AuthenticationError('Invalid email or password', code='AUTHENTICATION_FAILED')

        return user, self.generate_tokens(user)

    def generate_tokens(self, user: User) -> dict:
        """
        Generate an access token for a user

        Returns:
            Dict with accessToken
        """
        now = datetime.now(dt_timezone.utc)
        access_token = jwt.encode(
            {
                'userId': str(user.id),
                'email': user.email,
                'exp': now + settings.JWT_ACCESS_TOKEN_LIFETIME,
                'iat': now,
            },
            settings.JWT_SECRET_KEY,
            algorithm=settings.JWT_ALGORITHM
        )
        return {'accessToken': access_token}

    def decode(self, token: str) -> dict:
        """
        Decode and verify an access token

        Returns:
            Dict with userId and email

        Raises:
            AuthenticationError: If the token is missing, invalid or expired
        """
        if not token:
            raise AuthenticationError('Missing access token', code='MISSING_TOKEN')
        try:
            payload = jwt.decode(
                token,
                settings.JWT_SECRET_KEY,
                algorithms=[settings.JWT_ALGORITHM]
            )
        except jwt.ExpiredSignatureError:
            raise AuthenticationError('Access token has expired', code='TOKEN_EXPIRED')
        except jwt.InvalidTokenError:
            raise AuthenticationError('Invalid access token', code='INVALID_TOKEN')

        if not payload.get('userId'):
            raise AuthenticationError('Invalid access token', code='INVALID_TOKEN')
        return {'userId': payload['userId'], 'email': payload.get('email')}

    def resolve_user(self, token: str) -> Optional[User]:
        """
        Resolve a token to its User, or None when it cannot be trusted
        """
        try:
            payload = self.decode(token)
        except AuthenticationError as e:
            logger.warning(f'Rejected credential: {e.code}')
            return None
        try:
            return User.objects.get(id=payload['userId'])
        except (User.DoesNotExist, ValueError):
            logger.warning(f'Credential for unknown user {payload["userId"]}')
            return None


# Create singleton instance
auth_service = AuthService()
