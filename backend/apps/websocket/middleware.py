"""
WebSocket authentication middleware.
"""

import logging
from urllib.parse import parse_qs

from channels.db import database_sync_to_async
from channels.middleware import BaseMiddleware

logger = logging.getLogger(__name__)


@database_sync_to_async
def _resolve_user(token):
    from apps.authentication.services import auth_service
    return auth_service.resolve_user(token)


def extract_token(scope) -> str:
    """
    Read the credential from ``?token=`` or an ``Authorization: Bearer`` header
    """
    query_string = scope.get('query_string', b'').decode()
    token = parse_qs(query_string).get('token', [None])[0]
    if token:
        return token

    for name, value in scope.get('headers', []):
        if name.lower() == b'authorization':
            parts = value.decode().split()
            if len(parts) == 2 and parts[0].lower() == 'bearer':
                return parts[1]
    return None


class JWTAuthMiddleware(BaseMiddleware):
    """
    JWT authentication middleware for WebSocket connections

    Sets ``scope['user']`` to the resolved User, or None when the handshake
    carries no usable credential. The consumer rejects the latter.
    """

    async def __call__(self, scope, receive, send):
        scope = dict(scope)
        token = extract_token(scope)
        scope['user'] = await _resolve_user(token) if token else None
        if scope['user'] is None:
            logger.warning('WebSocket handshake without a valid credential')
        return await super().__call__(scope, receive, send)
