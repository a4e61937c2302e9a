"""
JWT Authentication middleware.
"""

from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

from apps.core.exceptions import AuthenticationError


class JWTAuthenticationMiddleware(MiddlewareMixin):
    """
    Middleware to authenticate JWT tokens

    Attaches ``request.user_jwt`` ({'user_id', 'email'}) when a valid bearer
    token is present, ``None`` when no token was sent.
    """

    public_paths = [
        '/health',
        '/api/auth/register',
        '/api/auth/login',
        '/admin/',
    ]

    def process_request(self, request):
        """
        Extract and verify JWT token from Authorization header
        """
        from apps.authentication.services import auth_service

        request.user_jwt = None

        if any(request.path.startswith(path) for path in self.public_paths):
            return None

        auth_header = request.META.get('HTTP_AUTHORIZATION', '')
        if not auth_header:
            # Views decide whether authentication is required
            return None

        # Extract token (Bearer TOKEN format)
        parts = auth_header.split()
        if len(parts) != 2 or parts[0].lower() != 'bearer':
            return JsonResponse({
                'error': {
                    'code': 'INVALID_TOKEN_FORMAT',
                    'message': 'Authorization header must be in format: Bearer <token>',
                    'retryable': False,
                }
            }, status=401)

        try:
            payload = auth_service.decode(parts[1])
        except AuthenticationError as e:
            return JsonResponse({'error': e.to_dict()}, status=e.status_code)

        request.user_jwt = {
            'user_id': payload['userId'],
            'email': payload['email'],
        }
        return None


def get_request_user(request):
    """
    Return the authenticated User for a request

    Raises:
        AuthenticationError: If the request carries no valid credential or the
            user no longer exists
    """
    from apps.authentication.models import User

    user_jwt = getattr(request, 'user_jwt', None)
    if not user_jwt:
        raise AuthenticationError('No token, authorization denied', code='MISSING_TOKEN')
    try:
        return User.objects.get(id=user_jwt['user_id'])
    except (User.DoesNotExist, ValueError):
        raise AuthenticationError('Token is not valid', code='INVALID_TOKEN')
