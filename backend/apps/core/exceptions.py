"""
Custom exceptions and error handlers.

Every failure the chat core can report is an ``AppError``. HTTP views let
these propagate to ``custom_exception_handler``; the realtime gateway
catches them per command and turns them into targeted error events.
"""

from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
from django.http import JsonResponse
import logging

logger = logging.getLogger(__name__)


class AppError(Exception):
    """
    Custom application error class
    """
    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: str = 'INTERNAL_ERROR',
        retryable: bool = False,
        details: dict = None
    ):
        self.message = message
        self.status_code = status_code
        self.code = code
        self.retryable = retryable
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {
            'code': self.code,
            'message': self.message,
            'details': self.details,
            'retryable': self.retryable,
        }


class AuthenticationError(AppError):
    """Malformed, expired or unverifiable credential."""
    def __init__(self, message: str = 'Authentication failed', code: str = 'UNAUTHORIZED', details: dict = None):
        super().__init__(message, status_code=401, code=code, details=details)


class AuthorizationError(AppError):
    """Caller may not act on the referenced resource."""
    def __init__(self, message: str = 'Access denied', code: str = 'FORBIDDEN', details: dict = None):
        super().__init__(message, status_code=403, code=code, details=details)


class NotFoundError(AppError):
    """Referenced conversation, message or user does not exist."""
    def __init__(self, message: str = 'Not found', code: str = 'NOT_FOUND', details: dict = None):
        super().__init__(message, status_code=404, code=code, details=details)


class ChatValidationError(AppError):
    """Request rejected before any persistence call."""
    def __init__(self, message: str, code: str = 'VALIDATION_ERROR', details: dict = None):
        super().__init__(message, status_code=400, code=code, details=details)

    @classmethod
    def from_serializer_errors(cls, errors) -> 'ChatValidationError':
        return cls(format_validation_errors(errors), details=errors)


def format_validation_errors(errors) -> str:
    """
    Render DRF serializer errors as ``field: message; field: message``
    """
    parts = []
    for field, messages in errors.items():
        if not isinstance(messages, (list, tuple)):
            messages = [messages]
        parts.append(f'{field}: {" ".join(str(m) for m in messages)}')
    return '; '.join(parts)


class PersistenceError(AppError):
    """Underlying store call failed; nothing was written."""
    def __init__(self, message: str = 'Failed to persist changes', code: str = 'PERSISTENCE_ERROR', details: dict = None):
        super().__init__(message, status_code=500, code=code, retryable=True, details=details)


def custom_exception_handler(exc, context):
    """
    Custom exception handler for DRF

    Args:
        exc: The exception instance
        context: The context in which the exception occurred

    Returns:
        Response object with error details
    """
    # Handle AppError instances
    if isinstance(exc, AppError):
        if exc.status_code >= 500:
            logger.error(f'{exc.code}: {exc.message}', exc_info=exc)
        return Response({'error': exc.to_dict()}, status=exc.status_code)

    # Call REST framework's default exception handler
    response = exception_handler(exc, context)

    # Handle DRF exceptions
    if response is not None:
        error_code = 'VALIDATION_ERROR'
        retryable = False

        # Determine error code based on status
        if response.status_code == 401:
            error_code = 'UNAUTHORIZED'
        elif response.status_code == 403:
            error_code = 'FORBIDDEN'
        elif response.status_code == 404:
            error_code = 'NOT_FOUND'
        elif response.status_code == 405:
            error_code = 'METHOD_NOT_ALLOWED'
        elif response.status_code >= 500:
            error_code = 'INTERNAL_ERROR'
            retryable = True

        # Format error response
        error_message = response.data
        if isinstance(error_message, dict):
            if 'detail' in error_message:
                error_message = error_message['detail']
            else:
                error_message = str(error_message)

        return Response({
            'error': {
                'code': error_code,
                'message': str(error_message),
                'retryable': retryable,
            }
        }, status=response.status_code)

    # Handle unexpected exceptions
    logger.error(f'Unexpected error: {exc}', exc_info=True)
    return Response({
        'error': {
            'code': 'INTERNAL_ERROR',
            'message': 'An unexpected error occurred',
            'retryable': False,
        }
    }, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


class ErrorHandlerMiddleware:
    """
    Middleware to catch and format errors raised outside DRF views
    """
    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        response = self.get_response(request)
        return response

    def process_exception(self, request, exception):
        """Handle exceptions that occur during request processing"""
        if isinstance(exception, AppError):
            return JsonResponse({'error': exception.to_dict()}, status=exception.status_code)

        # Log unexpected errors
        logger.error(f'Unexpected error: {exception}', exc_info=True)
        return JsonResponse({
            'error': {
                'code': 'INTERNAL_ERROR',
                'message': 'An unexpected error occurred',
                'retryable': False,
            }
        }, status=500)
