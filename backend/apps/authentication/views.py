"""
Authentication views (controllers).
"""

from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework import status
from rest_framework.permissions import AllowAny

from apps.core.exceptions import ChatValidationError
from apps.core.middleware.auth import get_request_user
from .services import auth_service
from .serializers import RegisterSerializer, LoginSerializer, UserResponseSerializer


class RegisterView(APIView):
    """
    Register a new user

    POST /api/auth/register
    """
    permission_classes = [AllowAny]

    def post(self, request):
        serializer = RegisterSerializer(data=request.data)
        if not serializer.is_valid():
            raise ChatValidationError.from_serializer_errors(serializer.errors)

        data = serializer.validated_data
        user = auth_service.register(
            data['email'],
            data['password'],
            name=data['name'],
            year=data['year'],
            branch=data['branch'],
        )

        return Response({
            'user': UserResponseSerializer(user).data,
            'tokens': auth_service.generate_tokens(user),
        }, status=status.HTTP_201_CREATED)


class LoginView(APIView):
    """
    Login user

    POST /api/auth/login
    """
    permission_classes = [AllowAny]

    def post(self, request):
        serializer = LoginSerializer(data=request.data)
        if not serializer.is_valid():
            raise ChatValidationError.from_serializer_errors(serializer.errors)

        user, tokens = auth_service.login(
            serializer.validated_data['email'],
            serializer.validated_data['password'],
        )

        return Response({
            'user': UserResponseSerializer(user).data,
            'tokens': tokens,
        }, status=status.HTTP_200_OK)


class CurrentUserView(APIView):
    """
    Get current user info

    GET /api/auth/me
    """
    permission_classes = [AllowAny]  # Check JWT in middleware instead

    def get(self, request):
        user = get_request_user(request)
        return Response({'user': UserResponseSerializer(user).data})
