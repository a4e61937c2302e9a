"""
Authentication URL configuration.
"""

from django.urls import path
from .views import (
    RegisterView,
    LoginView,
    CurrentUserView,
)

app_name = 'authentication'

urlpatterns = [
    # POST /api/auth/register
    # Register a new user
    path('register', RegisterView.as_view(), name='register'),

    # POST /api/auth/login
    # Login user and get an access token
    path('login', LoginView.as_view(), name='login'),

    # GET /api/auth/me
    # Get current user info (protected)
    path('me', CurrentUserView.as_view(), name='current_user'),
]
