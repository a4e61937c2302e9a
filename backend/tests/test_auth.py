"""
Tests for registration, login and token handling.
"""

from datetime import timedelta

import pytest

from apps.authentication.models import User
from apps.authentication.services import auth_service
from apps.core.exceptions import AuthenticationError
from apps.websocket.middleware import extract_token


@pytest.mark.django_db
class TestAuthEndpoints:

    def test_register_derives_college(self, api_client_for):
        response = api_client_for().post('/api/auth/register', {
            'email': 'Dana@Campus.EDU',
            'password': 'password123',
            'name': 'Dana',
            'year': 3,
            'branch': 'ECE',
        }, format='json')

        assert response.status_code == 201
        body = response.json()
        assert body['user']['collegeDomain'] == 'campus.edu'
        assert body['tokens']['accessToken']
        assert User.objects.filter(email='dana@campus.edu').exists()

    def test_register_duplicate(self, api_client_for, alice):
        response = api_client_for().post('/api/auth/register', {
            'email': alice.email,
            'password': 'password123',
            'name': 'Again',
        }, format='json')
        assert response.status_code == 400
        assert response.json()['error']['code'] == 'USER_EXISTS'

    def test_login_and_me(self, api_client_for, alice):
        client = api_client_for()
        response = client.post('/api/auth/login', {'email': alice.email, 'password': 'password123'}, format='json')
        assert response.status_code == 200

        token = response.json()['tokens']['accessToken']
        client.credentials(HTTP_AUTHORIZATION=f'Bearer {token}')
        me = client.get('/api/auth/me')
        assert me.status_code == 200
        assert me.json()['user']['id'] == str(alice.id)

    def test_login_wrong_password(self, api_client_for, alice):
        response = api_client_for().post('/api/auth/login', {'email': alice.email, 'password': 'wrong-pass'}, format='json')
        assert response.status_code == 401
        assert response.json()['error']['code'] == 'AUTHENTICATION_FAILED'

    def test_health(self, api_client_for):
        response = api_client_for().get('/health')
        assert response.status_code == 200
        assert response.json()['status'] == 'ok'


@pytest.mark.django_db
class TestTokens:

    def test_resolve_user(self, alice, token_for):
        assert auth_service.resolve_user(token_for(alice)) == alice

    def test_expired_token(self, alice, settings):
        settings.JWT_ACCESS_TOKEN_LIFETIME = timedelta(seconds=-1)
        token = auth_service.generate_tokens(alice)['accessToken']

        with pytest.raises(AuthenticationError) as exc:
            auth_service.decode(token)
        assert exc.value.code == 'TOKEN_EXPIRED'
        assert auth_service.resolve_user(token) is None

    def test_token_of_deleted_user(self, alice, token_for):
        token = token_for(alice)
        alice.delete()
        assert auth_service.resolve_user(token) is None

    def test_foreign_signature(self, alice, settings, token_for):
        token = token_for(alice)
        settings.JWT_SECRET_KEY = 'another-secret'
        assert auth_service.resolve_user(token) is None


class TestExtractToken:

    def test_query_string(self):
        assert extract_token({'query_string': b'token=abc&x=1', 'headers': []}) == 'abc'

    def test_bearer_header(self):
        scope = {'query_string': b'', 'headers': [(b'authorization', b'Bearer xyz')]}
        assert extract_token(scope) == 'xyz'

    def test_nothing(self):
        assert extract_token({'query_string': b'', 'headers': [(b'authorization', b'Basic xyz')]}) is None
