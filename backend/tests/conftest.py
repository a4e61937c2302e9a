"""
Shared fixtures for the chat test suite.
"""

import itertools

import pytest
from channels.layers import get_channel_layer
from rest_framework.test import APIClient

from apps.authentication.models import User
from apps.authentication.services import auth_service
from apps.websocket.presence import PresenceRegistry

_counter = itertools.count(1)


@pytest.fixture
def make_user(db):
    """Factory for users; all share one college unless ``domain`` is given"""

    def factory(name=None, domain='college.edu', **extra):
        n = next(_counter)
        user = User(
            email=f'user{n}@{domain}',
            name=name or f'User {n}',
            college_domain=domain,
            year=extra.pop('year', 2),
            branch=extra.pop('branch', 'CSE'),
            **extra
        )
        user.set_password('password123')
        user.save()
        return user

    return factory


@pytest.fixture
def alice(make_user):
    return make_user(name='Alice')


@pytest.fixture
def bob(make_user):
    return make_user(name='Bob')


@pytest.fixture
def outsider(make_user):
    return make_user(name='Olly', domain='other.edu')


@pytest.fixture
def token_for():
    def factory(user):
        return auth_service.generate_tokens(user)['accessToken']
    return factory


@pytest.fixture
def api_client_for(token_for):
    """DRF test client authenticated as the given user"""

    def factory(user=None):
        client = APIClient()
        if user is not None:
            client.credentials(HTTP_AUTHORIZATION=f'Bearer {token_for(user)}')
        return client

    return factory


@pytest.fixture
def presence():
    return PresenceRegistry()


@pytest.fixture(autouse=True)
def reset_realtime_state():
    """Drop groups, queued events and presence left behind by a previous test"""
    from apps.websocket.routing import presence_registry

    yield
    layer = get_channel_layer()
    layer.channels.clear()
    layer.groups.clear()
    presence_registry.clear()
