"""
REST client for the chat API.

Blocking ``requests`` calls; async callers run them through
``asgiref.sync.sync_to_async``.
"""

import logging
from typing import Dict, List, Optional

import requests

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """
    A REST call failed

    ``retryable`` is True for network failures, timeouts and 5xx responses,
    the cases where another transport may still succeed.
    """

    def __init__(self, message: str, status_code: int = None, code: str = None, retryable: bool = False):
        self.message = message
        self.status_code = status_code
        self.code = code
        self.retryable = retryable
        super().__init__(message)


class ChatApiClient:
    """
    Client for the auth, conversation and message endpoints
    """

    def __init__(self, base_url: str, token: str = None, timeout: float = 10, session: requests.Session = None):
        self.base_url = base_url.rstrip('/')
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        headers = {'Content-Type': 'application/json'}
        if self.token:
            headers['Authorization'] = f'Bearer {self.token}'
        return headers

    def _request(self, method: str, path: str, json: Dict = None) -> Dict:
        url = f'{self.base_url}{path}'
        try:
            response = self.session.request(
                method,
                url,
                headers=self._headers(),
                json=json,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.warning(f'{method} {path} failed: {e}')
            raise ApiError(f'Request failed: {e}', retryable=True) from e

        if response.status_code >= 400:
            raise self._error_from(response)

        try:
            return response.json()
        except ValueError as e:
            raise ApiError('Invalid JSON response', status_code=response.status_code, retryable=True) from e

    @staticmethod
    def _error_from(response: requests.Response) -> ApiError:
        try:
            error = response.json().get('error') or {}
        except ValueError:
            error = {}
        if isinstance(error, str):
            error = {'message': error}

        return ApiError(
            error.get('message') or f'HTTP {response.status_code}',
            status_code=response.status_code,
            code=error.get('code'),
            retryable=response.status_code >= 500,
        )

    def login(self, email: str, password: str) -> Dict:
        """
        Log in and keep the access token for later calls

        Returns:
            The logged in user
        """
        data = self._request('POST', '/api/auth/login', {'email': email, 'password': password})
        self.token = data['tokens']['accessToken']
        return data['user']

    def list_conversations(self) -> List[Dict]:
        return self._request('GET', '/api/conversations/')['conversations']

    def conversation_with(self, user_id: str) -> Dict:
        """Get or create the conversation with another user"""
        return self._request('GET', f'/api/conversations/with/{user_id}')['conversation']

    def list_messages(self, conversation_id: str) -> List[Dict]:
        return self._request('GET', f'/api/messages/{conversation_id}')['messages']

    def send_message(
        self,
        text: str,
        conversation_id: Optional[str] = None,
        receiver_id: Optional[str] = None,
        client_message_id: Optional[str] = None,
    ) -> Dict:
        payload = {'text': text}
        if conversation_id:
            payload['conversationId'] = conversation_id
        if receiver_id:
            payload['receiverId'] = receiver_id
        if client_message_id:
            payload['clientMessageId'] = client_message_id
        return self._request('POST', '/api/messages/send', payload)['message']

    def mark_read(self, conversation_id: str) -> List[str]:
        """Mark a conversation read; returns the ids of newly read messages"""
        return self._request('POST', f'/api/messages/{conversation_id}/read')['messageIds']
