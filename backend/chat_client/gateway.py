"""
Realtime gateway connection.

Frames are JSON envelopes ``{"event", "data", "requestId"?}``. Commands sent
with ``request`` carry a fresh ``requestId`` and resolve when a frame with
the same id comes back, or fail when the acknowledgement bound expires.
"""

import asyncio
import json
import logging
import uuid
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

logger = logging.getLogger(__name__)

ERROR_EVENTS = {
    'error',
    'join_error',
    'leave_error',
    'message_error',
    'typing_error',
    'read_error',
}


class GatewayError(Exception):
    """A gateway command failed or the connection is unusable"""

    def __init__(self, message: str, code: str = None, event: str = None):
        self.message = message
        self.code = code
        self.event = event
        super().__init__(message)


class GatewayTimeout(GatewayError):
    """No acknowledgement arrived within the bound"""

    def __init__(self, request_id: str, timeout: float):
        super().__init__(f'No acknowledgement for {request_id} within {timeout}s', code='ACK_TIMEOUT')
        self.request_id = request_id


class PendingRequests:
    """
    Table of in-flight requests keyed by request id

    Each entry owns a future and one ``call_later`` timer; whichever of
    resolve, reject or the timer comes first settles the future and removes
    the entry.
    """

    def __init__(self):
        self._entries: Dict[str, Tuple[asyncio.Future, asyncio.TimerHandle]] = {}

    def create(self, request_id: str, timeout: float) -> asyncio.Future:
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        handle = loop.call_later(timeout, self._expire, request_id, timeout)
        self._entries[request_id] = (future, handle)
        return future

    def _pop(self, request_id: str) -> Optional[asyncio.Future]:
        entry = self._entries.pop(request_id, None)
        if entry is None:
            return None
        future, handle = entry
        handle.cancel()
        if future.done():
            return None
        return future

    def resolve(self, request_id: str, data: Any) -> bool:
        future = self._pop(request_id)
        if future is None:
            return False
        future.set_result(data)
        return True

    def reject(self, request_id: str, error: Exception) -> bool:
        future = self._pop(request_id)
        if future is None:
            return False
        future.set_exception(error)
        return True

    def _expire(self, request_id: str, timeout: float) -> None:
        if self.reject(request_id, GatewayTimeout(request_id, timeout)):
            logger.warning(f'Request {request_id} timed out after {timeout}s')

    def reject_all(self, error: Exception) -> None:
        for request_id in list(self._entries):
            self.reject(request_id, error)

    def __contains__(self, request_id) -> bool:
        return request_id in self._entries

    def __len__(self):
        return len(self._entries)


class GatewayConnection:
    """
    One websocket connection to the chat gateway

    Handlers registered with ``on`` are plain callables taking the event's
    ``data``; they run on the reader task in frame order.
    """

    def __init__(
        self,
        url: str,
        token: str,
        ack_timeout: float = 5.0,
        connector: Callable = websockets.connect,
    ):
        self.url = url
        self.token = token
        self.ack_timeout = ack_timeout
        self._connector = connector
        self._ws = None
        self._reader: Optional[asyncio.Task] = None
        self._handlers: Dict[str, List[Callable]] = defaultdict(list)
        self.pending = PendingRequests()
        self.user_id: Optional[str] = None
        self.online_users: List[str] = []

    @property
    def connected(self) -> bool:
        return self._ws is not None and self._reader is not None and not self._reader.done()

    async def connect(self) -> None:
        """
        Open the connection and wait for the server's ``authenticated`` frame

        Raises:
            GatewayError: If the handshake is rejected or the server never
                confirms the session
        """
        target = f'{self.url}?{urlencode({"token": self.token})}'
        try:
            self._ws = await self._connector(target)
            raw = await asyncio.wait_for(self._ws.recv(), self.ack_timeout)
        except (WebSocketException, OSError, asyncio.TimeoutError) as e:
            logger.warning(f'Gateway handshake failed: {e}')
            await self._discard()
            raise GatewayError('Gateway handshake rejected', code='HANDSHAKE_FAILED') from e

        event, data, _ = self._decode(raw)
        if event != 'authenticated':
            await self._discard()
            raise GatewayError(f'Unexpected first frame: {event}', code='HANDSHAKE_FAILED')

        self.user_id = data.get('userId')
        self.online_users = list(data.get('onlineUsers', []))
        self._notify(event, data)
        self._reader = asyncio.create_task(self._read_loop())
        logger.info(f'Connected to gateway as {self.user_id}')

    async def _discard(self) -> None:
        if self._ws is not None:
            await self._ws.close()
        self._ws = None

    @staticmethod
    def _decode(raw) -> Tuple[Optional[str], Dict, Optional[str]]:
        try:
            frame = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning('Dropping non-JSON frame from gateway')
            return None, {}, None
        if not isinstance(frame, dict):
            return None, {}, None
        return frame.get('event'), frame.get('data') or {}, frame.get('requestId')

    async def _read_loop(self) -> None:
        try:
            async for raw in self._ws:
                self.dispatch(raw)
        except ConnectionClosed as e:
            logger.info(f'Gateway connection closed: {e}')
        finally:
            self.pending.reject_all(GatewayError('Connection closed', code='CONNECTION_CLOSED'))

    def dispatch(self, raw) -> None:
        """Settle a pending request for the frame, then run event handlers"""
        event, data, request_id = self._decode(raw)
        if event is None:
            return

        if request_id is not None and request_id in self.pending:
            if event in ERROR_EVENTS:
                self.pending.reject(request_id, GatewayError(data.get('error', event), code=data.get('code'), event=event))
            else:
                self.pending.resolve(request_id, data)

        self._notify(event, data)

    def _notify(self, event: str, data: Dict) -> None:
        for handler in list(self._handlers.get(event, ())):
            try:
                handler(data)
            except Exception as e:
                logger.error(f'Handler for {event} failed: {e}', exc_info=True)

    def on(self, event: str, handler: Callable[[Dict], None]) -> None:
        self._handlers[event].append(handler)

    def off(self, event: str, handler: Callable[[Dict], None]) -> None:
        if handler in self._handlers.get(event, ()):
            self._handlers[event].remove(handler)

    async def emit(self, event: str, data: Dict, request_id: str = None) -> None:
        if self._ws is None:
            raise GatewayError('Not connected', code='NOT_CONNECTED')
        frame = {'event': event, 'data': data}
        if request_id is not None:
            frame['requestId'] = request_id
        try:
            await self._ws.send(json.dumps(frame))
        except ConnectionClosed as e:
            raise GatewayError('Connection closed', code='CONNECTION_CLOSED') from e

    async def request(self, event: str, data: Dict, timeout: float = None) -> Dict:
        """
        Send a command and wait for its acknowledgement

        Raises:
            GatewayTimeout: If nothing answers within the bound
            GatewayError: If the gateway answers with an error event
        """
        request_id = uuid.uuid4().hex
        future = self.pending.create(request_id, timeout or self.ack_timeout)
        try:
            await self.emit(event, data, request_id)
        except GatewayError as e:
            self.pending.reject(request_id, e)
        return await future

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()
        if self._reader is not None:
            await self._reader
            self._reader = None
        self._ws = None
