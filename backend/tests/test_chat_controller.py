"""
Tests for the client-side chat controller.

The REST client and gateway connection are replaced by in-memory fakes so
the send protocol, typing debounce and state projections can be checked
without a server.
"""

import asyncio
from collections import defaultdict

import pytest
from hypothesis import given, strategies as st, settings

from chat_client.api import ApiError
from chat_client.controller import ChatController, SendFailedError
from chat_client.gateway import GatewayError, GatewayTimeout

ME = 'user-me'
PEER = 'user-peer'
CONVERSATION = 'conv-1'


def make_message(message_id, sender=PEER, conversation_id=CONVERSATION, created_at='2026-01-01T10:00:00Z'):
    return {
        'id': message_id,
        'conversationId': conversation_id,
        'sender': {'id': sender, 'name': sender, 'avatarUrl': None},
        'receiver': {'id': ME if sender == PEER else PEER, 'name': '', 'avatarUrl': None},
        'text': f'text {message_id}',
        'createdAt': created_at,
        'deliveredTo': [],
        'readBy': [],
    }


class FakeApi:
    def __init__(self, calls):
        self.calls = calls
        self.conversations = []
        self.messages = []
        self.send_error = None
        self.sent = []

    def list_conversations(self):
        self.calls.append('list_conversations')
        return list(self.conversations)

    def conversation_with(self, user_id):
        self.calls.append('conversation_with')
        return {
            'id': CONVERSATION,
            'participants': [{'id': ME}, {'id': user_id}],
            'lastMessage': None,
            'unreadCounts': {ME: 0, user_id: 0},
            'updatedAt': '2026-01-01T09:00:00Z',
        }

    def list_messages(self, conversation_id):
        self.calls.append('list_messages')
        return list(self.messages)

    def send_message(self, text, conversation_id=None, receiver_id=None, client_message_id=None):
        self.calls.append('rest_send')
        self.sent.append({
            'text': text,
            'conversation_id': conversation_id,
            'receiver_id': receiver_id,
            'client_message_id': client_message_id,
        })
        if self.send_error is not None:
            raise self.send_error
        message = make_message('m-rest', sender=ME, conversation_id=conversation_id or CONVERSATION)
        self.messages.append(message)
        return message

    def mark_read(self, conversation_id):
        self.calls.append('mark_read')
        return [m['id'] for m in self.messages if m['sender']['id'] != ME]


class FakeGateway:
    def __init__(self, calls):
        self.calls = calls
        self.handlers = defaultdict(list)
        self.emitted = []
        self.requests = []
        self.request_error = None

    def on(self, event, handler):
        self.handlers[event].append(handler)

    def fire(self, event, data):
        for handler in self.handlers[event]:
            handler(data)

    async def connect(self):
        self.fire('authenticated', {'userId': ME, 'onlineUsers': [ME, PEER]})

    async def emit(self, event, data, request_id=None):
        self.emitted.append((event, data))

    async def request(self, event, data, timeout=None):
        self.calls.append('gateway_send')
        self.requests.append((event, data))
        if self.request_error is not None:
            raise self.request_error
        return {'message': make_message('m-ws', sender=ME)}

    async def close(self):
        pass


@pytest.fixture
def calls():
    return []


@pytest.fixture
def api(calls):
    return FakeApi(calls)


@pytest.fixture
def gateway(calls):
    return FakeGateway(calls)


@pytest.fixture
def controller(api, gateway):
    return ChatController(api, gateway, ME, typing_timeout=0.05)


@pytest.mark.asyncio
class TestSendMessage:

    async def test_rest_success_refreshes_messages(self, controller, api, gateway, calls):
        await controller.open_conversation(CONVERSATION)
        calls.clear()

        message = await controller.send_message('  hi  ')

        assert message['id'] == 'm-rest'
        assert api.sent[0]['text'] == 'hi'
        assert calls == ['rest_send', 'list_messages']
        assert gateway.requests == []
        assert [m['id'] for m in controller.messages] == ['m-rest']

    async def test_falls_back_to_gateway_with_same_idempotency_key(self, controller, api, gateway, calls):
        await controller.open_conversation(CONVERSATION)
        calls.clear()
        api.send_error = ApiError('Request failed: timeout', retryable=True)

        message = await controller.send_message('hello')

        assert message['id'] == 'm-ws'
        assert calls == ['rest_send', 'gateway_send']
        event, payload = gateway.requests[0]
        assert event == 'send_message'
        assert payload['conversationId'] == CONVERSATION
        assert payload['clientMessageId'] == api.sent[0]['client_message_id']

    async def test_client_error_does_not_fall_back(self, controller, api, gateway):
        await controller.open_conversation(CONVERSATION)
        api.send_error = ApiError('Access denied', status_code=403, code='NOT_A_PARTICIPANT')

        with pytest.raises(SendFailedError) as exc:
            await controller.send_message('hello')

        assert exc.value.code == 'NOT_A_PARTICIPANT'
        assert gateway.requests == []

    async def test_unacknowledged_fallback_fails(self, controller, api, gateway):
        await controller.open_conversation(CONVERSATION)
        api.send_error = ApiError('HTTP 502', status_code=502, retryable=True)
        gateway.request_error = GatewayTimeout('r1', 5)

        with pytest.raises(SendFailedError) as exc:
            await controller.send_message('hello')
        assert exc.value.code == 'ACK_TIMEOUT'

    async def test_fallback_error_event_fails(self, controller, api, gateway):
        await controller.open_conversation(CONVERSATION)
        api.send_error = ApiError('HTTP 500', status_code=500, retryable=True)
        gateway.request_error = GatewayError('Failed to send message', code='PERSISTENCE_ERROR', event='message_error')

        with pytest.raises(SendFailedError) as exc:
            await controller.send_message('hello')
        assert exc.value.message == 'Failed to send message'

    async def test_empty_text_is_rejected_locally(self, controller, calls):
        await controller.open_conversation(CONVERSATION)
        calls.clear()

        with pytest.raises(SendFailedError):
            await controller.send_message('   ')
        assert calls == []

    async def test_receiver_fallback_without_active_conversation(self, controller, api, gateway):
        api.send_error = ApiError('down', retryable=True)

        await controller.send_message('first contact', receiver_id=PEER)

        assert api.sent[0]['receiver_id'] == PEER
        assert gateway.requests[0][1]['receiverId'] == PEER
        assert 'conversationId' not in gateway.requests[0][1]

    async def test_first_contact_over_rest_lists_new_conversation(self, controller, api, calls):
        api.conversations = [{'id': CONVERSATION, 'participant': {'id': PEER}, 'updatedAt': '2026-01-01T10:00:00Z'}]

        message = await controller.send_message('first contact', receiver_id=PEER)

        assert message['conversationId'] == CONVERSATION
        assert calls == ['rest_send', 'list_conversations']
        assert [c['id'] for c in controller.conversations] == [CONVERSATION]

    async def test_known_conversation_is_not_refetched(self, controller, api, calls):
        api.conversations = [{'id': CONVERSATION, 'participant': {'id': PEER}, 'updatedAt': '2026-01-01T10:00:00Z'}]
        await controller.refresh_conversations()
        calls.clear()

        await controller.send_message('again', receiver_id=PEER)

        assert calls == ['rest_send']

    async def test_no_target(self, controller):
        with pytest.raises(SendFailedError) as exc:
            await controller.send_message('hello')
        assert exc.value.code == 'MISSING_TARGET'


@pytest.mark.asyncio
class TestTyping:

    async def test_debounce_sends_one_start_and_one_stop(self, controller, gateway):
        await controller.open_conversation(CONVERSATION)
        gateway.emitted.clear()

        for _ in range(4):
            await controller.keystroke()
            await asyncio.sleep(0.02)

        assert gateway.emitted == [('typing_start', {'conversationId': CONVERSATION})]
        assert controller.is_typing

        await asyncio.sleep(0.1)

        assert gateway.emitted == [
            ('typing_start', {'conversationId': CONVERSATION}),
            ('typing_stop', {'conversationId': CONVERSATION}),
        ]
        assert not controller.is_typing

    async def test_send_stops_typing(self, controller, gateway):
        await controller.open_conversation(CONVERSATION)
        await controller.keystroke()
        gateway.emitted.clear()

        await controller.send_message('done typing')
        await asyncio.sleep(0.1)

        assert gateway.emitted == [('typing_stop', {'conversationId': CONVERSATION})]

    async def test_switching_conversation_stops_typing_in_old_room(self, controller, gateway):
        await controller.open_conversation(CONVERSATION)
        await controller.keystroke()
        gateway.emitted.clear()

        await controller.open_conversation('conv-2')

        assert gateway.emitted[:2] == [
            ('typing_stop', {'conversationId': CONVERSATION}),
            ('leave_conversation', {'conversationId': CONVERSATION}),
        ]
        assert gateway.emitted[2] == ('join_conversation', {'conversationId': 'conv-2'})

    async def test_no_active_conversation(self, controller, gateway):
        await controller.keystroke()
        assert gateway.emitted == []


@pytest.mark.asyncio
class TestConversations:

    async def test_start_loads_presence_and_conversations(self, controller, api):
        api.conversations = [
            {'id': 'old', 'updatedAt': '2026-01-01T08:00:00Z'},
            {'id': 'new', 'updatedAt': '2026-01-02T08:00:00Z'},
        ]

        await controller.start()

        assert controller.online_users == {PEER}
        assert [c['id'] for c in controller.conversations] == ['new', 'old']

    async def test_start_conversation_opens_it(self, controller, gateway):
        await controller.start_conversation(PEER)

        assert controller.active_conversation_id == CONVERSATION
        assert ('join_conversation', {'conversationId': CONVERSATION}) in gateway.emitted
        [entry] = controller.conversations
        assert entry['otherUser'] == {'id': PEER}

    async def test_mark_conversation_read(self, controller, api):
        api.messages = [make_message('m1'), make_message('m2')]
        api.conversations = [{'id': CONVERSATION, 'unreadCount': 2, 'updatedAt': '2026-01-01T08:00:00Z'}]
        await controller.refresh_conversations()
        await controller.open_conversation(CONVERSATION)

        marked = await controller.mark_conversation_read()

        assert marked == ['m1', 'm2']
        assert controller.conversations[0]['unreadCount'] == 0
        assert all(ME in m['readBy'] for m in controller.messages)

    async def test_delivery_event_refreshes_list(self, controller, gateway, calls):
        gateway.fire('message_delivered', {'messageId': 'm9', 'conversationId': 'conv-9'})
        await asyncio.gather(*controller._tasks)
        assert 'list_conversations' in calls


class TestProjections:

    @pytest.mark.asyncio
    async def test_new_message_is_appended_once_and_list_reordered(self, controller, api, gateway):
        api.conversations = [
            {'id': CONVERSATION, 'updatedAt': '2026-01-01T08:00:00Z'},
            {'id': 'conv-2', 'updatedAt': '2026-01-01T09:00:00Z'},
        ]
        await controller.refresh_conversations()
        await controller.open_conversation(CONVERSATION)

        message = make_message('m1', created_at='2026-01-01T10:00:00Z')
        gateway.fire('new_message', {'message': message})
        gateway.fire('new_message', {'message': message})

        assert [m['id'] for m in controller.messages] == ['m1']
        assert [c['id'] for c in controller.conversations] == [CONVERSATION, 'conv-2']
        assert controller.conversations[0]['lastMessage']['id'] == 'm1'

    def test_messages_of_other_conversations_are_not_shown(self, controller, gateway):
        controller.active_conversation_id = CONVERSATION
        gateway.fire('new_message', {'message': make_message('m1', conversation_id='elsewhere')})
        assert controller.messages == []

    def test_conversation_updated_becomes_list_entry(self, controller, gateway):
        gateway.fire('conversation_updated', {'conversation': {
            'id': CONVERSATION,
            'participants': [{'id': ME, 'name': 'Me'}, {'id': PEER, 'name': 'Peer'}],
            'lastMessage': make_message('m1'),
            'unreadCounts': {ME: 3, PEER: 0},
            'createdAt': '2026-01-01T08:00:00Z',
            'updatedAt': '2026-01-01T10:00:00Z',
        }})

        [entry] = controller.conversations
        assert entry['otherUser']['name'] == 'Peer'
        assert entry['unreadCount'] == 3

    def test_read_receipt_updates_message(self, controller, gateway):
        controller.active_conversation_id = CONVERSATION
        controller.messages = [make_message('m1', sender=ME)]

        gateway.fire('message_read', {'conversationId': CONVERSATION, 'messageId': 'm1', 'userId': PEER, 'userName': 'Peer'})
        gateway.fire('message_read', {'conversationId': CONVERSATION, 'messageId': 'm1', 'userId': PEER, 'userName': 'Peer'})

        assert controller.messages[0]['readBy'] == [PEER]

    @given(events=st.lists(
        st.tuples(st.sampled_from(['user_online', 'user_offline']), st.sampled_from(['a', 'b', 'c', ME])),
        max_size=40,
    ))
    @settings(max_examples=100)
    def test_online_set_follows_presence_events(self, events):
        gateway = FakeGateway([])
        controller = ChatController(FakeApi([]), gateway, ME)
        expected = set()

        for event, user_id in events:
            gateway.fire(event, {'userId': user_id})
            if event == 'user_online' and user_id != ME:
                expected.add(user_id)
            elif event == 'user_offline':
                expected.discard(user_id)

        assert controller.online_users == expected

    @given(events=st.lists(
        st.tuples(st.sampled_from(['a', 'b']), st.booleans(), st.sampled_from([CONVERSATION, 'other'])),
        max_size=40,
    ))
    @settings(max_examples=100)
    def test_typing_set_only_tracks_active_conversation(self, events):
        gateway = FakeGateway([])
        controller = ChatController(FakeApi([]), gateway, ME)
        controller.active_conversation_id = CONVERSATION
        expected = set()

        for user_id, is_typing, conversation_id in events:
            gateway.fire('user_typing', {
                'conversationId': conversation_id,
                'userId': user_id,
                'userName': user_id,
                'isTyping': is_typing,
            })
            if conversation_id != CONVERSATION:
                continue
            if is_typing:
                expected.add(user_id)
            else:
                expected.discard(user_id)

        assert controller.typing_users == expected
