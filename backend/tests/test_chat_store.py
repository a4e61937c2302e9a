"""
Tests for the conversation and message store.

Covers pair uniqueness under a simulated insert race, all-or-nothing
message appends, idempotent sends and the delivered/read bookkeeping.
"""

import uuid

import pytest
from django.db import DatabaseError
from hypothesis import given, strategies as st, settings

from apps.conversations.models import Conversation
from apps.core.exceptions import (
    AuthorizationError,
    ChatValidationError,
    NotFoundError,
    PersistenceError,
)
from apps.messaging.models import Message
from apps.messaging.services import ChatStore, chat_store


class TestOrderedPair:

    @given(a=st.uuids(), b=st.uuids())
    @settings(max_examples=100)
    def test_pair_order_does_not_matter(self, a, b):
        assert Conversation.ordered_pair(a, b) == Conversation.ordered_pair(b, a)

    @given(a=st.uuids(), b=st.uuids())
    @settings(max_examples=100)
    def test_low_sorts_before_high(self, a, b):
        low, high = Conversation.ordered_pair(a, b)
        assert str(low) <= str(high)
        assert {low, high} == {a, b}


@pytest.mark.django_db
class TestFindOrCreateConversation:

    def test_creates_once_per_unordered_pair(self, alice, bob):
        first, created_first = chat_store.find_or_create_conversation(alice, bob)
        second, created_second = chat_store.find_or_create_conversation(bob, alice)

        assert created_first is True
        assert created_second is False
        assert first.id == second.id
        assert Conversation.objects.count() == 1
        assert first.unread_low == 0
        assert first.unread_high == 0

    def test_lost_insert_race_refetches_existing_row(self, alice, bob, monkeypatch):
        existing, _ = chat_store.find_or_create_conversation(alice, bob)

        original = ChatStore._get_pair
        calls = {'count': 0}

        def stale_lookup(self, low_id, high_id):
            calls['count'] += 1
            if calls['count'] == 1:
                # Another request inserts between our lookup and our insert
                return None
            return original(self, low_id, high_id)

        monkeypatch.setattr(ChatStore, '_get_pair', stale_lookup)

        conversation, created = chat_store.find_or_create_conversation(bob, alice)

        assert created is False
        assert conversation.id == existing.id
        assert calls['count'] == 2
        assert Conversation.objects.count() == 1

    def test_rejects_conversation_with_self(self, alice):
        with pytest.raises(ChatValidationError) as exc:
            chat_store.find_or_create_conversation(alice, alice)
        assert exc.value.code == 'SELF_CONVERSATION'


@pytest.mark.django_db
class TestStartConversation:

    def test_cross_college_is_forbidden(self, alice, outsider):
        with pytest.raises(AuthorizationError) as exc:
            chat_store.start_conversation(alice, outsider.id)
        assert exc.value.code == 'CROSS_COLLEGE'
        assert Conversation.objects.count() == 0

    def test_unknown_user(self, alice):
        with pytest.raises(NotFoundError) as exc:
            chat_store.start_conversation(alice, uuid.uuid4())
        assert exc.value.code == 'USER_NOT_FOUND'

    def test_self(self, alice):
        with pytest.raises(ChatValidationError):
            chat_store.start_conversation(alice, alice.id)


@pytest.mark.django_db
class TestSendMessage:

    def test_send_by_receiver_creates_conversation_and_counts_unread(self, alice, bob):
        result = chat_store.send_message(alice, '  hello  ', receiver_id=bob.id)

        assert result.created is True
        assert result.message.text == 'hello'
        assert result.message.receiver_id == bob.id

        conversation = Conversation.objects.get(id=result.conversation.id)
        assert conversation.last_message_id == result.message.id
        assert conversation.unread_count_for(bob.id) == 1
        assert conversation.unread_count_for(alice.id) == 0

    def test_send_by_conversation_id(self, alice, bob):
        conversation, _ = chat_store.find_or_create_conversation(alice, bob)

        chat_store.send_message(bob, 'one', conversation_id=conversation.id)
        chat_store.send_message(bob, 'two', conversation_id=conversation.id)

        conversation.refresh_from_db()
        assert conversation.unread_count_for(alice.id) == 2
        assert conversation.unread_count_for(bob.id) == 0

    @pytest.mark.parametrize('text', ['', '   ', '\n\t'])
    def test_empty_text_has_no_side_effects(self, alice, bob, text):
        with pytest.raises(ChatValidationError) as exc:
            chat_store.send_message(alice, text, receiver_id=bob.id)

        assert exc.value.code == 'EMPTY_MESSAGE'
        assert Conversation.objects.count() == 0
        assert Message.objects.count() == 0

    def test_too_long_text(self, alice, bob, settings):
        settings.CHAT_MESSAGE_MAX_LENGTH = 10
        with pytest.raises(ChatValidationError) as exc:
            chat_store.send_message(alice, 'x' * 11, receiver_id=bob.id)
        assert exc.value.code == 'MESSAGE_TOO_LONG'

    def test_missing_target(self, alice):
        with pytest.raises(ChatValidationError) as exc:
            chat_store.send_message(alice, 'hello')
        assert exc.value.code == 'MISSING_TARGET'

    def test_unknown_conversation(self, alice):
        with pytest.raises(NotFoundError) as exc:
            chat_store.send_message(alice, 'hello', conversation_id=uuid.uuid4())
        assert exc.value.code == 'CONVERSATION_NOT_FOUND'

    def test_non_participant_cannot_send(self, alice, bob, make_user):
        mallory = make_user(name='Mallory')
        conversation, _ = chat_store.find_or_create_conversation(alice, bob)

        with pytest.raises(AuthorizationError):
            chat_store.send_message(mallory, 'hi', conversation_id=conversation.id)
        assert Message.objects.count() == 0

    def test_failed_conversation_update_rolls_back_message(self, alice, bob, monkeypatch):
        conversation, _ = chat_store.find_or_create_conversation(alice, bob)

        def broken_update(self, conversation, message, receiver_id):
            raise DatabaseError('disk full')

        monkeypatch.setattr(ChatStore, '_bump_conversation', broken_update)

        with pytest.raises(PersistenceError) as exc:
            chat_store.send_message(alice, 'hello', conversation_id=conversation.id)

        assert exc.value.retryable is True
        assert Message.objects.count() == 0
        conversation.refresh_from_db()
        assert conversation.last_message_id is None
        assert conversation.unread_count_for(bob.id) == 0

    def test_repeated_client_message_id_is_idempotent(self, alice, bob):
        first = chat_store.send_message(alice, 'hello', receiver_id=bob.id, client_message_id='abc')
        second = chat_store.send_message(alice, 'hello', receiver_id=bob.id, client_message_id='abc')

        assert first.created is True
        assert second.created is False
        assert first.message.id == second.message.id
        assert Message.objects.count() == 1

        conversation = Conversation.objects.get(id=first.conversation.id)
        assert conversation.unread_count_for(bob.id) == 1

    def test_client_message_id_is_scoped_to_sender(self, alice, bob):
        chat_store.send_message(alice, 'hi', receiver_id=bob.id, client_message_id='same')
        result = chat_store.send_message(bob, 'hi back', receiver_id=alice.id, client_message_id='same')

        assert result.created is True
        assert Message.objects.count() == 2


@pytest.mark.django_db
class TestListing:

    def test_messages_are_chronological(self, alice, bob):
        conversation, _ = chat_store.find_or_create_conversation(alice, bob)
        for text in ['first', 'second', 'third']:
            chat_store.send_message(alice, text, conversation_id=conversation.id)

        messages = chat_store.list_messages(conversation)
        assert [m.text for m in messages] == ['first', 'second', 'third']

    def test_conversations_most_recent_first_with_own_unread(self, alice, bob, make_user):
        carol = make_user(name='Carol')
        with_bob = chat_store.send_message(bob, 'hey alice', receiver_id=alice.id).conversation
        with_carol = chat_store.send_message(alice, 'hey carol', receiver_id=carol.id).conversation

        conversations = chat_store.list_conversations(alice)

        assert [c.id for c in conversations] == [with_carol.id, with_bob.id]
        unread = {c.id: c.unread_for_user for c in conversations}
        assert unread[with_bob.id] == 1
        assert unread[with_carol.id] == 0

    def test_conversations_exclude_other_pairs(self, alice, bob, make_user):
        carol = make_user(name='Carol')
        chat_store.send_message(bob, 'hi', receiver_id=carol.id)

        assert chat_store.list_conversations(alice) == []


@pytest.mark.django_db
class TestAcknowledgements:

    def test_mark_delivered_only_touches_incoming(self, alice, bob):
        conversation = chat_store.send_message(alice, 'to bob', receiver_id=bob.id).conversation
        chat_store.send_message(bob, 'to alice', conversation_id=conversation.id)

        marked = chat_store.mark_delivered(conversation, bob)

        assert len(marked) == 1
        to_bob = Message.objects.get(text='to bob')
        to_alice = Message.objects.get(text='to alice')
        assert list(to_bob.delivered_to.values_list('id', flat=True)) == [bob.id]
        assert to_alice.delivered_to.count() == 0

        assert chat_store.mark_delivered(conversation, bob) == []
        assert to_bob.delivered_to.count() == 1

    def test_mark_read_resets_counter(self, alice, bob):
        conversation = chat_store.send_message(alice, 'one', receiver_id=bob.id).conversation
        chat_store.send_message(alice, 'two', conversation_id=conversation.id)

        marked = chat_store.mark_read(conversation, bob)

        assert len(marked) == 2
        conversation.refresh_from_db()
        assert conversation.unread_count_for(bob.id) == 0
        for message in Message.objects.all():
            assert list(message.read_by.values_list('id', flat=True)) == [bob.id]

        assert chat_store.mark_read(conversation, bob) == []

    def test_mark_message_read_is_idempotent(self, alice, bob):
        message = chat_store.send_message(alice, 'read me', receiver_id=bob.id).message

        _, first = chat_store.mark_message_read(message.id, message.conversation_id, bob)
        _, second = chat_store.mark_message_read(message.id, message.conversation_id, bob)

        assert first is True
        assert second is False
        assert message.read_by.filter(id=bob.id).count() == 1

    def test_mark_message_read_checks_conversation(self, alice, bob):
        message = chat_store.send_message(alice, 'read me', receiver_id=bob.id).message

        with pytest.raises(NotFoundError):
            chat_store.mark_message_read(message.id, uuid.uuid4(), bob)

    def test_mark_message_read_requires_participant(self, alice, bob, make_user):
        mallory = make_user(name='Mallory')
        message = chat_store.send_message(alice, 'secret', receiver_id=bob.id).message

        with pytest.raises(AuthorizationError):
            chat_store.mark_message_read(message.id, message.conversation_id, mallory)
        assert message.read_by.count() == 0
