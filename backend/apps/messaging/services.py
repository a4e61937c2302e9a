"""
Conversation and message store.

All reads and writes of conversations and messages go through ``ChatStore``
so the REST views and the realtime gateway share one set of invariants:

    - at most one conversation per unordered pair of users
    - a message insert and its conversation update commit together
    - unread counters only change by atomic increments or resets
    - delivered/read sets only grow

Every method is synchronous ORM code; async callers wrap them with
``database_sync_to_async``.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import List, Optional, Tuple

from django.conf import settings
from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import Case, F, IntegerField, Q, When
from django.utils import timezone

from apps.authentication.models import User
from apps.conversations.models import Conversation
from apps.core.exceptions import (
    AppError,
    AuthorizationError,
    ChatValidationError,
    NotFoundError,
    PersistenceError,
)
from .models import Message

logger = logging.getLogger(__name__)


@dataclass
class SendResult:
    """Outcome of a send: the stored message and whether it is new"""
    message: Message
    conversation: Conversation
    created: bool


@contextmanager
def persistence_errors(action: str):
    """Convert database failures into ``PersistenceError``"""
    try:
        yield
    except AppError:
        raise
    except DatabaseError as e:
        logger.error(f'Database failure while trying to {action}: {e}', exc_info=True)
        raise PersistenceError(f'Failed to {action}') from e


class ChatStore:
    """
    Durable operations over conversations and messages
    """

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_user(self, user_id) -> User:
        try:
            return User.objects.get(id=user_id)
        except (User.DoesNotExist, ValueError, TypeError):
            raise NotFoundError('User not found', code='USER_NOT_FOUND')

    def get_conversation(self, conversation_id) -> Conversation:
        try:
            return Conversation.objects.get(id=conversation_id)
        except (Conversation.DoesNotExist, ValueError, TypeError):
            raise NotFoundError('Conversation not found', code='CONVERSATION_NOT_FOUND')

    def get_participant_conversation(self, conversation_id, user: User) -> Conversation:
        """
        Load a conversation the user takes part in

        Raises:
            NotFoundError: If the conversation does not exist
            AuthorizationError: If the user is not a participant
        """
        conversation = self.get_conversation(conversation_id)
        if not conversation.has_participant(user.id):
            raise AuthorizationError('Access denied', code='NOT_A_PARTICIPANT')
        return conversation

    def load_conversation_detail(self, conversation_id) -> Conversation:
        """Conversation with participants and last message loaded for display"""
        return (
            Conversation.objects
            .select_related(
                'user_low',
                'user_high',
                'last_message__sender',
                'last_message__receiver',
            )
            .prefetch_related('last_message__delivered_to', 'last_message__read_by')
            .get(id=conversation_id)
        )

    def load_message_detail(self, message_id) -> Message:
        """Message with sender, receiver and acknowledgement sets loaded"""
        return (
            Message.objects
            .select_related('sender', 'receiver')
            .prefetch_related('delivered_to', 'read_by')
            .get(id=message_id)
        )

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def _get_pair(self, low_id, high_id) -> Optional[Conversation]:
        return Conversation.objects.filter(user_low_id=low_id, user_high_id=high_id).first()

    def find_or_create_conversation(self, user_a: User, user_b: User) -> Tuple[Conversation, bool]:
        """
        Return the unique conversation for an unordered pair of users

        Concurrent callers may both miss the lookup; the loser of the insert
        race hits the pair constraint and re-fetches the winner's row.

        Returns:
            Tuple of (conversation, created)
        """
        if str(user_a.id) == str(user_b.id):
            raise ChatValidationError('Cannot start a conversation with yourself', code='SELF_CONVERSATION')

        low_id, high_id = Conversation.ordered_pair(user_a.id, user_b.id)

        with persistence_errors('load conversation'):
            conversation = self._get_pair(low_id, high_id)
        if conversation is not None:
            return conversation, False

        try:
            with transaction.atomic():
                conversation = Conversation.objects.create(user_low_id=low_id, user_high_id=high_id)
        except IntegrityError:
            logger.info(f'Conversation for pair {low_id}/{high_id} created concurrently, re-fetching')
            with persistence_errors('load conversation'):
                conversation = self._get_pair(low_id, high_id)
            if conversation is None:
                raise PersistenceError('Failed to create conversation')
            return conversation, False
        except DatabaseError as e:
            logger.error(f'Failed to create conversation: {e}', exc_info=True)
            raise PersistenceError('Failed to create conversation') from e

        logger.info(f'Created conversation {conversation.id} between {low_id} and {high_id}')
        return conversation, True

    def start_conversation(self, sender: User, receiver_id) -> Conversation:
        """
        Get or create a conversation with another user of the same college

        Raises:
            NotFoundError: If the other user does not exist
            AuthorizationError: If the users belong to different colleges
            ChatValidationError: If the user tries to message themselves
        """
        if str(receiver_id) == str(sender.id):
            raise ChatValidationError('Cannot start a conversation with yourself', code='SELF_CONVERSATION')

        receiver = self.get_user(receiver_id)
        if receiver.college_domain != sender.college_domain:
            raise AuthorizationError('Cannot message users from other colleges', code='CROSS_COLLEGE')

        conversation, _ = self.find_or_create_conversation(sender, receiver)
        return conversation

    def list_conversations(self, user: User) -> List[Conversation]:
        """
        Conversations of a user, most recently updated first

        Each row carries ``unread_for_user``, the caller's own unread counter.
        """
        with persistence_errors('list conversations'):
            return list(
                Conversation.objects
                .filter(Q(user_low=user) | Q(user_high=user))
                .select_related(
                    'user_low',
                    'user_high',
                    'last_message__sender',
                    'last_message__receiver',
                )
                .prefetch_related('last_message__delivered_to', 'last_message__read_by')
                .annotate(
                    unread_for_user=Case(
                        When(user_low=user, then=F('unread_low')),
                        default=F('unread_high'),
                        output_field=IntegerField(),
                    )
                )
                .order_by('-updated_at')
            )

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def clean_text(self, text) -> str:
        """
        Trim message text and enforce its bounds

        Raises:
            ChatValidationError: If the trimmed text is empty or too long
        """
        body = (text or '').strip()
        if not body:
            raise ChatValidationError('Message cannot be empty', code='EMPTY_MESSAGE')
        if len(body) > settings.CHAT_MESSAGE_MAX_LENGTH:
            raise ChatValidationError('Message too long', code='MESSAGE_TOO_LONG')
        return body

    def resolve_send_target(self, sender: User, conversation_id=None, receiver_id=None) -> Conversation:
        """
        Pick the conversation a send goes to

        An explicit conversation id wins; otherwise the pair with the receiver
        is looked up or created.
        """
        if conversation_id:
            return self.get_participant_conversation(conversation_id, sender)
        if receiver_id:
            return self.start_conversation(sender, receiver_id)
        raise ChatValidationError('Either conversationId or receiverId is required', code='MISSING_TARGET')

    def _find_duplicate(self, sender: User, client_message_id: Optional[str]) -> Optional[Message]:
        if not client_message_id:
            return None
        return Message.objects.filter(sender=sender, client_message_id=client_message_id).first()

    def _bump_conversation(self, conversation: Conversation, message: Message, receiver_id) -> None:
        counter = conversation.unread_field_for(receiver_id)
        Conversation.objects.filter(pk=conversation.pk).update(
            last_message=message,
            updated_at=timezone.now(),
            **{counter: F(counter) + 1},
        )

    def append_message(
        self,
        conversation: Conversation,
        sender: User,
        text: str,
        client_message_id: Optional[str] = None,
    ) -> Tuple[Message, bool]:
        """
        Insert a message and update its conversation in one transaction

        A repeated ``client_message_id`` from the same sender returns the
        stored message and leaves the counters alone.

        Returns:
            Tuple of (message, created)
        """
        body = self.clean_text(text)
        if not conversation.has_participant(sender.id):
            raise AuthorizationError('Access denied', code='NOT_A_PARTICIPANT')

        with persistence_errors('send message'):
            duplicate = self._find_duplicate(sender, client_message_id)
        if duplicate is not None:
            logger.info(f'Duplicate send {client_message_id} from {sender.id} maps to message {duplicate.id}')
            return duplicate, False

        receiver_id = conversation.other_participant_id(sender.id)
        try:
            with transaction.atomic():
                message = Message.objects.create(
                    conversation=conversation,
                    sender=sender,
                    receiver_id=receiver_id,
                    text=body,
                    client_message_id=client_message_id or None,
                )
                self._bump_conversation(conversation, message, receiver_id)
        except IntegrityError as e:
            # Same idempotency key inserted by a concurrent request
            duplicate = self._find_duplicate(sender, client_message_id)
            if duplicate is not None:
                return duplicate, False
            logger.error(f'Failed to store message: {e}', exc_info=True)
            raise PersistenceError('Failed to send message') from e
        except DatabaseError as e:
            logger.error(f'Failed to store message: {e}', exc_info=True)
            raise PersistenceError('Failed to send message') from e

        conversation.refresh_from_db()
        logger.info(f'Stored message {message.id} in conversation {conversation.id}')
        return message, True

    def send_message(
        self,
        sender: User,
        text: str,
        conversation_id=None,
        receiver_id=None,
        client_message_id: Optional[str] = None,
    ) -> SendResult:
        """
        Validate, resolve the target conversation and append a message

        Text is checked before the target is resolved so a rejected send
        never creates a conversation.
        """
        self.clean_text(text)
        if not conversation_id and not receiver_id:
            raise ChatValidationError('Either conversationId or receiverId is required', code='MISSING_TARGET')

        conversation = self.resolve_send_target(sender, conversation_id, receiver_id)
        message, created = self.append_message(conversation, sender, text, client_message_id)
        return SendResult(message=message, conversation=conversation, created=created)

    def list_messages(self, conversation: Conversation) -> List[Message]:
        """Messages of a conversation in creation order"""
        with persistence_errors('list messages'):
            return list(
                Message.objects
                .filter(conversation=conversation)
                .select_related('sender', 'receiver')
                .prefetch_related('delivered_to', 'read_by')
                .order_by('created_at', 'id')
            )

    def _acknowledge(self, relation, conversation: Conversation, user: User) -> List[str]:
        """
        Add ``user`` to the delivered or read set of every incoming message
        that does not contain them yet
        """
        manager = getattr(Message, relation)
        pending = list(
            Message.objects
            .filter(conversation=conversation, receiver=user)
            .exclude(**{relation: user})
            .values_list('id', flat=True)
        )
        if pending:
            through = manager.through
            through.objects.bulk_create(
                [through(message_id=message_id, user_id=user.id) for message_id in pending],
                ignore_conflicts=True,
            )
        return [str(message_id) for message_id in pending]

    def mark_delivered(self, conversation: Conversation, receiver: User) -> List[str]:
        """
        Record delivery of the receiver's incoming messages

        Returns:
            Ids of the messages that were newly marked
        """
        with persistence_errors('mark messages delivered'):
            return self._acknowledge('delivered_to', conversation, receiver)

    def mark_read(self, conversation: Conversation, reader: User) -> List[str]:
        """
        Mark every incoming message read and reset the reader's counter

        Returns:
            Ids of the messages that were newly marked
        """
        if not conversation.has_participant(reader.id):
            raise AuthorizationError('Access denied', code='NOT_A_PARTICIPANT')

        with persistence_errors('mark messages read'):
            with transaction.atomic():
                marked = self._acknowledge('read_by', conversation, reader)
                Conversation.objects.filter(pk=conversation.pk).update(
                    **{conversation.unread_field_for(reader.id): 0}
                )
        conversation.refresh_from_db()
        return marked

    def mark_message_read(self, message_id, conversation_id, reader: User) -> Tuple[Message, bool]:
        """
        Add the reader to one message's read set

        Returns:
            Tuple of (message, changed); ``changed`` is False when the reader
            had already read it
        """
        with persistence_errors('mark message read'):
            try:
                message = Message.objects.select_related('conversation').get(id=message_id)
            except (Message.DoesNotExist, ValueError, TypeError):
                raise NotFoundError('Message not found', code='MESSAGE_NOT_FOUND')

            if conversation_id and str(message.conversation_id) != str(conversation_id):
                raise NotFoundError('Message not found in conversation', code='MESSAGE_NOT_FOUND')
            if not message.conversation.has_participant(reader.id):
                raise AuthorizationError('Access denied', code='NOT_A_PARTICIPANT')

            if message.read_by.filter(id=reader.id).exists():
                return message, False
            message.read_by.add(reader)
        return message, True


# Create singleton instance
chat_store = ChatStore()
