"""
Wire envelope and inbound command schemas for the chat gateway.

Inbound frame:  {"event": <command>, "data": {...}, "requestId": <optional>}
Outbound frame: {"event": <event>, "data": {...}, "requestId": <optional>}
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

from rest_framework import serializers

from apps.core.exceptions import format_validation_errors


class ConversationCommandSerializer(serializers.Serializer):
    """join_conversation / leave_conversation / typing_start / typing_stop"""
    conversationId = serializers.UUIDField()


class SendMessageCommandSerializer(serializers.Serializer):
    conversationId = serializers.UUIDField(required=False, allow_null=True)
    receiverId = serializers.UUIDField(required=False, allow_null=True)
    text = serializers.CharField(allow_blank=True, trim_whitespace=False)
    clientMessageId = serializers.CharField(required=False, allow_null=True, max_length=64)


class MarkMessageReadCommandSerializer(serializers.Serializer):
    messageId = serializers.UUIDField()
    conversationId = serializers.UUIDField()


# command name -> (payload schema, error event sent back on failure)
COMMANDS = {
    'join_conversation': (ConversationCommandSerializer, 'join_error'),
    'leave_conversation': (ConversationCommandSerializer, 'leave_error'),
    'send_message': (SendMessageCommandSerializer, 'message_error'),
    'typing_start': (ConversationCommandSerializer, 'typing_error'),
    'typing_stop': (ConversationCommandSerializer, 'typing_error'),
    'mark_message_read': (MarkMessageReadCommandSerializer, 'read_error'),
}

GENERIC_ERROR_EVENT = 'error'


@dataclass
class Command:
    event: str
    data: Dict[str, Any]
    request_id: Optional[str] = None

    @property
    def error_event(self) -> str:
        return COMMANDS[self.event][1]


class CommandError(Exception):
    """Inbound frame could not be turned into a command"""

    def __init__(self, error_event: str, message: str, code: str, request_id: Optional[str] = None):
        self.error_event = error_event
        self.message = message
        self.code = code
        self.request_id = request_id
        super().__init__(message)


def parse_command(text_data: str) -> Command:
    """
    Decode and validate one inbound frame

    Raises:
        CommandError: For non-JSON frames, unknown events or payloads that do
            not match the command's schema
    """
    try:
        frame = json.loads(text_data)
    except (TypeError, ValueError):
        raise CommandError(GENERIC_ERROR_EVENT, 'Frame is not valid JSON', 'INVALID_FRAME')

    if not isinstance(frame, dict):
        raise CommandError(GENERIC_ERROR_EVENT, 'Frame must be a JSON object', 'INVALID_FRAME')

    request_id = frame.get('requestId')
    if request_id is not None:
        request_id = str(request_id)

    event = frame.get('event')
    if event not in COMMANDS:
        raise CommandError(GENERIC_ERROR_EVENT, f'Unknown event: {event}', 'UNKNOWN_EVENT', request_id)

    schema, error_event = COMMANDS[event]
    payload = frame.get('data')
    if not isinstance(payload, dict):
        raise CommandError(error_event, 'Event data must be an object', 'VALIDATION_ERROR', request_id)

    serializer = schema(data=payload)
    if not serializer.is_valid():
        raise CommandError(error_event, format_validation_errors(serializer.errors), 'VALIDATION_ERROR', request_id)

    return Command(event=event, data=dict(serializer.validated_data), request_id=request_id)


def envelope(event: str, data: Dict[str, Any], request_id: Optional[str] = None) -> str:
    """Serialize an outbound frame"""
    frame = {'event': event, 'data': data}
    if request_id is not None:
        frame['requestId'] = request_id
    return json.dumps(frame, default=str)


def error_payload(message: str, code: str) -> Dict[str, str]:
    return {'error': message, 'code': code}
