"""
Conversation identity.

A conversation is the unordered pair of participants plus the listing it is
about, so the same two users get one room per listing. The key is used for the
live room, and the same triple drives history queries and mark-read.
"""
from typing import NamedTuple
from .errors import ValidationError

ROOM_PREFIX = 'room'
SEPARATOR = ':'


class ConversationRef(NamedTuple):
    """A conversation seen from one participant: who the other side is and which listing"""
    other_user_id: str
    listing_id: str


def _check_identity(value, field: str) -> str:
    value = str(value).strip() if value is not None else ''
    if not value:
        raise ValidationError(f'{field} is required')
    if SEPARATOR in value:
        raise ValidationError(f'{field} must not contain {SEPARATOR!r}')
    return value


def resolve_conversation_key(user_a, user_b, listing_id) -> str:
    a = _check_identity(user_a, 'user_a')
    b = _check_identity(user_b, 'user_b')
    listing = _check_identity(listing_id, 'listing_id')
    if a == b:
        raise ValidationError('a conversation needs two distinct participants')
    first, second = sorted([a, b])
    return SEPARATOR.join([ROOM_PREFIX, listing, first, second])


def other_participant(viewer_id: str, sender_id: str, receiver_id: str) -> str:
    return receiver_id if sender_id == viewer_id else sender_id
