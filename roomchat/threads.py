"""
Inbox threads.

One row per (other participant, listing) the user has exchanged messages on,
built at read time from the message table. A short-lived Redis copy is kept
per user and retired whenever a message is created or marked read.
"""
from typing import Dict, Iterable, List, Optional
from . import crud
from .cache import cache_threads, get_cached_threads, threads_generation
from .conversation import ConversationRef, other_participant
from .schemas.messages import ThreadOut
import logging

logger = logging.getLogger(__name__)


def thread_ref(thread: ThreadOut) -> ConversationRef:
    return ConversationRef(thread.other_user.id, thread.listing.id)


def find_thread(threads: Iterable[ThreadOut], ref: ConversationRef) -> Optional[ThreadOut]:
    for thread in threads:
        if thread_ref(thread) == ref:
            return thread
    return None


def unread_total(threads: Iterable[ThreadOut]) -> int:
    return sum(t.unread_count for t in threads)


async def build_threads(user_id: str) -> List[ThreadOut]:
    messages = await crud.list_messages_for_user(user_id)

    # messages arrive oldest first, so the last one seen per group is the latest
    latest: Dict[ConversationRef, object] = {}
    unread: Dict[ConversationRef, int] = {}
    for m in messages:
        ref = ConversationRef(other_participant(user_id, m.sender_id, m.receiver_id), m.listing_id)
        latest[ref] = m
        unread.setdefault(ref, 0)
        if m.receiver_id == user_id and not m.read:
            unread[ref] += 1

    populated = await crud.populate_messages(list(latest.values()))
    threads = []
    for ref, message in zip(latest.keys(), populated):
        threads.append(ThreadOut(
            other_user=message.receiver if message.sender.id == user_id else message.sender,
            listing=message.listing,
            last_message=message,
            unread_count=unread[ref],
        ))
    threads.sort(key=lambda t: (t.last_message.created_at, t.last_message.id), reverse=True)
    return threads


async def get_threads(user_id: str) -> List[ThreadOut]:
    # read the generation before building, a write landing mid-build bumps it
    generation = await threads_generation(user_id)
    cached = await get_cached_threads(user_id, generation)
    if cached is not None:
        try:
            return [ThreadOut.model_validate(t) for t in cached]
        except ValueError as e:
            logger.warning(f"Discarding malformed cached threads for user {user_id}: {e}")

    threads = await build_threads(user_id)
    await cache_threads(user_id, generation, [t.model_dump(mode='json') for t in threads])
    return threads
