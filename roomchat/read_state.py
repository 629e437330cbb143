"""
Read-state reconciliation for one viewer.

Holds the viewer's threads as last observed and decides what a live event
means for them. It never touches storage itself: callers act on the returned
ReadAction (call mark_read, or refetch threads from the aggregator).
"""
from enum import Enum
from typing import Dict, Iterable, List, Optional
from .conversation import ConversationRef, other_participant
from .schemas.messages import MessageOut, ThreadOut
from .threads import thread_ref


class ReadAction(Enum):
    MARK_READ = 'mark_read'
    INCREMENT = 'increment'
    TOUCH = 'touch'
    REFETCH = 'refetch'


class ReadStateReconciler:
    def __init__(self, user_id: str, threads: Iterable[ThreadOut] = ()):
        self.user_id = user_id
        self.active: Optional[ConversationRef] = None
        self.threads: Dict[ConversationRef, ThreadOut] = {}
        self.load(threads)

    def load(self, threads: Iterable[ThreadOut]):
        self.threads = {thread_ref(t): t.model_copy(deep=True) for t in threads}

    def snapshot(self) -> List[ThreadOut]:
        return sorted(
            self.threads.values(),
            key=lambda t: (t.last_message.created_at, t.last_message.id),
            reverse=True,
        )

    def get(self, ref: ConversationRef) -> Optional[ThreadOut]:
        return self.threads.get(ref)

    def open(self, ref: ConversationRef):
        self.active = ref
        self.apply_read(ref)

    def close(self):
        self.active = None

    def apply_read(self, ref: ConversationRef):
        thread = self.threads.get(ref)
        if thread is not None:
            thread.unread_count = 0
            if thread.last_message.receiver.id == self.user_id:
                thread.last_message.read = True

    def refs_with(self, other_user_id: str, listing_id: Optional[str] = None) -> List[ConversationRef]:
        return [
            ref for ref in self.threads
            if ref.other_user_id == other_user_id and (listing_id is None or ref.listing_id == listing_id)
        ]

    def apply_receipt(self, ref: ConversationRef):
        """The other side read our messages in this conversation"""
        thread = self.threads.get(ref)
        if thread is not None and thread.last_message.sender.id == self.user_id:
            thread.last_message.read = True

    def on_new_message(self, message: MessageOut) -> ReadAction:
        ref = ConversationRef(
            other_participant(self.user_id, message.sender.id, message.receiver.id),
            message.listing.id,
        )
        thread = self.threads.get(ref)
        if thread is None:
            return ReadAction.REFETCH

        thread.last_message = message
        if message.receiver.id != self.user_id:
            return ReadAction.TOUCH
        if ref == self.active:
            return ReadAction.MARK_READ
        thread.unread_count += 1
        return ReadAction.INCREMENT

    def unread_total(self) -> int:
        return sum(t.unread_count for t in self.threads.values())
