"""
Live channel event handling.

Every frame a client sends is routed here together with its Connection, which
carries the authenticated user id; nothing in a payload can change who the
sender is. Sending is a strict pipeline: persist, then broadcast. A message
that failed to persist is reported to its sender only and never broadcast; a
message that persisted stays stored even if live delivery fails afterwards.
"""
import os
import logging
from typing import Optional
from pydantic import BaseModel
from pydantic import ValidationError as PayloadError
from . import crud, threads
from .cache import check_rate_limit, invalidate_threads
from .conversation import ConversationRef, resolve_conversation_key
from .core import MESSAGES_SENT, SEND_FAILURES
from .errors import ChatError, ValidationError, RateLimitError
from .kafka_producer import publish_message_event
from .read_state import ReadAction
from .schemas.messages import MessageIn, MessageOut, ThreadsOut
from .ws_manager import Connection, ConnectionManager, manager

logger = logging.getLogger(__name__)

MESSAGE_RATE_LIMIT = int(os.getenv('MESSAGE_RATE_LIMIT', '100'))


class UnknownEventError(ValidationError):
    code = 'unknown_event'


class ConversationIn(BaseModel):
    other_user_id: str
    listing_id: str


def parse_payload(model, data):
    try:
        return model.model_validate(data or {})
    except PayloadError as e:
        errors = [{'loc': [str(p) for p in err['loc']], 'msg': err['msg']} for err in e.errors()]
        raise ValidationError('malformed payload', details={'errors': errors})


class MessageDispatcher:
    def __init__(self, connections: ConnectionManager):
        self.connections = connections
        self.handlers = {
            'joinRoom': self.join_room,
            'openConversation': self.open_conversation,
            'leaveConversation': self.leave_conversation,
            'sendMessage': self.send_message,
            'ping': self.ping,
        }
        connections.add_remote_hook(self.on_remote_event)

    async def reply(self, conn: Connection, event: str, data: dict):
        await self.connections.send_to(conn, {'event': event, 'data': data})

    async def on_connect(self, conn: Connection):
        await self.connections.connect(conn)
        await self.reply(conn, 'connected', {'user_id': conn.user_id})
        try:
            # a reconnect always starts from the durable state
            conn.inbox.load(await threads.build_threads(conn.user_id))
        except ChatError as e:
            await self.reply(conn, 'error', {**e.to_dict(), 'event': 'threads'})
            return
        await self.reply(conn, 'threads', self._inbox_payload(conn))

    async def handle(self, conn: Connection, frame) -> None:
        event = frame.get('event') if isinstance(frame, dict) else None
        data = frame.get('data') if isinstance(frame, dict) else None
        try:
            handler = self.handlers.get(event)
            if handler is None:
                raise UnknownEventError(f'unknown event {event!r}')
            await handler(conn, data)
        except ChatError as e:
            logger.info(f"Event {event!r} from user {conn.user_id} rejected: {e.code}")
            await self.reply(conn, 'error', {**e.to_dict(), 'event': event})

    # client events
    async def join_room(self, conn: Connection, data) -> str:
        payload = parse_payload(ConversationIn, data)
        room = resolve_conversation_key(conn.user_id, payload.other_user_id, payload.listing_id)
        self.connections.join(conn, room)
        await self.reply(conn, 'joinedRoom', {'room': room})
        return room

    async def open_conversation(self, conn: Connection, data):
        payload = parse_payload(ConversationIn, data)
        room = resolve_conversation_key(conn.user_id, payload.other_user_id, payload.listing_id)
        self.connections.join(conn, room)
        conn.inbox.open(ConversationRef(payload.other_user_id, payload.listing_id))
        updated = await self.mark_read(conn.user_id, payload.other_user_id, payload.listing_id)
        await self.reply(conn, 'conversationOpened', {'room': room, 'updated': updated})

    async def leave_conversation(self, conn: Connection, data):
        conn.inbox.close()
        await self.reply(conn, 'conversationClosed', {})

    async def send_message(self, conn: Connection, data):
        payload = parse_payload(MessageIn, data)
        await self.deliver(conn.user_id, payload, channel='ws')

    async def ping(self, conn: Connection, data):
        await self.reply(conn, 'pong', {})

    # pipeline
    async def deliver(self, sender_id: str, payload: MessageIn, channel: str = 'http') -> MessageOut:
        """Persist a message from `sender_id`, then push it to the conversation room"""
        try:
            room = resolve_conversation_key(sender_id, payload.receiver_id, payload.listing_id)
            crud.validate_message(sender_id, payload.receiver_id, payload.listing_id, payload.content)
            if not await check_rate_limit(sender_id, 'send_message', limit=MESSAGE_RATE_LIMIT):
                raise RateLimitError('too many messages, slow down')
            message = await crud.create_message(sender_id, payload.receiver_id, payload.listing_id, payload.content)
        except ChatError as e:
            SEND_FAILURES.labels(reason=e.code).inc()
            raise
        MESSAGES_SENT.labels(channel=channel).inc()

        [populated] = await crud.populate_messages([message])
        await invalidate_threads(message.sender_id, message.receiver_id)

        try:
            await self.connections.broadcast(room, {'event': 'newMessage', 'data': populated.model_dump(mode='json')})
            await self.sync_inbox(populated)
        except Exception as e:
            # already durable; participants see it on their next fetch
            logger.warning(f"Live delivery of message {message.id} to {room} failed: {e}")

        await publish_message_event('message_created', {
            'message_id': message.id,
            'sender_id': message.sender_id,
            'receiver_id': message.receiver_id,
            'listing_id': message.listing_id,
        }, key=room)
        return populated

    async def sync_inbox(self, message: MessageOut):
        """Fold a new message into the live inbox of every local tab of both participants"""
        ref_for = {
            message.sender.id: ConversationRef(message.receiver.id, message.listing.id),
            message.receiver.id: ConversationRef(message.sender.id, message.listing.id),
        }
        for user_id, ref in ref_for.items():
            conns = self.connections.connections_for(user_id)
            if not conns:
                continue
            needs_read = False
            for conn in conns:
                action = conn.inbox.on_new_message(message)
                if action is ReadAction.REFETCH:
                    conn.inbox.load(await threads.build_threads(user_id))
                    if conn.inbox.active == ref and message.receiver.id == user_id:
                        needs_read = True
                elif action is ReadAction.MARK_READ:
                    needs_read = True
            # one mark-read for all tabs, after every tab has counted the message
            if needs_read:
                await self.mark_read(user_id, message.sender.id, message.listing.id)
            for conn in conns:
                thread = conn.inbox.get(ref)
                if thread is not None:
                    await self.reply(conn, 'threadUpdated', {
                        'thread': thread.model_dump(mode='json'),
                        'unread_total': conn.inbox.unread_total(),
                    })

    async def mark_read(self, reader_id: str, other_id: str, listing_id: Optional[str] = None) -> int:
        updated = await crud.mark_read(reader_id, other_id, listing_id)
        await invalidate_threads(reader_id)
        self.apply_read_locally(reader_id, other_id, listing_id)
        notice = {'event': 'messagesRead', 'data': {
            'reader_id': reader_id,
            'other_user_id': other_id,
            'listing_id': listing_id,
            'updated': updated,
        }}
        await self.connections.send_personal(reader_id, notice)
        if updated:
            await self.connections.send_personal(other_id, notice)
            await publish_message_event('messages_read', notice['data'], key=reader_id)
        return updated

    def apply_read_locally(self, reader_id: str, other_id: str, listing_id: Optional[str] = None):
        for conn in self.connections.connections_for(reader_id):
            for ref in conn.inbox.refs_with(other_id, listing_id):
                conn.inbox.apply_read(ref)
        for conn in self.connections.connections_for(other_id):
            for ref in conn.inbox.refs_with(reader_id, listing_id):
                conn.inbox.apply_receipt(ref)

    async def on_remote_event(self, kind: str, target: str, payload: dict):
        event, data = payload.get('event'), payload.get('data') or {}
        if event == 'newMessage':
            await self.sync_inbox(MessageOut.model_validate(data))
        elif event == 'messagesRead':
            self.apply_read_locally(data['reader_id'], data['other_user_id'], data.get('listing_id'))

    def _inbox_payload(self, conn: Connection) -> dict:
        inbox = ThreadsOut(threads=conn.inbox.snapshot(), unread_total=conn.inbox.unread_total())
        return inbox.model_dump(mode='json')


dispatcher = MessageDispatcher(manager)
