import asyncio
import json
import logging
import uuid
from typing import Awaitable, Callable, Dict, List, Set
from fastapi import WebSocket
from . import core
from .read_state import ReadStateReconciler

logger = logging.getLogger(__name__)

WS_EVENTS_CHANNEL = 'ws_events'

RemoteHook = Callable[[str, str, dict], Awaitable[None]]


class Connection:
    """Per-socket context: the authenticated identity, joined rooms and live inbox state"""

    def __init__(self, user_id: str, websocket: WebSocket):
        self.id = uuid.uuid4().hex
        self.user_id = user_id
        self.websocket = websocket
        self.rooms: Set[str] = set()
        self.inbox = ReadStateReconciler(user_id)

    def __repr__(self):
        return f'<Connection {self.id} user={self.user_id} rooms={len(self.rooms)}>'


class ConnectionManager:
    """
    Room and user indexes over the live connections of this process.
    When Redis is connected, room broadcasts and personal pushes are mirrored
    on a pub/sub channel so connections held by other instances get them too.
    """

    def __init__(self):
        self.rooms: Dict[str, Set[Connection]] = {}
        self.users: Dict[str, Set[Connection]] = {}
        self.remote_hooks: List[RemoteHook] = []
        self.listener_task = None

    async def connect(self, conn: Connection):
        await conn.websocket.accept()
        self.users.setdefault(conn.user_id, set()).add(conn)
        core.LIVE_CONNECTIONS.inc()
        redis_client = await core.get_redis()
        if redis_client:
            try:
                await redis_client.set(f'presence:{conn.user_id}', 'online', ex=60)
            except Exception as e:
                logger.warning(f"Presence update failed for user {conn.user_id}: {e}")
        logger.info(f"User {conn.user_id} connected ({conn.id})")

    async def disconnect(self, conn: Connection):
        user_conns = self.users.get(conn.user_id)
        if user_conns is None or conn not in user_conns:
            return
        user_conns.discard(conn)
        for room in conn.rooms:
            members = self.rooms.get(room)
            if members is not None:
                members.discard(conn)
                if not members:
                    del self.rooms[room]
        conn.rooms.clear()
        core.LIVE_CONNECTIONS.dec()
        if not user_conns:
            del self.users[conn.user_id]
            redis_client = await core.get_redis()
            if redis_client:
                try:
                    await redis_client.delete(f'presence:{conn.user_id}')
                except Exception as e:
                    logger.warning(f"Presence cleanup failed for user {conn.user_id}: {e}")
        logger.info(f"User {conn.user_id} disconnected ({conn.id})")

    def join(self, conn: Connection, room: str):
        self.rooms.setdefault(room, set()).add(conn)
        conn.rooms.add(room)
        logger.info(f"User {conn.user_id} joined room {room}")

    def room_members(self, room: str) -> List[Connection]:
        return list(self.rooms.get(room, ()))

    def connections_for(self, user_id: str) -> List[Connection]:
        return list(self.users.get(user_id, ()))

    def is_user_connected(self, user_id: str) -> bool:
        return bool(self.users.get(user_id))

    async def send_to(self, conn: Connection, payload: dict) -> bool:
        try:
            await conn.websocket.send_json(payload)
            return True
        except Exception as e:
            logger.warning(f"Send to {conn} failed, dropping connection: {e}")
            await self.disconnect(conn)
            return False

    async def _deliver(self, conns: List[Connection], payload: dict) -> int:
        delivered = 0
        for conn in conns:
            if await self.send_to(conn, payload):
                delivered += 1
        return delivered

    async def broadcast(self, room: str, payload: dict) -> int:
        """Push a payload to every member of a room; returns local deliveries"""
        delivered = await self._deliver(self.room_members(room), payload)
        await self._publish('room', room, payload)
        return delivered

    async def send_personal(self, user_id: str, payload: dict) -> int:
        """Push a payload to every open connection of a user"""
        delivered = await self._deliver(self.connections_for(user_id), payload)
        await self._publish('user', user_id, payload)
        return delivered

    async def _publish(self, kind: str, target: str, payload: dict):
        redis_client = await core.get_redis()
        if not redis_client:
            return
        envelope = {'origin': core.INSTANCE_ID, 'kind': kind, 'target': target, 'payload': payload}
        try:
            await redis_client.publish(WS_EVENTS_CHANNEL, json.dumps(envelope, default=str))
        except Exception as e:
            logger.warning(f"Publishing {kind} event for {target} failed: {e}")

    def add_remote_hook(self, hook: RemoteHook):
        self.remote_hooks.append(hook)

    async def handle_remote(self, envelope: dict):
        if envelope.get('origin') == core.INSTANCE_ID:
            return
        kind, target, payload = envelope.get('kind'), envelope.get('target'), envelope.get('payload')
        if kind == 'room':
            await self._deliver(self.room_members(target), payload)
        elif kind == 'user':
            await self._deliver(self.connections_for(target), payload)
        else:
            logger.warning(f"Ignoring remote event of unknown kind {kind!r}")
            return
        for hook in self.remote_hooks:
            try:
                await hook(kind, target, payload)
            except Exception as e:
                logger.error(f"Remote hook failed for {kind} {target}: {e}")

    # Redis pub/sub listener to route events between app instances
    async def listen_redis(self):
        redis_client = await core.get_redis()
        if not redis_client:
            return
        pubsub = redis_client.pubsub()
        await pubsub.subscribe(WS_EVENTS_CHANNEL)
        try:
            async for item in pubsub.listen():
                if not item or item.get('type') != 'message':
                    continue
                try:
                    envelope = json.loads(item.get('data'))
                except (json.JSONDecodeError, TypeError) as e:
                    logger.warning(f"Malformed pub/sub event: {e}")
                    continue
                await self.handle_remote(envelope)
        finally:
            await pubsub.unsubscribe(WS_EVENTS_CHANNEL)

    def start_redis_listener(self):
        if self.listener_task is None:
            self.listener_task = asyncio.create_task(self.listen_redis())

    async def stop_redis_listener(self):
        if self.listener_task is not None:
            self.listener_task.cancel()
            try:
                await self.listener_task
            except asyncio.CancelledError:
                pass
            self.listener_task = None


manager = ConnectionManager()
