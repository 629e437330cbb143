import os
import sys
from pathlib import Path
import pytest
import pytest_asyncio

# Configure test environment before any roomchat module reads it
os.environ['DATABASE_URL'] = 'sqlite+aiosqlite:///:memory:'
os.environ.setdefault('JWT_SECRET', 'test-secret')

# Ensure the package root is on sys.path when pytest changes CWD to this tests dir
HERE = Path(__file__).resolve()
PKG_ROOT = HERE.parents[2]
if str(PKG_ROOT) not in sys.path:
    sys.path.insert(0, str(PKG_ROOT))

from roomchat.models import Base, engine, AsyncSessionLocal  # noqa: E402
from roomchat.models.users import User  # noqa: E402
from roomchat.models.listings import Listing  # noqa: E402
from roomchat.auth import create_access_token  # noqa: E402
from roomchat.ws_manager import ConnectionManager, Connection  # noqa: E402
from roomchat.dispatcher import MessageDispatcher  # noqa: E402


class FakeWebSocket:
    """Records frames pushed by the server"""

    def __init__(self, fail_sends: bool = False):
        self.sent = []
        self.accepted = False
        self.fail_sends = fail_sends

    async def accept(self):
        self.accepted = True

    async def send_json(self, data):
        if self.fail_sends:
            raise RuntimeError('socket closed')
        self.sent.append(data)

    def events(self, name):
        return [frame['data'] for frame in self.sent if frame['event'] == name]

    def clear(self):
        self.sent.clear()


class FakeRedis:
    """In-process stand-in for the Redis calls the cache and fan-out make"""

    def __init__(self):
        self.data = {}
        self.ttls = {}
        self.published = []

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value
        if ex:
            self.ttls[key] = ex
        return True

    async def setex(self, key, ttl, value):
        return await self.set(key, value, ex=ttl)

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
        return removed

    async def incrby(self, key, amount):
        self.data[key] = int(self.data.get(key, 0)) + amount
        return self.data[key]

    async def expire(self, key, ttl):
        if key not in self.data:
            return False
        self.ttls[key] = ttl
        return True

    async def publish(self, channel, message):
        self.published.append((channel, message))
        return 0


@pytest_asyncio.fixture
async def db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def people(db):
    """Guest u1 and host u2, host owns listing l1; u3 is an unrelated user"""
    async with AsyncSessionLocal() as session:
        session.add_all([
            User(id='u1', email='guest@example.com', hashed_password='x', name='Guest', occupation='Student'),
            User(id='u2', email='host@example.com', hashed_password='x', name='Host', avatar_url='/a/u2.png'),
            User(id='u3', email='other@example.com', hashed_password='x', name='Other'),
        ])
        await session.commit()
        session.add_all([
            Listing(id='l1', owner_id='u2', title='Sunny room near campus', city='Izmir', rent=450),
            Listing(id='l2', owner_id='u2', title='Quiet loft', city='Izmir', rent=600),
        ])
        await session.commit()
    return {'guest': 'u1', 'host': 'u2', 'other': 'u3'}


@pytest.fixture
def token_for():
    def make(user_id):
        return create_access_token({'id': user_id})
    return make


@pytest.fixture
def live():
    """A fresh connection manager and dispatcher, isolated from the app-wide ones"""
    connections = ConnectionManager()
    return MessageDispatcher(connections)


@pytest.fixture
def open_socket(live):
    async def make(user_id, **kwargs):
        ws = FakeWebSocket(**kwargs)
        conn = Connection(user_id, ws)
        await live.on_connect(conn)
        return conn, ws
    return make


@pytest.fixture
def redis_cache(monkeypatch):
    """Route the cache, rate limits and pub/sub through a FakeRedis"""
    from roomchat import core
    fake = FakeRedis()
    monkeypatch.setattr(core, 'REDIS', fake)
    return fake
