import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from roomchat.main import app


@pytest_asyncio.fixture
async def client(db):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


def auth(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.mark.asyncio
async def test_register_login_and_me(client):
    r = await client.post("/api/users/register", json={
        "email": "ada@example.com",
        "password": "secret1",
        "name": "Ada",
        "occupation": "Engineer",
    })
    assert r.status_code == 200, r.text
    user = r.json()
    assert "hashed_password" not in user

    dup = await client.post("/api/users/register", json={
        "email": "ada@example.com", "password": "other", "name": "Ada again",
    })
    assert dup.status_code == 422
    assert dup.json()["error"] == "validation_error"

    bad = await client.post("/api/users/login", data={"email": "ada@example.com", "password": "nope"})
    assert bad.status_code == 401

    login = await client.post("/api/users/login", data={"email": "ada@example.com", "password": "secret1"})
    assert login.status_code == 200, login.text
    token = login.json()["access_token"]

    me = await client.get("/api/users/me", headers=auth(token))
    assert me.status_code == 200, me.text
    assert me.json()["id"] == user["id"]
    assert me.json()["occupation"] == "Engineer"


@pytest.mark.asyncio
async def test_protected_routes_require_token(client):
    for path in ("/api/users/me", "/api/messages/threads", "/api/messages/unread-count"):
        r = await client.get(path)
        assert r.status_code == 401, path
        assert r.json()["error"] == "authentication_error"
    r = await client.get("/api/messages/threads", headers=auth("garbage"))
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_listings(client, people, token_for):
    r = await client.post("/api/listings/", json={"title": "Attic room", "city": "Ankara", "rent": 300},
                          headers=auth(token_for("u3")))
    assert r.status_code == 200, r.text
    listing = r.json()
    assert listing["owner_id"] == "u3"

    mine = await client.get("/api/listings/mine", headers=auth(token_for("u2")))
    assert {item["id"] for item in mine.json()} == {"l1", "l2"}

    assert (await client.get(f"/api/listings/{listing['id']}")).json()["title"] == "Attic room"
    missing = await client.get("/api/listings/nope")
    assert missing.status_code == 404
    assert missing.json()["error"] == "not_found"


@pytest.mark.asyncio
async def test_send_history_threads_and_read(client, people, token_for):
    guest, host = auth(token_for("u1")), auth(token_for("u2"))

    sent = await client.post("/api/messages/", json={
        "receiver_id": "u2", "listing_id": "l1", "content": "Is this still available?",
    }, headers=guest)
    assert sent.status_code == 200, sent.text
    body = sent.json()
    assert body["sender"]["id"] == "u1"
    assert body["listing"]["title"] == "Sunny room near campus"
    assert body["read"] is False

    await client.post("/api/messages/", json={"receiver_id": "u1", "listing_id": "l1", "content": "Yes!"}, headers=host)
    await client.post("/api/messages/", json={"receiver_id": "u2", "listing_id": "l1", "content": "Great"}, headers=guest)

    history = await client.get("/api/messages/l1/u1", headers=host)
    assert [m["content"] for m in history.json()] == ["Is this still available?", "Yes!", "Great"]

    unread = await client.get("/api/messages/unread-count", headers=host)
    assert unread.json() == {"unread": 2}

    threads = (await client.get("/api/messages/threads", headers=host)).json()
    assert len(threads) == 1
    assert threads[0]["other_user"]["name"] == "Guest"
    assert threads[0]["last_message"]["content"] == "Great"
    assert threads[0]["unread_count"] == 2

    read = await client.put("/api/messages/read/u1", params={"listing_id": "l1"}, headers=host)
    assert read.json() == {"updated": 2}
    again = await client.put("/api/messages/read/u1", params={"listing_id": "l1"}, headers=host)
    assert again.json() == {"updated": 0}
    assert (await client.get("/api/messages/unread-count", headers=host)).json() == {"unread": 0}
    # the guest's own unread reply is untouched
    assert (await client.get("/api/messages/unread-count", headers=guest)).json() == {"unread": 1}


@pytest.mark.asyncio
async def test_send_rejections(client, people, token_for):
    guest = auth(token_for("u1"))
    empty = await client.post("/api/messages/", json={"receiver_id": "u2", "listing_id": "l1", "content": "  "}, headers=guest)
    assert empty.status_code == 422
    assert empty.json()["error"] == "validation_error"

    to_self = await client.post("/api/messages/", json={"receiver_id": "u1", "listing_id": "l1", "content": "hi"}, headers=guest)
    assert to_self.status_code == 422

    malformed = await client.post("/api/messages/", json={"receiver_id": "u2"}, headers=guest)
    assert malformed.status_code == 422

    own = await client.put("/api/messages/read/u1", headers=guest)
    assert own.status_code == 422


@pytest.mark.asyncio
async def test_listing_inquiries_for_owner_only(client, people, token_for):
    await client.post("/api/messages/", json={"receiver_id": "u2", "listing_id": "l1", "content": "first"},
                      headers=auth(token_for("u1")))
    await client.post("/api/messages/", json={"receiver_id": "u2", "listing_id": "l1", "content": "from u3"},
                      headers=auth(token_for("u3")))

    owner = await client.get("/api/messages/listing/l1/inquiries", headers=auth(token_for("u2")))
    assert owner.status_code == 200, owner.text
    assert [m["sender"]["id"] for m in owner.json()] == ["u3", "u1"]

    stranger = await client.get("/api/messages/listing/l1/inquiries", headers=auth(token_for("u1")))
    assert stranger.status_code == 403
    assert stranger.json()["error"] == "authorization_error"


@pytest.mark.asyncio
async def test_healthz(client):
    r = await client.get("/healthz")
    assert r.json() == {"status": "ok"}


@pytest.mark.parametrize("query", ["", "?token=not-a-jwt"])
def test_websocket_rejects_bad_credentials(query):
    client = TestClient(app)
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect(f"/api/ws/chat{query}"):
            pass
    assert exc.value.code == 1008
