"""HTTP layer: routing, X-User-Id principal, error mapping to status codes."""
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import OperationalError

from musicnet.dependencies import get_service
from musicnet.main import app


@pytest.fixture
async def client(service):
    app.dependency_overrides[get_service] = lambda: service
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


async def _create_user(client, username, **extra):
    resp = await client.post(
        "/users/", json={"username": username, "email": f"{username}@example.com", **extra}
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["id"]


def _as(user_id):
    return {"X-User-Id": user_id}


async def test_health(client):
    resp = await client.get("/health")

    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


async def test_create_and_fetch_user(client):
    uid = await _create_user(
        client, "eli_vox", location={"latitude": 51.5, "longitude": -0.12}
    )

    resp = await client.get(f"/users/{uid}")

    assert resp.status_code == 200
    body = resp.json()
    assert body["user"]["username"] == "eli_vox"
    assert body["user"]["latitude"] == 51.5
    assert body["followers_count"] == 0


async def test_missing_user_is_404(client):
    resp = await client.get("/users/does-not-exist")

    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "NOT_FOUND"


async def test_duplicate_username_is_409(client):
    await _create_user(client, "fay_fiddle")

    resp = await client.post(
        "/users/", json={"username": "fay_fiddle", "email": "x@example.com"}
    )

    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "ALREADY_EXISTS"


async def test_bad_body_is_400(client):
    resp = await client.post("/users/", json={"username": "x"})

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "VALIDATION_FAILED"


async def test_writes_need_principal(client):
    resp = await client.post("/follows/", json={"kind": "user", "id": "someone"})

    assert resp.status_code == 401


async def test_follow_flow_and_feed(client):
    fan = await _create_user(client, "gus_synth")
    artist = await _create_user(client, "hana_horns")

    first = await client.post("/follows/", json={"kind": "user", "id": artist}, headers=_as(fan))
    second = await client.post("/follows/", json={"kind": "user", "id": artist}, headers=_as(fan))
    assert first.json()["outcome"] == "created"
    assert second.json()["outcome"] == "already_following"

    post = await client.post("/posts/", json={"content": "new track"}, headers=_as(artist))
    assert post.status_code == 201
    post_id = post.json()["id"]
    assert post.json()["user_id"] == artist and post.json()["band_id"] is None

    like = await client.post(f"/posts/{post_id}/like", headers=_as(fan))
    assert like.json() == {"post_id": post_id, "changed": True}

    feed = await client.get("/feed/", headers=_as(fan))
    assert feed.status_code == 200
    [item] = feed.json()["posts"]
    assert item["id"] == post_id
    assert (item["likes_count"], item["is_liked"]) == (1, True)

    status = await client.get(f"/follows/user/{artist}", headers=_as(fan))
    assert status.json()["following"] is True
    unfollow = await client.delete(f"/follows/user/{artist}", headers=_as(fan))
    assert unfollow.status_code == 204
    assert (await client.get("/feed/", headers=_as(fan))).json()["posts"] == []


async def test_self_follow_is_422(client):
    me = await _create_user(client, "ivo_strings")

    resp = await client.post("/follows/", json={"kind": "user", "id": me}, headers=_as(me))

    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "BUSINESS_RULE_VIOLATION"


async def test_band_membership_endpoints(client):
    founder = await _create_user(client, "jo_beats")
    joiner = await _create_user(client, "kai_cello")

    band = await client.post(
        "/bands/",
        json={"name": "Cello Beats", "location": {"latitude": 52.52, "longitude": 13.405}},
        headers=_as(founder),
    )
    assert band.status_code == 201
    band_id = band.json()["id"]

    assert (await client.post(f"/bands/{band_id}/join", headers=_as(joiner))).status_code == 204
    again = await client.post(f"/bands/{band_id}/join", headers=_as(joiner))
    assert again.status_code == 422

    members = (await client.get(f"/bands/{band_id}/members")).json()
    assert [(m["user"]["id"], m["role"]) for m in members] == [
        (founder, "Admin"),
        (joiner, "Member"),
    ]

    band_post = await client.post(
        "/posts/", json={"content": "tour dates", "band_id": band_id}, headers=_as(founder)
    )
    assert band_post.json()["band_id"] == band_id
    assert band_post.json()["user_id"] is None
    assert band_post.json()["author"]["name"] == "Cello Beats"


async def test_nearby_endpoints(client):
    await _create_user(client, "lu_lyrics", location={"latitude": 37.7749, "longitude": -122.4194})
    await _create_user(client, "far_away", location={"latitude": 40.7128, "longitude": -74.0060})

    resp = await client.get("/users/nearby", params={"lat": 37.7749, "lng": -122.4194, "radius_km": 1})

    assert resp.status_code == 200
    assert [m["user"]["username"] for m in resp.json()] == ["lu_lyrics"]

    too_far = await client.get("/bands/nearby", params={"lat": 0, "lng": 0, "radius_km": 900})
    assert too_far.status_code == 400
    assert too_far.json()["error"]["category"] == "validation"


async def test_feed_limit_out_of_range(client):
    resp = await client.get("/feed/explore", params={"limit": 500})

    assert resp.status_code == 400


async def test_metrics_exposed(client):
    await client.get("/feed/explore")

    resp = await client.get("/metrics/")

    assert resp.status_code == 200
    assert "operation_latency_seconds" in resp.text


async def test_join_ignores_requested_role(client):
    founder = await _create_user(client, "mo_mandolin")
    outsider = await _create_user(client, "ned_noise")
    band = await client.post("/bands/", json={"name": "Closed Circle"}, headers=_as(founder))
    band_id = band.json()["id"]

    joined = await client.post(
        f"/bands/{band_id}/join", json={"role": "Admin"}, headers=_as(outsider)
    )
    assert joined.status_code == 204

    members = (await client.get(f"/bands/{band_id}/members")).json()
    assert {m["user"]["id"]: m["role"] for m in members}[outsider] == "Member"
    rename = await client.patch(
        f"/bands/{band_id}", json={"name": "Taken Over"}, headers=_as(outsider)
    )
    assert rename.status_code == 403


async def test_listings(client):
    author = await _create_user(client, "ola_oboe")
    await _create_user(client, "pia_piano")
    await client.post("/bands/", json={"name": "Listed"}, headers=_as(author))
    await client.post("/posts/", json={"content": "hello"}, headers=_as(author))

    users = await client.get("/users/", params={"limit": 1})
    bands = await client.get("/bands/")
    posts = await client.get("/posts/")

    assert users.status_code == 200 and len(users.json()) == 1
    assert [b["name"] for b in bands.json()] == ["Listed"]
    assert [p["content"] for p in posts.json()["posts"]] == ["hello"]


async def test_delete_band_endpoint(client):
    admin = await _create_user(client, "quinn_sax")
    member = await _create_user(client, "rae_bass")
    band_id = (
        await client.post("/bands/", json={"name": "Gone Soon"}, headers=_as(admin))
    ).json()["id"]
    await client.post(f"/bands/{band_id}/join", headers=_as(member))

    denied = await client.delete(f"/bands/{band_id}", headers=_as(member))
    assert denied.status_code == 403

    deleted = await client.delete(f"/bands/{band_id}", headers=_as(admin))
    assert deleted.status_code == 204
    assert (await client.get(f"/bands/{band_id}")).status_code == 404


async def test_post_media_needs_storage(client):
    author = await _create_user(client, "sid_drums")
    post_id = (
        await client.post("/posts/", json={"content": "demo"}, headers=_as(author))
    ).json()["id"]

    resp = await client.post(
        f"/posts/{post_id}/media",
        json={"media_base64": "aGVsbG8=", "content_type": "audio/mpeg"},
        headers=_as(author),
    )

    assert resp.status_code == 503


async def test_post_media_rejects_unknown_type(client):
    author = await _create_user(client, "tao_tabla")
    post_id = (
        await client.post("/posts/", json={"content": "demo"}, headers=_as(author))
    ).json()["id"]

    resp = await client.post(
        f"/posts/{post_id}/media",
        json={"media_base64": "aGVsbG8=", "content_type": "video/mp4"},
        headers=_as(author),
    )

    assert resp.status_code == 400


async def test_ready(client):
    resp = await client.get("/ready")

    assert resp.status_code == 200
    assert resp.json()["status"] == "ready"


async def test_ready_reports_store_outage(client, service, monkeypatch):
    async def store_down(fn):
        raise OperationalError("SELECT 1", {}, ConnectionRefusedError("db down"))

    monkeypatch.setattr(service.transactions, "run_atomic_read_only", store_down)

    resp = await client.get("/ready")

    assert resp.status_code == 503
    assert resp.json()["error"]["code"] == "DATABASE_ERROR"
