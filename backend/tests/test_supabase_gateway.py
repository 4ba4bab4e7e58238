import json

import httpx
import pytest

from conftest import BUYER_ID, SELLER_ID
from modules.chat.threads import ThreadRegistry
from modules.gateway.errors import (
    BackendUnavailableError,
    DuplicateThreadError,
    NotPermittedError,
    ObjectNotFoundError,
)
from modules.gateway.supabase import SupabaseGateway

BASE_URL = "https://project.supabase.test"


def make_gateway(handler, access_token="user-token") -> SupabaseGateway:
    client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return SupabaseGateway(
        base_url=BASE_URL,
        api_key="anon-key",
        access_token=access_token,
        bucket="avatars",
        client=client,
    )


def _profile(user_id, name):
    return {"id": user_id, "full_name": name, "avatar_path": None, "avatar_updated_at": None}


def _thread(thread_id, seller=True, messages=()):
    return {
        "id": thread_id,
        "post_id": "p1",
        "buyer_id": BUYER_ID,
        "seller_id": SELLER_ID,
        "created_at": "2024-03-01T09:00:00+00:00",
        "post": {"id": "p1", "user_id": SELLER_ID, "title": "Desk lamp"},
        "buyer": _profile(BUYER_ID, "Bea Buyer"),
        "seller": _profile(SELLER_ID, "Sam Seller") if seller else None,
        "messages": list(messages),
    }


async def test_thread_list_request_and_mapping():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["request"] = request
        latest = {
            "id": "m9", "thread_id": "t1", "sender_id": SELLER_ID, "receiver_id": BUYER_ID,
            "post_id": "p1", "message": "Yes", "created_at": "2024-03-01T11:00:00Z",
        }
        return httpx.Response(200, json=[_thread("t1", messages=[latest]), _thread("t2", seller=False)])

    gateway = make_gateway(handler)
    threads = await ThreadRegistry(gateway).load_threads(BUYER_ID)

    request = seen["request"]
    assert request.url.path == "/rest/v1/threads"
    assert request.url.params["or"] == f"(buyer_id.eq.{BUYER_ID},seller_id.eq.{BUYER_ID})"
    assert request.url.params["messages.limit"] == "1"
    assert request.headers["apikey"] == "anon-key"
    assert request.headers["authorization"] == "Bearer user-token"

    assert [t.id for t in threads] == ["t1"]
    assert threads[0].last_message_preview == "Yes"


async def test_malformed_row_is_skipped():
    def handler(request):
        broken = _thread("t2")
        del broken["created_at"]
        return httpx.Response(200, json=[_thread("t1"), broken])

    rows = await make_gateway(handler).list_threads_for_user(BUYER_ID)

    assert [row.id for row in rows] == ["t1"]


async def test_conflict_on_create_is_duplicate():
    def handler(request):
        return httpx.Response(409, json={"code": "23505", "message": "duplicate key value"})

    with pytest.raises(DuplicateThreadError):
        await make_gateway(handler).create_thread("p1", BUYER_ID, SELLER_ID)


async def test_create_thread_posts_triple():
    def handler(request):
        assert request.method == "POST"
        assert request.headers["prefer"] == "return=representation"
        assert json.loads(request.content) == {"post_id": "p1", "buyer_id": BUYER_ID, "seller_id": SELLER_ID}
        return httpx.Response(201, json=[{"id": "t-new"}])

    assert await make_gateway(handler).create_thread("p1", BUYER_ID, SELLER_ID) == "t-new"


async def test_server_error_is_unavailable():
    def handler(request):
        return httpx.Response(503, json={"message": "maintenance"})

    with pytest.raises(BackendUnavailableError):
        await make_gateway(handler).list_messages("t1")


async def test_transport_error_is_unavailable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(BackendUnavailableError):
        await make_gateway(handler).find_thread("p1", BUYER_ID, SELLER_ID)


async def test_insert_message_returns_echo():
    def handler(request):
        body = json.loads(request.content)
        return httpx.Response(201, json=[{
            "id": "m-server", "thread_id": body["thread_id"], "sender_id": body["sender_id"],
            "receiver_id": body["receiver_id"], "post_id": body["post_id"], "message": body["message"],
            "created_at": "2024-03-01T12:00:00Z", "sender": _profile(BUYER_ID, "Bea Buyer"),
        }])

    row = await make_gateway(handler).insert_message(BUYER_ID, SELLER_ID, "p1", "t1", "hello")

    assert row.id == "m-server"
    assert row.resolve().sender_name == "Bea Buyer"


async def test_deleting_foreign_message_is_not_permitted():
    def handler(request):
        if request.method == "DELETE":
            return httpx.Response(200, json=[])
        return httpx.Response(200, json=[{"id": "m1"}])

    with pytest.raises(NotPermittedError):
        await make_gateway(handler).delete_message("m1", BUYER_ID)


async def test_delete_thread_removes_messages_first():
    paths = []

    def handler(request):
        paths.append(request.url.path)
        return httpx.Response(204)

    await make_gateway(handler).delete_thread_cascade("t1")

    assert paths == ["/rest/v1/messages", "/rest/v1/threads"]


async def test_signed_url_is_absolute():
    def handler(request):
        assert request.url.path == f"/storage/v1/object/sign/avatars/users/{SELLER_ID}/a.jpg"
        assert json.loads(request.content) == {"expiresIn": 900}
        return httpx.Response(200, json={"signedURL": f"/object/sign/avatars/users/{SELLER_ID}/a.jpg?token=xyz"})

    url = await make_gateway(handler).get_signed_url(f"users/{SELLER_ID}/a.jpg", 900)

    assert url == f"{BASE_URL}/storage/v1/object/sign/avatars/users/{SELLER_ID}/a.jpg?token=xyz"


async def test_signed_url_missing_in_response_is_none():
    def handler(request):
        return httpx.Response(200, json={})

    assert await make_gateway(handler).get_signed_url("users/x/a.jpg", 60) is None


async def test_missing_object_raises_not_found():
    def handler(request):
        return httpx.Response(400, json={"error": "not_found", "message": "Object not found"})

    with pytest.raises(ObjectNotFoundError):
        await make_gateway(handler).get_signed_url("users/x/a.jpg", 60)


async def test_current_user_without_token_makes_no_request():
    def handler(request):
        raise AssertionError("no request expected")

    assert await make_gateway(handler, access_token="").current_user_id() is None


async def test_rejected_token_means_signed_out():
    def handler(request):
        return httpx.Response(401, json={"msg": "invalid JWT"})

    assert await make_gateway(handler).current_user_id() is None


async def test_current_user_id_from_session():
    def handler(request):
        assert request.url.path == "/auth/v1/user"
        return httpx.Response(200, json={"id": BUYER_ID, "email": "bea@campus.test"})

    assert await make_gateway(handler).current_user_id() == BUYER_ID


async def test_avatar_path_lookup():
    def handler(request):
        return httpx.Response(200, json=[{"avatar_path": f"users/{SELLER_ID}/a.jpg"}])

    gateway = make_gateway(handler)

    assert await gateway.get_avatar_path(SELLER_ID) == f"users/{SELLER_ID}/a.jpg"
    await gateway.aclose()
    assert gateway._client is None
