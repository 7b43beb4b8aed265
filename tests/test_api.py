"""FastAPI エッジレイヤーのテスト"""

import time
from collections.abc import Iterator

import jwt
import pytest
from fastapi.testclient import TestClient
from fastapi import Request

from cloth_featureflag import (
    AnyOfAuthorizer,
    BearerTokenAuthorizer,
    DenyAllAuthorizer,
    FeatureFlagError,
    FeatureFlagErrorCodes,
    Flag,
    FlagService,
    InMemoryFlagRegistry,
    PercentageStrategy,
    StaticCredentialAuthorizer,
    UserSegmentStrategy,
)
from cloth_featureflag.api import context_from_request, create_app

API_KEY = "test-api-key"
JWT_SECRET = "test-jwt-secret-with-enough-length"
AUTH = {"X-API-Key": API_KEY}


def bearer(secret: str = JWT_SECRET) -> dict[str, str]:
    token = jwt.encode({"sub": "ops", "exp": int(time.time()) + 3600}, secret, algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def service() -> FlagService:
    return FlagService(InMemoryFlagRegistry())


@pytest.fixture
def client(service: FlagService) -> Iterator[TestClient]:
    authorizer = AnyOfAuthorizer(
        StaticCredentialAuthorizer(API_KEY),
        BearerTokenAuthorizer(JWT_SECRET),
    )
    app = create_app(service, authorizer, service_name="cloth-test", version="9.9.9")
    with TestClient(app) as c:
        yield c


def test_health(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["service"] == "cloth-test"
    assert body["version"] == "9.9.9"
    assert body["timestamp"].endswith("Z")


def test_create_and_get_flag(client: TestClient) -> None:
    resp = client.post(
        "/api/flags",
        json={"key": "beta", "name": "Beta", "enabled": True},
        headers=AUTH,
    )
    assert resp.status_code == 201
    created = resp.json()
    assert created["key"] == "beta"
    assert created["strategy"] == {"type": "simple"}

    resp = client.get("/api/flags/beta", headers=AUTH)
    assert resp.status_code == 200
    assert resp.json() == created


def test_create_with_strategy(client: TestClient) -> None:
    resp = client.post(
        "/api/flags",
        json={"key": "rollout", "enabled": True, "strategy": {"type": "percentage", "percentage": 30}},
        headers=AUTH,
    )
    assert resp.status_code == 201
    assert resp.json()["strategy"] == {"type": "percentage", "percentage": 30.0}
    assert resp.json()["name"] == "rollout"


def test_create_with_bearer_token(client: TestClient) -> None:
    resp = client.post("/api/flags", json={"key": "beta"}, headers=bearer())
    assert resp.status_code == 201


@pytest.mark.parametrize(
    "headers",
    [
        {},
        {"X-API-Key": "wrong"},
        {"Authorization": "Bearer not-a-jwt"},
        {"Authorization": f"Basic {API_KEY}"},
    ],
)
def test_control_plane_requires_credentials(client: TestClient, headers: dict[str, str]) -> None:
    """一覧・作成・取得・更新・削除はすべて 401。"""
    responses = [
        client.get("/api/flags", headers=headers),
        client.post("/api/flags", json={"key": "beta"}, headers=headers),
        client.get("/api/flags/beta", headers=headers),
        client.put("/api/flags/beta", json={"name": "b", "enabled": True}, headers=headers),
        client.delete("/api/flags/beta", headers=headers),
    ]
    for resp in responses:
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "UNAUTHORIZED"


def test_rejected_bearer_signed_with_other_secret(client: TestClient) -> None:
    resp = client.get("/api/flags", headers=bearer("another-secret-with-enough-length!"))
    assert resp.status_code == 401


def test_deny_all_authorizer(service: FlagService) -> None:
    app = create_app(service, DenyAllAuthorizer())
    with TestClient(app) as c:
        assert c.get("/api/flags", headers=AUTH).status_code == 401


def test_evaluate_is_public(client: TestClient) -> None:
    """評価 API は資格情報なしで呼び出せる。"""
    client.post("/api/flags", json={"key": "beta", "enabled": True}, headers=AUTH)
    resp = client.get("/api/flags/beta/evaluate")
    assert resp.status_code == 200
    body = resp.json()
    assert body["key"] == "beta"
    assert body["enabled"] is True
    assert body["evaluated_at"].endswith("Z")


def test_evaluate_unknown_flag(client: TestClient) -> None:
    resp = client.get("/api/flags/missing/evaluate")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "FLAG_NOT_FOUND"


def test_evaluate_user_segment_from_query_and_header(client: TestClient) -> None:
    client.post(
        "/api/flags",
        json={
            "key": "beta",
            "enabled": True,
            "strategy": {"type": "user_segment", "included_users": ["u1"], "excluded_users": []},
        },
        headers=AUTH,
    )
    assert client.get("/api/flags/beta/evaluate", params={"user_id": "u1"}).json()["enabled"] is True
    assert client.get("/api/flags/beta/evaluate", headers={"X-User-Id": "u1"}).json()["enabled"] is True
    assert client.get("/api/flags/beta/evaluate", params={"user_id": "u2"}).json()["enabled"] is False
    assert client.get("/api/flags/beta/evaluate").json()["enabled"] is False


def test_evaluate_percentage_is_sticky(client: TestClient) -> None:
    client.post(
        "/api/flags",
        json={"key": "rollout", "enabled": True, "strategy": {"type": "percentage", "percentage": 50}},
        headers=AUTH,
    )
    # alice -> bucket 40
    for _ in range(3):
        resp = client.get("/api/flags/rollout/evaluate", params={"user_id": "alice"})
        assert resp.json()["enabled"] is True


def test_list_flags(client: TestClient) -> None:
    client.post("/api/flags", json={"key": "a"}, headers=AUTH)
    client.post("/api/flags", json={"key": "b"}, headers=AUTH)
    resp = client.get("/api/flags", headers=AUTH)
    assert resp.status_code == 200
    assert {f["key"] for f in resp.json()["flags"]} == {"a", "b"}


def test_create_duplicate_key(client: TestClient) -> None:
    client.post("/api/flags", json={"key": "beta"}, headers=AUTH)
    resp = client.post("/api/flags", json={"key": "beta"}, headers=AUTH)
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "FLAG_KEY_EXISTS"


@pytest.mark.parametrize(
    ("body", "code"),
    [
        ({"key": "  "}, "VALIDATION_ERROR"),
        ({"key": "x", "strategy": {"type": "gradual"}}, "INVALID_STRATEGY"),
        ({"key": "x", "strategy": {}}, "INVALID_STRATEGY"),
        ({"key": "x", "strategy": {"type": "percentage", "percentage": 150}}, "VALIDATION_ERROR"),
        (
            {"key": "x", "strategy": {"type": "user_segment", "included_users": [["u1"]]}},
            "VALIDATION_ERROR",
        ),
        (
            {"key": "x", "strategy": {"type": "user_segment", "excluded_users": [{"a": 1}]}},
            "VALIDATION_ERROR",
        ),
        (
            {"key": "x", "strategy": {"type": "user_segment", "included_users": [1]}},
            "VALIDATION_ERROR",
        ),
    ],
)
def test_create_invalid(client: TestClient, body: dict[str, object], code: str) -> None:
    resp = client.post("/api/flags", json=body, headers=AUTH)
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == code


def test_create_schema_error_is_422(client: TestClient) -> None:
    resp = client.post("/api/flags", json={"name": "no key"}, headers=AUTH)
    assert resp.status_code == 422


def test_update_flag(client: TestClient) -> None:
    created = client.post("/api/flags", json={"key": "beta"}, headers=AUTH).json()
    resp = client.put(
        "/api/flags/beta",
        json={
            "name": "Beta v2",
            "enabled": True,
            "strategy": {"type": "user_segment", "included_users": ["u1"]},
        },
        headers=AUTH,
    )
    assert resp.status_code == 200
    updated = resp.json()
    assert updated["name"] == "Beta v2"
    assert updated["enabled"] is True
    assert updated["strategy"]["included_users"] == ["u1"]
    assert updated["metadata"]["created_at"] == created["metadata"]["created_at"]


def test_update_key_mismatch(client: TestClient) -> None:
    client.post("/api/flags", json={"key": "beta"}, headers=AUTH)
    resp = client.put(
        "/api/flags/beta",
        json={"key": "gamma", "name": "x", "enabled": True},
        headers=AUTH,
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


def test_update_missing_flag(client: TestClient) -> None:
    resp = client.put("/api/flags/missing", json={"name": "x", "enabled": True}, headers=AUTH)
    assert resp.status_code == 404


def test_delete_flag(client: TestClient) -> None:
    client.post("/api/flags", json={"key": "beta"}, headers=AUTH)
    resp = client.delete("/api/flags/beta", headers=AUTH)
    assert resp.status_code == 204
    assert client.get("/api/flags/beta", headers=AUTH).status_code == 404
    assert client.delete("/api/flags/beta", headers=AUTH).status_code == 404


def test_seed_flags_loaded_on_startup(service: FlagService) -> None:
    seed = [Flag.with_strategy("seeded", PercentageStrategy(100))]
    app = create_app(service, DenyAllAuthorizer(), seed_flags=seed)
    with TestClient(app) as c:
        resp = c.get("/api/flags/seeded/evaluate", params={"user_id": "u1"})
        assert resp.status_code == 200
        assert resp.json()["enabled"] is True


class FailingRegistry(InMemoryFlagRegistry):
    async def get(self, key: str) -> Flag | None:
        raise FeatureFlagError(FeatureFlagErrorCodes.HTTP_ERROR, "backend unavailable")


def test_unexpected_error_is_500() -> None:
    """想定外のエラーコードは内部情報を出さずに 500。"""
    app = create_app(FlagService(FailingRegistry()), DenyAllAuthorizer())
    with TestClient(app) as c:
        resp = c.get("/api/flags/beta/evaluate")
    assert resp.status_code == 500
    error = resp.json()["error"]
    assert error["code"] == "INTERNAL_ERROR"
    assert "backend" not in error["message"]


def make_request(query: bytes, headers: list[tuple[bytes, bytes]]) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/api/flags/beta/evaluate",
        "query_string": query,
        "headers": headers,
    }
    return Request(scope)


def test_context_from_request_query() -> None:
    ctx = context_from_request(make_request(b"user_id=u1&session_id=s1&plan=pro", []))
    assert ctx.user_id == "u1"
    assert ctx.session_id == "s1"
    assert ctx.attributes == {"plan": "pro"}


def test_context_from_request_header_fallback() -> None:
    ctx = context_from_request(
        make_request(b"", [(b"x-user-id", b"u9"), (b"x-session-id", b"s9")])
    )
    assert ctx.user_id == "u9"
    assert ctx.session_id == "s9"
    assert ctx.attributes == {}


def test_context_from_request_query_wins() -> None:
    ctx = context_from_request(make_request(b"user_id=q", [(b"x-user-id", b"h")]))
    assert ctx.user_id == "q"


def test_user_segment_flag_via_seed(service: FlagService) -> None:
    seed = [
        Flag.with_strategy(
            "segment",
            UserSegmentStrategy(included=frozenset({"u1", "u2"}), excluded=frozenset({"u2"})),
        )
    ]
    app = create_app(service, DenyAllAuthorizer(), seed_flags=seed)
    with TestClient(app) as c:
        assert c.get("/api/flags/segment/evaluate?user_id=u1").json()["enabled"] is True
        assert c.get("/api/flags/segment/evaluate?user_id=u2").json()["enabled"] is False


def test_evaluate_empty_user_id_is_present(service: FlagService) -> None:
    """クエリの空文字列 user_id は指定ありとしてバケット 0 に割り当てられること。"""
    seed = [Flag.with_strategy("rollout", PercentageStrategy(100))]
    app = create_app(service, DenyAllAuthorizer(), seed_flags=seed)
    with TestClient(app) as c:
        resp = c.get("/api/flags/rollout/evaluate", params={"user_id": ""})
        assert resp.json()["enabled"] is True
        assert c.get("/api/flags/rollout/evaluate").json()["enabled"] is False


def test_context_from_request_empty_query_not_replaced_by_header() -> None:
    ctx = context_from_request(
        make_request(b"user_id=&session_id=", [(b"x-user-id", b"h"), (b"x-session-id", b"s")])
    )
    assert ctx.user_id == ""
    assert ctx.session_id == ""
