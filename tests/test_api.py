"""HTTP and WebSocket transports through FastAPI's TestClient."""
import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from github_workflow_mcp.api import create_app
from github_workflow_mcp.errors import METHOD_NOT_FOUND, PARSE_ERROR, RATE_LIMIT_ERROR
from github_workflow_mcp.rate_limiter import ClientRateLimiter

from conftest import make_pull_request


def _request(method, request_id, params=None):
    envelope = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        envelope["params"] = params
    return envelope


@pytest.fixture
def client(settings, engine):
    app = create_app(settings, engine=engine, limiter=ClientRateLimiter(requests_per_minute=100))
    with TestClient(app) as test_client:
        yield test_client


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["github_configured"] is True


def test_mcp_over_http(client):
    response = client.post("/mcp", json=_request("tools/list", 1))
    assert response.status_code == 200
    body = response.json()
    assert body["id"] == 1
    assert len(body["result"]["tools"]) == 3


def test_mcp_over_http_invalid_json(client):
    response = client.post("/mcp", content=b"{oops", headers={"content-type": "application/json"})
    body = response.json()
    assert body["id"] is None
    assert body["error"]["code"] == PARSE_ERROR


def test_websocket_answers_in_order(client):
    with client.websocket_connect("/mcp/ws") as websocket:
        websocket.send_json(_request("initialize", 1))
        websocket.send_json(_request("tools/list", 2))
        websocket.send_json(_request("github/rebase", 3))

        first = websocket.receive_json()
        second = websocket.receive_json()
        third = websocket.receive_json()

    assert [first["id"], second["id"], third["id"]] == [1, 2, 3]
    assert "result" in first and "result" in second
    assert third["error"]["code"] == METHOD_NOT_FOUND


def test_websocket_invalid_frame_keeps_connection(client):
    with client.websocket_connect("/mcp/ws") as websocket:
        websocket.send_text("not json")
        assert websocket.receive_json()["error"]["code"] == PARSE_ERROR
        websocket.send_json(_request("ping", 9))
        assert websocket.receive_json() == {"jsonrpc": "2.0", "id": 9, "result": {}}


def test_rest_push(client, git):
    git.pending = [" M app.py"]
    response = client.post("/github/push", json={"message": "wip"})
    assert response.status_code == 200
    assert response.json()["branch"] == "feature/x"
    assert ("commit_all", "wip") in git.calls


def test_rest_push_without_body(client):
    response = client.post("/github/push")
    assert response.status_code == 200


def test_rest_merge(client, github):
    github.pull_request = make_pull_request(42)
    response = client.post("/github/merge", json={})
    assert response.status_code == 200
    assert response.json()["merged_pr"]["number"] == 42


def test_rest_merge_on_main_is_bad_request(client, git):
    git.branch = "main"
    response = client.post("/github/merge", json={})
    assert response.status_code == 400
    assert response.json()["detail"]["data"]["kind"] == "validation"


def test_rest_merge_without_pull_request_is_conflict(client):
    response = client.post("/github/merge", json={})
    assert response.status_code == 409


def test_rest_scan_tasks_invalid_arguments(client):
    response = client.post("/github/scan-tasks", json={"status": 5})
    assert response.status_code == 400


def test_rest_scan_tasks_without_token(settings, unauthenticated_engine):
    app = create_app(settings, engine=unauthenticated_engine)
    with TestClient(app) as test_client:
        response = test_client.post("/github/scan-tasks", json={"project_number": "4"})
    assert response.status_code == 401


class TestRateLimiting:
    def test_injected_limiter_is_used(self, settings, engine):
        limiter = ClientRateLimiter(requests_per_minute=2)
        app = create_app(settings, engine=engine, limiter=limiter)
        assert app.state.limiter is limiter

    @pytest.fixture
    def limited_client(self, settings, engine):
        app = create_app(settings, engine=engine, limiter=ClientRateLimiter(requests_per_minute=2))
        with TestClient(app) as test_client:
            yield test_client

    def test_third_request_is_rejected(self, limited_client):
        headers = {"x-forwarded-for": "203.0.113.1"}
        assert limited_client.get("/health", headers=headers).status_code == 200
        assert limited_client.get("/health", headers=headers).status_code == 200

        response = limited_client.get("/health", headers=headers)

        assert response.status_code == 429
        assert response.json() == {"error": "Rate limit exceeded", "message": "Too many requests"}

    def test_other_clients_are_unaffected(self, limited_client):
        for _ in range(3):
            limited_client.get("/health", headers={"x-forwarded-for": "203.0.113.1"})

        response = limited_client.get("/health", headers={"x-forwarded-for": "203.0.113.2"})
        assert response.status_code == 200

    def test_websocket_frames_are_limited(self, limited_client):
        # the handshake consumes the first token
        with limited_client.websocket_connect("/mcp/ws") as websocket:
            websocket.send_json(_request("ping", 1))
            assert "result" in websocket.receive_json()
            websocket.send_json(_request("ping", 2))
            rejected = websocket.receive_json()

        assert rejected["id"] == 2
        assert rejected["error"]["code"] == RATE_LIMIT_ERROR

    def test_websocket_handshake_is_limited(self, limited_client):
        limited_client.get("/health")
        limited_client.get("/health")

        with pytest.raises(WebSocketDisconnect) as excinfo:
            with limited_client.websocket_connect("/mcp/ws"):
                pytest.fail("handshake over the limit was accepted")
        assert excinfo.value.code == 1008
