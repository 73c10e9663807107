"""JSON-RPC dispatch: envelopes, error codes and method routing."""
import json

import pytest

from github_workflow_mcp.dispatcher import Dispatcher, parse_command
from github_workflow_mcp.errors import (
    AUTHENTICATION_ERROR,
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    RATE_LIMIT_ERROR,
    WORKFLOW_ERROR,
    InvalidParamsError,
    MethodNotFoundError,
)
from github_workflow_mcp.protocol import MCP_VERSION, MergeCommand, PushCommand, ScanTasksCommand

from conftest import make_pull_request


def _request(method, params=None, request_id=1):
    envelope = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        envelope["params"] = params
    return envelope


@pytest.fixture
def dispatcher(engine):
    return Dispatcher(engine)


def _assert_exclusive(response):
    assert response["jsonrpc"] == "2.0"
    assert ("result" in response) != ("error" in response)


class TestParseCommand:
    def test_push_arguments(self):
        command = parse_command("github_push", {"branch": "feature/x", "ready_for_review": True})
        assert command == PushCommand(branch="feature/x", ready_for_review=True)

    def test_numeric_project_number_becomes_text(self):
        assert parse_command("github_scan_tasks", {"project_number": 12}) == ScanTasksCommand(project_number="12")

    def test_missing_arguments(self):
        assert parse_command("github_merge", None) == MergeCommand()

    def test_unknown_keys_are_ignored(self):
        assert parse_command("github_merge", {"force": True}) == MergeCommand()

    def test_wrong_type(self):
        with pytest.raises(InvalidParamsError) as excinfo:
            parse_command("github_push", {"ready_for_review": "yes"})
        assert excinfo.value.data["errors"][0]["field"] == "ready_for_review"

    def test_arguments_must_be_an_object(self):
        with pytest.raises(InvalidParamsError):
            parse_command("github_push", ["feature/x"])

    def test_unknown_tool(self):
        with pytest.raises(MethodNotFoundError):
            parse_command("github_rebase", {})


class TestEnvelope:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("request_id", [1, "abc", None])
    async def test_id_is_echoed(self, dispatcher, request_id):
        response = await dispatcher.dispatch(_request("tools/list", request_id=request_id))
        _assert_exclusive(response)
        assert response["id"] == request_id

    @pytest.mark.asyncio
    async def test_missing_id_answers_with_null(self, dispatcher):
        response = await dispatcher.dispatch({"jsonrpc": "2.0", "method": "ping"})
        assert response == {"jsonrpc": "2.0", "id": None, "result": {}}

    @pytest.mark.asyncio
    async def test_invalid_json(self, dispatcher):
        response = await dispatcher.dispatch_text("{not json")
        assert response["id"] is None
        assert response["error"]["code"] == PARSE_ERROR

    @pytest.mark.asyncio
    @pytest.mark.parametrize("envelope", [
        [1, 2, 3],
        {"id": 4, "method": "tools/list"},
        {"jsonrpc": "1.0", "id": 4, "method": "tools/list"},
        {"jsonrpc": "2.0", "id": 4, "method": ""},
        {"jsonrpc": "2.0", "id": 4, "method": 7},
    ])
    async def test_invalid_request(self, dispatcher, envelope):
        response = await dispatcher.dispatch(envelope)
        _assert_exclusive(response)
        assert response["error"]["code"] == INVALID_REQUEST

    @pytest.mark.asyncio
    async def test_params_must_be_an_object(self, dispatcher):
        response = await dispatcher.dispatch(_request("tools/call", params=["github_push"], request_id=5))
        assert response["id"] == 5
        assert response["error"]["code"] == INVALID_PARAMS

    @pytest.mark.asyncio
    async def test_unknown_method(self, dispatcher):
        response = await dispatcher.dispatch(_request("github/rebase", request_id="x"))
        assert response["id"] == "x"
        assert response["error"]["code"] == METHOD_NOT_FOUND

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_internal_error(self, dispatcher, engine):
        async def broken():
            raise RuntimeError("disk on fire")

        engine.get_status = broken
        response = await dispatcher.dispatch(
            _request("resources/read", {"uri": "github://workflow/status"}, request_id=8)
        )
        assert response["id"] == 8
        assert response["error"]["code"] == INTERNAL_ERROR

    def test_rate_limited_echoes_id(self, dispatcher):
        response = dispatcher.rate_limited(json.dumps(_request("tools/list", request_id=11)))
        assert response["id"] == 11
        assert response["error"]["code"] == RATE_LIMIT_ERROR

    def test_rate_limited_unreadable_frame(self, dispatcher):
        assert dispatcher.rate_limited("garbage")["id"] is None


class TestMethods:
    @pytest.mark.asyncio
    async def test_initialize(self, dispatcher):
        response = await dispatcher.dispatch(
            _request("initialize", {"clientInfo": {"name": "editor", "version": "1"}})
        )
        result = response["result"]
        assert result["protocolVersion"] == MCP_VERSION
        assert result["serverInfo"]["name"] == "github-workflow-mcp"
        assert "tools" in result["capabilities"]

    @pytest.mark.asyncio
    async def test_tools_list(self, dispatcher):
        response = await dispatcher.dispatch(_request("tools/list"))
        names = [tool["name"] for tool in response["result"]["tools"]]
        assert names == ["github_push", "github_scan_tasks", "github_merge"]

    @pytest.mark.asyncio
    async def test_resources_list(self, dispatcher):
        response = await dispatcher.dispatch(_request("resources/list"))
        uris = [resource["uri"] for resource in response["result"]["resources"]]
        assert uris == ["github://workflow/status", "github://projects/tasks"]

    @pytest.mark.asyncio
    async def test_tools_call_runs_workflow(self, dispatcher, git):
        git.pending = [" M app.py"]
        response = await dispatcher.dispatch(
            _request("tools/call", {"name": "github_push", "arguments": {"message": "wip"}})
        )
        assert response["result"]["status"] == "success"
        assert ("commit_all", "wip") in git.calls

    @pytest.mark.asyncio
    async def test_tools_call_without_name(self, dispatcher):
        response = await dispatcher.dispatch(_request("tools/call", {"arguments": {}}))
        assert response["error"]["code"] == INVALID_PARAMS

    @pytest.mark.asyncio
    async def test_tools_call_without_params(self, dispatcher):
        response = await dispatcher.dispatch(_request("tools/call"))
        assert response["error"]["code"] == INVALID_PARAMS

    @pytest.mark.asyncio
    async def test_method_alias(self, dispatcher, git, github):
        github.pull_request = make_pull_request(42)
        response = await dispatcher.dispatch(_request("github/merge", {"delete_branch": False}))
        assert response["result"]["merged_pr"]["number"] == 42
        assert ("delete_local_branch", "feature/x") not in git.calls

    @pytest.mark.asyncio
    async def test_workflow_failure_becomes_error(self, dispatcher, git):
        git.branch = "main"
        response = await dispatcher.dispatch(_request("github/merge", request_id=3))
        assert response["id"] == 3
        assert response["error"]["code"] == WORKFLOW_ERROR
        assert response["error"]["data"]["kind"] == "validation"

    @pytest.mark.asyncio
    async def test_authentication_error_code(self, unauthenticated_engine):
        dispatcher = Dispatcher(unauthenticated_engine)
        response = await dispatcher.dispatch(
            _request("tools/call", {"name": "github_scan_tasks", "arguments": {"project_number": "1"}})
        )
        assert response["error"]["code"] == AUTHENTICATION_ERROR

    @pytest.mark.asyncio
    async def test_resources_read(self, dispatcher):
        response = await dispatcher.dispatch(_request("resources/read", {"uri": "github://workflow/status"}))
        content = response["result"]["contents"][0]
        assert content["uri"] == "github://workflow/status"
        assert content["mimeType"] == "application/json"
        assert json.loads(content["text"])["current_branch"] == "feature/x"

    @pytest.mark.asyncio
    async def test_unknown_resource(self, dispatcher):
        response = await dispatcher.dispatch(_request("resources/read", {"uri": "github://nope"}))
        assert response["error"]["code"] == METHOD_NOT_FOUND

    @pytest.mark.asyncio
    async def test_notifications_initialized(self, dispatcher):
        response = await dispatcher.dispatch(_request("notifications/initialized"))
        assert response["result"] == {}
