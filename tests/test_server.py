"""stdio server registration through the MCP SDK."""
import pytest

from github_workflow_mcp.server import create_mcp_server


@pytest.mark.asyncio
async def test_tools_are_registered(settings, engine):
    mcp = create_mcp_server(settings, engine=engine)

    tools = await mcp.list_tools()

    assert sorted(tool.name for tool in tools) == ["github_merge", "github_push", "github_scan_tasks"]


@pytest.mark.asyncio
async def test_resources_are_registered(settings, engine):
    mcp = create_mcp_server(settings, engine=engine)

    resources = await mcp.list_resources()

    assert sorted(str(resource.uri) for resource in resources) == [
        "github://projects/tasks",
        "github://workflow/status",
    ]
