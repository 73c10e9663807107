"""
GitHub Workflow MCP Server - JSON-RPC (Model Context Protocol) server driving
push, task-scan and merge workflows for a local git checkout and its GitHub
repository, over HTTP, WebSocket and stdio.
"""
