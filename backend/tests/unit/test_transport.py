# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit tests for StdioTransportHandle

The MCP SDK entry points are patched; no subprocess is spawned.
"""

import asyncio
import gc
import time
from contextlib import asynccontextmanager
from types import SimpleNamespace
from unittest.mock import patch

import pytest
from mcp.types import CallToolResult, TextContent

from mcp_host.core.errors import ServerConnectionError
from mcp_host.mcp_session import ServerDescriptor
from mcp_host.mcp_transport import StdioTransportHandle, stdio_transport_factory


class FakeClientSession:
    """Stands in for mcp.ClientSession"""

    instances = []
    initialize_error = None
    initialize_delay = 0.0

    def __init__(self, read_stream, write_stream, client_info=None):
        self.client_info = client_info
        self.closed = False
        self.tool_calls = []
        FakeClientSession.instances.append(self)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self.closed = True
        return False

    async def initialize(self):
        if self.initialize_delay:
            await asyncio.sleep(self.initialize_delay)
        if self.initialize_error is not None:
            raise self.initialize_error

    async def list_tools(self, cursor=None):
        pages = {
            None: SimpleNamespace(
                tools=[SimpleNamespace(name="query", description="Run SQL", inputSchema={"type": "object"})],
                nextCursor="page-2",
            ),
            "page-2": SimpleNamespace(
                tools=[SimpleNamespace(name="write", description=None, inputSchema={})],
                nextCursor=None,
            ),
        }
        return pages[cursor]

    async def list_resources(self, cursor=None):
        return SimpleNamespace(
            resources=[SimpleNamespace(uri="influx://buckets", name="buckets", description=None)],
            nextCursor=None,
        )

    async def call_tool(self, name, arguments):
        self.tool_calls.append((name, arguments))
        return CallToolResult(content=[TextContent(type="text", text=f"{name} ok")], isError=False)


@pytest.fixture
def sdk():
    """Patch stdio_client and ClientSession; yields the captured server parameters"""
    FakeClientSession.instances = []
    FakeClientSession.initialize_error = None
    FakeClientSession.initialize_delay = 0.0
    captured = []

    @asynccontextmanager
    async def fake_stdio_client(params):
        captured.append(params)
        yield ("read-stream", "write-stream")

    with patch("mcp_host.mcp_transport.stdio_client", fake_stdio_client), \
            patch("mcp_host.mcp_transport.ClientSession", FakeClientSession):
        yield captured


@pytest.fixture
def descriptor():
    return ServerDescriptor.create("node", ["influx.js"], env={"INFLUX_TOKEN": "t0k"}, name="influx")


class TestLifecycle:
    """Test connect / disconnect"""

    @pytest.mark.asyncio
    async def test_connect_and_disconnect(self, sdk, descriptor, monkeypatch):
        """Should spawn with merged env, initialize, and close cleanly"""
        monkeypatch.setenv("HOST_ONLY_VAR", "1")
        transport = StdioTransportHandle(descriptor, client_name="mcp-host", client_version="9.9")

        await transport.connect(timeout=1.0)

        assert transport.is_connected
        params = sdk[0]
        assert params.command == "node"
        assert params.args == ["influx.js"]
        assert params.env["INFLUX_TOKEN"] == "t0k"
        assert params.env["HOST_ONLY_VAR"] == "1"
        assert FakeClientSession.instances[0].client_info.version == "9.9"

        await transport.disconnect()

        assert not transport.is_connected
        assert FakeClientSession.instances[0].closed is True

    @pytest.mark.asyncio
    async def test_disconnect_from_another_task(self, sdk, descriptor):
        """Should close from a task other than the one that connected"""
        transport = StdioTransportHandle(descriptor)
        await transport.connect(timeout=1.0)

        await asyncio.create_task(transport.disconnect())

        assert not transport.is_connected
        assert FakeClientSession.instances[0].closed is True

    @pytest.mark.asyncio
    async def test_disconnect_idempotent(self, sdk, descriptor):
        """Should allow repeated disconnects"""
        transport = StdioTransportHandle(descriptor)
        await transport.connect(timeout=1.0)

        await transport.disconnect()
        await transport.disconnect()

        assert not transport.is_connected

    @pytest.mark.asyncio
    async def test_initialize_failure_raises(self, sdk, descriptor):
        """Should surface the handshake error from connect"""
        FakeClientSession.initialize_error = RuntimeError("Connection closed")
        transport = StdioTransportHandle(descriptor)

        with pytest.raises(RuntimeError, match="Connection closed"):
            await transport.connect(timeout=1.0)

        assert not transport.is_connected

    @pytest.mark.asyncio
    async def test_connect_timeout(self, sdk, descriptor):
        """Should time out a hung handshake and clean up"""
        FakeClientSession.initialize_delay = 10
        transport = StdioTransportHandle(descriptor, close_timeout=0.1)

        with pytest.raises(asyncio.TimeoutError):
            await transport.connect(timeout=0.05)

        assert not transport.is_connected

    @pytest.mark.asyncio
    async def test_stalled_handshake_returns_at_deadline(self, sdk, descriptor):
        """Should not wait out the close timeout when the server never answers initialize"""
        FakeClientSession.initialize_delay = 30
        transport = StdioTransportHandle(descriptor, close_timeout=5.0)

        started = time.monotonic()
        with pytest.raises(asyncio.TimeoutError):
            await transport.connect(timeout=0.05)

        assert time.monotonic() - started < 1.0
        assert not transport.is_connected
        assert FakeClientSession.instances[0].closed is True

    @pytest.mark.asyncio
    async def test_late_handshake_error_is_consumed(self, sdk, descriptor):
        """Should leave no unretrieved exception behind after a timed-out connect"""
        FakeClientSession.initialize_delay = 0.1
        FakeClientSession.initialize_error = RuntimeError("Connection closed")
        loop = asyncio.get_running_loop()
        reported = []
        previous_handler = loop.get_exception_handler()
        loop.set_exception_handler(lambda _loop, context: reported.append(context))
        try:
            transport = StdioTransportHandle(descriptor)
            with pytest.raises(asyncio.TimeoutError):
                await transport.connect(timeout=0.01)
            await asyncio.sleep(0.2)
            gc.collect()
            await asyncio.sleep(0)
        finally:
            loop.set_exception_handler(previous_handler)

        assert [c for c in reported if "never retrieved" in c.get("message", "")] == []


class TestOperations:
    """Test list / call"""

    @pytest.mark.asyncio
    async def test_list_tools_paginates(self, sdk, descriptor):
        """Should follow nextCursor across pages"""
        transport = StdioTransportHandle(descriptor)
        await transport.connect(timeout=1.0)

        tools = await transport.list_tools()
        await transport.disconnect()

        assert [t.name for t in tools] == ["query", "write"]
        assert tools[0].server == "influx"
        assert tools[1].description == ""

    @pytest.mark.asyncio
    async def test_list_resources(self, sdk, descriptor):
        """Should convert resources"""
        transport = StdioTransportHandle(descriptor)
        await transport.connect(timeout=1.0)

        resources = await transport.list_resources()
        await transport.disconnect()

        assert resources[0].uri == "influx://buckets"

    @pytest.mark.asyncio
    async def test_call_tool_returns_payload(self, sdk, descriptor):
        """Should return the result as a JSON-ready dict"""
        transport = StdioTransportHandle(descriptor)
        await transport.connect(timeout=1.0)

        result = await transport.call_tool("query", {"sql": "SELECT 1"})
        await transport.disconnect()

        assert result["isError"] is False
        assert result["content"][0] == {"type": "text", "text": "query ok"}
        assert FakeClientSession.instances[0].tool_calls == [("query", {"sql": "SELECT 1"})]

    @pytest.mark.asyncio
    async def test_call_requires_connection(self, descriptor):
        """Should refuse calls before connect"""
        transport = StdioTransportHandle(descriptor)

        with pytest.raises(ServerConnectionError):
            await transport.call_tool("query", {})

    def test_factory_builds_fresh_handles(self, descriptor):
        """Should create a new handle per call"""
        factory = stdio_transport_factory("mcp-host", "1.0.0")

        assert factory(descriptor) is not factory(descriptor)
