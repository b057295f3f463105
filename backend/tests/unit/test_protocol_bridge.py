# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit tests for ProtocolBridge

Tests the two-round tool-calling conversation against a fake session.
"""

import asyncio
import json

import pytest

from tests.conftest import FakeChatModel, FakeTransport, tool_call
from mcp_host.core.errors import ConfigurationError
from mcp_host.llm_client import ModelReply
from mcp_host.mcp_capabilities import CapabilitySet, ToolDescriptor
from mcp_host.mcp_session import MCPSession, SessionKey, SessionState
from mcp_host.protocol_bridge import ProtocolBridge


def make_session(descriptor, **transport_options):
    transport = FakeTransport(descriptor, **transport_options)
    transport.connected = True
    session = MCPSession(key=SessionKey.derive("s1", "key", descriptor), transport=transport)
    session.state = SessionState.CONNECTED
    return session


@pytest.fixture
def capabilities():
    return CapabilitySet(server="local-tools", tools=[
        ToolDescriptor(
            server="local-tools",
            name="db.query",
            description="Run a query",
            input_schema={"type": "object", "properties": {"sql": {"type": "string"}}, "required": ["sql"]},
        ),
        ToolDescriptor(server="local-tools", name="list-buckets", description="List buckets"),
    ])


class TestDirectAnswer:
    """Test prompts answered without tools"""

    @pytest.mark.asyncio
    async def test_single_round(self, local_server, capabilities):
        """Should return the direct response with one model call and no tools used"""
        model = FakeChatModel([ModelReply(content="hello!")])
        bridge = ProtocolBridge(model)

        result = await bridge.execute("say hello", make_session(local_server), capabilities)

        assert result.response == "hello!"
        assert result.tools_used == []
        assert result.model_calls == 1
        assert len(model.rounds) == 1
        assert result.messages == [{"role": "user", "content": "say hello"}]

    @pytest.mark.asyncio
    async def test_round_one_offers_normalized_tools(self, local_server, capabilities):
        """Should offer every tool under its normalized name"""
        model = FakeChatModel([ModelReply(content="ok")])

        await ProtocolBridge(model).execute("hi", make_session(local_server), capabilities)

        offered = [f.name for f in model.rounds[0]["tools"]]
        assert offered == ["db_query", "list-buckets"]
        assert model.rounds[0]["allow_tool_calls"] is True


class TestToolRound:
    """Test prompts that trigger tool calls"""

    @pytest.mark.asyncio
    async def test_dispatch_and_follow_up(self, local_server, capabilities):
        """Should call tools under original names and send results in round two"""
        model = FakeChatModel([
            ModelReply(content=None, tool_calls=[
                tool_call("call_1", "db_query", '{"sql": "SELECT 1"}'),
                tool_call("call_2", "list-buckets"),
            ]),
            ModelReply(content="There is 1 row and 2 buckets."),
        ])
        session = make_session(local_server)

        result = await ProtocolBridge(model).execute("query", session, capabilities)

        assert sorted(session.transport.calls, key=lambda c: c[0]) == [
            ("db.query", {"sql": "SELECT 1"}),
            ("list-buckets", {}),
        ]
        assert result.response == "There is 1 row and 2 buckets."
        assert result.model_calls == 2
        assert [r.tool_name for r in result.tools_used] == ["db.query", "list-buckets"]

        roles = [m["role"] for m in result.messages]
        assert roles == ["user", "assistant", "tool", "tool"]
        assert result.messages[1]["tool_calls"][0]["id"] == "call_1"
        assert result.messages[2]["tool_call_id"] == "call_1"
        assert json.loads(result.messages[3]["content"])["content"][0]["text"] == "list-buckets ok"

        assert model.rounds[1]["allow_tool_calls"] is False

    @pytest.mark.asyncio
    async def test_calls_run_concurrently(self, local_server, capabilities):
        """Should dispatch all calls of one turn in parallel"""
        model = FakeChatModel([
            ModelReply(content=None, tool_calls=[tool_call(f"c{i}", "list-buckets") for i in range(5)]),
            ModelReply(content="done"),
        ])
        session = make_session(local_server, call_delay=0.2)

        loop = asyncio.get_running_loop()
        started = loop.time()
        await ProtocolBridge(model, tool_call_timeout=5).execute("go", session, capabilities)

        assert loop.time() - started < 0.8
        assert session.active_calls == 0
        assert session.state == SessionState.CONNECTED

    @pytest.mark.asyncio
    async def test_server_error_payload_flagged(self, local_server, capabilities):
        """Should flag a server-reported error and still finish the prompt"""
        error_payload = {"content": [{"type": "text", "text": "bucket not found"}], "isError": True}
        model = FakeChatModel([
            ModelReply(content=None, tool_calls=[tool_call("c1", "db_query", '{"sql": "x"}')]),
            ModelReply(content="The bucket does not exist."),
        ])
        session = make_session(local_server, call_results={"db.query": error_payload})

        result = await ProtocolBridge(model).execute("query", session, capabilities)

        assert result.tools_used[0].is_error is True
        assert result.tools_used[0].output == error_payload
        assert result.response == "The bucket does not exist."

    @pytest.mark.asyncio
    async def test_transport_exception_becomes_result(self, local_server, capabilities):
        """Should turn a raised call error into an error result"""
        model = FakeChatModel([
            ModelReply(content=None, tool_calls=[tool_call("c1", "list-buckets")]),
            ModelReply(content="sorry"),
        ])
        session = make_session(local_server, call_errors={"list-buckets": RuntimeError("pipe closed")})

        result = await ProtocolBridge(model).execute("list", session, capabilities)

        assert result.tools_used[0].is_error is True
        assert result.tools_used[0].output == {"error": "pipe closed"}
        assert result.messages[-1]["role"] == "tool"

    @pytest.mark.asyncio
    async def test_call_timeout_becomes_result(self, local_server, capabilities):
        """Should turn a hung call into a timeout error result"""
        model = FakeChatModel([
            ModelReply(content=None, tool_calls=[tool_call("c1", "list-buckets")]),
            ModelReply(content="timed out"),
        ])
        session = make_session(local_server, call_delay=1.0)

        result = await ProtocolBridge(model, tool_call_timeout=0.05).execute("list", session, capabilities)

        assert result.tools_used[0].is_error is True
        assert "timed out" in result.tools_used[0].output["error"]

    @pytest.mark.asyncio
    async def test_invalid_arguments_not_dispatched(self, local_server, capabilities):
        """Should not call the tool when the model sends malformed arguments"""
        model = FakeChatModel([
            ModelReply(content=None, tool_calls=[tool_call("c1", "db_query", "{not json")]),
            ModelReply(content="bad args"),
        ])
        session = make_session(local_server)

        result = await ProtocolBridge(model).execute("query", session, capabilities)

        assert session.transport.calls == []
        assert result.tools_used[0].is_error is True
        assert "Invalid JSON arguments" in result.tools_used[0].output["error"]

    @pytest.mark.asyncio
    async def test_to_dict(self, local_server, capabilities):
        """Should expose toolsUsed entries with their error flag"""
        model = FakeChatModel([
            ModelReply(content=None, tool_calls=[tool_call("c1", "list-buckets")]),
            ModelReply(content="2 buckets"),
        ])

        result = await ProtocolBridge(model).execute("list", make_session(local_server), capabilities)
        data = result.to_dict()

        assert data["response"] == "2 buckets"
        assert data["toolsUsed"][0]["tool"] == "list-buckets"
        assert data["toolsUsed"][0]["isError"] is False


class TestNameCollision:
    """Test schema collisions"""

    @pytest.mark.asyncio
    async def test_collision_is_configuration_error(self, local_server):
        """Should raise before calling the model"""
        capabilities = CapabilitySet(server="local-tools", tools=[
            ToolDescriptor(server="local-tools", name="a.b"),
            ToolDescriptor(server="local-tools", name="a/b"),
        ])
        model = FakeChatModel([])

        with pytest.raises(ConfigurationError):
            await ProtocolBridge(model).execute("x", make_session(local_server), capabilities)

        assert model.rounds == []
