# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Shared fixtures: in-memory transport and chat model fakes.
"""

import asyncio
import copy
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from mcp_host.core.config import Config
from mcp_host.llm_client import ChatModel, ModelReply, ModelToolCall
from mcp_host.mcp_capabilities import ResourceDescriptor, ToolDescriptor
from mcp_host.mcp_session import LaunchClass, ServerDescriptor
from mcp_host.mcp_transport import TransportHandle


class FakeTransport(TransportHandle):
    """Transport that never spawns anything"""

    def __init__(
        self,
        descriptor: ServerDescriptor,
        tools: Optional[List[Dict[str, Any]]] = None,
        resources: Optional[List[Dict[str, Any]]] = None,
        fail_connects: int = 0,
        connect_delay: float = 0.0,
        list_error: Optional[Exception] = None,
        call_results: Optional[Dict[str, Any]] = None,
        call_errors: Optional[Dict[str, Exception]] = None,
        call_delay: float = 0.0,
        disconnect_error: Optional[Exception] = None,
    ):
        super().__init__(descriptor)
        self.tools = tools or []
        self.resources = resources or []
        self.fail_connects = fail_connects
        self.connect_delay = connect_delay
        self.list_error = list_error
        self.call_results = call_results or {}
        self.call_errors = call_errors or {}
        self.call_delay = call_delay
        self.disconnect_error = disconnect_error
        self.connected = False
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.calls: List[tuple] = []

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def connect(self, timeout: Optional[float] = None) -> None:
        self.connect_calls += 1
        if self.connect_delay:
            await asyncio.wait_for(asyncio.sleep(self.connect_delay), timeout)
        if self.connect_calls <= self.fail_connects:
            raise RuntimeError(f"spawn failed (attempt {self.connect_calls})")
        self.connected = True

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.connected = False
        if self.disconnect_error is not None:
            raise self.disconnect_error

    async def list_tools(self) -> List[ToolDescriptor]:
        if self.list_error is not None:
            raise self.list_error
        return [
            ToolDescriptor(
                server=self.descriptor.name,
                name=t["name"],
                description=t.get("description", ""),
                input_schema=t.get("inputSchema", {}),
            )
            for t in self.tools
        ]

    async def list_resources(self) -> List[ResourceDescriptor]:
        if self.list_error is not None:
            raise self.list_error
        return [
            ResourceDescriptor(server=self.descriptor.name, uri=r["uri"], name=r.get("name", ""))
            for r in self.resources
        ]

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append((name, arguments))
        if self.call_delay:
            await asyncio.sleep(self.call_delay)
        if name in self.call_errors:
            raise self.call_errors[name]
        if name in self.call_results:
            return self.call_results[name]
        return {"content": [{"type": "text", "text": f"{name} ok"}], "isError": False}


class FakeTransportFactory:
    """Builds FakeTransports, configurable per server name, and remembers them"""

    def __init__(self, **defaults):
        self.defaults = defaults
        self.per_server: Dict[str, Dict[str, Any]] = {}
        self.created: List[FakeTransport] = []

    def configure(self, server: str, **options) -> None:
        self.per_server[server] = options

    def __call__(self, descriptor: ServerDescriptor) -> FakeTransport:
        options = dict(self.defaults)
        options.update(self.per_server.get(descriptor.name, {}))
        transport = FakeTransport(descriptor, **options)
        self.created.append(transport)
        return transport

    def for_server(self, name: str) -> List[FakeTransport]:
        return [t for t in self.created if t.descriptor.name == name]


class FakeChatModel(ChatModel):
    """Returns scripted replies and records every round"""

    def __init__(self, replies: List[ModelReply], model: str = "gpt-4o"):
        self.model = model
        self.replies = list(replies)
        self.rounds: List[Dict[str, Any]] = []

    async def complete(self, messages, tools=None, allow_tool_calls=True) -> ModelReply:
        self.rounds.append({
            "messages": copy.deepcopy(messages),
            "tools": list(tools or []),
            "allow_tool_calls": allow_tool_calls,
        })
        return self.replies.pop(0)


def tool_call(call_id: str, name: str, arguments: str = "{}") -> ModelToolCall:
    return ModelToolCall(id=call_id, name=name, arguments=arguments)


@pytest.fixture
def config():
    """Config with short timeouts and no retry delay"""
    return Config(
        connect_timeout_local=1.0,
        connect_timeout_remote=2.0,
        discovery_timeout_local=1.0,
        discovery_timeout_remote=2.0,
        list_timeout=1.0,
        tool_call_timeout=1.0,
        retry_delay=0.0,
    )


@pytest.fixture
def local_server():
    return ServerDescriptor.create("node", ["build/index.js"], name="local-tools")


@pytest.fixture
def remote_server():
    return ServerDescriptor.create(
        "npx",
        ["-y", "@modelcontextprotocol/server-brave-search"],
        name="brave-search",
        launch_class=LaunchClass.REMOTE_FETCH,
    )


@pytest.fixture
def transport_factory():
    return FakeTransportFactory()
