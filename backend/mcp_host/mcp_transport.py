# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Transport layer for MCP tool servers.

TransportHandle is the opaque capability the rest of the host talks to:
connect, list capabilities, call a tool, disconnect.

StdioTransportHandle spawns the server as a subprocess through the official
`mcp` SDK (`stdio_client` + `ClientSession`). The SDK contexts are entered and
exited inside one dedicated runner task, so a handle created while serving one
request can be closed later from another (sweeper, shutdown, disconnect).
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client
from mcp.types import Implementation

from mcp_host.core.errors import ServerConnectionError
from mcp_host.mcp_capabilities import ResourceDescriptor, ToolDescriptor
from mcp_host.mcp_session import ServerDescriptor

logger = logging.getLogger(__name__)


class TransportHandle(ABC):
    """Abstract connection to one MCP server."""

    def __init__(self, descriptor: ServerDescriptor):
        self.descriptor = descriptor

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether the transport is live."""
        ...

    @abstractmethod
    async def connect(self, timeout: Optional[float] = None) -> None:
        """Launch the server and complete the protocol handshake."""
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Tear the connection down. Safe to call repeatedly."""
        ...

    @abstractmethod
    async def list_tools(self) -> List[ToolDescriptor]:
        ...

    @abstractmethod
    async def list_resources(self) -> List[ResourceDescriptor]:
        ...

    @abstractmethod
    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
        """Call a tool and return the raw result payload (`isError` set on failure)."""
        ...


TransportFactory = Callable[[ServerDescriptor], TransportHandle]


def _root_cause(error: BaseException) -> BaseException:
    """Unwrap single-member exception groups raised by anyio task groups."""
    while isinstance(error, BaseExceptionGroup) and len(error.exceptions) == 1:
        error = error.exceptions[0]
    return error


class StdioTransportHandle(TransportHandle):
    """
    JSON-RPC over stdin/stdout pipes to a subprocess, via the MCP SDK.

    The server process inherits the host environment with the descriptor's
    env overrides applied on top.
    """

    def __init__(
        self,
        descriptor: ServerDescriptor,
        client_name: str = "mcp-host",
        client_version: str = "1.0.0",
        close_timeout: float = 5.0,
    ):
        super().__init__(descriptor)
        self.client_info = Implementation(name=client_name, version=client_version)
        self.close_timeout = close_timeout
        self._session: Optional[ClientSession] = None
        self._runner: Optional[asyncio.Task] = None
        self._closing: Optional[asyncio.Event] = None

    @property
    def is_connected(self) -> bool:
        return (
            self._session is not None
            and self._runner is not None
            and not self._runner.done()
        )

    def _server_parameters(self) -> StdioServerParameters:
        env = dict(os.environ)
        env.update(self.descriptor.env_dict)
        return StdioServerParameters(
            command=self.descriptor.command,
            args=list(self.descriptor.args),
            env=env,
        )

    async def connect(self, timeout: Optional[float] = None) -> None:
        if self._runner is not None:
            logger.warning(f"Transport for {self.descriptor.name} already running, stopping first")
            await self.disconnect()

        logger.info(
            f"Starting stdio transport: {self.descriptor.command_line}",
            extra={
                "server": self.descriptor.name,
                "launch_class": self.descriptor.launch_class.value,
                "env_keys": [k for k, _ in self.descriptor.env],
            },
        )

        ready: asyncio.Future = asyncio.get_running_loop().create_future()
        self._closing = asyncio.Event()
        self._runner = asyncio.create_task(
            self._run(ready, self._closing),
            name=f"mcp-transport:{self.descriptor.name}",
        )

        try:
            await asyncio.wait_for(asyncio.shield(ready), timeout)
        except BaseException:
            await self._abort(ready)
            raise

        logger.info(f"Connected to MCP server {self.descriptor.name}")

    async def _abort(self, ready: asyncio.Future) -> None:
        """Tear down a handshake that failed or ran out of time."""
        runner = self._runner
        self._runner = None
        if runner is not None and not runner.done():
            # Stuck in initialize(); it will never reach the closing wait
            runner.cancel()
            await asyncio.gather(runner, return_exceptions=True)
        if ready.done() and not ready.cancelled():
            ready.exception()
        self._session = None
        logger.info(f"Stdio transport aborted: {self.descriptor.name}")

    async def _run(self, ready: asyncio.Future, closing: asyncio.Event) -> None:
        """Own the SDK contexts for the lifetime of the connection."""
        try:
            async with stdio_client(self._server_parameters()) as (read_stream, write_stream):
                async with ClientSession(
                    read_stream, write_stream, client_info=self.client_info
                ) as session:
                    await session.initialize()
                    self._session = session
                    if not ready.done():
                        ready.set_result(None)
                    await closing.wait()
        except Exception as e:
            cause = _root_cause(e)
            if not ready.done():
                ready.set_exception(cause)
            else:
                logger.warning(
                    f"Transport for {self.descriptor.name} terminated: {cause}",
                    extra={"server": self.descriptor.name},
                )
        finally:
            self._session = None
            if not ready.done():
                ready.cancel()

    async def disconnect(self) -> None:
        runner = self._runner
        if runner is None:
            return
        self._runner = None
        if self._closing is not None:
            self._closing.set()

        if not runner.done():
            try:
                await asyncio.wait_for(asyncio.shield(runner), self.close_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Transport for {self.descriptor.name} did not close in time, cancelling")
                runner.cancel()
                await asyncio.gather(runner, return_exceptions=True)

        self._session = None
        logger.info(f"Stdio transport stopped: {self.descriptor.name}")

    def _require_session(self) -> ClientSession:
        if not self.is_connected:
            raise ServerConnectionError(
                f"Transport for {self.descriptor.name} is not connected",
                server=self.descriptor.name,
            )
        return self._session

    async def list_tools(self) -> List[ToolDescriptor]:
        session = self._require_session()
        result = await session.list_tools()
        tools = list(result.tools)
        while getattr(result, "nextCursor", None):
            result = await session.list_tools(cursor=result.nextCursor)
            tools.extend(result.tools)
        return [ToolDescriptor.from_mcp(self.descriptor.name, t) for t in tools]

    async def list_resources(self) -> List[ResourceDescriptor]:
        session = self._require_session()
        result = await session.list_resources()
        resources = list(result.resources)
        while getattr(result, "nextCursor", None):
            result = await session.list_resources(cursor=result.nextCursor)
            resources.extend(result.resources)
        return [ResourceDescriptor.from_mcp(self.descriptor.name, r) for r in resources]

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
        session = self._require_session()
        result = await session.call_tool(name, arguments)
        return result.model_dump(mode="json", by_alias=True, exclude_none=True)


def stdio_transport_factory(
    client_name: str = "mcp-host",
    client_version: str = "1.0.0",
) -> TransportFactory:
    """Factory producing a fresh, unconnected stdio handle per descriptor."""

    def factory(descriptor: ServerDescriptor) -> TransportHandle:
        return StdioTransportHandle(
            descriptor,
            client_name=client_name,
            client_version=client_version,
        )

    return factory
