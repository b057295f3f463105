# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Protocol Bridge

Drives one prompt through the model and one MCP session:

  round 1: prompt + every tool of the session's server
  dispatch: each requested call runs concurrently against the session transport
  round 2: tool results appended, one follow-up call with no callable tools

Tool failures are folded back into the conversation as error results; they never
fail the prompt.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from mcp_host.core.errors import ToolExecutionError
from mcp_host.llm_client import ChatModel, ModelToolCall
from mcp_host.mcp_capabilities import CapabilitySet
from mcp_host.mcp_session import MCPSession
from mcp_host.tool_schema import ToolNameMap, translate_capabilities

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolCallRequest:
    """A model-issued call resolved to its MCP tool"""
    call_id: str
    function_name: str
    tool_name: str
    server: str
    raw_arguments: str = ""


@dataclass
class ToolCallResult:
    """Outcome of one dispatched call. Never retried."""
    call_id: str
    tool_name: str
    server: str
    arguments: Dict[str, Any]
    output: Any
    is_error: bool = False

    @classmethod
    def from_error(
        cls,
        request: ToolCallRequest,
        error: ToolExecutionError,
        arguments: Optional[Dict[str, Any]] = None,
    ) -> "ToolCallResult":
        return cls(
            call_id=request.call_id,
            tool_name=request.tool_name,
            server=request.server,
            arguments=arguments or {},
            output={"error": error.message},
            is_error=True,
        )

    def to_dict(self) -> dict:
        return {
            "tool": self.tool_name,
            "server": self.server,
            "arguments": self.arguments,
            "output": self.output,
            "isError": self.is_error,
        }

    def to_tool_message(self) -> Dict[str, Any]:
        return {
            "role": "tool",
            "tool_call_id": self.call_id,
            "content": json.dumps(self.output, default=str),
        }


@dataclass
class BridgeResult:
    response: Optional[str]
    tools_used: List[ToolCallResult] = field(default_factory=list)
    messages: List[Dict[str, Any]] = field(default_factory=list)
    model_calls: int = 0

    def to_dict(self) -> dict:
        return {
            "response": self.response,
            "toolsUsed": [r.to_dict() for r in self.tools_used],
            "messages": self.messages,
        }


class ProtocolBridge:
    """Two-round tool-calling conversation over one session"""

    def __init__(self, model: ChatModel, tool_call_timeout: float = 60.0):
        self.model = model
        self.tool_call_timeout = tool_call_timeout

    async def execute(
        self,
        prompt: str,
        session: MCPSession,
        capabilities: Optional[CapabilitySet] = None,
    ) -> BridgeResult:
        """
        Run the prompt against one session.

        Args:
            prompt: User prompt
            session: Connected session whose server executes the tool calls
            capabilities: Tool set offered to the model (defaults to the session's cache)

        Returns:
            BridgeResult with the final text, every executed call, and the conversation

        Raises:
            ConfigurationError: two tools normalize to the same function name
            ProtocolError: the model returned a structurally invalid reply
        """
        capabilities = capabilities if capabilities is not None else session.capabilities
        functions, name_map = translate_capabilities(capabilities)
        messages: List[Dict[str, Any]] = [{"role": "user", "content": prompt}]

        logger.info(
            f"Executing prompt on {session.server_name} with {len(functions)} tool(s)",
            extra={"server": session.server_name, "model": self.model.model},
        )

        first = await self.model.complete(messages, tools=functions, allow_tool_calls=True)
        if not first.tool_calls:
            return BridgeResult(response=first.content, messages=messages, model_calls=1)

        requests = [self._resolve(call, name_map, session.server_name) for call in first.tool_calls]
        results = await asyncio.gather(*(self._dispatch(session, request) for request in requests))

        messages.append(first.assistant_message())
        for result in results:
            messages.append(result.to_tool_message())

        second = await self.model.complete(messages, tools=functions, allow_tool_calls=False)

        failed = sum(1 for r in results if r.is_error)
        logger.info(
            f"Executed {len(results)} tool call(s) on {session.server_name} ({failed} failed)",
            extra={"server": session.server_name, "tools": [r.tool_name for r in results]},
        )
        return BridgeResult(
            response=second.content,
            tools_used=list(results),
            messages=messages,
            model_calls=2,
        )

    def _resolve(self, call: ModelToolCall, name_map: ToolNameMap, server: str) -> ToolCallRequest:
        # Unknown names pass through; the server reports them as errors
        tool_name = name_map.to_original(call.name) or call.name
        return ToolCallRequest(
            call_id=call.id,
            function_name=call.name,
            tool_name=tool_name,
            server=server,
            raw_arguments=call.arguments,
        )

    async def _dispatch(self, session: MCPSession, request: ToolCallRequest) -> ToolCallResult:
        """Call one tool. Every failure mode becomes an error result."""
        try:
            arguments = _decode_arguments(request)
        except ToolExecutionError as e:
            logger.warning(e.message, extra={"server": request.server, "tool": request.tool_name})
            return ToolCallResult.from_error(request, e)

        logger.debug(f"Calling tool {request.tool_name}", extra={"server": request.server})
        try:
            async with session.in_use():
                output = await asyncio.wait_for(
                    session.transport.call_tool(request.tool_name, arguments),
                    self.tool_call_timeout,
                )
        except asyncio.TimeoutError:
            error = ToolExecutionError(
                f"Tool call timed out after {self.tool_call_timeout:g}s",
                tool=request.tool_name,
                server=request.server,
            )
            logger.warning(error.message, extra={"server": request.server, "tool": request.tool_name})
            return ToolCallResult.from_error(request, error, arguments)
        except Exception as e:
            error = ToolExecutionError(
                str(e) or e.__class__.__name__,
                tool=request.tool_name,
                server=request.server,
            )
            logger.warning(
                f"Tool {request.tool_name} failed: {error.message}",
                extra={"server": request.server, "tool": request.tool_name},
            )
            return ToolCallResult.from_error(request, error, arguments)

        is_error = bool(isinstance(output, dict) and output.get("isError"))
        if is_error:
            logger.info(
                f"Tool {request.tool_name} reported an error",
                extra={"server": request.server, "tool": request.tool_name},
            )
        return ToolCallResult(
            call_id=request.call_id,
            tool_name=request.tool_name,
            server=request.server,
            arguments=arguments,
            output=output,
            is_error=is_error,
        )


def _decode_arguments(request: ToolCallRequest) -> Dict[str, Any]:
    """The model sends arguments as JSON text; they are forwarded unmodified once decoded"""
    raw = request.raw_arguments
    if not raw:
        return {}
    try:
        arguments = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ToolExecutionError(
            f"Invalid JSON arguments for tool {request.tool_name}: {e}",
            tool=request.tool_name,
            server=request.server,
        )
    if not isinstance(arguments, dict):
        raise ToolExecutionError(
            f"Arguments for tool {request.tool_name} must be a JSON object",
            tool=request.tool_name,
            server=request.server,
        )
    return arguments
