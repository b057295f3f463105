# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Tool schema translation between MCP and model function calling.

MCP tools (name, description, JSON-schema inputSchema) become FunctionDefinition
objects, the provider-neutral form every chat model adapter serializes from.
ToolNameMap keeps the normalized <-> original tool name mapping.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from mcp_host.core.errors import ConfigurationError
from mcp_host.mcp_capabilities import CapabilitySet, ToolDescriptor

logger = logging.getLogger(__name__)

# Function names accepted by the model APIs
_INVALID_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_-]")
MAX_FUNCTION_NAME_LENGTH = 64

# Schema keys kept alongside properties/required so $ref targets still resolve
_PASSTHROUGH_SCHEMA_KEYS = ("$defs", "definitions", "additionalProperties")


def normalize_tool_name(name: str) -> str:
    """Replace characters outside [a-zA-Z0-9_-] with '_'"""
    return _INVALID_NAME_CHARS.sub("_", name)[:MAX_FUNCTION_NAME_LENGTH]


def build_parameters(input_schema: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Reduce an MCP inputSchema to an object-typed parameters schema"""
    schema = input_schema or {}
    parameters: Dict[str, Any] = {
        "type": "object",
        "properties": dict(schema.get("properties") or {}),
        "required": list(schema.get("required") or []),
    }
    for key in _PASSTHROUGH_SCHEMA_KEYS:
        if key in schema:
            parameters[key] = schema[key]
    return parameters


@dataclass(frozen=True)
class FunctionDefinition:
    """Provider-neutral function definition offered to the model"""
    name: str
    description: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    original_name: str = ""
    server: str = ""

    @classmethod
    def from_tool(cls, tool: ToolDescriptor) -> "FunctionDefinition":
        return cls(
            name=normalize_tool_name(tool.name),
            description=tool.description,
            parameters=build_parameters(tool.input_schema),
            original_name=tool.name,
            server=tool.server,
        )

    def to_openai(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def to_anthropic(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.parameters,
        }


class ToolNameMap:
    """Bidirectional normalized <-> original tool name mapping"""

    def __init__(self):
        self._to_original: Dict[str, str] = {}
        self._to_normalized: Dict[str, str] = {}

    def add(self, original: str) -> str:
        normalized = normalize_tool_name(original)
        existing = self._to_original.get(normalized)
        if existing is not None and existing != original:
            raise ConfigurationError(
                f"Tool names '{existing}' and '{original}' both normalize to '{normalized}'",
                field="tools",
                details={"normalized": normalized, "tools": [existing, original]},
            )
        self._to_original[normalized] = original
        self._to_normalized[original] = normalized
        return normalized

    def to_original(self, normalized: str) -> Optional[str]:
        return self._to_original.get(normalized)

    def to_normalized(self, original: str) -> Optional[str]:
        return self._to_normalized.get(original)

    def __contains__(self, normalized: str) -> bool:
        return normalized in self._to_original

    def __len__(self) -> int:
        return len(self._to_original)


def translate_tools(
    tools: Iterable[ToolDescriptor],
) -> Tuple[List[FunctionDefinition], ToolNameMap]:
    """
    Translate MCP tools into function definitions.

    Raises:
        ConfigurationError: two tools normalize to the same function name
    """
    name_map = ToolNameMap()
    functions: List[FunctionDefinition] = []
    for tool in tools:
        if not tool.name:
            logger.warning(f"Tool from {tool.server} missing required 'name' field, skipping")
            continue
        if name_map.to_normalized(tool.name) is not None:
            logger.warning(f"Duplicate tool '{tool.name}' from {tool.server}, skipping")
            continue
        name_map.add(tool.name)
        functions.append(FunctionDefinition.from_tool(tool))
    return functions, name_map


def translate_capabilities(
    capabilities: Optional[CapabilitySet],
) -> Tuple[List[FunctionDefinition], ToolNameMap]:
    if capabilities is None:
        return [], ToolNameMap()
    return translate_tools(capabilities.tools)
