# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
MCP capability and discovery data structures
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class ToolDescriptor:
    """A callable tool advertised by one server"""
    server: str
    name: str
    description: str = ""
    input_schema: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mcp(cls, server: str, tool: Any) -> "ToolDescriptor":
        """Build from an `mcp.types.Tool`"""
        return cls(
            server=server,
            name=tool.name,
            description=tool.description or "",
            input_schema=dict(tool.inputSchema or {}),
        )

    def to_dict(self) -> dict:
        return {
            "server": self.server,
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


@dataclass(frozen=True)
class ResourceDescriptor:
    """A readable resource advertised by one server"""
    server: str
    uri: str
    name: str = ""
    description: str = ""

    @classmethod
    def from_mcp(cls, server: str, resource: Any) -> "ResourceDescriptor":
        """Build from an `mcp.types.Resource`"""
        return cls(
            server=server,
            uri=str(resource.uri),
            name=resource.name or "",
            description=resource.description or "",
        )

    def to_dict(self) -> dict:
        return {
            "server": self.server,
            "uri": self.uri,
            "name": self.name,
            "description": self.description,
        }


@dataclass
class CapabilitySet:
    """
    Tools and resources of one server. Rebuilt on every listing, never merged
    with another server's set.
    """
    server: str
    tools: List[ToolDescriptor] = field(default_factory=list)
    resources: List[ResourceDescriptor] = field(default_factory=list)

    @property
    def tool_names(self) -> List[str]:
        return [t.name for t in self.tools]

    def to_dict(self) -> dict:
        return {
            "server": self.server,
            "tools": [t.to_dict() for t in self.tools],
            "resources": [r.to_dict() for r in self.resources],
        }


@dataclass
class DiscoveryResult:
    """
    Outcome of probing one server.

    `valid_for_execution` stays True for a server that connects but cannot list
    its capabilities; such a server is usable when the model needs no tool metadata.
    """
    server: str
    available: bool
    tools_count: int = 0
    resources_count: int = 0
    error: Optional[str] = None
    valid_for_execution: bool = False
    capabilities_known: bool = False
    probed: bool = True
    launch_class: str = "local"
    elapsed: float = 0.0
    capabilities: Optional[CapabilitySet] = None

    @classmethod
    def not_probed(cls, server: str, launch_class: str = "local") -> "DiscoveryResult":
        """Placeholder for a server that was selected without discovery"""
        return cls(
            server=server,
            available=True,
            valid_for_execution=True,
            probed=False,
            launch_class=launch_class,
        )

    @property
    def selectable(self) -> bool:
        return self.available and self.valid_for_execution

    def to_dict(self) -> dict:
        data = {
            "server": self.server,
            "available": self.available,
            "toolsCount": self.tools_count,
            "resourcesCount": self.resources_count,
            "validForExecution": self.valid_for_execution,
            "capabilitiesKnown": self.capabilities_known,
            "launchClass": self.launch_class,
            "elapsed": round(self.elapsed, 3),
        }
        if self.error:
            data["error"] = self.error
        if self.capabilities is not None:
            data["tools"] = [
                {"name": t.name, "description": t.description} for t in self.capabilities.tools
            ]
            data["resources"] = [
                {"uri": r.uri, "name": r.name, "description": r.description}
                for r in self.capabilities.resources
            ]
        return data
