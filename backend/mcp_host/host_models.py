# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Request models for the host API.

Field names follow the camelCase wire format (serverCommand, serverArgs, ...);
populate_by_name also accepts the snake_case attribute names.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

ServerArgs = Union[str, List[str], None]
ServerEnvs = Union[str, Dict[str, Any], None]


class ServerEntry(BaseModel):
    """One MCP server launch line"""
    model_config = ConfigDict(populate_by_name=True)

    command: Optional[str] = Field(default=None, alias="serverCommand")
    args: ServerArgs = Field(default=None, alias="serverArgs")
    env: ServerEnvs = Field(default=None, alias="serverEnvs")
    name: Optional[str] = None
    launch_class: Optional[str] = Field(default=None, alias="launchClass")

    def to_server_dict(self) -> Dict[str, Any]:
        return {
            "command": self.command,
            "args": self.args,
            "env": self.env,
            "name": self.name,
            "launch_class": self.launch_class,
        }


class ExecuteRequest(ServerEntry):
    """POST /execute. A single inline server, or a `servers` list."""
    prompt: str = ""
    api_key: Optional[str] = Field(default=None, alias="apiKey")
    servers: Optional[List[ServerEntry]] = None
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    timeout: Optional[float] = Field(default=None, gt=0)
    model: Optional[str] = None

    def server_dicts(self) -> List[Dict[str, Any]]:
        if self.servers:
            return [s.to_server_dict() for s in self.servers]
        return [self.to_server_dict()]


class ConnectionTestRequest(ServerEntry):
    """POST /test-connection"""


class DiscoverRequest(BaseModel):
    """POST /discover"""
    servers: List[ServerEntry]
    timeout: Optional[float] = Field(default=None, gt=0)


class DisconnectRequest(BaseModel):
    """POST /disconnect"""
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")
