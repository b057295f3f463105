# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
MCP Session Data Structures

ServerDescriptor identifies a spawnable tool server, SessionKey identifies a
pooled connection, MCPSession binds the two to one live TransportHandle.
"""

import hashlib
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, AsyncIterator, Dict, Mapping, Optional, Tuple

if TYPE_CHECKING:
    from mcp_host.mcp_capabilities import CapabilitySet
    from mcp_host.mcp_transport import TransportHandle


class LaunchClass(str, Enum):
    """How a server process obtains its code"""
    LOCAL = "local"
    REMOTE_FETCH = "remote-fetch"


@dataclass(frozen=True)
class ServerDescriptor:
    """
    Identity of a spawnable tool server.

    Equality (and therefore session identity) is by (command, args, env).
    `name` and `launch_class` are labels set at configuration time.
    """
    command: str
    args: Tuple[str, ...] = ()
    env: Tuple[Tuple[str, str], ...] = ()
    name: str = field(default="", compare=False)
    launch_class: LaunchClass = field(default=LaunchClass.LOCAL, compare=False)

    @classmethod
    def create(
        cls,
        command: str,
        args=(),
        env: Optional[Mapping[str, str]] = None,
        name: str = "",
        launch_class: LaunchClass = LaunchClass.LOCAL,
    ) -> "ServerDescriptor":
        """Build a descriptor from plain list/dict inputs."""
        env_items = tuple(sorted((str(k), str(v)) for k, v in (env or {}).items()))
        return cls(
            command=command,
            args=tuple(str(a) for a in args),
            env=env_items,
            name=name or command,
            launch_class=LaunchClass(launch_class),
        )

    @property
    def env_dict(self) -> Dict[str, str]:
        return dict(self.env)

    @property
    def is_remote(self) -> bool:
        return self.launch_class is LaunchClass.REMOTE_FETCH

    @property
    def command_line(self) -> str:
        return " ".join((self.command,) + self.args)


def fingerprint_credentials(credentials: Optional[str]) -> str:
    """Stable, non-reversible token for a credential string."""
    return hashlib.sha256((credentials or "").encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class SessionKey:
    """Pool key. A tuple of fields, so distinct inputs never collide."""
    session_id: str
    credentials_fingerprint: str
    descriptor: ServerDescriptor

    @classmethod
    def derive(cls, session_id: str, credentials: Optional[str], descriptor: ServerDescriptor) -> "SessionKey":
        return cls(
            session_id=session_id,
            credentials_fingerprint=fingerprint_credentials(credentials),
            descriptor=descriptor,
        )

    def __str__(self) -> str:
        return f"{self.session_id}:{self.credentials_fingerprint[:8]}:{self.descriptor.name}"


class SessionState(str, Enum):
    """Uninitialized -> Connecting -> Connected <-> InUse -> Expired | Closed"""
    UNINITIALIZED = "uninitialized"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    IN_USE = "in_use"
    EXPIRED = "expired"
    CLOSED = "closed"


TERMINAL_STATES = (SessionState.EXPIRED, SessionState.CLOSED)


@dataclass(eq=False)
class MCPSession:
    """Represents a pooled connection to one MCP server"""
    key: SessionKey
    transport: "TransportHandle"
    state: SessionState = SessionState.UNINITIALIZED
    created_at: float = field(default_factory=time.monotonic)
    last_activity: float = field(default_factory=time.monotonic)
    capabilities: Optional["CapabilitySet"] = None
    active_calls: int = 0

    @property
    def descriptor(self) -> ServerDescriptor:
        return self.key.descriptor

    @property
    def server_name(self) -> str:
        return self.key.descriptor.name

    @property
    def is_usable(self) -> bool:
        """Connected (or in use) and the transport is still alive."""
        return (
            self.state in (SessionState.CONNECTED, SessionState.IN_USE)
            and self.transport.is_connected
        )

    def touch(self, now: Optional[float] = None) -> None:
        self.last_activity = time.monotonic() if now is None else now

    def idle_for(self, now: float) -> float:
        return now - self.last_activity

    @asynccontextmanager
    async def in_use(self) -> AsyncIterator["MCPSession"]:
        """Mark the session InUse for the duration of a call."""
        self.active_calls += 1
        self.state = SessionState.IN_USE
        self.touch()
        try:
            yield self
        finally:
            self.active_calls -= 1
            self.touch()
            if self.active_calls == 0 and self.state is SessionState.IN_USE:
                self.state = SessionState.CONNECTED
