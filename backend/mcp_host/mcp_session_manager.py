# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
MCP Session Pool
Maps (session id, credentials, server descriptor) to one long-lived transport,
creates lazily, reuses, and evicts idle sessions on a fixed interval.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional

from mcp_host.connection_retry import connect_with_retry
from mcp_host.core.errors import ServerConnectionError
from mcp_host.mcp_session import (
    MCPSession,
    ServerDescriptor,
    SessionKey,
    SessionState,
)
from mcp_host.mcp_transport import TransportFactory

logger = logging.getLogger(__name__)


class MCPSessionPool:
    """
    Pool of MCP sessions keyed by SessionKey.

    Creation for one key is serialized by a per-key lock, so concurrent first
    requests share one connect; different keys never wait on each other.
    """

    def __init__(
        self,
        transport_factory: TransportFactory,
        session_ttl: float = 600.0,
        sweep_interval: float = 300.0,
        retry_delay: float = 2.0,
        connect_timeout: Optional[Callable[[ServerDescriptor], float]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.transport_factory = transport_factory
        self.session_ttl = session_ttl
        self.sweep_interval = sweep_interval
        self.retry_delay = retry_delay
        self.connect_timeout = connect_timeout or (lambda descriptor: 30.0)
        self.clock = clock
        self.sessions: Dict[SessionKey, MCPSession] = {}
        self.init_locks: Dict[SessionKey, asyncio.Lock] = {}
        self._lock_users: Dict[SessionKey, int] = {}
        self._sweeper: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self.sessions)

    async def get_or_create(
        self,
        session_id: str,
        credentials: Optional[str],
        descriptor: ServerDescriptor,
    ) -> MCPSession:
        """Get a connected session for the key, connecting on first use"""
        key = SessionKey.derive(session_id, credentials, descriptor)

        # Fast path
        session = self.sessions.get(key)
        if session is not None and session.is_usable:
            session.touch(self.clock())
            return session

        # Slow path with lock
        lock = self.init_locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                # Double-check
                session = self.sessions.get(key)
                if session is not None:
                    if session.is_usable:
                        session.touch(self.clock())
                        return session
                    logger.warning(f"Session {key} lost its transport, reconnecting")
                    await self._remove(key, SessionState.CLOSED)

                return await self._create(key)
        finally:
            # The lock lives only while someone holds or waits on it
            self._lock_users[key] -= 1
            if self._lock_users[key] == 0:
                del self._lock_users[key]
                self.init_locks.pop(key, None)

    async def _create(self, key: SessionKey) -> MCPSession:
        descriptor = key.descriptor
        session = MCPSession(key=key, transport=self.transport_factory(descriptor))
        session.state = SessionState.CONNECTING
        logger.info(
            f"Creating MCP session {key}",
            extra={"session_id": key.session_id, "server": descriptor.name},
        )

        try:
            attempts = await connect_with_retry(
                session.transport,
                timeout=self.connect_timeout(descriptor),
                retry_delay=self.retry_delay,
            )
        except ServerConnectionError:
            session.state = SessionState.CLOSED
            await self._safe_disconnect(session)
            raise

        session.state = SessionState.CONNECTED
        session.touch(self.clock())
        self.sessions[key] = session
        logger.info(
            f"MCP session connected {key}",
            extra={"session_id": key.session_id, "server": descriptor.name, "attempts": attempts},
        )
        return session

    async def _safe_disconnect(self, session: MCPSession) -> Optional[Exception]:
        """Disconnect, logging instead of raising"""
        try:
            await session.transport.disconnect()
        except Exception as e:
            logger.error(
                f"Error disconnecting session {session.key}: {e}",
                extra={"session_id": session.key.session_id, "server": session.server_name},
            )
            return e
        return None

    async def _remove(self, key: SessionKey, final_state: SessionState) -> Optional[Exception]:
        """Remove from the pool first, then disconnect, so each transport closes once"""
        session = self.sessions.pop(key, None)
        if session is None:
            return None
        session.state = final_state
        return await self._safe_disconnect(session)

    async def disconnect_all(self, session_id: str) -> int:
        """Tear down every session opened under a caller session id"""
        keys = [key for key in self.sessions if key.session_id == session_id]
        for key in keys:
            await self._remove(key, SessionState.CLOSED)
        if keys:
            logger.info(f"Disconnected {len(keys)} session(s) for {session_id}")
        return len(keys)

    async def sweep(self, now: Optional[float] = None) -> List[SessionKey]:
        """Evict sessions idle longer than the TTL. Sessions mid-call are kept."""
        now = self.clock() if now is None else now
        expired = [
            key for key, session in self.sessions.items()
            if session.active_calls == 0 and session.idle_for(now) > self.session_ttl
        ]
        for key in expired:
            logger.info(f"Removing idle session: {key}")
            await self._remove(key, SessionState.EXPIRED)
        return expired

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Session sweep failed: {e}", exc_info=True)

    def start_sweeper(self) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop(), name="mcp-session-sweeper")
            logger.info(
                f"Session sweeper started (interval={self.sweep_interval}s, ttl={self.session_ttl}s)"
            )

    async def stop_sweeper(self) -> None:
        sweeper, self._sweeper = self._sweeper, None
        if sweeper is not None and not sweeper.done():
            sweeper.cancel()
            await asyncio.gather(sweeper, return_exceptions=True)

    async def close_all(self) -> List[Exception]:
        """Shutdown: disconnect every session, collecting errors without stopping"""
        await self.stop_sweeper()
        keys = list(self.sessions)
        results = await asyncio.gather(
            *(self._remove(key, SessionState.CLOSED) for key in keys)
        )
        errors = [e for e in results if e is not None]
        logger.info(
            f"Closed {len(keys)} MCP session(s)",
            extra={"errors": [str(e) for e in errors]},
        )
        return errors
