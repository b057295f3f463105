# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
MCP Host Orchestrator

Composes the session pool, discovery engine, server selector and protocol
bridge into the operations the HTTP layer exposes:

  execute          prompt -> (discovery) -> selection -> session -> bridge
  list_tools       capabilities of one pooled session
  test_connection  throwaway probe with the connect retry policy
  discover         parallel probe of several servers
  disconnect       tear down every session of a caller session id
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from mcp_host.core.config import Config
from mcp_host.core.errors import (
    ConfigurationError,
    DiscoveryError,
    ExecutionTimeoutError,
    HostError,
    sanitize_error_for_user,
)
from mcp_host.core.logging import get_service_logger, log_event
from mcp_host.llm_client import ChatModel, create_chat_model, resolve_api_key
from mcp_host.mcp_capabilities import CapabilitySet, DiscoveryResult
from mcp_host.mcp_discovery import DiscoveryEngine
from mcp_host.mcp_session import MCPSession, ServerDescriptor
from mcp_host.mcp_session_manager import MCPSessionPool
from mcp_host.mcp_transport import TransportFactory, stdio_transport_factory
from mcp_host.protocol_bridge import ProtocolBridge
from mcp_host.server_config import dedupe_names
from mcp_host.server_selector import KeywordServerSelector, ServerSelector

logger = get_service_logger("orchestrator")

ModelFactory = Callable[[str, str, Config], ChatModel]


class Orchestrator:
    """Entry point for every host operation"""

    def __init__(
        self,
        config: Config,
        pool: Optional[MCPSessionPool] = None,
        discovery: Optional[DiscoveryEngine] = None,
        selector: Optional[ServerSelector] = None,
        model_factory: Optional[ModelFactory] = None,
        transport_factory: Optional[TransportFactory] = None,
    ):
        self.config = config
        transport_factory = transport_factory or stdio_transport_factory(
            config.client_name, config.client_version
        )
        self.pool = pool or MCPSessionPool(
            transport_factory,
            session_ttl=config.session_ttl,
            sweep_interval=config.sweep_interval,
            retry_delay=config.effective_retry_delay,
            connect_timeout=lambda descriptor: config.get_connect_timeout(descriptor.is_remote),
        )
        self.discovery = discovery or DiscoveryEngine(transport_factory, config)
        self.selector = selector or KeywordServerSelector.from_config(config.selector_rules)
        self.model_factory = model_factory or create_chat_model

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self.pool.start_sweeper()

    async def shutdown(self) -> List[Exception]:
        errors = await self.pool.close_all()
        if errors:
            logger.warning(f"{len(errors)} session(s) failed to disconnect cleanly during shutdown")
        return errors

    def health(self) -> Dict[str, Any]:
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "activeClients": len(self.pool),
        }

    # ------------------------------------------------------------------
    # Execute
    # ------------------------------------------------------------------

    def remote_latency_budget(self, descriptors: Sequence[ServerDescriptor]) -> float:
        """
        Worst-case setup latency when a server is fetched at launch.

        Two connect attempts with the retry delay between them, the discovery
        pass when several servers are given, and one tool call round.
        """
        budget = (
            2 * self.config.connect_timeout_remote
            + self.config.effective_retry_delay
            + self.config.tool_call_timeout
        )
        if len(descriptors) > 1:
            budget += max(self.discovery.probe_timeout(d) for d in descriptors)
        return budget

    def execution_timeout(self, descriptors: Sequence[ServerDescriptor], requested: Optional[float] = None) -> float:
        """Requested (or default) timeout, raised to the floor when a server is fetched at launch"""
        timeout = requested or self.config.execute_timeout
        if any(d.is_remote for d in descriptors):
            timeout = max(timeout, self.config.execute_remote_floor, self.remote_latency_budget(descriptors))
        return timeout

    async def execute(
        self,
        prompt: str,
        credentials: Optional[str],
        descriptors: Sequence[ServerDescriptor],
        session_id: Optional[str] = None,
        timeout: Optional[float] = None,
        model: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Run a prompt against the best-suited server.

        Always returns an envelope:
            {success: True, response, toolsUsed, messages, server, selection}
            {success: False, error, errorType, statusCode}
        """
        session_id = session_id or self.config.default_session_id
        started = time.monotonic()
        try:
            if not prompt or not prompt.strip():
                raise ConfigurationError("Prompt is required", field="prompt")
            if not descriptors:
                raise ConfigurationError("At least one MCP server is required", field="servers")

            model_name = model or self.config.llm_model
            api_key = resolve_api_key(credentials, model_name)
            effective_timeout = self.execution_timeout(descriptors, timeout)

            try:
                result = await asyncio.wait_for(
                    self._execute(prompt, api_key, dedupe_names(descriptors), session_id, model_name, effective_timeout),
                    effective_timeout,
                )
            except asyncio.TimeoutError:
                raise ExecutionTimeoutError(effective_timeout)

        except HostError as e:
            logger.error(
                f"Execute failed: {e.message}",
                extra={"session_id": session_id, "error_type": e.__class__.__name__},
            )
            return self._failure(e)
        except Exception as e:
            logger.error(f"Execute failed: {e}", exc_info=True, extra={"session_id": session_id})
            return self._failure(e)

        log_event(
            logger,
            "execute_completed",
            session_id=session_id,
            server=result["server"],
            tools_used=len(result["toolsUsed"]),
            elapsed=round(time.monotonic() - started, 3),
        )
        return result

    async def _execute(
        self,
        prompt: str,
        api_key: str,
        descriptors: List[ServerDescriptor],
        session_id: str,
        model_name: str,
        overall_timeout: float,
    ) -> Dict[str, Any]:
        by_name = {d.name: d for d in descriptors}

        if len(descriptors) > 1:
            discovery = await self.discovery.discover_all(descriptors, overall_timeout=overall_timeout)
        else:
            only = descriptors[0]
            discovery = {only.name: DiscoveryResult.not_probed(only.name, only.launch_class.value)}

        selection = self.selector.select(prompt, discovery)
        logger.info(
            f"Selected server {selection.server}: {selection.reason}",
            extra={"session_id": session_id, "category": selection.category},
        )
        descriptor = by_name[selection.server]

        session = await self.pool.get_or_create(session_id, api_key, descriptor)
        capabilities = await self._capabilities_for_execution(session, discovery.get(selection.server))

        bridge = ProtocolBridge(
            self.model_factory(model_name, api_key, self.config),
            tool_call_timeout=self.config.tool_call_timeout,
        )
        result = await bridge.execute(prompt, session, capabilities)

        return {
            "success": True,
            **result.to_dict(),
            "server": descriptor.name,
            "selection": selection.to_dict(),
        }

    async def _capabilities_for_execution(
        self,
        session: MCPSession,
        discovered: Optional[DiscoveryResult],
    ) -> CapabilitySet:
        """Cached set, else the discovery probe's set, else list on the session"""
        if session.capabilities is not None:
            return session.capabilities
        if discovered is not None and discovered.capabilities is not None:
            session.capabilities = discovered.capabilities
            return session.capabilities
        try:
            return await self._refresh_capabilities(session)
        except DiscoveryError as e:
            # Usable without tool metadata; retried on the next request
            logger.warning(
                f"Executing on {session.server_name} without tools: {e.message}",
                extra={"server": session.server_name},
            )
            return CapabilitySet(server=session.server_name)

    async def _refresh_capabilities(self, session: MCPSession) -> CapabilitySet:
        async with session.in_use():
            capabilities = await self.discovery.list_capabilities(session.transport)
        session.capabilities = capabilities
        return capabilities

    def _failure(self, error: Exception) -> Dict[str, Any]:
        envelope: Dict[str, Any] = {
            "success": False,
            "error": sanitize_error_for_user(error, include_type=False),
            "errorType": error.__class__.__name__,
            "statusCode": getattr(error, "status_code", 500),
        }
        if isinstance(error, HostError) and error.details:
            envelope["details"] = error.details
        return envelope

    # ------------------------------------------------------------------
    # Other operations
    # ------------------------------------------------------------------

    def _session_credentials(self, credentials: Optional[str]) -> Optional[str]:
        """Same credential resolution as execute, so both reuse one session"""
        if credentials:
            return credentials
        try:
            return resolve_api_key(None, self.config.llm_model)
        except ConfigurationError:
            return None

    async def list_tools(
        self,
        credentials: Optional[str],
        descriptor: ServerDescriptor,
        session_id: Optional[str] = None,
    ) -> CapabilitySet:
        """
        Connect (or reuse) the session and list its capabilities.

        Raises:
            ServerConnectionError: session could not be established
            DiscoveryError: server connected but could not list its tools
        """
        session_id = session_id or self.config.default_session_id
        session = await self.pool.get_or_create(
            session_id, self._session_credentials(credentials), descriptor
        )
        return await self._refresh_capabilities(session)

    async def test_connection(self, descriptor: ServerDescriptor) -> Dict[str, Any]:
        """Probe on a throwaway connection with the retry policy. Never touches the pool."""
        result = await self.discovery.probe(
            descriptor,
            timeout=self.config.get_connect_timeout(descriptor.is_remote),
            retry=True,
        )
        return {"success": result.available, **result.to_dict()}

    async def discover(
        self,
        descriptors: Sequence[ServerDescriptor],
        timeout: Optional[float] = None,
    ) -> Dict[str, DiscoveryResult]:
        if not descriptors:
            raise ConfigurationError("At least one MCP server is required", field="servers")
        return await self.discovery.discover_all(dedupe_names(descriptors), overall_timeout=timeout)

    async def disconnect(self, session_id: str) -> int:
        if not session_id:
            raise ConfigurationError("sessionId is required", field="sessionId")
        return await self.pool.disconnect_all(session_id)
