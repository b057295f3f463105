# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
MCP Discovery Engine

Probes every configured server concurrently on throwaway connections that never
touch the session pool. One result per server, always; a failing server never
fails the discovery call.
"""

import asyncio
import logging
import time
from typing import Dict, List, Optional, Sequence

from mcp_host.connection_retry import connect_with_retry
from mcp_host.core.config import Config
from mcp_host.core.errors import DiscoveryError
from mcp_host.mcp_capabilities import CapabilitySet, DiscoveryResult
from mcp_host.mcp_session import ServerDescriptor
from mcp_host.mcp_transport import TransportFactory, TransportHandle

logger = logging.getLogger(__name__)


class DiscoveryEngine:
    """Parallel capability discovery across MCP servers"""

    def __init__(self, transport_factory: TransportFactory, config: Config):
        self.transport_factory = transport_factory
        self.config = config

    def probe_timeout(self, descriptor: ServerDescriptor, overall_timeout: Optional[float] = None) -> float:
        """Class timeout, kept below half of the caller's overall timeout"""
        timeout = self.config.get_discovery_timeout(descriptor.is_remote)
        if overall_timeout:
            timeout = min(timeout, overall_timeout / 2)
        return timeout

    async def discover_all(
        self,
        descriptors: Sequence[ServerDescriptor],
        overall_timeout: Optional[float] = None,
    ) -> Dict[str, DiscoveryResult]:
        """
        Discover capabilities of all servers.

        Returns:
            {server name: DiscoveryResult} in input order
        """
        logger.info(
            f"Discovering capabilities of {len(descriptors)} server(s)",
            extra={"servers": [d.name for d in descriptors]},
        )
        results: List[DiscoveryResult] = await asyncio.gather(*(
            self._settled_probe(d, self.probe_timeout(d, overall_timeout))
            for d in descriptors
        ))

        discovered = {result.server: result for result in results}
        available = [name for name, r in discovered.items() if r.available]
        logger.info(
            f"Discovery finished: {len(available)}/{len(discovered)} available",
            extra={"available": available},
        )
        return discovered

    async def _settled_probe(self, descriptor: ServerDescriptor, timeout: float) -> DiscoveryResult:
        try:
            return await self.probe(descriptor, timeout=timeout)
        except Exception as e:
            logger.error(f"Unexpected discovery failure for {descriptor.name}: {e}", exc_info=True)
            return DiscoveryResult(
                server=descriptor.name,
                available=False,
                error=str(e) or e.__class__.__name__,
                launch_class=descriptor.launch_class.value,
            )

    async def probe(
        self,
        descriptor: ServerDescriptor,
        timeout: Optional[float] = None,
        retry: bool = False,
    ) -> DiscoveryResult:
        """
        Connect to one server, list its capabilities, disconnect.

        Args:
            descriptor: Server to probe
            timeout: Connect timeout (defaults to the launch-class timeout)
            retry: Apply the remote-fetch retry policy to the connect

        Returns:
            DiscoveryResult. Listing failures leave the server available.
        """
        timeout = timeout if timeout is not None else self.config.get_discovery_timeout(descriptor.is_remote)
        transport = self.transport_factory(descriptor)
        started = time.monotonic()
        result = DiscoveryResult(
            server=descriptor.name,
            available=False,
            launch_class=descriptor.launch_class.value,
        )

        try:
            try:
                if retry:
                    await connect_with_retry(transport, timeout, self.config.effective_retry_delay)
                else:
                    await transport.connect(timeout=timeout)
            except asyncio.TimeoutError:
                result.error = f"timeout after {timeout:g}s"
                return result
            except Exception as e:
                result.error = str(e) or e.__class__.__name__
                return result

            result.available = True
            result.valid_for_execution = True
            try:
                capabilities = await self.list_capabilities(transport)
            except DiscoveryError as e:
                logger.warning(
                    f"Server {descriptor.name} connected but capability listing failed: {e.message}",
                    extra={"server": descriptor.name},
                )
                result.error = e.message
            else:
                result.capabilities = capabilities
                result.capabilities_known = True
                result.tools_count = len(capabilities.tools)
                result.resources_count = len(capabilities.resources)
            return result
        finally:
            result.elapsed = time.monotonic() - started
            try:
                await transport.disconnect()
            except Exception as e:
                logger.warning(f"Error closing discovery connection to {descriptor.name}: {e}")

    async def list_capabilities(self, transport: TransportHandle) -> CapabilitySet:
        """
        List tools, then resources. A server that lists tools but not resources
        is still fully described; one that lists neither raises DiscoveryError.
        """
        name = transport.descriptor.name
        list_timeout = self.config.list_timeout

        try:
            tools = await asyncio.wait_for(transport.list_tools(), list_timeout)
        except Exception as e:
            reason = "timeout" if isinstance(e, asyncio.TimeoutError) else (str(e) or e.__class__.__name__)
            raise DiscoveryError(f"capability listing failed: {reason}", server=name) from e

        try:
            resources = await asyncio.wait_for(transport.list_resources(), list_timeout)
        except Exception as e:
            logger.debug(f"Server {name} does not list resources: {e}")
            resources = []

        return CapabilitySet(server=name, tools=tools, resources=resources)
