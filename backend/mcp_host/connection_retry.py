# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Connection establishment with the remote-fetch retry policy.

Remote-fetch servers (package runners such as npx) often fail their first
start while the package downloads, so they get exactly one retry after a short
delay. Local servers fail deterministically and are reported immediately.
Tool calls are never retried here.
"""

import asyncio
import logging
from typing import Optional

from mcp_host.core.errors import ServerConnectionError
from mcp_host.mcp_transport import TransportHandle

logger = logging.getLogger(__name__)


def _describe(error: BaseException) -> str:
    if isinstance(error, asyncio.TimeoutError):
        return "connection timed out"
    return str(error) or error.__class__.__name__


async def connect_with_retry(
    transport: TransportHandle,
    timeout: Optional[float],
    retry_delay: float,
) -> int:
    """
    Connect the transport, retrying once for remote-fetch descriptors.

    Returns:
        Number of attempts used (1 or 2)

    Raises:
        ServerConnectionError: when the final attempt fails
    """
    descriptor = transport.descriptor

    try:
        await transport.connect(timeout=timeout)
        return 1
    except Exception as first_error:
        if not descriptor.is_remote:
            logger.error(
                f"Failed to connect to MCP server {descriptor.name}: {_describe(first_error)}",
                extra={"server": descriptor.name, "launch_class": descriptor.launch_class.value},
            )
            raise ServerConnectionError(
                f"Failed to connect to MCP server '{descriptor.name}': {_describe(first_error)}",
                server=descriptor.name,
                attempts=1,
            ) from first_error

        logger.warning(
            f"Connect to remote MCP server {descriptor.name} failed, retrying in {retry_delay}s: "
            f"{_describe(first_error)}",
            extra={"server": descriptor.name, "attempt": 1},
        )

    try:
        await transport.disconnect()
    except Exception as e:
        logger.warning(f"Error cleaning up partial transport for {descriptor.name}: {e}")

    await asyncio.sleep(retry_delay)

    try:
        await transport.connect(timeout=timeout)
    except Exception as retry_error:
        logger.error(
            f"Retry failed for MCP server {descriptor.name}: {_describe(retry_error)}",
            extra={"server": descriptor.name, "attempt": 2},
        )
        raise ServerConnectionError(
            f"Failed to connect to MCP server '{descriptor.name}' after retry: {_describe(retry_error)}",
            server=descriptor.name,
            attempts=2,
        ) from retry_error

    logger.info(f"Reconnected to remote MCP server {descriptor.name} on retry")
    return 2
