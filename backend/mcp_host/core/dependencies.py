# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Dependency injection for the MCP host.

Provides FastAPI dependencies for the orchestrator and configuration.
"""

import logging

from fastapi import HTTPException, Request, status

from mcp_host.core.config import Config, get_config
from mcp_host.orchestrator import Orchestrator

logger = logging.getLogger(__name__)


def get_current_config() -> Config:
    """
    Get current host configuration.

    Returns:
        Config: Host configuration
    """
    return get_config()


def get_orchestrator(request: Request) -> Orchestrator:
    """Get the Orchestrator created at startup (stored in app.state)."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        logger.error("Orchestrator requested before startup completed")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="MCP host is not ready"
        )
    return orchestrator
