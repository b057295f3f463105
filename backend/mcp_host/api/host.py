# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Host API Routes

- Execute a prompt against one or more MCP servers
- List the tools of a server session
- Test a server connection / discover several servers
- Disconnect the sessions of a caller
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from mcp_host.core.config import Config
from mcp_host.core.dependencies import get_current_config, get_orchestrator
from mcp_host.core.logging import get_api_logger
from mcp_host.host_models import (
    ConnectionTestRequest,
    DisconnectRequest,
    DiscoverRequest,
    ExecuteRequest,
)
from mcp_host.orchestrator import Orchestrator
from mcp_host.server_config import build_descriptor, build_descriptors

router = APIRouter(tags=["host"])
logger = get_api_logger()


@router.post("/execute")
async def execute(
    request: ExecuteRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
    config: Config = Depends(get_current_config)
):
    """Execute a prompt; the body is always a success/failure envelope"""
    descriptors = build_descriptors(config, request.server_dicts())
    result = await orchestrator.execute(
        prompt=request.prompt,
        credentials=request.api_key,
        descriptors=descriptors,
        session_id=request.session_id,
        timeout=request.timeout,
        model=request.model,
    )
    if not result["success"]:
        return JSONResponse(status_code=result.get("statusCode", 500), content=result)
    return result


@router.get("/tools")
async def list_tools(
    serverCommand: Optional[str] = None,
    serverArgs: Optional[str] = None,
    serverEnvs: Optional[str] = None,
    launchClass: Optional[str] = None,
    name: Optional[str] = None,
    apiKey: Optional[str] = None,
    sessionId: Optional[str] = None,
    orchestrator: Orchestrator = Depends(get_orchestrator),
    config: Config = Depends(get_current_config)
) -> Dict[str, Any]:
    """List tools and resources of a (pooled) server session"""
    descriptor = build_descriptor(
        config,
        command=serverCommand,
        args=serverArgs,
        env=serverEnvs,
        name=name,
        launch_class=launchClass,
    )
    capabilities = await orchestrator.list_tools(apiKey, descriptor, sessionId)
    return {"success": True, **capabilities.to_dict()}


@router.post("/test-connection")
async def test_connection(
    request: ConnectionTestRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
    config: Config = Depends(get_current_config)
) -> Dict[str, Any]:
    """Probe one server on a throwaway connection"""
    descriptor = build_descriptor(config, **request.to_server_dict())
    return await orchestrator.test_connection(descriptor)


@router.post("/discover")
async def discover(
    request: DiscoverRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
    config: Config = Depends(get_current_config)
) -> Dict[str, Any]:
    """Probe several servers in parallel"""
    descriptors = build_descriptors(config, [s.to_server_dict() for s in request.servers])
    results = await orchestrator.discover(descriptors, timeout=request.timeout)
    return {
        "success": True,
        "available": sum(1 for r in results.values() if r.available),
        "servers": {name: result.to_dict() for name, result in results.items()},
    }


@router.post("/disconnect")
async def disconnect(
    request: DisconnectRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator)
) -> Dict[str, Any]:
    """Disconnect every session opened under a session id"""
    count = await orchestrator.disconnect(request.session_id)
    logger.info(f"Disconnected {count} client(s) for session {request.session_id}")
    return {"success": True, "disconnectedClients": count}
