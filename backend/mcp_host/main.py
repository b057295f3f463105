# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
MCP Host service.

Bridges prompt-driven model calls to MCP tool servers over stdio.
"""

from pathlib import Path

from dotenv import load_dotenv

_env_path = Path.cwd() / ".env"
if _env_path.exists():
    load_dotenv(_env_path)

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from mcp_host.api import host
from mcp_host.core.config import get_config
from mcp_host.core.errors import HostError, sanitize_error_for_user
from mcp_host.core.logging import configure_logging
from mcp_host.orchestrator import Orchestrator

config = get_config()
logger = configure_logging(config.log_level, config.log_format, config.log_file)

app = FastAPI(
    title="MCP Host",
    description="Bridges language models to MCP tool servers",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(host.router)


@app.exception_handler(HostError)
async def host_error_handler(request: Request, exc: HostError):
    """Structured failure envelope for every host error that reaches the route layer"""
    logger.warning(
        f"{request.method} {request.url.path} failed: {exc.message}",
        extra={"error_type": exc.__class__.__name__, "status_code": exc.status_code},
    )
    content = {
        "success": False,
        "error": sanitize_error_for_user(exc, include_type=False),
        "errorType": exc.__class__.__name__,
        "statusCode": exc.status_code,
    }
    if exc.details:
        content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


@app.on_event("startup")
async def startup():
    """Create the orchestrator and start the idle-session sweeper"""
    if getattr(app.state, "orchestrator", None) is None:
        app.state.orchestrator = Orchestrator(config)
    app.state.orchestrator.start()
    logger.info(
        f"MCP host started on {config.service_host}:{config.service_port}",
        extra={"model": config.llm_model, "session_ttl": config.session_ttl},
    )


@app.on_event("shutdown")
async def shutdown():
    """Disconnect every pooled session; errors are logged, never raised"""
    orchestrator = getattr(app.state, "orchestrator", None)
    if orchestrator is None:
        return
    errors = await orchestrator.shutdown()
    for error in errors:
        logger.error(f"Error during shutdown disconnect: {error}")
    logger.info("MCP host stopped")


@app.get("/health")
async def health(request: Request):
    """Health check"""
    return request.app.state.orchestrator.health()
