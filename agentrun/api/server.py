"""
Execution service API - FastAPI app that runs agent step pipelines.

Endpoints:
    GET    /api/health                          - Health check
    GET    /api/agents                          - List agents
    GET    /api/agents/{id}                     - Get agent
    POST   /api/agents                          - Create or replace agent
    DELETE /api/agents/{id}                     - Delete agent
    POST   /api/agents/{id}/execute/stream      - Run a persisted agent (SSE)
    POST   /api/agents/execute-inline           - Run unsaved steps (JSON)

Usage:
    uvicorn agentrun.api.server:app --port 5001

    # or
    python -m agentrun.api.server --port 5001
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from agentrun.config.agent_registry import AgentRegistry
from agentrun.config.runtime_config import (
    get_agents_dir,
    get_provider_mode,
    get_server_host,
    get_server_port,
)
from agentrun.runtime.executor import AgentExecutor
from agentrun.runtime.providers import LLMProvider, get_provider

from .routes import agents_router

logger = logging.getLogger(__name__)


def create_app(
    registry: Optional[AgentRegistry] = None,
    provider: Optional[LLMProvider] = None,
    agents_dir: Optional[Path] = None,
    enable_cors: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        registry: Agent registry to serve. A new empty one by default.
        provider: LLM provider for step execution. Defaults to the
            configured provider.
        agents_dir: Directory of agent YAML files to seed the registry
            from. Defaults to the configured AGENTRUN_AGENTS_DIR.
        enable_cors: Whether to enable CORS middleware.

    Returns:
        Configured FastAPI application.
    """
    registry = registry if registry is not None else AgentRegistry()
    provider = provider if provider is not None else get_provider()

    seed_dir = agents_dir if agents_dir is not None else get_agents_dir()
    if seed_dir is not None:
        registry.load_dir(seed_dir)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Execution service starting (provider=%s, agents=%d)",
            provider.name,
            len(registry),
        )
        yield
        logger.info("Execution service shutting down...")

    app = FastAPI(
        title="agentrun execution service",
        description="Runs multi-step agent pipelines against an LLM and streams step progress.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.registry = registry
    app.state.executor = AgentExecutor(provider)

    # Add CORS middleware
    if enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
            allow_headers=["*"],
        )

    app.include_router(agents_router, prefix="/api")

    # -------------------------------------------------------------------------
    # Request Logging Middleware
    # -------------------------------------------------------------------------

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time
        logger.info(
            "%s %s %s %.3fs",
            request.method,
            request.url.path,
            response.status_code,
            duration,
        )
        return response

    # -------------------------------------------------------------------------
    # Error Bodies
    # -------------------------------------------------------------------------

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        detail = errors[0].get("msg", "invalid value") if errors else "invalid value"
        location = ".".join(str(part) for part in errors[0].get("loc", ())) if errors else ""
        message = f"Invalid request: {location} {detail}".strip() if location else f"Invalid request: {detail}"
        return JSONResponse(status_code=422, content={"error": message})

    # -------------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------------

    @app.get("/api/health")
    async def health():
        """Health check endpoint."""
        return {
            "status": "ok",
            "provider": provider.name,
            "agents": len(registry),
        }

    return app


# Create default app instance for uvicorn
app = create_app()


# =============================================================================
# Main Entry Point
# =============================================================================


def main():
    """Run the execution service."""
    import argparse

    import uvicorn

    parser = argparse.ArgumentParser(description="agentrun execution service")
    parser.add_argument("--host", default=get_server_host(), help="Host to bind to")
    parser.add_argument("--port", type=int, default=get_server_port(), help="Port to bind to")
    parser.add_argument("--agents-dir", type=Path, default=None, help="Directory of agent YAML files")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--no-cors", action="store_true", help="Disable CORS")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    global app
    app = create_app(agents_dir=args.agents_dir, enable_cors=not args.no_cors)

    print(f"Starting agentrun execution service at http://{args.host}:{args.port} (provider: {get_provider_mode()})")
    print("    GET    /api/health")
    print("    GET    /api/agents")
    print("    POST   /api/agents")
    print("    POST   /api/agents/{id}/execute/stream")
    print("    POST   /api/agents/execute-inline")

    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
