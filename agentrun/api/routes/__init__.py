"""
Routes package for the execution service API.

This package contains the FastAPI routers for:
- agents: Agent definition CRUD and step pipeline execution (SSE + inline)
"""

from .agents import router as agents_router

__all__ = [
    "agents_router",
]
