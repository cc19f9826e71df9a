"""
Execution service API - FastAPI app for running agent step pipelines.

The streaming endpoint emits the SSE frames consumed by
agentrun.runtime.consumer.StepStreamConsumer; the inline endpoint returns
the same run as one JSON document.
"""

from .server import app, create_app

__all__ = ["create_app", "app"]
