"""
Dependency injection for FastAPI endpoints.
"""

import asyncio

from src.services.pipeline import Pipeline, build_pipeline

# Global pipeline (built by the lifespan or on first request)
_pipeline: Pipeline | None = None
_pipeline_lock = asyncio.Lock()


async def get_pipeline() -> Pipeline:
    """
    Get the wired pipeline.

    Builds a single shared instance; tests replace this dependency through
    ``app.dependency_overrides``.
    """
    global _pipeline

    if _pipeline is None:
        async with _pipeline_lock:
            if _pipeline is None:
                _pipeline = await build_pipeline()

    return _pipeline


async def cleanup_dependencies() -> None:
    """Close the pipeline on shutdown."""
    global _pipeline

    if _pipeline is not None:
        await _pipeline.close()
        _pipeline = None
