"""Application startup and shutdown.

Startup optionally pushes one trivial script through the full sandbox path,
so a missing engine or broken worker shows up in ``/health`` before the
first real request instead of as a 503 on it.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI

from script_runner import state
from script_runner.config import get_settings
from script_runner.sandbox import SandboxError, Success, execute_script

logger = logging.getLogger(__name__)

WARMUP_SCRIPT = "1 + 1"


@dataclass
class LifespanResources:
    """Container for what startup established."""

    sandbox_enabled: bool = False
    sandbox_available: bool | None = None


async def check_sandbox() -> bool:
    """Run the warm-up script and report whether it came back as expected.

    Returns:
        True if the sandbox produced ``"2"`` for ``1 + 1``.
    """
    try:
        outcome = await asyncio.to_thread(execute_script, WARMUP_SCRIPT)
    except SandboxError as e:
        logger.warning("Sandbox warm-up failed: %s", e)
        return False
    if isinstance(outcome, Success) and outcome.text == "2":
        return True
    logger.warning("Sandbox warm-up returned unexpected outcome: %r", outcome)
    return False


async def setup_resources() -> LifespanResources:
    settings = get_settings()
    resources = LifespanResources(sandbox_enabled=settings.sandbox.enabled)

    if settings.sandbox.enabled and settings.sandbox.warmup:
        resources.sandbox_available = await check_sandbox()

    state.sandbox_available = resources.sandbox_available
    return resources


async def cleanup_resources(resources: LifespanResources) -> None:
    state.sandbox_available = None


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    resources = await setup_resources()
    try:
        yield
    finally:
        await cleanup_resources(resources)
