"""Dependency injection for FastAPI endpoints.

Usage in controllers:
    from script_runner.dependencies import SandboxReady, Settings

    @router.post("/")
    async def run(_: SandboxReady, settings: Settings):
        ...
"""

from typing import Annotated

from fastapi import Depends

from script_runner import state
from script_runner.config import Settings as AppSettings
from script_runner.config import get_settings
from script_runner.errors import ServiceUnavailableError


def require_sandbox() -> None:
    """Refuse requests while the sandbox is disabled or known to be broken.

    Raises:
        ServiceUnavailableError: If the sandbox cannot take scripts.
    """
    if not get_settings().sandbox.enabled:
        raise ServiceUnavailableError(detail="Script sandbox is disabled")
    if state.sandbox_available is False:
        raise ServiceUnavailableError(detail="Script sandbox is not available")


def sandbox_status() -> str:
    """Health summary of the sandbox: ready, disabled or unavailable."""
    if not get_settings().sandbox.enabled:
        return "disabled"
    if state.sandbox_available is False:
        return "unavailable"
    return "ready"


SandboxReady = Annotated[None, Depends(require_sandbox)]
Settings = Annotated[AppSettings, Depends(get_settings)]
