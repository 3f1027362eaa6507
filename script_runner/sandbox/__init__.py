import hashlib
import logging
import threading
import time
from datetime import UTC, datetime
from typing import Any

from script_runner.config import SandboxSettings, get_settings
from script_runner.sandbox.coordinator import ExecutionCoordinator
from script_runner.sandbox.exceptions import SandboxError, SandboxStartupError
from script_runner.sandbox.governor import HEAP_FIRST, TIMEOUT_FIRST
from script_runner.sandbox.types import (
    ErrorKind,
    ExecutionOutcome,
    ExecutionRequest,
    Failure,
    ResourceLimits,
    Success,
)

_logger = logging.getLogger("script_runner.sandbox")

EXECUTION_LOG_MAX = 1000

_execution_log: list[dict[str, Any]] = []
_execution_log_lock = threading.Lock()

__all__ = [
    "ErrorKind",
    "ExecutionOutcome",
    "Failure",
    "ResourceLimits",
    "SandboxError",
    "SandboxStartupError",
    "Success",
    "execute_script",
    "get_execution_log",
    "limits_from_settings",
]


def _log_execution(code: str, outcome: ExecutionOutcome, duration_ms: int) -> None:
    text = outcome.text if isinstance(outcome, Success) else outcome.message
    entry = {
        "timestamp": datetime.now(UTC).isoformat(),
        "code_hash": hashlib.sha256(code.encode()).hexdigest()[:16],
        "code_preview": code[:200] + "..." if len(code) > 200 else code,
        "kind": outcome.kind,
        "success": outcome.ok,
        "duration_ms": duration_ms,
        "result_length": len(text),
    }
    with _execution_log_lock:
        _execution_log.append(entry)
        if len(_execution_log) > EXECUTION_LOG_MAX:
            _execution_log.pop(0)

    _logger.info(
        "Sandbox execution: kind=%s success=%s duration=%dms code_hash=%s",
        entry["kind"], entry["success"], duration_ms, entry["code_hash"]
    )


def limits_from_settings(
    settings: SandboxSettings,
    timeout_ms: int | None = None,
    max_heap_bytes: int | None = None,
) -> ResourceLimits:
    return ResourceLimits.from_millis(
        timeout_ms or settings.timeout_ms,
        max_heap_bytes or settings.max_heap_bytes,
    )


def execute_script(script: str, limits: ResourceLimits | None = None) -> ExecutionOutcome:
    """Run ``script`` in a fresh governed isolate.

    Blocks for the whole run; async callers should offload it with
    ``asyncio.to_thread``. Raises SandboxStartupError when no isolate could
    be created.
    """
    settings = get_settings().sandbox
    coordinator = ExecutionCoordinator(
        ExecutionRequest(script),
        limits or limits_from_settings(settings),
        precedence=HEAP_FIRST if settings.prefer_heap_verdict else TIMEOUT_FIRST,
        session_options={
            "heap_headroom": settings.heap_headroom,
            "startup_timeout": settings.startup_timeout_sec,
            "poll_interval": settings.poll_interval_ms / 1000,
            "python_executable": settings.python_executable or None,
        },
    )

    start_time = time.time()
    try:
        outcome = coordinator.run()
    except SandboxStartupError as e:
        _logger.error("Sandbox startup failed: %s", e.detail)
        if e.stderr:
            _logger.debug("Worker stderr: %s", e.stderr[:2000])
        raise
    except SandboxError:
        _logger.exception("Sandbox execution failed")
        raise

    duration_ms = int((time.time() - start_time) * 1000)
    _log_execution(script, outcome, duration_ms)
    return outcome


def get_execution_log(limit: int = 50) -> list[dict[str, Any]]:
    with _execution_log_lock:
        return list(_execution_log[-limit:])


def clear_execution_log() -> None:
    with _execution_log_lock:
        _execution_log.clear()
