import asyncio
import time

from fastapi import APIRouter, Query, Request
from fastapi.responses import PlainTextResponse

from script_runner.config import Settings as AppSettings
from script_runner.dependencies import SandboxReady, Settings
from script_runner.errors import BadRequestError, PayloadTooLargeError
from script_runner.models.scripts import ExecutionRecord, RunRequest, RunResponse, ScriptResult
from script_runner.sandbox import execute_script, get_execution_log, limits_from_settings

router = APIRouter()


@router.get("/", response_class=PlainTextResponse)
async def index() -> str:
    return "200 OK"


async def _read_script(request: Request) -> str:
    """Pull ``script`` out of a form or JSON body."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            payload = await request.json()
        except ValueError:
            raise BadRequestError(detail="Invalid JSON body")
        script = payload.get("script") if isinstance(payload, dict) else None
    else:
        form = await request.form()
        script = form.get("script")

    if not isinstance(script, str):
        raise BadRequestError(detail="script is required")
    return script


def _check_length(script: str, settings: AppSettings) -> None:
    max_length = settings.sandbox.max_script_length
    if len(script) > max_length:
        raise PayloadTooLargeError(
            detail=f"Script exceeds {max_length} characters",
            length=len(script),
        )


@router.post("/", response_model=ScriptResult)
async def run_script(request: Request, _: SandboxReady, settings: Settings) -> ScriptResult:
    script = await _read_script(request)
    _check_length(script, settings)
    outcome = await asyncio.to_thread(execute_script, script)
    return ScriptResult.from_outcome(outcome)


@router.post("/run", response_model=RunResponse)
async def run_script_with_limits(body: RunRequest, _: SandboxReady, settings: Settings) -> RunResponse:
    _check_length(body.script, settings)
    sandbox = settings.sandbox
    if body.timeout_ms is not None and body.timeout_ms > sandbox.max_timeout_ms:
        raise BadRequestError(detail=f"timeout_ms may not exceed {sandbox.max_timeout_ms}")
    if body.max_heap_bytes is not None and body.max_heap_bytes > sandbox.max_heap_cap_bytes:
        raise BadRequestError(detail=f"max_heap_bytes may not exceed {sandbox.max_heap_cap_bytes}")

    limits = limits_from_settings(sandbox, body.timeout_ms, body.max_heap_bytes)
    start = time.perf_counter()
    outcome = await asyncio.to_thread(execute_script, body.script, limits)
    duration_ms = int((time.perf_counter() - start) * 1000)
    return RunResponse.from_run(outcome, duration_ms)


@router.get("/executions", response_model=list[ExecutionRecord])
async def executions(limit: int = Query(default=50, ge=1, le=1000)) -> list[dict]:
    return get_execution_log(limit)
