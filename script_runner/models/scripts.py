"""Pydantic request/response models for the script endpoints."""

from pydantic import BaseModel, Field

from script_runner.sandbox.types import ExecutionOutcome


class ScriptResult(BaseModel):
    """The wire shape of an outcome: exactly one of the two is non-empty."""

    result: str = ""
    error: str = ""

    @classmethod
    def from_outcome(cls, outcome: ExecutionOutcome) -> "ScriptResult":
        return cls(**outcome.as_response())


class RunRequest(BaseModel):
    """Body of ``POST /run``; limits default to the configured ones."""

    script: str
    timeout_ms: int | None = Field(default=None, gt=0)
    max_heap_bytes: int | None = Field(default=None, gt=0)


class RunResponse(ScriptResult):
    kind: str
    duration_ms: int

    @classmethod
    def from_run(cls, outcome: ExecutionOutcome, duration_ms: int) -> "RunResponse":
        return cls(**outcome.as_response(), kind=outcome.kind, duration_ms=duration_ms)


class ExecutionRecord(BaseModel):
    """One entry of the in-memory execution log."""

    timestamp: str
    code_hash: str
    code_preview: str
    kind: str
    success: bool
    duration_ms: int
    result_length: int
