"""Value types shared by the sandbox engine.

The sandbox speaks in three closed unions:

- ``RawResult``: what a session observed directly from the engine.
- ``GovernorVerdict``: which resource budget (if any) was breached.
- ``ExecutionOutcome``: the reconciled answer handed to transports.
"""

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_EXECUTION_TIME = timedelta(milliseconds=300)
DEFAULT_HEAP_BYTES = 16 * 1024 * 1024


class ErrorKind(str, Enum):
    COMPILE_ERROR = "compile_error"
    RUNTIME_EXCEPTION = "runtime_exception"
    TIMEOUT = "timeout"
    MEMORY_LIMIT_EXCEEDED = "memory_limit_exceeded"
    INTERNAL_ERROR = "internal_error"


class GovernorVerdict(str, Enum):
    NONE = "none"
    CPU_TIMEOUT = "cpu_timeout"
    HEAP_EXCEEDED = "heap_exceeded"


class ResourceLimits(BaseModel):
    """Per-request execution budgets."""

    model_config = ConfigDict(frozen=True)

    max_execution_time: timedelta = Field(default=DEFAULT_EXECUTION_TIME)
    max_heap_bytes: int = Field(default=DEFAULT_HEAP_BYTES)

    @field_validator("max_execution_time")
    @classmethod
    def positive_duration(cls, v: timedelta) -> timedelta:
        if v <= timedelta(0):
            raise ValueError("max_execution_time must be positive")
        return v

    @field_validator("max_heap_bytes")
    @classmethod
    def positive_heap(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("max_heap_bytes must be positive")
        return v

    @classmethod
    def from_millis(cls, timeout_ms: int, max_heap_bytes: int) -> "ResourceLimits":
        return cls(
            max_execution_time=timedelta(milliseconds=timeout_ms),
            max_heap_bytes=max_heap_bytes,
        )

    @property
    def timeout_seconds(self) -> float:
        return self.max_execution_time.total_seconds()


@dataclass(frozen=True)
class ExecutionRequest:
    script: str


# Raw results, as reported by a session.


@dataclass(frozen=True)
class Value:
    text: str


@dataclass(frozen=True)
class CompileError:
    message: str


@dataclass(frozen=True)
class ThrownException:
    message: str


@dataclass(frozen=True)
class Unknown:
    detail: str = ""


RawResult = Value | CompileError | ThrownException | Unknown


# Reconciled outcomes.


@dataclass(frozen=True)
class Success:
    text: str

    @property
    def ok(self) -> bool:
        return True

    @property
    def kind(self) -> str:
        return "success"

    def as_response(self) -> dict[str, str]:
        return {"result": self.text, "error": ""}


@dataclass(frozen=True)
class Failure:
    error_kind: ErrorKind
    message: str

    @property
    def ok(self) -> bool:
        return False

    @property
    def kind(self) -> str:
        return self.error_kind.value

    def as_response(self) -> dict[str, str]:
        return {"result": "", "error": self.message}


ExecutionOutcome = Success | Failure
