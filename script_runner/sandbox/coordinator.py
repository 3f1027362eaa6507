"""Orchestration of one governed script run."""

import logging
from collections.abc import Callable
from enum import Enum

from script_runner.sandbox.exceptions import SandboxError
from script_runner.sandbox.governor import HEAP_FIRST, ResourceGovernor
from script_runner.sandbox.session import SandboxSession
from script_runner.sandbox.types import (
    CompileError,
    ErrorKind,
    ExecutionOutcome,
    ExecutionRequest,
    Failure,
    GovernorVerdict,
    RawResult,
    ResourceLimits,
    Success,
    ThrownException,
    Unknown,
    Value,
)

logger = logging.getLogger("script_runner.sandbox.coordinator")

HEAP_EXCEEDED_MESSAGE = "heap allocation limit reached"
TIMEOUT_MESSAGE = "execution exceeded time budget"
NO_RESULT_MESSAGE = "no value and no exception"

# Extra CPU seconds granted to the worker's rlimit on top of the script
# budget, covering interpreter and engine start-up.
CPU_BACKSTOP_SLACK = 2.0

SessionFactory = Callable[..., SandboxSession]


class CoordinatorState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    RECONCILING = "reconciling"
    DONE = "done"


def reconcile(verdict: GovernorVerdict, raw: RawResult) -> ExecutionOutcome:
    """Combine the governor verdict with what the session saw."""
    if verdict is GovernorVerdict.HEAP_EXCEEDED:
        return Failure(ErrorKind.MEMORY_LIMIT_EXCEEDED, HEAP_EXCEEDED_MESSAGE)
    if verdict is GovernorVerdict.CPU_TIMEOUT:
        return Failure(ErrorKind.TIMEOUT, TIMEOUT_MESSAGE)
    if isinstance(raw, Value):
        return Success(raw.text)
    if isinstance(raw, CompileError):
        return Failure(ErrorKind.COMPILE_ERROR, raw.message)
    if isinstance(raw, ThrownException):
        return Failure(ErrorKind.RUNTIME_EXCEPTION, raw.message)
    if isinstance(raw, Unknown):
        if raw.detail:
            logger.warning("session returned no result: %s", raw.detail)
        return Failure(ErrorKind.INTERNAL_ERROR, NO_RESULT_MESSAGE)
    raise TypeError(f"unexpected raw result: {raw!r}")


class ExecutionCoordinator:
    """Runs one request: IDLE -> RUNNING -> RECONCILING -> DONE.

    Everything the script can do wrong ends up as an ``ExecutionOutcome``.
    Only a failure to bring up the isolate (``SandboxStartupError``) or a
    process-level interrupt escapes, and even then the governor is stopped
    and the session closed first.
    """

    def __init__(
        self,
        request: ExecutionRequest,
        limits: ResourceLimits | None = None,
        *,
        session_factory: SessionFactory = SandboxSession.create,
        precedence: tuple[GovernorVerdict, ...] = HEAP_FIRST,
        session_options: dict | None = None,
    ) -> None:
        self.request = request
        self.limits = limits or ResourceLimits()
        self.session_factory = session_factory
        self.precedence = precedence
        self.session_options = session_options or {}
        self.state = CoordinatorState.IDLE
        self.verdict: GovernorVerdict | None = None
        self.raw_result: RawResult | None = None

    def run(self) -> ExecutionOutcome:
        if self.state is not CoordinatorState.IDLE:
            raise SandboxError("coordinator already ran")

        options = {"cpu_backstop_seconds": self.limits.timeout_seconds + CPU_BACKSTOP_SLACK}
        options.update(self.session_options)
        session = self.session_factory(self.limits.max_heap_bytes, **options)

        governor = ResourceGovernor(self.limits, precedence=self.precedence)
        try:
            governor.start(session)
            self.state = CoordinatorState.RUNNING
            self.raw_result = session.run(self.request.script)
        finally:
            self.state = CoordinatorState.RECONCILING
            self.verdict = governor.stop()
            if self.verdict is not GovernorVerdict.NONE and governor.first_breach is not self.verdict:
                logger.info(
                    "both budgets breached; first=%s reported=%s",
                    governor.first_breach.value,
                    self.verdict.value,
                )
            if self.raw_result is None:
                session.close()

        outcome = reconcile(self.verdict, self.raw_result)
        session.handle.cancel_abort()
        session.close()
        self.state = CoordinatorState.DONE
        return outcome
