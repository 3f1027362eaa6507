"""Tests for reconciliation and the governed run lifecycle."""

import threading
import time
from unittest.mock import MagicMock

import pytest

from script_runner.sandbox.coordinator import (
    HEAP_EXCEEDED_MESSAGE,
    NO_RESULT_MESSAGE,
    TIMEOUT_MESSAGE,
    CoordinatorState,
    ExecutionCoordinator,
    reconcile,
)
from script_runner.sandbox.exceptions import SandboxError, SandboxStartupError
from script_runner.sandbox.session import SandboxSession
from script_runner.sandbox.types import (
    CompileError,
    ErrorKind,
    ExecutionRequest,
    Failure,
    GovernorVerdict,
    ResourceLimits,
    Success,
    ThrownException,
    Unknown,
    Value,
)


class TestReconcile:
    @pytest.mark.parametrize(
        "raw",
        [Value("1"), CompileError("c"), ThrownException("t"), Unknown()],
    )
    def test_heap_verdict_wins_over_anything(self, raw):
        assert reconcile(GovernorVerdict.HEAP_EXCEEDED, raw) == Failure(
            ErrorKind.MEMORY_LIMIT_EXCEEDED, HEAP_EXCEEDED_MESSAGE
        )

    @pytest.mark.parametrize("raw", [Value("1"), ThrownException("t"), Unknown()])
    def test_timeout_verdict_wins_over_raw(self, raw):
        assert reconcile(GovernorVerdict.CPU_TIMEOUT, raw) == Failure(ErrorKind.TIMEOUT, TIMEOUT_MESSAGE)

    def test_value_is_success(self):
        assert reconcile(GovernorVerdict.NONE, Value("2")) == Success("2")

    def test_compile_error_message_passed_through(self):
        outcome = reconcile(GovernorVerdict.NONE, CompileError("Uncaught SyntaxError: x"))
        assert outcome == Failure(ErrorKind.COMPILE_ERROR, "Uncaught SyntaxError: x")

    def test_thrown_exception_message_passed_through(self):
        outcome = reconcile(GovernorVerdict.NONE, ThrownException("Uncaught boom"))
        assert outcome == Failure(ErrorKind.RUNTIME_EXCEPTION, "Uncaught boom")

    def test_unknown_is_internal_error(self):
        outcome = reconcile(GovernorVerdict.NONE, Unknown("worker exited with code -9"))
        assert outcome == Failure(ErrorKind.INTERNAL_ERROR, NO_RESULT_MESSAGE)


def _coordinator(fake_session_options, mode, script="1 + 1", timeout_ms=2000, **kwargs):
    return ExecutionCoordinator(
        ExecutionRequest(script),
        ResourceLimits.from_millis(timeout_ms, 1 << 20),
        session_options=fake_session_options(mode),
        **kwargs,
    )


def _watchdogs():
    return [t for t in threading.enumerate() if t.name.startswith("cpu-watchdog-")]


class TestGovernedRun:
    def test_value(self, fake_session_options):
        coordinator = _coordinator(fake_session_options, "value")

        assert coordinator.run() == Success("echo:1 + 1")
        assert coordinator.verdict is GovernorVerdict.NONE
        assert coordinator.state is CoordinatorState.DONE

    def test_runtime_exception(self, fake_session_options):
        outcome = _coordinator(fake_session_options, "thrown").run()
        assert outcome == Failure(ErrorKind.RUNTIME_EXCEPTION, "Uncaught Error: x")

    def test_compile_error(self, fake_session_options):
        outcome = _coordinator(fake_session_options, "compile").run()
        assert outcome == Failure(ErrorKind.COMPILE_ERROR, "Uncaught SyntaxError: bad")

    def test_hanging_script_times_out_promptly(self, fake_session_options):
        coordinator = _coordinator(fake_session_options, "hang", timeout_ms=200)

        started = time.monotonic()
        outcome = coordinator.run()
        elapsed = time.monotonic() - started

        assert outcome == Failure(ErrorKind.TIMEOUT, TIMEOUT_MESSAGE)
        assert elapsed < 10
        assert coordinator.verdict is GovernorVerdict.CPU_TIMEOUT

    def test_heap_signal_is_memory_limit(self, fake_session_options):
        outcome = _coordinator(fake_session_options, "heap").run()
        assert outcome == Failure(ErrorKind.MEMORY_LIMIT_EXCEEDED, HEAP_EXCEEDED_MESSAGE)

    def test_heap_signal_beats_late_value(self, fake_session_options):
        outcome = _coordinator(fake_session_options, "heap_then_value").run()
        assert outcome.kind == ErrorKind.MEMORY_LIMIT_EXCEEDED.value

    def test_worker_exit_without_result(self, fake_session_options):
        outcome = _coordinator(fake_session_options, "exit").run()
        assert outcome == Failure(ErrorKind.INTERNAL_ERROR, NO_RESULT_MESSAGE)


class TestLifecycle:
    def test_coordinator_is_single_use(self, fake_session_options):
        coordinator = _coordinator(fake_session_options, "value")
        coordinator.run()

        with pytest.raises(SandboxError):
            coordinator.run()

    def test_startup_failure_propagates(self, fake_session_options):
        coordinator = _coordinator(fake_session_options, "no_ready")

        with pytest.raises(SandboxStartupError):
            coordinator.run()
        assert coordinator.state is CoordinatorState.IDLE

    def test_no_watchdog_threads_leak(self, fake_session_options):
        for mode in ("value", "thrown", "hang", "heap"):
            _coordinator(fake_session_options, mode, timeout_ms=200).run()

        assert _watchdogs() == []

    def test_late_abort_after_run_is_harmless(self, fake_session_options):
        sessions = []

        def factory(max_heap_bytes, **options):
            session = SandboxSession.create(max_heap_bytes, **options)
            sessions.append(session)
            return session

        coordinator = _coordinator(fake_session_options, "value", session_factory=factory)
        assert coordinator.run() == Success("echo:1 + 1")

        handle = sessions[0].handle
        assert handle.abort() is False
        assert handle.abort_requested is False

        def factory_with_stale_abort(max_heap_bytes, **options):
            session = factory(max_heap_bytes, **options)
            handle.abort()
            return session

        follow_up = _coordinator(
            fake_session_options, "value", script="2 + 2", session_factory=factory_with_stale_abort
        )
        assert follow_up.run() == Success("echo:2 + 2")
        assert follow_up.verdict is GovernorVerdict.NONE
        assert handle.abort() is False
        assert sessions[1].handle.abort_requested is False

    def test_cpu_backstop_passed_to_session(self):
        factory = MagicMock(side_effect=SandboxStartupError("nope"))
        coordinator = ExecutionCoordinator(
            ExecutionRequest("1"),
            ResourceLimits.from_millis(500, 1024),
            session_factory=factory,
        )

        with pytest.raises(SandboxStartupError):
            coordinator.run()
        args, kwargs = factory.call_args
        assert args == (1024,)
        assert kwargs["cpu_backstop_seconds"] == pytest.approx(2.5)

    def test_session_closed_when_run_raises(self):
        session = MagicMock()
        session.handle.pid = 1
        session.add_near_heap_limit_callback.return_value = 1
        session.run.side_effect = KeyboardInterrupt

        coordinator = ExecutionCoordinator(
            ExecutionRequest("1"),
            ResourceLimits.from_millis(5000, 1024),
            session_factory=lambda *a, **k: session,
        )

        with pytest.raises(KeyboardInterrupt):
            coordinator.run()
        session.close.assert_called_once()
        session.remove_near_heap_limit_callback.assert_called_once_with(1)
        assert _watchdogs() == []
