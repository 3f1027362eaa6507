"""One isolate, one script run.

A SandboxSession spawns a worker process (``script_runner.sandbox.worker``)
that hosts a fresh V8 context, hands it a single script and decodes what
comes back into a ``RawResult``. Sessions are never reused.
"""

import itertools
import logging
import math
import os
import subprocess
import sys
import tempfile
import threading
from collections.abc import Callable
from pathlib import Path

from pydantic import ValidationError

from script_runner.sandbox.exceptions import SandboxError, SandboxStartupError
from script_runner.sandbox.handle import EngineHandle
from script_runner.sandbox.protocol import (
    HeapLimitMessage,
    ReadyMessage,
    ResultMessage,
    ScriptMessage,
    WorkerConfig,
    parse_worker_message,
    write_message,
)
from script_runner.sandbox.types import (
    CompileError,
    RawResult,
    ThrownException,
    Unknown,
    Value,
)

logger = logging.getLogger("script_runner.sandbox.session")

WORKER_MODULE = "script_runner.sandbox.worker"
DEFAULT_HEAP_HEADROOM = 2.0
DEFAULT_STARTUP_TIMEOUT = 5.0
DEFAULT_POLL_INTERVAL = 0.005

HeapLimitCallback = Callable[[HeapLimitMessage], None]


class SandboxSession:
    """Owns one worker process (and so one isolate) for a single run.

    Heap-pressure notifications from the worker are dispatched to registered
    near-heap-limit callbacks inline, on whichever thread is blocked in
    ``run``.
    """

    def __init__(
        self,
        max_heap_bytes: int,
        *,
        heap_headroom: float = DEFAULT_HEAP_HEADROOM,
        startup_timeout: float = DEFAULT_STARTUP_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        cpu_backstop_seconds: float | None = None,
        python_executable: str | None = None,
        worker_command: list[str] | None = None,
    ) -> None:
        if heap_headroom < 1.0:
            raise ValueError("heap_headroom must be >= 1.0")
        self.max_heap_bytes = max_heap_bytes
        self.heap_headroom = heap_headroom
        self.startup_timeout = startup_timeout
        self.poll_interval = poll_interval
        self.cpu_backstop_seconds = cpu_backstop_seconds
        self.python_executable = python_executable or sys.executable
        self.worker_command = worker_command or [self.python_executable, "-m", WORKER_MODULE]

        self._process: subprocess.Popen | None = None
        self._handle: EngineHandle | None = None
        self._stderr = None
        self._used = False
        self._closed = False

        self._callbacks: dict[int, HeapLimitCallback] = {}
        self._callback_ids = itertools.count(1)
        self._callbacks_lock = threading.Lock()

    @classmethod
    def create(cls, max_heap_bytes: int, **kwargs) -> "SandboxSession":
        """Start a worker and wait until its context is ready."""
        session = cls(max_heap_bytes, **kwargs)
        try:
            session._start()
        except BaseException:
            session.close()
            raise
        return session

    @property
    def handle(self) -> EngineHandle:
        if self._handle is None:
            raise SandboxError("session has not been started")
        return self._handle

    # Near-heap-limit callback registry

    def add_near_heap_limit_callback(self, callback: HeapLimitCallback) -> int:
        with self._callbacks_lock:
            token = next(self._callback_ids)
            self._callbacks[token] = callback
            return token

    def remove_near_heap_limit_callback(self, token: int) -> None:
        # Dispatch holds the same lock, so once this returns the callback
        # is guaranteed not to be running or to run again.
        with self._callbacks_lock:
            self._callbacks.pop(token, None)

    def _dispatch_heap_limit(self, message: HeapLimitMessage) -> None:
        with self._callbacks_lock:
            for callback in list(self._callbacks.values()):
                callback(message)

    # Lifecycle

    def _start(self) -> None:
        self._stderr = tempfile.TemporaryFile(mode="w+", encoding="utf-8")
        try:
            self._process = subprocess.Popen(
                self.worker_command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=self._stderr,
                text=True,
                encoding="utf-8",
                env=self._worker_env(),
                preexec_fn=self._limit_resources() if os.name != "nt" else None,
            )
        except OSError as e:
            raise SandboxStartupError(f"failed to spawn worker: {e}") from e

        self._handle = EngineHandle(self._process)
        config = WorkerConfig(
            max_heap_bytes=self.max_heap_bytes,
            hard_heap_bytes=int(self.max_heap_bytes * self.heap_headroom),
            poll_interval=self.poll_interval,
        )

        timer = threading.Timer(self.startup_timeout, self._handle.abort)
        timer.daemon = True
        timer.start()
        try:
            write_message(self._process.stdin, config)
            line = self._process.stdout.readline()
        except (BrokenPipeError, OSError) as e:
            raise SandboxStartupError(f"worker pipe failed during startup: {e}", self._read_stderr()) from e
        finally:
            timer.cancel()
            timer.join()

        if not line:
            raise SandboxStartupError("worker exited before signalling ready", self._read_stderr())
        try:
            message = parse_worker_message(line)
        except ValidationError as e:
            raise SandboxStartupError(f"unexpected startup message: {e}") from e
        if not isinstance(message, ReadyMessage):
            raise SandboxStartupError(f"unexpected startup message: {message.event}")
        logger.debug("worker ready pid=%s", message.pid)

    def _worker_env(self) -> dict[str, str]:
        env = os.environ.copy()
        project_root = str(Path(__file__).resolve().parents[2])
        existing_pythonpath = env.get("PYTHONPATH", "")
        env["PYTHONPATH"] = (
            f"{project_root}{os.pathsep}{existing_pythonpath}"
            if existing_pythonpath
            else project_root
        )
        env["PYTHONIOENCODING"] = "utf-8"
        return env

    def _limit_resources(self):
        """Return a preexec_fn applying rlimits to the worker on Unix.

        Address-space limits are left alone: V8 reserves far more virtual
        memory than it commits, and the heap budget is enforced by the engine.
        """
        cpu_backstop = self.cpu_backstop_seconds

        def _apply_limits():
            import resource

            if cpu_backstop is not None:
                cpu_seconds = max(1, math.ceil(cpu_backstop))
                resource.setrlimit(resource.RLIMIT_CPU, (cpu_seconds, cpu_seconds + 1))
            resource.setrlimit(resource.RLIMIT_FSIZE, (10 * 1024 * 1024, 10 * 1024 * 1024))
            resource.setrlimit(resource.RLIMIT_NOFILE, (64, 64))

        return _apply_limits

    def run(self, script: str) -> RawResult:
        """Compile and run ``script`` once inside the isolate."""
        if self._used:
            raise SandboxError("a session runs exactly one script")
        self._used = True
        process = self._process
        if process is None or self._closed:
            raise SandboxError("session is not running")

        try:
            write_message(process.stdin, ScriptMessage(script=script))
            process.stdin.close()
        except (BrokenPipeError, OSError) as e:
            # The worker is already gone; whatever it left on stdout decides.
            logger.debug("could not deliver script to worker pid=%s: %s", process.pid, e)

        while True:
            line = process.stdout.readline()
            if not line:
                returncode = process.wait()
                return Unknown(f"worker exited with code {returncode}")
            try:
                message = parse_worker_message(line)
            except ValidationError:
                logger.warning("discarding malformed worker message pid=%s", process.pid)
                return Unknown("malformed worker message")

            if isinstance(message, HeapLimitMessage):
                self._dispatch_heap_limit(message)
            elif isinstance(message, ResultMessage):
                return _to_raw_result(message)
            else:
                logger.warning("unexpected %s message from worker pid=%s", message.event, process.pid)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._handle is not None:
            self._handle.release()
        process = self._process
        if process is not None:
            if process.poll() is None:
                process.kill()
            for stream in (process.stdin, process.stdout):
                if stream is not None:
                    try:
                        stream.close()
                    except OSError:
                        pass
            process.wait()
            stderr = self._read_stderr()
            if stderr:
                logger.debug("worker pid=%s stderr: %s", process.pid, stderr[:2000])
        if self._stderr is not None:
            self._stderr.close()

    def _read_stderr(self) -> str:
        if self._stderr is None or self._stderr.closed:
            return ""
        self._stderr.seek(0)
        return self._stderr.read().strip()

    def __enter__(self) -> "SandboxSession":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def _to_raw_result(message: ResultMessage) -> RawResult:
    if message.kind == "value":
        return Value(message.text)
    if message.kind == "compile_error":
        return CompileError(message.text)
    if message.kind == "thrown":
        return ThrownException(message.text)
    return Unknown(message.text)
