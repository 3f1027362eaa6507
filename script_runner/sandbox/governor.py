"""Concurrent enforcement of the time and heap budgets for one run."""

import logging
import threading

from script_runner.sandbox.exceptions import SandboxError
from script_runner.sandbox.handle import EngineHandle
from script_runner.sandbox.protocol import HeapLimitMessage
from script_runner.sandbox.session import SandboxSession
from script_runner.sandbox.types import GovernorVerdict, ResourceLimits

logger = logging.getLogger("script_runner.sandbox.governor")

HEAP_FIRST = (GovernorVerdict.HEAP_EXCEEDED, GovernorVerdict.CPU_TIMEOUT)
TIMEOUT_FIRST = (GovernorVerdict.CPU_TIMEOUT, GovernorVerdict.HEAP_EXCEEDED)


class ResourceGovernor:
    """Drives a CPU-time watchdog and a heap-pressure monitor against one handle.

    Both watchers only ever record a breach and call ``handle.abort()``; they
    never touch engine state. The verdict can only be read once ``stop()`` has
    joined the watchdog and unregistered the heap callback, so no late write
    can race the read.

    ``precedence`` decides which breach wins when both budgets tripped during
    the same run. The default ranks heap exhaustion above the timeout.
    """

    def __init__(
        self,
        limits: ResourceLimits,
        precedence: tuple[GovernorVerdict, ...] = HEAP_FIRST,
    ) -> None:
        self.limits = limits
        self.precedence = precedence
        self._lock = threading.Lock()
        self._breaches: list[GovernorVerdict] = []
        self._finished = threading.Event()
        self._watchdog: threading.Thread | None = None
        self._handle: EngineHandle | None = None
        self._session: SandboxSession | None = None
        self._callback_token: int | None = None
        self._started = False
        self._stopped = False

    def start(self, session: SandboxSession) -> None:
        if self._started:
            raise SandboxError("governor already started")
        self._started = True
        self._session = session
        self._handle = session.handle
        self._callback_token = session.add_near_heap_limit_callback(self._on_near_heap_limit)
        self._watchdog = threading.Thread(
            target=self._watch_cpu,
            name=f"cpu-watchdog-{self._handle.pid}",
            daemon=True,
        )
        self._watchdog.start()

    def _record(self, breach: GovernorVerdict) -> bool:
        """Record a breach; True if it is the first breach of this run."""
        with self._lock:
            first = not self._breaches
            if breach not in self._breaches:
                self._breaches.append(breach)
            return first

    def _watch_cpu(self) -> None:
        if self._finished.wait(self.limits.timeout_seconds):
            return
        if self._record(GovernorVerdict.CPU_TIMEOUT):
            logger.info(
                "cpu watchdog fired after %.0fms pid=%s",
                self.limits.timeout_seconds * 1000,
                self._handle.pid,
            )
        self._handle.abort()

    def _on_near_heap_limit(self, message: HeapLimitMessage) -> None:
        # Invoked on the executor thread while it is reading worker output.
        if self._record(GovernorVerdict.HEAP_EXCEEDED):
            logger.info(
                "heap limit reached soft_limit=%d hard_reached=%s pid=%s",
                message.soft_limit_bytes,
                message.hard_limit_reached,
                self._handle.pid,
            )
        self._handle.abort()

    def stop(self) -> GovernorVerdict:
        """Silence both watchers and return the verdict."""
        if self._stopped:
            return self.verdict
        self._finished.set()
        if self._watchdog is not None:
            self._watchdog.join()
        if self._session is not None and self._callback_token is not None:
            self._session.remove_near_heap_limit_callback(self._callback_token)
            self._callback_token = None
        self._stopped = True
        return self.verdict

    @property
    def verdict(self) -> GovernorVerdict:
        if not self._stopped:
            raise RuntimeError("verdict read before the governor was stopped")
        with self._lock:
            for candidate in self.precedence:
                if candidate in self._breaches:
                    return candidate
            return GovernorVerdict.NONE

    @property
    def first_breach(self) -> GovernorVerdict:
        with self._lock:
            return self._breaches[0] if self._breaches else GovernorVerdict.NONE
