"""Thread-safe abort capability for a running worker process."""

import logging
import subprocess
import threading

logger = logging.getLogger("script_runner.sandbox.handle")


class EngineHandle:
    """Shareable reference to an in-flight isolate.

    The handle never owns the worker: the session that spawned it waits on it
    and closes its pipes. The handle only knows how to stop it. ``abort()`` may
    be called from any thread, any number of times, including after the
    worker has already exited; every call past the first effective one is a
    no-op.
    """

    def __init__(self, process: subprocess.Popen) -> None:
        self._process = process
        self._lock = threading.Lock()
        self._abort_requested = False
        self._released = False

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def abort_requested(self) -> bool:
        with self._lock:
            return self._abort_requested

    def is_running(self) -> bool:
        return self._process.poll() is None

    def abort(self) -> bool:
        """Request the isolate to stop. Returns True if a kill was delivered."""
        with self._lock:
            if self._released or self._process.poll() is not None:
                return False
            self._abort_requested = True
            # Popen.kill ignores a process that was reaped in the meantime.
            self._process.kill()
        logger.debug("abort delivered to worker pid=%s", self._process.pid)
        return True

    def cancel_abort(self) -> None:
        """Clear a pending abort so it cannot leak into a later run."""
        with self._lock:
            self._abort_requested = False

    def release(self) -> None:
        """Detach from the worker; later aborts become no-ops."""
        with self._lock:
            self._released = True
