import os
import sys
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

import pytest
from fastapi.testclient import TestClient

from script_runner import sandbox, state
from script_runner.config import clear_settings_cache

FAKE_WORKER = os.path.join(os.path.dirname(__file__), "fake_worker.py")


def fake_worker_command(mode: str) -> list[str]:
    return [sys.executable, FAKE_WORKER, mode]


@pytest.fixture
def fake_session_options():
    """Session options that run the protocol stand-in instead of V8."""

    def _options(mode: str, **overrides):
        options = {"worker_command": fake_worker_command(mode), "startup_timeout": 10.0}
        options.update(overrides)
        return options

    return _options


@pytest.fixture(autouse=True)
def _isolated_state(monkeypatch):
    monkeypatch.setenv("SANDBOX_WARMUP", "0")
    clear_settings_cache()
    sandbox.clear_execution_log()
    state.sandbox_available = None
    yield
    clear_settings_cache()
    state.sandbox_available = None


@pytest.fixture
def client():
    import script_runner.main as main

    with TestClient(main.app) as c:
        yield c
