class SandboxError(Exception):
    """Base class for sandbox failures that are not script outcomes."""


class SandboxStartupError(SandboxError):
    """The worker process hosting the isolate could not be brought up."""

    def __init__(self, detail: str, stderr: str = "") -> None:
        self.detail = detail
        self.stderr = stderr
        super().__init__(detail)
