"""
Error kinds surfaced by the graceful stop logic.

Remote failures are split only as far as the retry decision needs:
rate limiting gets a long fixed delay, everything else retries immediately.
"""

from datetime import datetime
from typing import Optional


class RunnerOrchestratorError(Exception):
    """Base exception for runner orchestrator errors."""
    pass


class RunnerRegistryError(RunnerOrchestratorError):
    """A call to the remote runner registry failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(RunnerRegistryError):
    """The registry rejected the request because the API quota is exhausted."""

    def __init__(self, message: str, status_code: Optional[int] = None, reset_at: Optional[datetime] = None):
        super().__init__(message, status_code)
        self.reset_at = reset_at


class RunnerBusyError(RunnerRegistryError):
    """The registry refused to remove a runner that is still running a job."""
    pass


class RegistryRequestError(RunnerRegistryError):
    """Any other registry failure: transport errors, 5xx, unexpected responses."""
    pass


class MarkerPatchError(RunnerOrchestratorError):
    """Writing a progress marker annotation onto the pod failed."""

    def __init__(self, key: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"Failed to patch pod with {key} annotation: {message}")
        self.key = key
        self.status_code = status_code

    @property
    def conflict(self) -> bool:
        """The pod changed between read and patch."""
        return self.status_code == 409


class MarkerParseError(RunnerOrchestratorError):
    """A progress marker annotation does not hold an RFC3339 timestamp."""

    def __init__(self, key: str, value: str):
        super().__init__(f"Annotation {key} has malformed timestamp {value!r}")
        self.key = key
        self.value = value
