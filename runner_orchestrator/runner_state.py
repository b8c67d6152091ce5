"""
Runner state model for graceful stop.

Provides the value types shared by the graceful stop components:
- RunnerScope: Where a runner is registered (enterprise, organization or repository)
- RemoteRegistration: A runner as the registry reports it
- UnregisterOutcome: Tagged result of one unregistration attempt
- RetrySignal / TickResult: What a tick tells its caller
- runner_container_stopped(): Whether the pod says the runner already exited cleanly
"""

from enum import Enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Dict, Any, TYPE_CHECKING

if TYPE_CHECKING:
    from kubernetes.client import V1Pod
    from .errors import RunnerRegistryError


UNREGISTRATION_START_TIMESTAMP = "unregistration-start-timestamp"
UNREGISTRATION_COMPLETE_TIMESTAMP = "unregistration-complete-timestamp"

POD_PHASE_SUCCEEDED = "Succeeded"
POD_PHASE_RUNNING = "Running"


@dataclass(frozen=True)
class RunnerScope:
    """Registration namespace of a runner. Exactly one field is set."""

    enterprise: str = ""
    organization: str = ""
    repository: str = ""  # "owner/name"

    def __post_init__(self):
        populated = [v for v in (self.enterprise, self.organization, self.repository) if v]
        if len(populated) != 1:
            raise ValueError(
                "exactly one of enterprise, organization or repository must be set, "
                f"got enterprise={self.enterprise!r} organization={self.organization!r} "
                f"repository={self.repository!r}"
            )
        if self.repository and self.repository.count("/") != 1:
            raise ValueError(f"repository must be in owner/name form, got {self.repository!r}")

    @property
    def api_path(self) -> str:
        """Path prefix of this scope in the GitHub REST API."""
        if self.enterprise:
            return f"enterprises/{self.enterprise}"
        if self.organization:
            return f"orgs/{self.organization}"
        return f"repos/{self.repository}"

    def __str__(self) -> str:
        return self.api_path


@dataclass(frozen=True)
class RemoteRegistration:
    """A self-hosted runner registration as returned by the registry."""

    id: int
    name: str
    busy: bool = False
    status: str = ""

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'RemoteRegistration':
        return cls(
            id=int(data.get('id') or 0),
            name=data.get('name') or "",
            busy=bool(data.get('busy', False)),
            status=data.get('status') or "",
        )


class UnregisterKind(Enum):
    """Possible results of trying to unregister a runner by name."""

    REMOVED = "removed"    # Found and removed just now
    ABSENT = "absent"      # Not listed: already gone, never registered, or not registered yet
    FAILED = "failed"      # List or remove call failed


@dataclass(frozen=True)
class UnregisterOutcome:
    """Tagged unregistration result. ``error`` is set only for FAILED."""

    kind: UnregisterKind
    error: Optional['RunnerRegistryError'] = None

    @classmethod
    def removed(cls) -> 'UnregisterOutcome':
        return cls(UnregisterKind.REMOVED)

    @classmethod
    def absent(cls) -> 'UnregisterOutcome':
        return cls(UnregisterKind.ABSENT)

    @classmethod
    def failed(cls, error: 'RunnerRegistryError') -> 'UnregisterOutcome':
        return cls(UnregisterKind.FAILED, error)


@dataclass(frozen=True)
class RetrySignal:
    """
    Request to call tick again no sooner than ``requeue_after_sec``.

    A zero delay means "use your default backoff". ``error`` is carried for
    observability only; the signal itself is the decision.
    """

    requeue_after_sec: float = 0.0
    error: Optional[Exception] = None


@dataclass(frozen=True)
class TickResult:
    """
    Outcome of one graceful stop tick.

    ``retry`` is None when the runner is safe to delete; ``pod`` then holds the
    annotated pod (or None if the caller had no pod to begin with).
    """

    pod: Optional['V1Pod'] = None
    retry: Optional[RetrySignal] = None

    @property
    def safe_to_delete(self) -> bool:
        return self.retry is None

    @property
    def error(self) -> Optional[Exception]:
        return self.retry.error if self.retry else None


def as_utc(ts: datetime) -> datetime:
    """Return ``ts`` as an aware UTC instant; naive values are taken to be UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def format_marker_timestamp(ts: datetime) -> str:
    """Render an instant as RFC3339 in UTC with second precision."""
    return as_utc(ts).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_marker_timestamp(value: str) -> datetime:
    """Parse an RFC3339 marker value. Raises ValueError when malformed."""
    if not value:
        raise ValueError("empty timestamp")
    # RFC3339 allows lowercase t/z, fromisoformat does not
    dt = datetime.fromisoformat(value.strip().upper().replace('Z', '+00:00'))
    return as_utc(dt)


def runner_container_stopped(pod: 'V1Pod', container_name: str) -> bool:
    """
    True if the pod shows the runner already exited successfully.

    An ephemeral runner unregisters itself after its single job and exits 0,
    so a remove call for it is expected to miss. Pods whose runner shares the
    pod with sidecars (e.g. dind) stay Running after the runner exits, hence
    the per-container check.
    """
    status = pod.status
    if status is None:
        return False

    if status.phase == POD_PHASE_SUCCEEDED:
        return True

    if status.phase != POD_PHASE_RUNNING:
        return False

    for cs in status.container_statuses or []:
        if cs.name != container_name:
            continue
        terminated = cs.state.terminated if cs.state else None
        if terminated is not None and terminated.exit_code == 0:
            return True

    return False
