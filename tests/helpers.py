"""Shared builders and fakes for the graceful stop tests."""

from datetime import datetime, timezone
from typing import Dict, List, Optional
from unittest.mock import MagicMock

from kubernetes.client import (
    V1ContainerState,
    V1ContainerStateRunning,
    V1ContainerStateTerminated,
    V1ContainerStatus,
    V1ObjectMeta,
    V1Pod,
    V1PodStatus,
)

from runner_orchestrator.runner_state import RemoteRegistration, RunnerScope

NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
ORG_SCOPE = RunnerScope(organization="example-org")


def make_pod(
    name: str = "w1",
    annotations: Optional[Dict[str, str]] = None,
    phase: str = "Running",
    runner_exit_code: Optional[int] = None,
    container_name: str = "runner",
    resource_version: str = "100",
) -> V1Pod:
    """Create a runner pod. ``runner_exit_code`` marks the runner container as terminated."""
    if runner_exit_code is None:
        state = V1ContainerState(running=V1ContainerStateRunning())
    else:
        state = V1ContainerState(terminated=V1ContainerStateTerminated(exit_code=runner_exit_code))

    return V1Pod(
        metadata=V1ObjectMeta(
            name=name,
            namespace="runners",
            annotations=dict(annotations) if annotations is not None else None,
            resource_version=resource_version,
        ),
        status=V1PodStatus(
            phase=phase,
            container_statuses=[
                V1ContainerStatus(
                    name=container_name,
                    image="actions-runner:latest",
                    image_id="",
                    ready=runner_exit_code is None,
                    restart_count=0,
                    state=state,
                ),
            ],
        ),
    )


def make_core_v1(resource_versions: Optional[List[str]] = None) -> MagicMock:
    """Mock CoreV1Api whose patch_namespaced_pod returns pods with increasing resourceVersions."""
    versions = list(resource_versions or ["101", "102", "103", "104"])
    core_v1 = MagicMock()
    core_v1.patch_namespaced_pod.side_effect = [
        V1Pod(metadata=V1ObjectMeta(resource_version=v)) for v in versions
    ]
    return core_v1


class FakeRegistry:
    """In-memory runner registry with the same async interface as GitHubRunnerRegistry."""

    def __init__(
        self,
        runners: Optional[List[RemoteRegistration]] = None,
        list_error: Optional[Exception] = None,
        remove_error: Optional[Exception] = None,
    ):
        self.runners = list(runners or [])
        self.list_error = list_error
        self.remove_error = remove_error
        self.list_calls = 0
        self.removed: List[int] = []

    async def list_runners(self, scope: RunnerScope) -> List[RemoteRegistration]:
        self.list_calls += 1
        if self.list_error is not None:
            raise self.list_error
        return list(self.runners)

    async def remove_runner(self, scope: RunnerScope, runner_id: int) -> None:
        if self.remove_error is not None:
            raise self.remove_error
        self.removed.append(runner_id)
        self.runners = [r for r in self.runners if r.id != runner_id]
