"""
Graceful stop tick for runner pods.

Reconciles a runner and its pod so the pod can be deleted without disrupting
a workflow job. A graceful stop may take several ticks; each tick either says
the pod is safe to delete or returns a RetrySignal, and never waits.

Every step is idempotent, so the caller can tick on every reconciliation pass
no matter how far a previous pass got.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, TYPE_CHECKING

from .annotations import PodAnnotationStore, create_core_v1_api
from .config import GracefulStopConfig
from .errors import MarkerPatchError
from .github_client import GitHubRunnerRegistry
from .logging_config import reset_current_runner, set_current_runner, setup_logging
from .runner_state import (
    UNREGISTRATION_COMPLETE_TIMESTAMP,
    UNREGISTRATION_START_TIMESTAMP,
    RetrySignal,
    RunnerScope,
    TickResult,
    as_utc,
    format_marker_timestamp,
)
from .unregistration import ensure_runner_unregistration

if TYPE_CHECKING:
    from kubernetes.client import V1Pod

logger = logging.getLogger(__name__)


class GracefulStopTicker:
    """Entry point for callers that want to delete a runner pod."""

    def __init__(self, store: PodAnnotationStore, registry: GitHubRunnerRegistry, config: Optional[GracefulStopConfig] = None):
        self.store = store
        self.registry = registry
        self.config = config or GracefulStopConfig()

    @classmethod
    def from_env(cls) -> 'GracefulStopTicker':
        """Build a ticker against the current cluster and GitHub, configured from the environment."""
        config = GracefulStopConfig.from_env()
        setup_logging(config.log_level)
        config.log_config()
        return cls(
            store=PodAnnotationStore(create_core_v1_api()),
            registry=GitHubRunnerRegistry.from_config(config),
            config=config,
        )

    async def tick(
        self,
        scope: RunnerScope,
        name: str,
        pod: Optional['V1Pod'],
        timeout_sec: Optional[float] = None,
        retry_delay_sec: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> TickResult:
        """
        Advance the graceful stop of runner ``name`` by one step.

        Returns a TickResult whose ``pod`` is the annotated pod when it is safe
        to delete, or whose ``retry`` tells the caller to come back later. A
        failed marker write yields a zero-delay retry carrying the error.

        Cancelling the calling task raises asyncio.CancelledError out of tick
        rather than turning it into a retry; cancellation belongs to the caller.
        """
        if timeout_sec is None:
            timeout_sec = self.config.unregistration_timeout_sec
        if retry_delay_sec is None:
            retry_delay_sec = self.config.unregistration_retry_delay_sec
        if now is not None:
            now = as_utc(now)

        token = set_current_runner(name)
        try:
            if pod is not None:
                try:
                    pod = await self._mark(pod, name, UNREGISTRATION_START_TIMESTAMP, now)
                except MarkerPatchError as e:
                    return TickResult(retry=RetrySignal(0, e))

            retry = await ensure_runner_unregistration(
                self.registry,
                scope,
                name,
                pod,
                now or datetime.now(timezone.utc),
                timeout_sec,
                retry_delay_sec,
                self.config.rate_limit_retry_delay_sec,
                runner_container_name=self.config.runner_container_name,
            )
            if retry is not None:
                return TickResult(retry=retry)

            if pod is not None:
                try:
                    pod = await self._mark(pod, name, UNREGISTRATION_COMPLETE_TIMESTAMP, now)
                except MarkerPatchError as e:
                    return TickResult(retry=RetrySignal(0, e))

            return TickResult(pod=pod)
        finally:
            reset_current_runner(token)

    async def _mark(self, pod: 'V1Pod', name: str, key: str, now: Optional[datetime]) -> 'V1Pod':
        phase = "started" if key == UNREGISTRATION_START_TIMESTAMP else "completed"

        _, present = self.store.get_marker(pod, key)
        if present:
            logger.info(f"RUNNER_LIFECYCLE [Runner {name}] Runner has already {phase} unregistration")
            return pod

        ts = format_marker_timestamp(now or datetime.now(timezone.utc))
        try:
            updated = await self.store.set_marker_if_absent(pod, key, ts)
        except MarkerPatchError as e:
            logger.error(f"RUNNER_LIFECYCLE [Runner {name}] {e}")
            raise

        logger.info(f"RUNNER_LIFECYCLE [Runner {name}] Runner has {phase} unregistration")
        return updated
