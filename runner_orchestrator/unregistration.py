"""
Runner unregistration decision logic.

unregister_runner() makes one attempt to remove a runner by name and reports
a tagged outcome. ensure_runner_unregistration() turns that outcome plus what
the pod says into either "safe to delete now" (None) or a RetrySignal.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, TYPE_CHECKING

from .config import DEFAULT_RATE_LIMIT_RETRY_DELAY_SEC
from .errors import MarkerParseError, RateLimitedError, RunnerRegistryError
from .runner_state import (
    UNREGISTRATION_COMPLETE_TIMESTAMP,
    UNREGISTRATION_START_TIMESTAMP,
    RetrySignal,
    RunnerScope,
    UnregisterKind,
    UnregisterOutcome,
    as_utc,
    parse_marker_timestamp,
    runner_container_stopped,
)
from .annotations import PodAnnotationStore

if TYPE_CHECKING:
    from kubernetes.client import V1Pod
    from .github_client import GitHubRunnerRegistry

logger = logging.getLogger(__name__)


async def unregister_runner(registry: 'GitHubRunnerRegistry', scope: RunnerScope, name: str) -> UnregisterOutcome:
    """
    Unregister the runner called ``name`` from ``scope``.

    Returns:
        REMOVED when the registration was found and removed.
        ABSENT when no registration by that name is listed. This covers three
            cases that cannot be told apart here: (1) already unregistered,
            either by us earlier or by an ephemeral runner after its job;
            (2) never going to register, e.g. a broken registration token;
            (3) not registered yet, or registered but hidden by a cached
            list response. (1) and (2) are safe to delete; (3) is a race
            with job dispatch that only a grace period can mitigate.
        FAILED when listing or removing failed, including when the runner is
            busy: the registry itself refuses to remove a runner mid-job, so
            no busy pre-check is made.
    """
    try:
        runners = await registry.list_runners(scope)
    except RunnerRegistryError as e:
        return UnregisterOutcome.failed(e)

    runner_id = 0
    for runner in runners:
        if runner.name == name:
            runner_id = runner.id
            break

    if runner_id == 0:
        return UnregisterOutcome.absent()

    try:
        await registry.remove_runner(scope, runner_id)
    except RunnerRegistryError as e:
        return UnregisterOutcome.failed(e)

    return UnregisterOutcome.removed()


async def ensure_runner_unregistration(
    registry: 'GitHubRunnerRegistry',
    scope: RunnerScope,
    name: str,
    pod: Optional['V1Pod'],
    now: datetime,
    timeout_sec: float,
    retry_delay_sec: float,
    rate_limit_retry_delay_sec: float,
    runner_container_name: str = "runner",
) -> Optional[RetrySignal]:
    """
    Decide whether the runner pod can be deleted now.

    Returns None when it is safe to delete, otherwise the RetrySignal to hand
    back to the scheduler.
    """
    now = as_utc(now)

    # A previous tick already concluded; the runner cannot come back.
    if pod is not None:
        _, completed = PodAnnotationStore.get_marker(pod, UNREGISTRATION_COMPLETE_TIMESTAMP)
        if completed:
            logger.info(f"RUNNER_LIFECYCLE [Runner {name}] Runner pod is marked as already unregistered")
            return None

    outcome = await unregister_runner(registry, scope, name)

    if outcome.kind == UnregisterKind.FAILED:
        err = outcome.error
        if isinstance(err, RateLimitedError):
            # Per-call retry delays may exceed the configured rate-limit delay
            rate_limit_delay = rate_limit_retry_delay_sec
            if rate_limit_delay <= retry_delay_sec:
                rate_limit_delay = retry_delay_sec + DEFAULT_RATE_LIMIT_RETRY_DELAY_SEC

            logger.error(
                f"RUNNER_LIFECYCLE [Runner {name}] Failed to unregister runner due to GitHub API rate limits. "
                f"Delaying retry for {rate_limit_delay}s to avoid excessive GitHub API calls: {err}"
            )
            return RetrySignal(rate_limit_delay, err)

        logger.error(f"RUNNER_LIFECYCLE [Runner {name}] Failed to unregister runner before deleting the pod: {err}")
        return RetrySignal(0, err)

    if outcome.kind == UnregisterKind.REMOVED:
        logger.info(f"RUNNER_LIFECYCLE [Runner {name}] Runner has just been unregistered. Removing the runner pod")
        return None

    if pod is None:
        # No pod means the runner was never started, so it will never register
        logger.info(f"RUNNER_LIFECYCLE [Runner {name}] Runner was not found on GitHub and the runner pod was not found on Kubernetes")
        return None

    if runner_container_stopped(pod, runner_container_name):
        logger.info(f"RUNNER_LIFECYCLE [Runner {name}] Runner pod has been stopped with a successful status")
        return None

    started, has_started = PodAnnotationStore.get_marker(pod, UNREGISTRATION_START_TIMESTAMP)
    if has_started:
        try:
            started_at = parse_marker_timestamp(started)
        except ValueError as e:
            err = MarkerParseError(UNREGISTRATION_START_TIMESTAMP, started)
            err.__cause__ = e
            logger.error(f"RUNNER_LIFECYCLE [Runner {name}] {err}")
            return RetrySignal(retry_delay_sec, err)

        remaining = (started_at + timedelta(seconds=timeout_sec)) - now
        if remaining > timedelta(0):
            logger.info(
                f"RUNNER_LIFECYCLE [Runner {name}] Runner unregistration is in-progress "
                f"(timeout={timeout_sec}s, remaining={remaining.total_seconds():.0f}s)"
            )
            return RetrySignal(retry_delay_sec)

        logger.info(
            f"RUNNER_LIFECYCLE [Runner {name}] Runner unregistration has timed out after {timeout_sec}s. "
            f"The runner pod will be deleted soon"
        )
        return None

    # Pods created with markers never get here; older pods do, and the retry
    # gives the caller a chance to write the start marker first.
    logger.debug(f"RUNNER_LIFECYCLE [Runner {name}] Runner unregistration is being retried later")
    return RetrySignal(retry_delay_sec)
