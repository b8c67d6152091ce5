"""
GitHub Actions self-hosted runner registry client.

Thin async wrapper over the runners REST endpoints. Every failure is raised as
a RunnerRegistryError subclass so callers can decide on retries by type alone.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from .config import GracefulStopConfig
from .errors import RateLimitedError, RegistryRequestError, RunnerBusyError
from .runner_state import RemoteRegistration, RunnerScope

logger = logging.getLogger(__name__)

PER_PAGE = 100


def _rate_limit_reset(response: httpx.Response) -> Optional[datetime]:
    reset = response.headers.get("x-ratelimit-reset")
    if not reset:
        return None
    try:
        return datetime.fromtimestamp(int(reset), tz=timezone.utc)
    except ValueError:
        return None


def _is_rate_limited(response: httpx.Response) -> bool:
    if response.status_code == 429:
        return True
    if response.status_code == 403:
        return (
            response.headers.get("x-ratelimit-remaining") == "0"
            or "retry-after" in response.headers
        )
    return False


def _raise_for_response(response: httpx.Response, action: str) -> None:
    """Map a non-2xx registry response to the matching RunnerRegistryError."""
    if response.is_success:
        return

    status = response.status_code
    detail = f"{action}: {response.request.method} {response.request.url}: {status} {response.text[:200]}"

    if _is_rate_limited(response):
        raise RateLimitedError(detail, status_code=status, reset_at=_rate_limit_reset(response))

    # e.g. 422 Bad request - Runner "example-runnerset-0" is still running a job
    if status == 422 and response.request.method == "DELETE":
        raise RunnerBusyError(detail, status_code=status)

    raise RegistryRequestError(detail, status_code=status)


class GitHubRunnerRegistry:
    """Lists and removes self-hosted runner registrations."""

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    @classmethod
    def from_config(cls, config: GracefulStopConfig) -> 'GitHubRunnerRegistry':
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if config.github_token:
            headers["Authorization"] = f"Bearer {config.github_token}"
        else:
            logger.warning("GITHUB_TOKEN is not set, runner registry calls will be unauthenticated")

        client = httpx.AsyncClient(
            base_url=config.github_url.rstrip("/"),
            headers=headers,
            timeout=config.github_request_timeout_sec,
        )
        return cls(client)

    async def _request(self, method: str, path: str, action: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        try:
            response = await self.client.request(method, path, params=params)
        except httpx.HTTPError as e:
            raise RegistryRequestError(f"{action}: {method} {path}: {e!r}") from e

        _raise_for_response(response, action)
        return response

    async def list_runners(self, scope: RunnerScope) -> List[RemoteRegistration]:
        """All runners registered under ``scope``, across pages."""
        path = f"/{scope.api_path}/actions/runners"
        runners: List[RemoteRegistration] = []
        page = 1

        while True:
            response = await self._request(
                "GET", path, "failed to list runners",
                params={"per_page": PER_PAGE, "page": page},
            )
            try:
                data = response.json()
                batch = [RemoteRegistration.from_api(r) for r in data.get("runners") or []]
            except (ValueError, TypeError, AttributeError) as e:
                raise RegistryRequestError(f"failed to list runners: malformed response from {path}: {e}") from e

            runners.extend(batch)

            total = data.get("total_count")
            if len(batch) < PER_PAGE or (total is not None and len(runners) >= total):
                break
            page += 1

        logger.debug(f"Listed {len(runners)} runners in {scope}")
        return runners

    async def remove_runner(self, scope: RunnerScope, runner_id: int) -> None:
        """Remove a runner registration by id. Busy runners raise RunnerBusyError."""
        path = f"/{scope.api_path}/actions/runners/{runner_id}"
        await self._request("DELETE", path, "failed to remove runner")
        logger.debug(f"Removed runner {runner_id} from {scope}")

    async def aclose(self):
        await self.client.aclose()

    async def __aenter__(self) -> 'GitHubRunnerRegistry':
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()
