"""
Graceful stop configuration management.

All graceful stop configuration values in one place, loaded from environment
variables with sensible defaults.
"""

from dataclasses import dataclass
from typing import Optional
import os
import logging

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# How long to keep retrying the ListRunners + RemoveRunner combo before giving up.
# Must exceed 60s: ListRunners responses are cacheable for max-age=60, so a freshly
# registered runner can stay invisible for at least that long.
DEFAULT_UNREGISTRATION_TIMEOUT_SEC = 60

# Any value works, but a larger one stretches the effective timeout past the configured one.
DEFAULT_UNREGISTRATION_RETRY_DELAY_SEC = 30

DEFAULT_RATE_LIMIT_RETRY_DELAY_SEC = 300

DEFAULT_RUNNER_CONTAINER_NAME = "runner"
DEFAULT_GITHUB_URL = "https://api.github.com"


@dataclass
class GracefulStopConfig:
    """All graceful stop configuration in one place."""

    # Unregistration timing (seconds)
    unregistration_timeout_sec: int = DEFAULT_UNREGISTRATION_TIMEOUT_SEC
    unregistration_retry_delay_sec: int = DEFAULT_UNREGISTRATION_RETRY_DELAY_SEC
    rate_limit_retry_delay_sec: int = DEFAULT_RATE_LIMIT_RETRY_DELAY_SEC

    # Pod inspection
    runner_container_name: str = DEFAULT_RUNNER_CONTAINER_NAME

    # GitHub API
    github_url: str = DEFAULT_GITHUB_URL
    github_token: Optional[str] = None
    github_request_timeout_sec: float = 10.0

    # Logging
    log_level: str = "INFO"

    def __post_init__(self):
        if self.unregistration_timeout_sec < 0:
            logger.warning("UNREGISTRATION_TIMEOUT_SEC cannot be negative, setting to 0")
            self.unregistration_timeout_sec = 0

        if self.unregistration_retry_delay_sec < 0:
            logger.warning("UNREGISTRATION_RETRY_DELAY_SEC cannot be negative, setting to 0")
            self.unregistration_retry_delay_sec = 0

        # Retrying a rate-limited API at the normal pace only compounds the problem
        if self.rate_limit_retry_delay_sec <= self.unregistration_retry_delay_sec:
            raised = self.unregistration_retry_delay_sec + DEFAULT_RATE_LIMIT_RETRY_DELAY_SEC
            logger.warning(
                f"RATE_LIMIT_RETRY_DELAY_SEC ({self.rate_limit_retry_delay_sec}) must exceed "
                f"UNREGISTRATION_RETRY_DELAY_SEC ({self.unregistration_retry_delay_sec}), "
                f"raising to {raised}"
            )
            self.rate_limit_retry_delay_sec = raised

    @classmethod
    def from_env(cls) -> 'GracefulStopConfig':
        """Load all config from environment (and .env) with defaults."""
        load_dotenv()

        return cls(
            # Unregistration timing
            unregistration_timeout_sec=int(os.getenv(
                "UNREGISTRATION_TIMEOUT_SEC", str(DEFAULT_UNREGISTRATION_TIMEOUT_SEC)
            )),
            unregistration_retry_delay_sec=int(os.getenv(
                "UNREGISTRATION_RETRY_DELAY_SEC", str(DEFAULT_UNREGISTRATION_RETRY_DELAY_SEC)
            )),
            rate_limit_retry_delay_sec=int(os.getenv(
                "RATE_LIMIT_RETRY_DELAY_SEC", str(DEFAULT_RATE_LIMIT_RETRY_DELAY_SEC)
            )),

            # Pod inspection
            runner_container_name=os.getenv("RUNNER_CONTAINER_NAME", DEFAULT_RUNNER_CONTAINER_NAME),

            # GitHub API
            github_url=os.getenv("GITHUB_URL", DEFAULT_GITHUB_URL),
            github_token=os.getenv("GITHUB_TOKEN") or None,
            github_request_timeout_sec=float(os.getenv("GITHUB_REQUEST_TIMEOUT_SEC", "10")),

            # Logging
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    def log_config(self):
        """Log all config values at startup for debugging."""
        logger.info("GRACEFUL STOP CONFIG:")
        logger.info(f"   Unregistration: timeout={self.unregistration_timeout_sec}s, retry_delay={self.unregistration_retry_delay_sec}s")
        logger.info(f"   Rate limit: retry_delay={self.rate_limit_retry_delay_sec}s")
        logger.info(f"   Runner container: {self.runner_container_name}")
        logger.info(f"   GitHub: url={self.github_url}, token={'SET' if self.github_token else 'MISSING'}, timeout={self.github_request_timeout_sec}s")
        logger.info(f"   Log level: {self.log_level}")
