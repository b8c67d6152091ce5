"""
Logging setup for the runner orchestrator.

Tracks the runner currently being processed in a context variable so that every
log line emitted while ticking a runner carries its name, even when ticks for
different runners interleave on the same event loop.
"""

import logging
import sys
from contextvars import ContextVar, Token
from typing import Optional

_current_runner: ContextVar[Optional[str]] = ContextVar("current_runner", default=None)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [runner=%(runner)s] %(message)s"


def set_current_runner(runner: Optional[str]) -> Token:
    """Set the runner name attached to log records; returns a token for reset_current_runner()."""
    return _current_runner.set(runner)


def reset_current_runner(token: Token) -> None:
    _current_runner.reset(token)


def get_current_runner() -> Optional[str]:
    return _current_runner.get()


class RunnerContextFilter(logging.Filter):
    """Inject the current runner name into every record as ``record.runner``."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.runner = _current_runner.get() or "-"
        return True


def setup_logging(level: str = "INFO") -> None:
    """Configure root logging with the runner-aware format. Safe to call more than once."""
    root = logging.getLogger()
    root.setLevel(level)

    for handler in root.handlers:
        if getattr(handler, "_runner_orchestrator", False):
            return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(RunnerContextFilter())
    handler._runner_orchestrator = True
    root.addHandler(handler)
