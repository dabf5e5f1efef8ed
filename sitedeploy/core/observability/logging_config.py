"""
Logging configuration — one setup call per process, plus deployment tags.

``main.py`` calls ``setup_logging`` once for every CLI command (``serve``
included); modules log through ``logging.getLogger(__name__)``.

Console level, highest precedence first:
    --debug / --verbose / --quiet  >  SITEDEPLOY_LOG_LEVEL  >  WARNING

A second sink is opened when SITEDEPLOY_LOG_FILE is set, at
SITEDEPLOY_LOG_FILE_LEVEL (or the console level).

Deployments run on worker threads, so their lines would interleave
without context.  The orchestrator wraps each run in
``deployment_context(deployment_id)``; ``DeploymentFilter`` copies the
id onto every record as ``%(deployment)s`` (``-`` outside a run)::

    12:04:31 [sitedeploy.core.services.packaging] 3f2a9c1e Packaged ...
"""

from __future__ import annotations

import contextvars
import logging
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Mapping

# ── Deployment context ──────────────────────────────────────────

_NO_DEPLOYMENT = "-"
_current_deployment: contextvars.ContextVar[str] = contextvars.ContextVar(
    "sitedeploy_deployment", default=_NO_DEPLOYMENT,
)


@contextmanager
def deployment_context(deployment_id: str) -> Iterator[None]:
    """Tag log records emitted inside the block with ``deployment_id``."""
    token = _current_deployment.set(deployment_id)
    try:
        yield
    finally:
        _current_deployment.reset(token)


def current_deployment() -> str:
    return _current_deployment.get()


class DeploymentFilter(logging.Filter):
    """Adds ``record.deployment`` (short id) for the format strings."""

    def filter(self, record: logging.LogRecord) -> bool:
        deployment = _current_deployment.get()
        record.deployment = deployment if deployment == _NO_DEPLOYMENT else deployment[:8]
        return True


# ── Formats ─────────────────────────────────────────────────────

_FORMATS: dict[str, tuple[str, str | None]] = {
    # WARNING and above: the message is enough
    "minimal": ("%(message)s", None),
    "verbose": ("%(asctime)s [%(name)s] %(deployment)s %(message)s", "%H:%M:%S"),
    "debug": (
        "%(asctime)s %(levelname)-5s %(deployment)s %(name)s:%(lineno)d — %(message)s",
        "%H:%M:%S",
    ),
    "file": (
        "%(asctime)s %(levelname)-5s %(threadName)s %(deployment)s "
        "%(name)s:%(lineno)d — %(message)s",
        "%Y-%m-%d %H:%M:%S",
    ),
}

# Third-party loggers that are noisy at INFO/DEBUG
_NOISY_LOGGERS = ("werkzeug", "urllib3", "watchdog")


@dataclass(frozen=True)
class LogSettings:
    """Resolved logging options for one process."""

    level: str = "WARNING"
    log_file: str | None = None
    log_file_level: str | None = None

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str],
        *,
        debug: bool = False,
        verbose: bool = False,
        quiet: bool = False,
    ) -> LogSettings:
        return cls(
            level=resolve_level(
                debug=debug, verbose=verbose, quiet=quiet,
                env_level=environ.get("SITEDEPLOY_LOG_LEVEL"),
            ),
            log_file=environ.get("SITEDEPLOY_LOG_FILE") or None,
            log_file_level=environ.get("SITEDEPLOY_LOG_FILE_LEVEL") or None,
        )


def resolve_level(*, debug: bool, verbose: bool, quiet: bool, env_level: str | None) -> str:
    """Pick the console level from CLI flags, falling back to the env var."""
    if debug:
        return "DEBUG"
    if verbose:
        return "INFO"
    if quiet:
        return "ERROR"
    return env_level or "WARNING"


def _handler(handler: logging.Handler, level: int, style: str) -> logging.Handler:
    fmt, datefmt = _FORMATS[style]
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    handler.addFilter(DeploymentFilter())
    return handler


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
    quiet_third_party: bool = True,
) -> None:
    """Configure the root logger for the whole process.

    Args:
        level: Console level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Optional path of a log file.
        log_file_level: Level for the file (defaults to ``level``).
        quiet_third_party: Hold werkzeug & co. at WARNING unless the
            console is at DEBUG.
    """
    console_level = _parse_level(level)
    if console_level <= logging.DEBUG:
        style = "debug"
    elif console_level <= logging.INFO:
        style = "verbose"
    else:
        style = "minimal"

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(_handler(logging.StreamHandler(sys.stderr), console_level, style))

    root_level = console_level
    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else console_level
        root.addHandler(
            _handler(logging.FileHandler(log_file, encoding="utf-8"), file_level, "file"),
        )
        root_level = min(root_level, file_level)
    root.setLevel(root_level)

    if quiet_third_party and console_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.raiseExceptions = False


def _parse_level(level: str | None) -> int:
    """Level name → numeric level; unknown names mean WARNING."""
    numeric = getattr(logging, (level or "").upper(), None)
    return numeric if isinstance(numeric, int) else logging.WARNING
