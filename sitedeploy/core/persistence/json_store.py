"""
JsonFileRegistry — durable registry, one JSON document per record.

Layout::

    <root>/projects/<project_id>.json
    <root>/deployments/<deployment_id>.json

Writes are atomic (write to temp file, then rename) so a crash never
leaves a half-written record.

Degraded mode
─────────────
Any store failure (missing/unwritable root, disk full, unreadable
file) is caught, logged at WARNING and answered from the in-memory
mirror with ``degraded=True``:

- mutations apply to the mirror and echo the intended record
- reads serve what this process has seen (empty on a fresh process)

The mirror is written through on every successful call, so it always
holds the latest known state of records this process touched, and
lookups consult it before the store.  Records changed while degraded
are remembered as pending; the first call that reaches the store
again writes them out before doing its own work.

A ``CircuitBreaker`` stops us from touching a store that keeps
failing; while it is open every call is degraded immediately.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable, TypeVar

from pydantic import ValidationError

from sitedeploy.core.models import Deployment, Project
from sitedeploy.core.persistence.registry import (
    InMemoryRegistry,
    Registry,
    RegistryError,
    RegistryResult,
    apply_deployment_patch,
    apply_project_patch,
    sort_by_recency,
)
from sitedeploy.core.reliability.circuit_breaker import CircuitBreaker, CircuitState

logger = logging.getLogger(__name__)

T = TypeVar("T")

_PROJECTS = "projects"
_DEPLOYMENTS = "deployments"


class JsonFileRegistry(Registry):
    """Registry persisted as JSON files under ``root``."""

    name = "json"

    def __init__(
        self,
        root: Path,
        *,
        breaker: CircuitBreaker | None = None,
        mirror: InMemoryRegistry | None = None,
    ) -> None:
        self.root = Path(root)
        self.breaker = breaker or CircuitBreaker(name="registry")
        self.mirror = mirror or InMemoryRegistry()
        self._lock = threading.RLock()
        # Ids changed in the mirror but not yet written to the store
        self._pending: dict[str, set[str]] = {_PROJECTS: set(), _DEPLOYMENTS: set()}

    @property
    def degraded(self) -> bool:
        return self.breaker.state != CircuitState.CLOSED

    @property
    def pending_count(self) -> int:
        with self._lock:
            return sum(len(ids) for ids in self._pending.values())

    # ── File I/O ────────────────────────────────────────────────

    def _dir(self, kind: str) -> Path:
        path = self.root / kind
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise RegistryError(f"Cannot create {path}: {e}") from e
        return path

    def _write(self, kind: str, record_id: str, data: dict[str, Any]) -> None:
        directory = self._dir(kind)
        target = directory / f"{record_id}.json"
        content = json.dumps(data, indent=2, ensure_ascii=False) + "\n"

        try:
            fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".rec_", suffix=".tmp")
            tmp = Path(tmp_path)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(content)
                os.replace(tmp, target)
            except Exception:
                tmp.unlink(missing_ok=True)
                raise
        except OSError as e:
            raise RegistryError(f"Cannot write {target}: {e}") from e

    def _read(self, kind: str, record_id: str) -> dict[str, Any] | None:
        path = self._dir(kind) / f"{record_id}.json"
        if not path.is_file():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            logger.warning("Corrupt registry record %s: %s — ignoring", path, e)
            return None
        except OSError as e:
            raise RegistryError(f"Cannot read {path}: {e}") from e

    def _scan(self, kind: str) -> list[dict[str, Any]]:
        directory = self._dir(kind)
        records: list[dict[str, Any]] = []
        try:
            paths = sorted(directory.glob("*.json"))
        except OSError as e:
            raise RegistryError(f"Cannot list {directory}: {e}") from e
        for path in paths:
            try:
                records.append(json.loads(path.read_text(encoding="utf-8")))
            except json.JSONDecodeError as e:
                logger.warning("Corrupt registry record %s: %s — skipping", path, e)
            except OSError as e:
                raise RegistryError(f"Cannot read {path}: {e}") from e
        return records

    # The mirror holds the newest copy of anything this process touched;
    # the store is only consulted for records it has never seen.

    def _lookup_project(self, project_id: str) -> Project | None:
        return self.mirror.peek_project(project_id) or _parse(
            Project, self._read(_PROJECTS, project_id),
        )

    def _lookup_deployment(self, deployment_id: str) -> Deployment | None:
        return self.mirror.peek_deployment(deployment_id) or _parse(
            Deployment, self._read(_DEPLOYMENTS, deployment_id),
        )

    def _save_project(self, project: Project) -> None:
        self._write(_PROJECTS, project.id, project.to_dict())
        self.mirror.put_project(project)
        self._pending[_PROJECTS].discard(project.id)

    def _save_deployment(self, deployment: Deployment) -> None:
        self._write(_DEPLOYMENTS, deployment.id, deployment.to_dict())
        self.mirror.put_deployment(deployment)
        self._pending[_DEPLOYMENTS].discard(deployment.id)

    def _mark_pending(self, kind: str, record_id: str) -> None:
        with self._lock:
            self._pending[kind].add(record_id)

    def _flush_pending(self) -> None:
        """Write records changed while degraded (caller holds the lock)."""
        flushed = 0
        for project_id in sorted(self._pending[_PROJECTS]):
            project = self.mirror.peek_project(project_id)
            if project is not None:
                self._save_project(project)
                flushed += 1
            self._pending[_PROJECTS].discard(project_id)
        for deployment_id in sorted(self._pending[_DEPLOYMENTS]):
            deployment = self.mirror.peek_deployment(deployment_id)
            if deployment is not None:
                self._save_deployment(deployment)
                flushed += 1
            self._pending[_DEPLOYMENTS].discard(deployment_id)
        if flushed:
            logger.info("Registry store back: wrote %d record(s) held in memory", flushed)

    # ── Guarded execution ───────────────────────────────────────

    def _call(
        self,
        op: str,
        durable: Callable[[], T],
        fallback: Callable[[], T],
    ) -> RegistryResult[T]:
        """Run ``durable`` against the store, or degrade to ``fallback``."""
        if not self.breaker.allow_request():
            return self._degrade(op, fallback, "store unavailable (circuit open)")

        try:
            with self._lock:
                self._flush_pending()
                value = durable()
        except RegistryError as e:
            self.breaker.record_failure(str(e))
            return self._degrade(op, fallback, str(e))
        except Exception:
            # Store was reached; the caller's request was bad
            self.breaker.record_success()
            raise

        self.breaker.record_success()
        return RegistryResult(value)

    def _degrade(self, op: str, fallback: Callable[[], T], error: str) -> RegistryResult[T]:
        logger.warning("Registry %s degraded to memory: %s", op, error)
        return RegistryResult(fallback(), degraded=True, error=error)

    def ping(self) -> bool:
        """Check the store is reachable (creates the layout).  Updates the breaker."""
        try:
            with self._lock:
                self._dir(_PROJECTS)
                self._dir(_DEPLOYMENTS)
                self._flush_pending()
        except RegistryError as e:
            self.breaker.record_failure(str(e))
            return False
        self.breaker.record_success()
        return True

    # ── Mutations ───────────────────────────────────────────────

    def create_project(self, project: Project) -> RegistryResult[Project]:
        def durable() -> Project:
            self._save_project(project)
            return project

        def fallback() -> Project:
            self.mirror.put_project(project)
            self._mark_pending(_PROJECTS, project.id)
            return project

        return self._call("create_project", durable, fallback)

    def create_deployment(self, deployment: Deployment) -> RegistryResult[Deployment]:
        def durable() -> Deployment:
            self._save_deployment(deployment)
            return deployment

        def fallback() -> Deployment:
            self.mirror.put_deployment(deployment)
            self._mark_pending(_DEPLOYMENTS, deployment.id)
            return deployment

        return self._call("create_deployment", durable, fallback)

    def update_project(
        self, project_id: str, owner_id: str, patch: dict[str, Any],
    ) -> RegistryResult[Project | None]:
        def durable() -> Project | None:
            current = self._lookup_project(project_id)
            if current is None or current.owner_id != owner_id:
                return None
            updated = apply_project_patch(current, patch)
            self._save_project(updated)
            return updated

        def fallback() -> Project | None:
            updated = self.mirror.update_project(project_id, owner_id, patch).value
            if updated is not None:
                self._mark_pending(_PROJECTS, project_id)
            return updated

        return self._call("update_project", durable, fallback)

    def update_deployment(
        self, deployment_id: str, owner_id: str, patch: dict[str, Any],
    ) -> RegistryResult[Deployment | None]:
        def durable() -> Deployment | None:
            current = self._lookup_deployment(deployment_id)
            if current is None or current.owner_id != owner_id:
                return None
            updated = apply_deployment_patch(current, patch)
            self._save_deployment(updated)
            return updated

        def fallback() -> Deployment | None:
            updated = self.mirror.update_deployment(deployment_id, owner_id, patch).value
            if updated is not None:
                self._mark_pending(_DEPLOYMENTS, deployment_id)
            return updated

        return self._call("update_deployment", durable, fallback)

    # ── Reads ───────────────────────────────────────────────────

    def list_projects(self, owner_id: str) -> RegistryResult[list[Project]]:
        def durable() -> list[Project]:
            stored = {
                p.id: p for p in _parse_all(Project, self._scan(_PROJECTS))
                if p.owner_id == owner_id
            }
            stored.update({p.id: p for p in self.mirror.list_projects(owner_id).value})
            return sort_by_recency(list(stored.values()))

        def fallback() -> list[Project]:
            return self.mirror.list_projects(owner_id).value

        return self._call("list_projects", durable, fallback)

    def get_project(self, project_id: str, owner_id: str) -> RegistryResult[Project | None]:
        def durable() -> Project | None:
            project = self._lookup_project(project_id)
            if project is None or project.owner_id != owner_id:
                return None
            return project

        def fallback() -> Project | None:
            return self.mirror.get_project(project_id, owner_id).value

        return self._call("get_project", durable, fallback)

    def get_deployment(
        self, deployment_id: str, owner_id: str,
    ) -> RegistryResult[Deployment | None]:
        def durable() -> Deployment | None:
            deployment = self._lookup_deployment(deployment_id)
            if deployment is None or deployment.owner_id != owner_id:
                return None
            return deployment

        def fallback() -> Deployment | None:
            return self.mirror.get_deployment(deployment_id, owner_id).value

        return self._call("get_deployment", durable, fallback)

    def list_deployments(
        self, project_id: str, owner_id: str,
    ) -> RegistryResult[list[Deployment]]:
        def durable() -> list[Deployment]:
            stored = {
                d.id: d for d in _parse_all(Deployment, self._scan(_DEPLOYMENTS))
                if d.project_id == project_id and d.owner_id == owner_id
            }
            stored.update({
                d.id: d for d in self.mirror.list_deployments(project_id, owner_id).value
            })
            return sort_by_recency(list(stored.values()))

        def fallback() -> list[Deployment]:
            return self.mirror.list_deployments(project_id, owner_id).value

        return self._call("list_deployments", durable, fallback)

    def status(self) -> dict[str, Any]:
        return {
            **super().status(),
            "root": str(self.root),
            "breaker": self.breaker.to_dict(),
            "mirror": self.mirror.counts(),
            "pending": self.pending_count,
        }


# ── Parsing ─────────────────────────────────────────────────────────


def _parse(model_cls: type[T], data: dict[str, Any] | None) -> T | None:
    if data is None:
        return None
    try:
        return model_cls.model_validate(data)  # type: ignore[attr-defined]
    except ValidationError as e:
        logger.warning("Invalid %s record ignored: %s", model_cls.__name__, e)
        return None


def _parse_all(model_cls: type[T], rows: list[dict[str, Any]]) -> list[T]:
    parsed = (_parse(model_cls, row) for row in rows)
    return [p for p in parsed if p is not None]
