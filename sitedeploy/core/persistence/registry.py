"""
Project/Deployment registry — the bookkeeping interface.

Every call returns a ``RegistryResult``.  Callers (the orchestrator,
the deploy service, the web layer) read ``result.value`` and can tell
"succeeded" from "degraded-succeeded" by ``result.degraded``:

    result = registry.update_deployment(dep.id, owner_id, {"status": "BUILDING"})
    if result.degraded:
        ...  # nothing durable happened; value is an in-memory echo

Rules shared by all backends:
    - reads and updates are scoped to the record's owner; a mismatch
      looks exactly like "not found" (value is None / omitted from lists)
    - mutations never raise on store unavailability (see json_store)
    - deployment patches respect the lifecycle in ``models.deployment``
      and a terminal deployment cannot be patched at all

Two implementations, selected at startup by ``create_registry``:
    InMemoryRegistry  — process-local, lock-guarded maps
    JsonFileRegistry  — one JSON file per record, with an in-memory
                        mirror used as the degraded-mode fallback
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

from sitedeploy.core.config.settings import RegistrySettings
from sitedeploy.core.models import (
    Deployment,
    DeploymentStatus,
    InvalidTransition,
    Project,
    now_iso,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

# Keys a patch may never change
_IMMUTABLE_KEYS = frozenset({"id", "owner_id", "project_id", "created_at"})


class RegistryError(Exception):
    """Raised by a backing store that cannot be reached or read."""


@dataclass(frozen=True)
class RegistryResult(Generic[T]):
    """Outcome of a registry call.

    Attributes:
        value: The record(s), or None when not found.
        degraded: True when the durable store was bypassed and the
            value comes from (or was applied only to) memory.
        error: Why the call was degraded.
    """

    value: T
    degraded: bool = False
    error: str | None = None

    @property
    def found(self) -> bool:
        return self.value is not None


# ── Patch helpers ───────────────────────────────────────────────────


def _normalize_patch(model_cls: type[M], patch: dict[str, Any]) -> dict[str, Any]:
    """Map camelCase aliases to field names and reject unknown/immutable keys."""
    by_alias = {
        (info.alias or name): name for name, info in model_cls.model_fields.items()
    }
    normalized: dict[str, Any] = {}
    for key, value in patch.items():
        name = key if key in model_cls.model_fields else by_alias.get(key)
        if name is None:
            raise ValueError(f"Unknown {model_cls.__name__} field: {key}")
        if name in _IMMUTABLE_KEYS:
            raise ValueError(f"{model_cls.__name__}.{name} cannot be changed")
        normalized[name] = value
    return normalized


def apply_project_patch(project: Project, patch: dict[str, Any]) -> Project:
    """Return ``project`` with ``patch`` applied and ``updated_at`` bumped."""
    changes = _normalize_patch(Project, patch)
    changes["updated_at"] = now_iso()
    return Project.model_validate({**project.model_dump(), **changes})


def apply_deployment_patch(deployment: Deployment, patch: dict[str, Any]) -> Deployment:
    """Return ``deployment`` with ``patch`` applied.

    Raises:
        InvalidTransition: If the deployment is terminal, or the patch
            moves ``status`` against the lifecycle.
    """
    changes = _normalize_patch(Deployment, patch)
    if deployment.terminal:
        raise InvalidTransition(
            f"Deployment {deployment.id} is {deployment.status.value} and immutable"
        )

    if "status" in changes:
        target = DeploymentStatus(changes["status"])
        if target != deployment.status and not deployment.status.can_advance_to(target):
            raise InvalidTransition(
                f"Deployment {deployment.id}: {deployment.status.value} → {target.value} not allowed"
            )

    return Deployment.model_validate({**deployment.model_dump(), **changes})


def sort_by_recency(records: list[M]) -> list[M]:
    """Newest first by ``created_at`` (ids break ties for a stable order)."""
    return sorted(
        records,
        key=lambda r: (getattr(r, "created_at", ""), getattr(r, "id", "")),
        reverse=True,
    )


# ── Interface ───────────────────────────────────────────────────────


class Registry(ABC):
    """Storage-agnostic access to projects and deployments."""

    name: str = "registry"

    @property
    def degraded(self) -> bool:
        """Whether the registry is currently bypassing durable storage."""
        return False

    @abstractmethod
    def create_project(self, project: Project) -> RegistryResult[Project]: ...

    @abstractmethod
    def create_deployment(self, deployment: Deployment) -> RegistryResult[Deployment]: ...

    @abstractmethod
    def update_project(
        self, project_id: str, owner_id: str, patch: dict[str, Any],
    ) -> RegistryResult[Project | None]: ...

    @abstractmethod
    def update_deployment(
        self, deployment_id: str, owner_id: str, patch: dict[str, Any],
    ) -> RegistryResult[Deployment | None]: ...

    @abstractmethod
    def list_projects(self, owner_id: str) -> RegistryResult[list[Project]]: ...

    @abstractmethod
    def get_project(self, project_id: str, owner_id: str) -> RegistryResult[Project | None]: ...

    @abstractmethod
    def get_deployment(
        self, deployment_id: str, owner_id: str,
    ) -> RegistryResult[Deployment | None]: ...

    @abstractmethod
    def list_deployments(
        self, project_id: str, owner_id: str,
    ) -> RegistryResult[list[Deployment]]: ...

    def status(self) -> dict[str, Any]:
        """Backend description for health output."""
        return {"backend": self.name, "degraded": self.degraded}


# ── In-memory backend ───────────────────────────────────────────────


class InMemoryRegistry(Registry):
    """Process-local registry guarded by a single lock.

    Used directly when ``registry.backend: memory`` is configured, and
    as the mirror/fallback inside ``JsonFileRegistry``.
    """

    name = "memory"

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._projects: dict[str, Project] = {}
        self._deployments: dict[str, Deployment] = {}

    # ── Raw access (used by the durable backend's mirror) ───────

    def put_project(self, project: Project) -> None:
        with self._lock:
            self._projects[project.id] = project

    def put_deployment(self, deployment: Deployment) -> None:
        with self._lock:
            self._deployments[deployment.id] = deployment

    def peek_project(self, project_id: str) -> Project | None:
        with self._lock:
            return self._projects.get(project_id)

    def peek_deployment(self, deployment_id: str) -> Deployment | None:
        with self._lock:
            return self._deployments.get(deployment_id)

    def counts(self) -> dict[str, int]:
        with self._lock:
            return {"projects": len(self._projects), "deployments": len(self._deployments)}

    # ── Registry interface ──────────────────────────────────────

    def create_project(self, project: Project) -> RegistryResult[Project]:
        with self._lock:
            if project.id in self._projects:
                raise ValueError(f"Project {project.id} already exists")
            self._projects[project.id] = project
        return RegistryResult(project)

    def create_deployment(self, deployment: Deployment) -> RegistryResult[Deployment]:
        with self._lock:
            if deployment.id in self._deployments:
                raise ValueError(f"Deployment {deployment.id} already exists")
            self._deployments[deployment.id] = deployment
        return RegistryResult(deployment)

    def update_project(
        self, project_id: str, owner_id: str, patch: dict[str, Any],
    ) -> RegistryResult[Project | None]:
        with self._lock:
            current = self._projects.get(project_id)
            if current is None or current.owner_id != owner_id:
                return RegistryResult(None)
            updated = apply_project_patch(current, patch)
            self._projects[project_id] = updated
        return RegistryResult(updated)

    def update_deployment(
        self, deployment_id: str, owner_id: str, patch: dict[str, Any],
    ) -> RegistryResult[Deployment | None]:
        with self._lock:
            current = self._deployments.get(deployment_id)
            if current is None or current.owner_id != owner_id:
                return RegistryResult(None)
            updated = apply_deployment_patch(current, patch)
            self._deployments[deployment_id] = updated
        return RegistryResult(updated)

    def list_projects(self, owner_id: str) -> RegistryResult[list[Project]]:
        with self._lock:
            owned = [p for p in self._projects.values() if p.owner_id == owner_id]
        return RegistryResult(sort_by_recency(owned))

    def get_project(self, project_id: str, owner_id: str) -> RegistryResult[Project | None]:
        with self._lock:
            project = self._projects.get(project_id)
        if project is None or project.owner_id != owner_id:
            return RegistryResult(None)
        return RegistryResult(project)

    def get_deployment(
        self, deployment_id: str, owner_id: str,
    ) -> RegistryResult[Deployment | None]:
        with self._lock:
            deployment = self._deployments.get(deployment_id)
        if deployment is None or deployment.owner_id != owner_id:
            return RegistryResult(None)
        return RegistryResult(deployment)

    def list_deployments(
        self, project_id: str, owner_id: str,
    ) -> RegistryResult[list[Deployment]]:
        with self._lock:
            matching = [
                d for d in self._deployments.values()
                if d.project_id == project_id and d.owner_id == owner_id
            ]
        return RegistryResult(sort_by_recency(matching))

    def status(self) -> dict[str, Any]:
        return {**super().status(), **self.counts()}


# ── Factory ─────────────────────────────────────────────────────────


def create_registry(settings: RegistrySettings) -> Registry:
    """Build the registry selected by ``RegistrySettings``."""
    from sitedeploy.core.persistence.json_store import JsonFileRegistry
    from sitedeploy.core.reliability.circuit_breaker import CircuitBreaker

    if settings.backend == "memory":
        logger.info("Using in-memory registry")
        return InMemoryRegistry()

    breaker = CircuitBreaker(
        name="registry",
        failure_threshold=settings.failure_threshold,
        recovery_timeout=settings.recovery_timeout,
    )
    registry = JsonFileRegistry(settings.path, breaker=breaker)
    if not registry.ping():
        logger.warning(
            "Registry store %s unreachable at startup — running in degraded mode",
            settings.path,
        )
    return registry
