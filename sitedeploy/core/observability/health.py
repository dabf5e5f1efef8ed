"""
Health checker — aggregate service health from components.

Reports the registry (backend, breaker, degraded mode), the event
bus, in-flight deployments and the storage roots.  Used by the CLI
``health`` command and ``GET /api/health``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sitedeploy.core.reliability.circuit_breaker import CircuitState

if TYPE_CHECKING:
    from sitedeploy.core.persistence.registry import Registry
    from sitedeploy.core.services.deploy_service import DeployService
    from sitedeploy.core.services.event_bus import EventBus
    from sitedeploy.core.services.orchestrator import DeploymentOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class ComponentHealth:
    """Health of a single component."""

    name: str
    status: str = "unknown"  # healthy, degraded, unhealthy, unknown
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status,
            "message": self.message,
            "details": self.details,
        }


@dataclass
class SystemHealth:
    """Aggregate health of the service."""

    status: str = "healthy"
    timestamp: str = ""
    components: list[ComponentHealth] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.timestamp:
            self.timestamp = datetime.now(UTC).isoformat()

    def add(self, component: ComponentHealth) -> None:
        self.components.append(component)
        self._recalculate()

    def _recalculate(self) -> None:
        statuses = [c.status for c in self.components]
        if any(s == "unhealthy" for s in statuses):
            self.status = "unhealthy"
        elif any(s == "degraded" for s in statuses):
            self.status = "degraded"
        elif all(s == "healthy" for s in statuses):
            self.status = "healthy"
        else:
            self.status = "unknown"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "timestamp": self.timestamp,
            "components": [c.to_dict() for c in self.components],
        }


def check_registry(registry: Registry) -> ComponentHealth:
    """Degraded while the durable store is bypassed."""
    details = registry.status()
    breaker = details.get("breaker")

    if breaker and breaker["state"] == CircuitState.OPEN.value:
        return ComponentHealth(
            name="registry",
            status="degraded",
            message=f"Store unreachable, serving memory ({breaker.get('last_error') or 'circuit open'})",
            details=details,
        )
    if breaker and breaker["state"] == CircuitState.HALF_OPEN.value:
        return ComponentHealth(
            name="registry", status="degraded",
            message="Probing store after outage", details=details,
        )
    if breaker and breaker["failure_count"] > 0:
        return ComponentHealth(
            name="registry", status="degraded",
            message=f"{breaker['failure_count']} recent store failure(s)", details=details,
        )

    return ComponentHealth(
        name="registry",
        status="healthy",
        message=f"{details['backend']} backend",
        details=details,
    )


def check_event_bus(bus: EventBus) -> ComponentHealth:
    details = bus.status()
    return ComponentHealth(
        name="event_bus",
        status="healthy",
        message=f"{details['subscribers']} subscriber(s) on {details['channels']} channel(s)",
        details=details,
    )


def check_orchestrator(orchestrator: DeploymentOrchestrator) -> ComponentHealth:
    running = orchestrator.in_flight()
    return ComponentHealth(
        name="orchestrator",
        status="healthy",
        message=f"{len(running)} deployment(s) in flight",
        details={"in_flight": running},
    )


def check_storage(name: str, path: Path) -> ComponentHealth:
    """Unhealthy if the directory is missing or not writable."""
    if not path.is_dir():
        return ComponentHealth(
            name=name, status="unhealthy",
            message=f"Missing directory: {path}", details={"path": str(path)},
        )
    if not os.access(path, os.W_OK):
        return ComponentHealth(
            name=name, status="unhealthy",
            message=f"Not writable: {path}", details={"path": str(path)},
        )
    return ComponentHealth(
        name=name, status="healthy", message=str(path), details={"path": str(path)},
    )


def check_system_health(service: DeployService) -> SystemHealth:
    """Run all health checks and return aggregate status."""
    health = SystemHealth()
    health.add(check_registry(service.registry))
    health.add(check_event_bus(service.bus))
    health.add(check_orchestrator(service.orchestrator))
    health.add(check_storage("staging_root", service.config.staging_root))
    health.add(check_storage("publish_root", service.config.publish_root))
    return health
