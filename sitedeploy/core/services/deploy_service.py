"""
Deploy service — intake → registry → orchestrator, plus the read side.

This is the seam the web routes and CLI talk to.  ``submit()`` returns
as soon as the orchestrator has been started; the deployment's
progress is observable through the event bus and the registry.

Build one per process with ``build_services(config)``; everything it
holds (registry, bus, orchestrator) is injected, never global.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Iterable

from sitedeploy.core.config.settings import ServiceConfig
from sitedeploy.core.models import Deployment, Project, ProjectStatus
from sitedeploy.core.persistence.registry import Registry, create_registry
from sitedeploy.core.services.event_bus import EventBus
from sitedeploy.core.services.intake import IncomingFile, accept_upload
from sitedeploy.core.services.orchestrator import DeploymentJob, DeploymentOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class Submission:
    """Response to an accepted upload."""

    project_id: str
    deployment_id: str
    files: list[dict[str, Any]] = field(default_factory=list)
    degraded: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": "Files uploaded successfully. Deployment started.",
            "projectId": self.project_id,
            "deploymentId": self.deployment_id,
            "files": self.files,
            "degraded": self.degraded,
        }


class DeployService:
    """Coordinates a deployment from upload to background run."""

    def __init__(
        self,
        config: ServiceConfig,
        registry: Registry,
        bus: EventBus,
        orchestrator: DeploymentOrchestrator,
    ) -> None:
        self.config = config
        self.registry = registry
        self.bus = bus
        self.orchestrator = orchestrator

    # ── Write side ──────────────────────────────────────────────

    def prepare(
        self,
        owner_id: str,
        files: Iterable[IncomingFile],
        project_name: str | None = None,
        description: str | None = None,
    ) -> tuple[DeploymentJob, bool]:
        """Stage the upload and create its records (does not start it).

        Returns:
            The job to run and whether record creation was degraded.

        Raises:
            IntakeError: Upload rejected; no records or staging left behind.
        """
        manifest = accept_upload(files, self.config.staging_root, self.config.limits)

        name = (project_name or "").strip() or f"Project-{int(time.time() * 1000)}"
        project = Project(
            name=name,
            description=(description or "").strip(),
            owner_id=owner_id,
            status=ProjectStatus.CREATED,
        )
        deployment = Deployment(
            project_id=project.id,
            owner_id=owner_id,
            files=list(manifest.files),
        )

        p_result = self.registry.create_project(project)
        d_result = self.registry.create_deployment(deployment)
        degraded = p_result.degraded or d_result.degraded
        if degraded:
            logger.warning(
                "Deployment %s tracked in memory only (%s)",
                deployment.id, d_result.error or p_result.error,
            )

        return DeploymentJob(project=project, deployment=deployment, manifest=manifest), degraded

    def submit(
        self,
        owner_id: str,
        files: Iterable[IncomingFile],
        project_name: str | None = None,
        description: str | None = None,
    ) -> Submission:
        """Accept an upload and start its deployment in the background."""
        job, degraded = self.prepare(owner_id, files, project_name, description)
        self.orchestrator.start(job)

        return Submission(
            project_id=job.project.id,
            deployment_id=job.deployment.id,
            files=[{"name": f.name, "size": f.size} for f in job.manifest.files],
            degraded=degraded,
        )

    # ── Read side ───────────────────────────────────────────────

    def list_projects(self, owner_id: str) -> list[dict[str, Any]]:
        """Project summaries, newest first, each with its latest deployment."""
        projects = self.registry.list_projects(owner_id).value
        summaries = []
        for project in projects:
            latest = self.registry.list_deployments(project.id, owner_id).value[:1]
            summaries.append({
                **project.to_dict(),
                "deployments": [d.to_dict() for d in latest],
            })
        return summaries

    def get_project(self, project_id: str, owner_id: str) -> dict[str, Any] | None:
        """Project with its full deployment history (newest first)."""
        project = self.registry.get_project(project_id, owner_id).value
        if project is None:
            return None
        history = self.registry.list_deployments(project_id, owner_id).value
        return {**project.to_dict(), "deployments": [d.to_dict() for d in history]}

    def get_deployment(self, deployment_id: str, owner_id: str) -> Deployment | None:
        return self.registry.get_deployment(deployment_id, owner_id).value


def build_services(
    config: ServiceConfig,
    *,
    registry: Registry | None = None,
    bus: EventBus | None = None,
) -> DeployService:
    """Wire a DeployService from configuration."""
    registry = registry or create_registry(config.registry)
    bus = bus or EventBus(subscriber_queue_size=config.subscriber_queue_size)
    orchestrator = DeploymentOrchestrator(
        registry,
        bus,
        publish_root=config.publish_root,
        site_url=config.site_url,
        keep_staging=config.keep_staging,
    )
    config.staging_root.mkdir(parents=True, exist_ok=True)
    config.publish_root.mkdir(parents=True, exist_ok=True)
    return DeployService(config, registry, bus, orchestrator)
