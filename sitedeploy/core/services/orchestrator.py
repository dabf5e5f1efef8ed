"""
Deployment orchestrator — drive one deployment to a terminal state.

State machine (PROCESSING is the initial state set at intake)::

    PROCESSING ──► BUILDING ──► SUCCESS
         └────────────┴───────► FAILED

At every transition the orchestrator:
    1. advances its own copy of the Deployment (lifecycle enforced)
    2. patches the deployment and its project in the registry
       (best-effort; registry errors are logged, never stop the run)
    3. publishes a ``deployment-status`` event on the deployment's
       channel

``start()`` runs the machine on a background thread and returns at
once (the HTTP request that triggered it does not wait).  Each
deployment id can be claimed exactly once per orchestrator: a second
``start()``/``run()`` for the same id raises
``DeploymentAlreadyStarted``.  Packaging failures are terminal; there
are no retries and no cancellation.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from sitedeploy.core.models import (
    Deployment,
    DeploymentEvent,
    DeploymentStatus,
    FileManifest,
    Project,
    project_status_for,
)
from sitedeploy.core.observability.logging_config import deployment_context
from sitedeploy.core.persistence.registry import Registry
from sitedeploy.core.services.event_bus import EventBus
from sitedeploy.core.services.packaging import PackageResult, package_site

logger = logging.getLogger(__name__)

MSG_BUILDING = "Building deployment package..."
MSG_SUCCESS = "Deployment completed successfully!"
MSG_FAILED = "Deployment failed: {error}"

Packager = Callable[[FileManifest, str, "str | None"], PackageResult]


class DeploymentAlreadyStarted(Exception):
    """Raised when a deployment id is handed to the orchestrator twice."""


@dataclass
class DeploymentJob:
    """Everything one orchestrator run needs."""

    project: Project
    deployment: Deployment
    manifest: FileManifest

    @property
    def deployment_id(self) -> str:
        return self.deployment.id


class DeploymentOrchestrator:
    """Runs deployments, one background thread per deployment id."""

    def __init__(
        self,
        registry: Registry,
        bus: EventBus,
        *,
        publish_root: Path,
        site_url: Callable[[str], str],
        packager: Packager | None = None,
        keep_staging: bool = False,
    ) -> None:
        self._registry = registry
        self._bus = bus
        self._site_url = site_url
        self._keep_staging = keep_staging
        self._packager: Packager = packager or (
            lambda manifest, project_id, project_name: package_site(
                manifest, publish_root, project_id, project_name,
            )
        )

        self._lock = threading.Lock()
        self._claimed: set[str] = set()
        self._running: dict[str, threading.Thread] = {}

    # ── Tracking ────────────────────────────────────────────────

    def _claim(self, deployment_id: str) -> None:
        with self._lock:
            if deployment_id in self._claimed:
                raise DeploymentAlreadyStarted(
                    f"Deployment {deployment_id} has already been started"
                )
            self._claimed.add(deployment_id)

    def is_running(self, deployment_id: str) -> bool:
        with self._lock:
            thread = self._running.get(deployment_id)
        return thread is not None and thread.is_alive()

    def in_flight(self) -> list[str]:
        """Deployment ids whose background run has not finished."""
        with self._lock:
            return sorted(d for d, t in self._running.items() if t.is_alive())

    def wait(self, deployment_id: str, timeout: float | None = None) -> bool:
        """Block until the deployment's run finishes.

        Returns:
            True if no run is in flight for the id afterwards.
        """
        with self._lock:
            thread = self._running.get(deployment_id)
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def wait_all(self, timeout: float | None = None) -> bool:
        """Wait for every in-flight run (each gets up to ``timeout``)."""
        with self._lock:
            threads = list(self._running.values())
        for thread in threads:
            thread.join(timeout)
        return not self.in_flight()

    # ── Entry points ────────────────────────────────────────────

    def start(self, job: DeploymentJob) -> threading.Thread:
        """Run ``job`` in the background (fire-and-forget).

        Raises:
            DeploymentAlreadyStarted: The id was started before.
        """
        deployment_id = job.deployment_id
        self._claim(deployment_id)

        thread = threading.Thread(
            target=self._run_tracked,
            args=(job,),
            name=f"deploy-{deployment_id[:8]}",
            daemon=True,
        )
        with self._lock:
            self._running[deployment_id] = thread
        logger.info("Queueing deployment %s (project %s)", deployment_id, job.project.id)
        thread.start()
        return thread

    def run(self, job: DeploymentJob) -> Deployment:
        """Run ``job`` on the calling thread and return the terminal record.

        Raises:
            DeploymentAlreadyStarted: The id was started before.
        """
        self._claim(job.deployment_id)
        return self._execute(job)

    def _run_tracked(self, job: DeploymentJob) -> None:
        try:
            self._execute(job)
        except Exception as e:
            logger.error("Deployment %s worker crashed: %s", job.deployment_id, e, exc_info=True)
        finally:
            with self._lock:
                self._running.pop(job.deployment_id, None)

    # ── State machine ───────────────────────────────────────────

    def _execute(self, job: DeploymentJob) -> Deployment:
        with deployment_context(job.deployment_id):
            return self._drive(job)

    def _drive(self, job: DeploymentJob) -> Deployment:
        deployment = job.deployment
        try:
            deployment = self._transition(job, deployment, DeploymentStatus.BUILDING, MSG_BUILDING)

            result = self._packager(job.manifest, job.project.id, job.project.name)
            logger.debug("Deployment %s packaged: %s", deployment.id, result.to_dict())

            deployment = self._transition(
                job, deployment, DeploymentStatus.SUCCESS, MSG_SUCCESS,
                url=self._site_url(job.project.id),
            )
        except Exception as e:
            error = str(e) or type(e).__name__
            logger.error("Deployment %s failed: %s", deployment.id, error, exc_info=True)
            deployment = self._transition(
                job, deployment, DeploymentStatus.FAILED, MSG_FAILED.format(error=error),
                error=error,
            )
        finally:
            self._bus.close_channel(job.deployment_id)
            if not self._keep_staging:
                job.manifest.discard()

        return deployment

    def _transition(
        self,
        job: DeploymentJob,
        current: Deployment,
        status: DeploymentStatus,
        message: str,
        *,
        url: str | None = None,
        error: str | None = None,
    ) -> Deployment:
        advanced = current.advance(status, url=url, error=error)
        self._record(job, current, advanced)

        event = DeploymentEvent.from_deployment(advanced, message)
        self._bus.publish(advanced.id, event.to_payload())

        logger.info(
            "Deployment %s: %s → %s", advanced.id, current.status.value, status.value,
        )
        return advanced

    def _record(self, job: DeploymentJob, current: Deployment, advanced: Deployment) -> None:
        """Patch the registry for one transition.

        Bookkeeping is best-effort: a registry error is logged and the
        run carries on from its own copy of the deployment.
        """
        status = advanced.status
        try:
            result = self._registry.update_deployment(
                advanced.id, advanced.owner_id, advanced.changes_since(current),
            )
            if result.degraded:
                logger.info("Deployment %s %s recorded in memory only", advanced.id, status.value)
        except Exception as e:
            logger.error(
                "Deployment %s: registry rejected %s: %s", advanced.id, status.value, e,
                exc_info=True,
            )

        project_patch: dict = {"status": project_status_for(status)}
        if status == DeploymentStatus.SUCCESS:
            project_patch["url"] = advanced.url
        try:
            self._registry.update_project(job.project.id, advanced.owner_id, project_patch)
        except Exception as e:
            logger.error(
                "Project %s: registry rejected %s: %s", job.project.id, status.value, e,
                exc_info=True,
            )
