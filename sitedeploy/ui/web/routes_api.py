"""
API routes — deployment submission and project/deployment lookup.

Blueprint: api_bp
Prefix: /api

Endpoints:
    GET  /health               — service health (no auth)
    POST /deploy               — upload files, start a deployment
    GET  /projects             — caller's projects, newest first
    GET  /projects/<id>        — project with deployment history
    GET  /deployments/<id>     — single deployment record

Thin HTTP wrappers over ``sitedeploy.core.services.deploy_service``.
Records owned by someone else answer 404, same as missing ones.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from sitedeploy.core.observability.health import check_system_health
from sitedeploy.ui.web.helpers import (
    current_identity,
    deploy_service,
    error_body,
    require_identity,
)

logger = logging.getLogger(__name__)

api_bp = Blueprint("api", __name__)


@api_bp.route("/health")
def api_health():  # type: ignore[no-untyped-def]
    """Aggregate health; 503 only when a component is unhealthy."""
    health = check_system_health(deploy_service())
    code = 503 if health.status == "unhealthy" else 200
    return jsonify(health.to_dict()), code


@api_bp.route("/deploy", methods=["POST"])
@require_identity
def api_deploy():  # type: ignore[no-untyped-def]
    """Accept a multipart upload and start its deployment.

    Multipart form data:
        files[] (or files): the site files (required)
        projectName: display name (optional)
        description: free text (optional)
    """
    files = request.files.getlist("files[]") + request.files.getlist("files")
    submission = deploy_service().submit(
        current_identity().owner_id,
        files,
        project_name=request.form.get("projectName"),
        description=request.form.get("description"),
    )
    return jsonify(submission.to_dict())


@api_bp.route("/projects")
@require_identity
def api_projects():  # type: ignore[no-untyped-def]
    return jsonify(deploy_service().list_projects(current_identity().owner_id))


@api_bp.route("/projects/<project_id>")
@require_identity
def api_project(project_id: str):  # type: ignore[no-untyped-def]
    project = deploy_service().get_project(project_id, current_identity().owner_id)
    if project is None:
        return jsonify(error_body("Project not found", "not_found")), 404
    return jsonify(project)


@api_bp.route("/deployments/<deployment_id>")
@require_identity
def api_deployment(deployment_id: str):  # type: ignore[no-untyped-def]
    deployment = deploy_service().get_deployment(deployment_id, current_identity().owner_id)
    if deployment is None:
        return jsonify(error_body("Deployment not found", "not_found")), 404
    return jsonify(deployment.to_dict())
