"""
Deployment event stream — SSE per deployment channel.

``GET /api/deployments/<id>/events`` joins the deployment's channel
and streams until the deployment is terminal.

Wire format::

    event: deployment-snapshot
    data: {"id": "...", "status": "BUILDING", ...}

    event: deployment-status
    id: 47
    data: {"projectId": "...", "deploymentId": "...", "status": "SUCCESS", ...}

The snapshot is read *after* joining the channel, so a client never
misses the terminal state: either it is already in the snapshot (and
the stream ends there) or it arrives as a live event.
"""

from __future__ import annotations

import json

from flask import Blueprint, Response, current_app, jsonify

from sitedeploy.core.models import DeploymentStatus
from sitedeploy.ui.web.helpers import (
    current_identity,
    deploy_service,
    error_body,
    require_identity,
)

events_bp = Blueprint("events", __name__)


def _sse(event_type: str, data: dict, event_id: int | None = None) -> str:
    lines = [f"event: {event_type}"]
    if event_id is not None:
        lines.append(f"id: {event_id}")
    lines.append(f"data: {json.dumps(data, default=str)}")
    return "\n".join(lines) + "\n\n"


@events_bp.route("/deployments/<deployment_id>/events")
@require_identity
def deployment_events(deployment_id: str):  # type: ignore[no-untyped-def]
    """SSE endpoint — snapshot, then live status events until terminal."""
    service = deploy_service()
    owner_id = current_identity().owner_id

    if service.get_deployment(deployment_id, owner_id) is None:
        return jsonify(error_body("Deployment not found", "not_found")), 404

    heartbeat = float(current_app.config.get("SSE_HEARTBEAT", 15.0))
    subscription = service.bus.subscribe(deployment_id)
    snapshot = service.get_deployment(deployment_id, owner_id)

    def generate():  # type: ignore[no-untyped-def]
        try:
            if snapshot is None:
                return
            yield _sse("deployment-snapshot", snapshot.to_dict())
            if snapshot.terminal:
                return

            while True:
                event = subscription.get(timeout=heartbeat)
                if event is None:
                    if subscription.closed:
                        return
                    yield ": heartbeat\n\n"
                    continue
                yield _sse(event["type"], event["data"], event["seq"])
                if DeploymentStatus(event["data"]["status"]).terminal:
                    return
        finally:
            subscription.close()

    response = Response(
        generate(),
        mimetype="text/event-stream",
        headers={
            "Cache-Control": "no-cache, no-store, must-revalidate",
            "X-Accel-Buffering": "no",      # disable nginx/proxy buffering
            "Connection": "keep-alive",
        },
    )
    # Runs even when the client goes away before the first chunk
    response.call_on_close(subscription.close)
    return response
