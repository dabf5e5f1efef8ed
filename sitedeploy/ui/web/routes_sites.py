"""
Published site routes — serve a project's publish root.

    GET /sites/<project_id>/             → index.html
    GET /sites/<project_id>/<path>       → the file, or <path>/index.html

Files are served verbatim from ``<publish_root>/<project_id>/``.
"""

from __future__ import annotations

import mimetypes
import os

from flask import Blueprint, abort, send_from_directory
from werkzeug.security import safe_join

from sitedeploy.ui.web.helpers import deploy_service

sites_bp = Blueprint("sites", __name__)


@sites_bp.route("/sites/<project_id>/")
@sites_bp.route("/sites/<project_id>/<path:filepath>")
def serve_site(project_id: str, filepath: str = "index.html"):  # type: ignore[no-untyped-def]
    """Serve a published file; directories fall back to their index.html."""
    site_dir = deploy_service().config.publish_root / project_id
    if project_id.startswith(".") or not site_dir.is_dir():
        abort(404, description=f"No published site for '{project_id}'")

    requested = safe_join(str(site_dir), filepath)
    if requested is None:
        abort(404)
    if os.path.isdir(requested):
        filepath = f"{filepath.rstrip('/')}/index.html"

    mime = mimetypes.guess_type(filepath)[0] or "application/octet-stream"
    return send_from_directory(site_dir, filepath, mimetype=mime)
