"""
Web shared helpers — service lookup and the auth guard.

Every authenticated route reads the caller from ``g.identity``; the
guard runs before any core logic, so unauthenticated requests never
reach the registry or intake.
"""

from __future__ import annotations

from functools import wraps
from typing import Any, Callable

from flask import current_app, g, request

from sitedeploy.core.services.auth import Identity, token_from_header, verify_token
from sitedeploy.core.services.deploy_service import DeployService


def deploy_service() -> DeployService:
    """The DeployService bound to the current app."""
    return current_app.extensions["sitedeploy"]


def current_identity() -> Identity:
    return g.identity


def require_identity(view: Callable[..., Any]) -> Callable[..., Any]:
    """Reject the request unless it carries a valid bearer token.

    The token comes from ``Authorization: Bearer <token>``, or from the
    ``token`` query parameter (EventSource cannot set headers).
    """

    @wraps(view)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        config = deploy_service().config
        token = token_from_header(request.headers.get("Authorization"))
        if not token:
            token = request.args.get("token", "")
        g.identity = verify_token(config.secret_key, token, max_age=config.token_max_age)
        return view(*args, **kwargs)

    return wrapper


def error_body(message: str, code: str, **extra: Any) -> dict[str, Any]:
    return {"error": message, "code": code, **extra}
