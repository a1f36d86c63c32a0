"""FastAPI dependency helpers for route-level authorization."""

import logging

from fastapi import Depends, HTTPException, Request, status

from iamcore.authz.engine import AuthzEngine
from iamcore.authz.errors import AuthorizationCancelledError, InvalidRequestError
from iamcore.authz.models import AuthenticatedPrincipal, AuthzDecision
from iamcore.config import get_settings

logger = logging.getLogger(__name__)


def get_authz_engine(request: Request) -> AuthzEngine:
    """Get the engine installed on the application.

    Usage:
        app.state.authz_engine = build_engine(get_settings(), store)
    """
    engine = getattr(request.app.state, "authz_engine", None)
    if engine is None:
        raise RuntimeError("No authorization engine configured on app.state.authz_engine")
    return engine


def get_current_principal(request: Request) -> AuthenticatedPrincipal:
    """Get the principal that authentication placed on the request."""
    principal = getattr(request.state, "principal", None)
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "unauthorized"},
        )
    return principal


def build_resource_arn(
    partition: str,
    organization_id: str,
    resource_type: str,
    resource_id: str | None,
) -> str:
    """ARN of the addressed resource, or ``*`` for collection routes."""
    if not resource_id:
        return "*"
    return f"arn:{partition}:resource:{organization_id}:{resource_type}/{resource_id}"


def require_action(action: str, resource_type: str | None = None):
    """FastAPI dependency to require an action on the routed resource.

    The resource type defaults to the action's service prefix.

    Usage:
        @app.put("/blogs/{id}")
        async def update_blog(
            id: str,
            _: AuthzDecision = Depends(require_action("blog:update")),
        ):
            pass
    """
    kind = resource_type or action.split(":", 1)[0]

    async def check(
        request: Request,
        principal: AuthenticatedPrincipal = Depends(get_current_principal),
        engine: AuthzEngine = Depends(get_authz_engine),
    ) -> AuthzDecision:
        resource = build_resource_arn(
            get_settings().arn_partition,
            principal.organization_id,
            kind,
            request.path_params.get("id"),
        )
        context = {"ip": request.client.host} if request.client else {}

        try:
            decision = await engine.authorize(
                principal.principal_id,
                principal.principal_type,
                principal.organization_id,
                action,
                resource,
                context,
            )
        except InvalidRequestError as e:
            logger.warning("Rejected authorization request: action=%s error=%s", action, e)
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"error": "invalid_request"},
            ) from e
        except AuthorizationCancelledError as e:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail={"error": "authorization_unavailable"},
            ) from e

        if not decision.allowed:
            # Reason stays in the audit log
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"error": "forbidden"},
            )

        return decision

    return check
