# civichub/dependencies/access.py
import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request, status

from civichub.errors import CivicHubError, Forbidden, NotFound, Unauthorized, ValidationFailure
from civichub.models.content import ContentType
from civichub.models.hierarchy import HierarchyLevel
from civichub.models.user import ADMIN_LEVEL_DEPTH, AdminLevel
from civichub.schemas.user import Principal
from civichub.services.access_evaluator import AccessEvaluator

logger = logging.getLogger(__name__)

_STATUS_CODES = {
    Unauthorized: status.HTTP_401_UNAUTHORIZED,
    Forbidden: status.HTTP_403_FORBIDDEN,
    NotFound: status.HTTP_404_NOT_FOUND,
    ValidationFailure: status.HTTP_400_BAD_REQUEST,
}


def to_http_exception(error: CivicHubError) -> HTTPException:
    """Maps a domain error onto the HTTP status the request layer returns."""
    for error_type, status_code in _STATUS_CODES.items():
        if isinstance(error, error_type):
            headers = {"WWW-Authenticate": "Bearer"} if error_type is Unauthorized else None
            return HTTPException(status_code=status_code, detail=error.detail, headers=headers)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=error.detail
    )


async def get_current_principal(request: Request) -> Principal:
    """
    The principal the authentication middleware stored on `request.state.user`.
    Accepts a Principal, a mapping or a stored User.
    """
    user = getattr(request.state, "user", None)
    if user is None:
        raise to_http_exception(Unauthorized("Could not validate credentials"))
    if isinstance(user, Principal):
        return user
    if isinstance(user, dict):
        return Principal.model_validate(user)
    if getattr(user, "is_active", True) is False:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Inactive user")
    return Principal.from_user(user)


_access_evaluator: Optional[AccessEvaluator] = None


def get_access_evaluator() -> AccessEvaluator:
    global _access_evaluator
    if _access_evaluator is None:
        _access_evaluator = AccessEvaluator()
    return _access_evaluator


def _request_param(request: Request, name: str) -> str:
    value = request.path_params.get(name) or request.query_params.get(name)
    if not value:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=f"{name} is required"
        )
    return value


# --- Permission guards ---
def require_admin_level(min_level: AdminLevel):
    """Rejects principals ranked below `min_level` (ADMIN ranks highest)."""

    async def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if ADMIN_LEVEL_DEPTH[principal.admin_level] > ADMIN_LEVEL_DEPTH[min_level]:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires {min_level.value} level or higher.",
            )
        return principal

    return dependency


def require_node_access(level: HierarchyLevel, param: str = "node_id"):
    async def dependency(
        request: Request,
        principal: Principal = Depends(get_current_principal),
        evaluator: AccessEvaluator = Depends(get_access_evaluator),
    ) -> Principal:
        node_id = _request_param(request, param)
        if not await evaluator.can_access(principal, level, node_id):
            logger.info(f"Denied {principal.id} access to {level.value} {node_id}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"This {level.value.replace('_', ' ')} is not within your jurisdiction.",
            )
        return principal

    return dependency


def require_user_management(param: str = "user_id"):
    async def dependency(
        request: Request,
        principal: Principal = Depends(get_current_principal),
        evaluator: AccessEvaluator = Depends(get_access_evaluator),
    ) -> Principal:
        user_id = _request_param(request, param)
        if not await evaluator.can_manage_user(principal, user_id):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="This user is not within your jurisdiction.",
            )
        return principal

    return dependency


def require_content_management(content_type: ContentType, param: str = "content_id"):
    async def dependency(
        request: Request,
        principal: Principal = Depends(get_current_principal),
        evaluator: AccessEvaluator = Depends(get_access_evaluator),
    ) -> Principal:
        content_id = _request_param(request, param)
        if not await evaluator.can_manage_content(principal, content_type, content_id):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="This content is not within your jurisdiction.",
            )
        return principal

    return dependency
