"""Access checks used by the content layer before serving gated media."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from ....core.dependencies import get_access_control
from ....domain.errors import EntitlementError
from ....domain.models import Principal, Tier
from ....services.access_control import AccessControlService
from ..dependencies import get_current_principal
from ..errors import to_http_exception
from ..schemas.access_schemas import AccessCheckResponse

router = APIRouter(prefix="/api/access", tags=["access"])


@router.get("/check", response_model=AccessCheckResponse)
def check_access(
    owner_id: str = Query(..., min_length=1),
    required_tier: Optional[str] = Query(None),
    principal: Principal = Depends(get_current_principal),
    access_control: AccessControlService = Depends(get_access_control),
) -> AccessCheckResponse:
    """Report whether the caller may view content owned by ``owner_id``.

    Content without a required tier is public. A denial is a regular
    response, not an error.
    """
    try:
        tier = Tier.parse(required_tier) if required_tier else None
    except EntitlementError as exc:
        raise to_http_exception(exc) from exc
    decision = access_control.can_access(principal, owner_id, tier)
    return AccessCheckResponse(
        allowed=decision.allowed,
        reason=decision.reason.value if decision.reason else None,
    )
