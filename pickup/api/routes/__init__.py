"""
API routes - combined router from all domain modules.

Shared helpers live here; every sub-router imports what it needs from this
package.
"""

import logging
from typing import Dict

from fastapi import APIRouter, HTTPException

from pickup.services.errors import DeclineReason

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Declined-operation mapping
# ---------------------------------------------------------------------------
DECLINE_STATUS_CODES = {
    DeclineReason.VALIDATION.value: 400,
    DeclineReason.NOT_FOUND.value: 404,
    DeclineReason.FORBIDDEN.value: 403,
    DeclineReason.CONFLICT.value: 409,
}


def unwrap_result(result: Dict) -> Dict:
    """
    Return a successful controller result, or raise the declined one as HTTPException.
    """
    if not result.get("success"):
        status_code = DECLINE_STATUS_CODES.get(result.get("reason"), 400)
        detail = result.get("error") or "Request declined"
        logger.info(f"Request declined ({status_code}): {detail}")
        raise HTTPException(status_code=status_code, detail=detail)
    return result


# ---------------------------------------------------------------------------
# Import sub-routers and combine
# ---------------------------------------------------------------------------
from pickup.api.routes.groups import router as groups_router  # noqa: E402
from pickup.api.routes.play_sessions import router as play_sessions_router  # noqa: E402
from pickup.api.routes.matches import router as matches_router  # noqa: E402
from pickup.api.routes.events import router as events_router  # noqa: E402

router = APIRouter()
router.include_router(groups_router)
router.include_router(play_sessions_router)
router.include_router(matches_router)
router.include_router(events_router)
