"""
API routes - combined router from all domain modules.

Shared helpers live here; every sub-router imports what it needs from this
package.
"""

from fastapi import HTTPException

# ---------------------------------------------------------------------------
# Shared responses
# ---------------------------------------------------------------------------
SELECTION_IN_PROGRESS_RESPONSE = HTTPException(
    status_code=409, detail="Selection already in progress"
)


def not_found(e: Exception) -> HTTPException:
    return HTTPException(status_code=404, detail=str(e))


# ---------------------------------------------------------------------------
# Import sub-routers and combine
# ---------------------------------------------------------------------------
from fastapi import APIRouter  # noqa: E402

from courtrotation.api.routes.sessions import router as sessions_router  # noqa: E402
from courtrotation.api.routes.players import router as players_router  # noqa: E402
from courtrotation.api.routes.courts import router as courts_router  # noqa: E402
from courtrotation.api.routes.tick import router as tick_router  # noqa: E402

router = APIRouter()
router.include_router(sessions_router)
router.include_router(players_router)
router.include_router(courts_router)
router.include_router(tick_router)
