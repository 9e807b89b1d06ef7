"""Session lifecycle, settings and selection route handlers."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from courtrotation.api.routes import SELECTION_IN_PROGRESS_RESPONSE, not_found
from courtrotation.database.db import get_db_session
from courtrotation.models.schemas import (
    CreateSessionRequest,
    SelectionResponse,
    SessionSettings,
)
from courtrotation.services import selection_service, session_player_service, session_service

logger = logging.getLogger(__name__)
router = APIRouter()


def _selection_response(outcome: selection_service.SelectionOutcome) -> SelectionResponse:
    return SelectionResponse(
        status=outcome.status,
        round=outcome.round,
        assignment_status=outcome.assignment_status.value if outcome.assignment_status else None,
        courts=outcome.courts,
    )


@router.post("/api/sessions")
async def create_session(
    payload: CreateSessionRequest,
    session: AsyncSession = Depends(get_db_session),
):
    """Create a draft session for a club."""
    try:
        settings = payload.model_dump(exclude={"club_id", "name"}, exclude_none=True)
        new_session = await session_service.create_session(
            session, payload.club_id, payload.name, **settings
        )
        return {"status": "success", "session": session_service.session_to_dict(new_session)}
    except LookupError as e:
        raise not_found(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error creating session: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Error creating session: {str(e)}")


@router.get("/api/sessions/{session_id}")
async def get_session(session_id: int, session: AsyncSession = Depends(get_db_session)):
    """Session settings and state, plus its player pool."""
    try:
        sess = await session_service.require_session(session, session_id)
        players = await session_player_service.list_session_players(session, session_id)
        return {**session_service.session_to_dict(sess), "players": players}
    except LookupError as e:
        raise not_found(e)
    except Exception as e:
        logger.error(f"Error getting session {session_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Error getting session: {str(e)}")


@router.patch("/api/sessions/{session_id}/settings")
async def update_settings(
    session_id: int,
    payload: SessionSettings,
    session: AsyncSession = Depends(get_db_session),
):
    """
    Partially update session settings.

    Only fields present in the body are changed. Sending
    `selection_interval_minutes: null` turns the mid-round lookahead off.
    """
    try:
        settings = payload.model_dump(exclude_unset=True)
        sess = await session_service.update_session_settings(session, session_id, settings)
        return {"status": "success", "session": session_service.session_to_dict(sess)}
    except LookupError as e:
        raise not_found(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error updating settings for session {session_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Error updating settings: {str(e)}")


async def _lifecycle(handler, action: str, session: AsyncSession, session_id: int):
    try:
        sess = await handler(session, session_id)
        return {"status": "success", "session": session_service.session_to_dict(sess)}
    except LookupError as e:
        raise not_found(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error running '{action}' for session {session_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Error updating session: {str(e)}")


@router.post("/api/sessions/{session_id}/initiate")
async def initiate_session(session_id: int, session: AsyncSession = Depends(get_db_session)):
    """Open a draft session for players to join."""
    return await _lifecycle(session_service.initiate_session, "initiate", session, session_id)


@router.post("/api/sessions/{session_id}/start")
async def start_session(session_id: int, session: AsyncSession = Depends(get_db_session)):
    """Start a session; the first round is selected on the next tick."""
    return await _lifecycle(session_service.start_session, "start", session, session_id)


@router.post("/api/sessions/{session_id}/pause")
async def pause_session(session_id: int, session: AsyncSession = Depends(get_db_session)):
    return await _lifecycle(session_service.pause_session, "pause", session, session_id)


@router.post("/api/sessions/{session_id}/resume")
async def resume_session(session_id: int, session: AsyncSession = Depends(get_db_session)):
    return await _lifecycle(session_service.resume_session, "resume", session, session_id)


@router.post("/api/sessions/{session_id}/end")
async def end_session(session_id: int, session: AsyncSession = Depends(get_db_session)):
    """End a session: pending rounds are discarded and players released."""
    return await _lifecycle(session_service.end_session, "end", session, session_id)


@router.post("/api/sessions/{session_id}/select", response_model=SelectionResponse)
async def run_selection_now(session_id: int, session: AsyncSession = Depends(get_db_session)):
    """
    Run a fresh active selection now (manager action).

    Returns 409 when the tick service or another manager is already selecting.
    """
    try:
        outcome = await session_service.run_manual_selection(session, session_id)
    except LookupError as e:
        raise not_found(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error running selection for session {session_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error running selection: {str(e)}")

    if outcome.status == selection_service.LOCKED:
        raise SELECTION_IN_PROGRESS_RESPONSE
    if outcome.status == selection_service.NOT_FOUND:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return _selection_response(outcome)


@router.get("/api/sessions/{session_id}/assignments")
async def get_assignments(session_id: int, session: AsyncSession = Depends(get_db_session)):
    """Active and upcoming court assignments, grouped by court."""
    try:
        return await session_service.get_round_view(session, session_id)
    except LookupError as e:
        raise not_found(e)
    except Exception as e:
        logger.error(f"Error getting assignments for session {session_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Error getting assignments: {str(e)}")
