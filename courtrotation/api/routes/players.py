"""Player profile and session pool route handlers."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from courtrotation.api.routes import SELECTION_IN_PROGRESS_RESPONSE, not_found
from courtrotation.database.db import get_db_session
from courtrotation.models.schemas import (
    AddPlayersRequest,
    CreatePlayerRequest,
    SwapPlayersRequest,
)
from courtrotation.services import data_service, session_player_service

logger = logging.getLogger(__name__)
router = APIRouter()


# ---------------------------------------------------------------------------
# Player profiles
# ---------------------------------------------------------------------------


@router.post("/api/players")
async def create_player(
    payload: CreatePlayerRequest,
    session: AsyncSession = Depends(get_db_session),
):
    try:
        player = await data_service.create_player(
            session, payload.full_name, gender=payload.gender, level=payload.level
        )
        return data_service.player_to_dict(player)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error creating player: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Error creating player: {str(e)}")


# ---------------------------------------------------------------------------
# Session pool
# ---------------------------------------------------------------------------


@router.get("/api/sessions/{session_id}/players")
async def list_session_players(session_id: int, session: AsyncSession = Depends(get_db_session)):
    try:
        return await session_player_service.list_session_players(session, session_id)
    except Exception as e:
        logger.error(f"Error listing players for session {session_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Error listing players: {str(e)}")


@router.post("/api/sessions/{session_id}/players")
async def add_session_players(
    session_id: int,
    payload: AddPlayersRequest,
    session: AsyncSession = Depends(get_db_session),
):
    """Add players to the pool. Players already in the pool are left as they are."""
    try:
        added = await session_player_service.add_players(session, session_id, payload.player_ids)
        return {"ok": True, "added": added}
    except LookupError as e:
        raise not_found(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error adding players to session {session_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Error adding players: {str(e)}")


@router.delete("/api/sessions/{session_id}/players/{player_id}")
async def remove_session_player(
    session_id: int,
    player_id: int,
    session: AsyncSession = Depends(get_db_session),
):
    """
    Remove a player from the pool.

    A player who is on court right now is marked as leaving and drops out
    when their game ends.
    """
    try:
        return await session_player_service.remove_player(session, session_id, player_id)
    except LookupError as e:
        raise not_found(e)
    except Exception as e:
        logger.error(f"Error removing player {player_id} from session {session_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Error removing player: {str(e)}")


@router.post("/api/sessions/{session_id}/swap")
async def swap_players(
    session_id: int,
    payload: SwapPlayersRequest,
    session: AsyncSession = Depends(get_db_session),
):
    """Swap two players between courts, or a court player with a pool player."""
    try:
        return await session_player_service.swap_players(
            session, session_id, payload.player1_id, payload.player2_id
        )
    except LookupError as e:
        raise not_found(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RuntimeError:
        raise SELECTION_IN_PROGRESS_RESPONSE
    except Exception as e:
        logger.error(f"Error swapping players in session {session_id}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error swapping players: {str(e)}")
