"""Club and court route handlers."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from courtrotation.api.routes import not_found
from courtrotation.database.db import get_db_session
from courtrotation.models.schemas import CreateClubRequest, CreateCourtRequest
from courtrotation.services import data_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/clubs")
async def create_club(payload: CreateClubRequest, session: AsyncSession = Depends(get_db_session)):
    try:
        club = await data_service.create_club(session, payload.name)
        return {"id": club.id, "name": club.name}
    except Exception as e:
        logger.error(f"Error creating club: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Error creating club: {str(e)}")


@router.post("/api/clubs/{club_id}/courts")
async def create_court(
    club_id: int,
    payload: CreateCourtRequest,
    session: AsyncSession = Depends(get_db_session),
):
    try:
        court = await data_service.create_court(session, club_id, payload.name)
        return data_service.court_to_dict(court)
    except LookupError as e:
        raise not_found(e)
    except Exception as e:
        logger.error(f"Error creating court for club {club_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Error creating court: {str(e)}")


@router.get("/api/clubs/{club_id}/courts")
async def list_courts(club_id: int, session: AsyncSession = Depends(get_db_session)):
    """Courts of a club, ordered by name (the order selection fills them in)."""
    try:
        courts = await data_service.list_courts(session, club_id)
        return [data_service.court_to_dict(c) for c in courts]
    except Exception as e:
        logger.error(f"Error listing courts for club {club_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Error listing courts: {str(e)}")


@router.post("/api/courts/{court_id}/toggle-lock")
async def toggle_court_lock(court_id: int, session: AsyncSession = Depends(get_db_session)):
    """Lock or unlock a court. Locked courts are left out of new rounds."""
    try:
        court = await data_service.toggle_court_lock(session, court_id)
        return data_service.court_to_dict(court)
    except LookupError as e:
        raise not_found(e)
    except Exception as e:
        logger.error(f"Error toggling lock for court {court_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Error toggling court lock: {str(e)}")
