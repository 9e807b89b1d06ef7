"""
Data service layer for clubs, player profiles and courts.
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from courtrotation.database.models import Club, Court, Player
from courtrotation.services import session_store
from courtrotation.utils.constants import DEFAULT_LEVEL, LEVEL_MAX, LEVEL_MIN

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Clubs
# ---------------------------------------------------------------------------


async def create_club(session: AsyncSession, name: str) -> Club:
    club = Club(name=name)
    session.add(club)
    await session.commit()
    await session.refresh(club)
    return club


# ---------------------------------------------------------------------------
# Players
# ---------------------------------------------------------------------------


async def create_player(
    session: AsyncSession,
    full_name: str,
    gender: Optional[str] = None,
    level: int = DEFAULT_LEVEL,
) -> Player:
    """Create a player profile."""
    if not LEVEL_MIN <= level <= LEVEL_MAX:
        raise ValueError(f"level must be between {LEVEL_MIN} and {LEVEL_MAX}")
    player = Player(
        full_name=full_name,
        gender=session_store.normalize_gender(gender),
        level=level,
    )
    session.add(player)
    await session.commit()
    await session.refresh(player)
    return player


def player_to_dict(player: Player) -> Dict:
    return {
        "id": player.id,
        "full_name": player.full_name,
        "gender": player.gender,
        "level": player.level,
    }


# ---------------------------------------------------------------------------
# Courts
# ---------------------------------------------------------------------------


def court_to_dict(court: Court) -> Dict:
    return {
        "id": court.id,
        "club_id": court.club_id,
        "name": court.name,
        "locked": court.locked,
    }


async def create_court(session: AsyncSession, club_id: int, name: str) -> Court:
    club = await session.get(Club, club_id)
    if club is None:
        raise LookupError(f"Club {club_id} not found")
    court = Court(club_id=club_id, name=name, locked=False)
    session.add(court)
    await session.commit()
    await session.refresh(court)
    return court


async def list_courts(session: AsyncSession, club_id: int) -> List[Court]:
    result = await session.execute(
        select(Court).where(Court.club_id == club_id).order_by(Court.name, Court.id)
    )
    return list(result.scalars().all())


async def toggle_court_lock(session: AsyncSession, court_id: int) -> Court:
    """Flip a court's locked flag; locked courts are skipped by selection."""
    court = await session.get(Court, court_id)
    if court is None:
        raise LookupError(f"Court {court_id} not found")
    court.locked = not court.locked
    await session_store.log_event(
        session, court.club_id, None, "court_lock_toggled",
        {"court_id": court.id, "locked": court.locked}, actor_type="manager",
    )
    await session.commit()
    await session.refresh(court)
    logger.info(f"Court {court_id} {'locked' if court.locked else 'unlocked'}")
    return court
