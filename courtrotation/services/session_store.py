"""
Session store: persistence operations the selection runner and phase driver use.

Every function takes an AsyncSession. Functions that end a logical write
(lock acquire/release) commit; the rest only stage changes so that a whole
selection is committed together with the lock release.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from courtrotation.database.models import (
    AssignmentStatus,
    Court,
    CourtAssignment,
    Event,
    PartnerHistory,
    Player,
    Session,
    SessionPlayer,
    SessionPlayerStatus,
    SessionStatus,
)
from courtrotation.services.selection_engine import PartnerPair, PoolPlayer, pair_key
from courtrotation.utils.constants import DEFAULT_LEVEL

logger = logging.getLogger(__name__)

POOL_STATUSES = (
    SessionPlayerStatus.AVAILABLE,
    SessionPlayerStatus.PLAYING,
    SessionPlayerStatus.RESTING,
)


def normalize_gender(value: Optional[str]) -> Optional[str]:
    """Map stored gender spellings to 'male' / 'female' / None."""
    if not value:
        return None
    value = value.strip().lower()
    if value in ("male", "m"):
        return "male"
    if value in ("female", "f"):
        return "female"
    return None


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def get_session(
    session: AsyncSession, session_id: int, refresh: bool = False
) -> Optional[Session]:
    """Load a session row; refresh=True bypasses the identity map."""
    return await session.get(Session, session_id, populate_existing=refresh)


async def get_running_session_ids(session: AsyncSession) -> List[int]:
    """IDs of running sessions that are not currently selecting."""
    result = await session.execute(
        select(Session.id)
        .where(
            and_(
                Session.status == SessionStatus.RUNNING,
                Session.selecting.is_(False),
            )
        )
        .order_by(Session.id)
    )
    return list(result.scalars().all())


async def get_available_players(session: AsyncSession, session_id: int) -> List[PoolPlayer]:
    """Players eligible for selection (available, playing or resting)."""
    result = await session.execute(
        select(SessionPlayer, Player)
        .join(Player, SessionPlayer.player_id == Player.id)
        .where(
            and_(
                SessionPlayer.session_id == session_id,
                SessionPlayer.status.in_(POOL_STATUSES),
            )
        )
        .order_by(SessionPlayer.id)
        .execution_options(populate_existing=True)
    )
    return [
        PoolPlayer(
            id=player.id,
            gender=normalize_gender(player.gender),
            level=player.level if player.level is not None else DEFAULT_LEVEL,
            games_played=sp.play_count or 0,
            is_on_court=sp.status == SessionPlayerStatus.PLAYING,
        )
        for sp, player in result.all()
    ]


async def get_player_names(session: AsyncSession, player_ids: Iterable[int]) -> Dict[int, str]:
    ids = list(player_ids)
    if not ids:
        return {}
    result = await session.execute(select(Player.id, Player.full_name).where(Player.id.in_(ids)))
    return {row.id: row.full_name for row in result.all()}


async def get_unlocked_courts(session: AsyncSession, club_id: int, limit: int) -> List[Court]:
    """
    The session's courts: the club's first `limit` courts by name, minus locked ones.
    """
    result = await session.execute(
        select(Court).where(Court.club_id == club_id).order_by(Court.name, Court.id).limit(limit)
    )
    return [court for court in result.scalars().all() if not court.locked]


async def get_partner_history(session: AsyncSession, session_id: int) -> List[PartnerPair]:
    result = await session.execute(
        select(PartnerHistory).where(PartnerHistory.session_id == session_id)
        .execution_options(populate_existing=True)
    )
    return [
        PartnerPair(row.player1_id, row.player2_id, row.times_paired)
        for row in result.scalars().all()
    ]


async def get_max_round(session: AsyncSession, session_id: int) -> int:
    result = await session.execute(
        select(func.max(CourtAssignment.round)).where(CourtAssignment.session_id == session_id)
    )
    return result.scalar() or 0


async def get_assignments(
    session: AsyncSession,
    session_id: int,
    statuses: Sequence[AssignmentStatus],
) -> List[CourtAssignment]:
    result = await session.execute(
        select(CourtAssignment)
        .where(
            and_(
                CourtAssignment.session_id == session_id,
                CourtAssignment.assignment_status.in_(statuses),
            )
        )
        .order_by(CourtAssignment.round, CourtAssignment.court_id, CourtAssignment.team, CourtAssignment.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def has_upcoming_round(session: AsyncSession, session_id: int) -> bool:
    result = await session.execute(
        select(CourtAssignment.id)
        .where(
            and_(
                CourtAssignment.session_id == session_id,
                CourtAssignment.assignment_status == AssignmentStatus.UPCOMING,
            )
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def get_session_player(
    session: AsyncSession, session_id: int, player_id: int
) -> Optional[SessionPlayer]:
    result = await session.execute(
        select(SessionPlayer).where(
            and_(SessionPlayer.session_id == session_id, SessionPlayer.player_id == player_id)
        ).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Selection lock
# ---------------------------------------------------------------------------


async def try_acquire_lock(session: AsyncSession, session_id: int) -> bool:
    """
    Atomically set selecting=true if it was false.

    Returns:
        True if this caller now holds the lock, False if a selection is already running
    """
    result = await session.execute(
        update(Session)
        .where(and_(Session.id == session_id, Session.selecting.is_(False)))
        .values(selecting=True)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return result.rowcount == 1


async def release_lock(session: AsyncSession, session_id: int) -> None:
    """Clear the selecting flag (commits any staged writes with it)."""
    await session.execute(
        update(Session)
        .where(Session.id == session_id)
        .values(selecting=False)
        .execution_options(synchronize_session=False)
    )
    await session.commit()


# ---------------------------------------------------------------------------
# Writes (staged, committed by the caller)
# ---------------------------------------------------------------------------


async def write_assignments(session: AsyncSession, rows: List[Dict]) -> None:
    """Insert court assignment rows."""
    session.add_all(CourtAssignment(**row) for row in rows)
    await session.flush()


async def set_assignment_status(
    session: AsyncSession,
    session_id: int,
    from_status: AssignmentStatus,
    to_status: AssignmentStatus,
) -> int:
    result = await session.execute(
        update(CourtAssignment)
        .where(
            and_(
                CourtAssignment.session_id == session_id,
                CourtAssignment.assignment_status == from_status,
            )
        )
        .values(assignment_status=to_status)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


async def discard_upcoming(session: AsyncSession, session_id: int) -> int:
    """Drop a pre-selected round that will never be promoted."""
    result = await session.execute(
        delete(CourtAssignment).where(
            and_(
                CourtAssignment.session_id == session_id,
                CourtAssignment.assignment_status == AssignmentStatus.UPCOMING,
            )
        )
    )
    return result.rowcount


async def release_court_players(session: AsyncSession, session_id: int) -> None:
    """
    Return on-court / resting players to the pool.

    Players who asked to leave mid-game are removed now that their game is over.
    """
    await session.execute(
        update(SessionPlayer)
        .where(
            and_(
                SessionPlayer.session_id == session_id,
                SessionPlayer.status.in_(
                    [SessionPlayerStatus.PLAYING, SessionPlayerStatus.RESTING]
                ),
            )
        )
        .values(status=SessionPlayerStatus.AVAILABLE)
        .execution_options(synchronize_session=False)
    )
    await session.execute(
        update(SessionPlayer)
        .where(
            and_(
                SessionPlayer.session_id == session_id,
                SessionPlayer.status == SessionPlayerStatus.LEAVING,
            )
        )
        .values(status=SessionPlayerStatus.REMOVED)
        .execution_options(synchronize_session=False)
    )


async def update_player_status(
    session: AsyncSession,
    session_id: int,
    player_ids: Iterable[int],
    status: SessionPlayerStatus,
    from_statuses: Optional[Sequence[SessionPlayerStatus]] = None,
) -> None:
    conditions = [
        SessionPlayer.session_id == session_id,
        SessionPlayer.player_id.in_(list(player_ids)),
    ]
    if from_statuses:
        conditions.append(SessionPlayer.status.in_(from_statuses))
    await session.execute(
        update(SessionPlayer)
        .where(and_(*conditions))
        .values(status=status)
        .execution_options(synchronize_session=False)
    )


async def mark_players_playing(
    session: AsyncSession, session_id: int, player_ids: Iterable[int], now: datetime
) -> None:
    """Set pool players to playing, bump play_count and refresh last_played_at."""
    ids = list(player_ids)
    if not ids:
        return
    await session.execute(
        update(SessionPlayer)
        .where(
            and_(
                SessionPlayer.session_id == session_id,
                SessionPlayer.player_id.in_(ids),
                SessionPlayer.status.in_(POOL_STATUSES),
            )
        )
        .values(
            status=SessionPlayerStatus.PLAYING,
            play_count=SessionPlayer.play_count + 1,
            last_played_at=now,
        )
        .execution_options(synchronize_session=False)
    )


async def upsert_partner_history(
    session: AsyncSession,
    session_id: int,
    pair: Tuple[int, int],
    increment_by: int = 1,
) -> None:
    """Increment times_paired for a pair, creating the row if needed."""
    player1_id, player2_id = pair_key(*pair)
    result = await session.execute(
        update(PartnerHistory)
        .where(
            and_(
                PartnerHistory.session_id == session_id,
                PartnerHistory.player1_id == player1_id,
                PartnerHistory.player2_id == player2_id,
            )
        )
        .values(times_paired=PartnerHistory.times_paired + increment_by)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        session.add(
            PartnerHistory(
                session_id=session_id,
                player1_id=player1_id,
                player2_id=player2_id,
                times_paired=increment_by,
            )
        )
        await session.flush()


async def update_session_phase(session: AsyncSession, session_id: int, **values) -> None:
    """Update phase / timer / lifecycle columns on a session row."""
    await session.execute(
        update(Session)
        .where(Session.id == session_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )


async def log_event(
    session: AsyncSession,
    club_id: Optional[int],
    session_id: Optional[int],
    event_type: str,
    payload: Optional[Dict] = None,
    actor_type: str = "system",
) -> None:
    session.add(
        Event(
            club_id=club_id,
            session_id=session_id,
            actor_type=actor_type,
            event_type=event_type,
            payload=payload,
        )
    )
    await session.flush()
