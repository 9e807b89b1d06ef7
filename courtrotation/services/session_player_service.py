"""
Session player management: joining, leaving and manual swaps.
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from courtrotation.database.models import (
    AssignmentStatus,
    CourtAssignment,
    Player,
    SessionPlayer,
    SessionPlayerStatus,
)
from courtrotation.services import session_store
from courtrotation.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)


def session_player_to_dict(sp: SessionPlayer, player: Optional[Player] = None) -> Dict:
    return {
        "player_id": sp.player_id,
        "full_name": player.full_name if player else None,
        "gender": player.gender if player else None,
        "level": player.level if player else None,
        "status": sp.status.value,
        "play_count": sp.play_count,
        "last_played_at": sp.last_played_at.isoformat() if sp.last_played_at else None,
    }


async def list_session_players(session: AsyncSession, session_id: int) -> List[Dict]:
    result = await session.execute(
        select(SessionPlayer, Player)
        .join(Player, SessionPlayer.player_id == Player.id)
        .where(SessionPlayer.session_id == session_id)
        .order_by(SessionPlayer.id)
        .execution_options(populate_existing=True)
    )
    return [session_player_to_dict(sp, player) for sp, player in result.all()]


async def add_players(session: AsyncSession, session_id: int, player_ids: List[int]) -> int:
    """
    Add players to a session's pool.

    Players already in the pool are left untouched; previously removed
    players rejoin as available and keep their play count.

    Returns:
        Number of players added or re-activated
    """
    sess = await session_store.get_session(session, session_id)
    if sess is None:
        raise LookupError(f"Session {session_id} not found")
    if not player_ids:
        raise ValueError("player_ids required")

    result = await session.execute(select(Player.id).where(Player.id.in_(player_ids)))
    known = set(result.scalars().all())
    missing = set(player_ids) - known
    if missing:
        raise ValueError(f"Unknown player ids: {sorted(missing)}")

    added = 0
    for player_id in dict.fromkeys(player_ids):
        existing = await session_store.get_session_player(session, session_id, player_id)
        if existing is None:
            session.add(
                SessionPlayer(
                    session_id=session_id,
                    player_id=player_id,
                    status=SessionPlayerStatus.AVAILABLE,
                    play_count=0,
                )
            )
            added += 1
        elif existing.status == SessionPlayerStatus.REMOVED:
            existing.status = SessionPlayerStatus.AVAILABLE
            added += 1
        elif existing.status == SessionPlayerStatus.LEAVING:
            # Changed their mind before the game ended
            existing.status = SessionPlayerStatus.PLAYING
            added += 1

    if added:
        await session_store.log_event(
            session, sess.club_id, session_id, "player_added", {"player_ids": player_ids},
            actor_type="manager",
        )
    await session.commit()
    return added


async def remove_player(session: AsyncSession, session_id: int, player_id: int) -> Dict:
    """
    Remove a player from the pool.

    A player currently on court finishes the game first: they are marked
    leaving and dropped when the round ends.
    """
    sess = await session_store.get_session(session, session_id)
    if sess is None:
        raise LookupError(f"Session {session_id} not found")
    sp = await session_store.get_session_player(session, session_id, player_id)
    if sp is None or sp.status == SessionPlayerStatus.REMOVED:
        raise LookupError(f"Player {player_id} is not in session {session_id}")

    deferred = sp.status in (SessionPlayerStatus.PLAYING, SessionPlayerStatus.LEAVING)
    sp.status = SessionPlayerStatus.LEAVING if deferred else SessionPlayerStatus.REMOVED

    # A pre-selected round that includes the player is dropped so the lookahead picks again
    upcoming = await session_store.get_assignments(session, session_id, [AssignmentStatus.UPCOMING])
    if any(a.player_id == player_id for a in upcoming):
        await session_store.discard_upcoming(session, session_id)
        await session_store.update_session_phase(session, session_id, next_round_selected=False)
        logger.info(f"Session {session_id}: discarded upcoming round after removing player {player_id}")

    await session_store.log_event(
        session, sess.club_id, session_id, "player_removed",
        {"player_id": player_id, "deferred": deferred}, actor_type="manager",
    )
    await session.commit()
    if deferred:
        return {"ok": True, "note": "Will be removed after current game"}
    return {"ok": True}


async def _find_assignment(
    session: AsyncSession, session_id: int, player_id: int
) -> Optional[CourtAssignment]:
    """A player's latest upcoming assignment, else latest active one."""
    for status in (AssignmentStatus.UPCOMING, AssignmentStatus.ACTIVE):
        result = await session.execute(
            select(CourtAssignment)
            .where(
                CourtAssignment.session_id == session_id,
                CourtAssignment.player_id == player_id,
                CourtAssignment.assignment_status == status,
            )
            .order_by(CourtAssignment.round.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        assignment = result.scalar_one_or_none()
        if assignment is not None:
            return assignment
    return None


async def swap_players(session: AsyncSession, session_id: int, player1_id: int, player2_id: int) -> Dict:
    """
    Manually swap two players.

    - Both on court: they trade places (court and team).
    - One on court, one in the pool: the pool player takes the court spot.

    Runs under the session's selection lock.
    """
    if player1_id == player2_id:
        raise ValueError("Two different player IDs required")
    sess = await session_store.get_session(session, session_id)
    if sess is None:
        raise LookupError(f"Session {session_id} not found")

    if not await session_store.try_acquire_lock(session, session_id):
        raise RuntimeError("Selection already in progress")
    try:
        result = await _swap(session, sess.club_id, session_id, player1_id, player2_id)
    except Exception:
        await session.rollback()
        await session_store.release_lock(session, session_id)
        raise
    await session_store.release_lock(session, session_id)
    return result


async def _swap(
    session: AsyncSession, club_id: int, session_id: int, player1_id: int, player2_id: int
) -> Dict:
    a1 = await _find_assignment(session, session_id, player1_id)
    a2 = await _find_assignment(session, session_id, player2_id)

    if a1 is None and a2 is None:
        raise ValueError("Neither player is on a court")

    if a1 is not None and a2 is not None:
        if a1.assignment_status != a2.assignment_status:
            raise ValueError("Cannot swap between active and upcoming rounds")
        a1.court_id, a2.court_id = a2.court_id, a1.court_id
        a1.team, a2.team = a2.team, a1.team
        a1.game_type, a2.game_type = a2.game_type, a1.game_type
        swap_type = "court_to_court"
    else:
        court_assignment = a1 or a2
        court_player_id = court_assignment.player_id
        pool_player_id = player2_id if court_player_id == player1_id else player1_id

        pool_sp = await session_store.get_session_player(session, session_id, pool_player_id)
        if pool_sp is None or pool_sp.status in (
            SessionPlayerStatus.REMOVED,
            SessionPlayerStatus.LEAVING,
        ):
            raise ValueError(f"Player {pool_player_id} is not in the session pool")

        court_assignment.player_id = pool_player_id
        if court_assignment.assignment_status == AssignmentStatus.ACTIVE:
            await session_store.update_player_status(
                session, session_id, [court_player_id], SessionPlayerStatus.AVAILABLE,
                from_statuses=[SessionPlayerStatus.PLAYING],
            )
            await session_store.update_player_status(
                session, session_id, [court_player_id], SessionPlayerStatus.REMOVED,
                from_statuses=[SessionPlayerStatus.LEAVING],
            )
            await session_store.mark_players_playing(session, session_id, [pool_player_id], utcnow())
        swap_type = "court_to_pool"

    await session_store.log_event(
        session, club_id, session_id, "players_swapped",
        {"player1_id": player1_id, "player2_id": player2_id, "type": swap_type},
        actor_type="manager",
    )
    await session.flush()
    logger.info(f"Session {session_id}: swapped players {player1_id} and {player2_id} ({swap_type})")
    return {"ok": True, "type": swap_type}
