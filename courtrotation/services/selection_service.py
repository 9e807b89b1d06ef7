"""
Selection runner: lock, load, select, write, release.

Shared by the phase driver and the manager's "run selection now" action so
that both go through the same lock-acquire / selection / lock-release
sequence. The selecting lock is released on every path, including failures.
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from courtrotation.database.models import (
    AssignmentStatus,
    Court,
    GameType,
    Session,
    SessionPhase,
)
from courtrotation.services import notification_service, selection_engine, session_store
from courtrotation.services.notification_service import PushContext
from courtrotation.services.selection_engine import AlgorithmConfig, CourtSelection
from courtrotation.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

# Outcome statuses
SELECTED = "selected"
PROMOTED = "promoted"
LOCKED = "locked"
NOT_FOUND = "not_found"
NO_COURTS = "no_courts"
INSUFFICIENT_PLAYERS = "insufficient_players"


@dataclass
class SelectionOutcome:
    status: str
    round: Optional[int] = None
    assignment_status: Optional[AssignmentStatus] = None
    courts: List[Dict] = field(default_factory=list)

    @property
    def produced_round(self) -> bool:
        return self.status in (SELECTED, PROMOTED)


@dataclass
class _Notification:
    session_id: int
    club_id: int
    round_number: int
    contexts: Dict[int, PushContext]
    upcoming: bool


def algorithm_config_for(sess: Session) -> AlgorithmConfig:
    """Build the engine config from a session's settings."""
    return AlgorithmConfig(
        mixed_ratio=sess.mixed_ratio,
        skill_balance=sess.skill_balance,
        partner_variety=sess.partner_variety,
        strict_gender=bool(sess.strict_gender),
    )


async def run_selection(
    session: AsyncSession,
    session_id: int,
    assignment_status: AssignmentStatus = AssignmentStatus.ACTIVE,
    actor_type: str = "system",
    rng: Optional[random.Random] = None,
) -> SelectionOutcome:
    """
    Produce a new round for a session.

    Args:
        session: Database session
        session_id: Session to select for
        assignment_status: ACTIVE for the current round, UPCOMING for a pre-selected next round
        actor_type: 'system' (phase driver) or 'manager' (manual run)
        rng: Optional random source for tie-breaking

    Returns:
        SelectionOutcome; status LOCKED if another selection holds the lock
    """
    if not await session_store.try_acquire_lock(session, session_id):
        logger.debug(f"Selection already in progress for session {session_id}, skipping")
        return SelectionOutcome(status=LOCKED)

    try:
        outcome, notification = await _select_and_write(
            session, session_id, assignment_status, actor_type, rng
        )
    except Exception:
        await session.rollback()
        await session_store.release_lock(session, session_id)
        raise

    await session_store.release_lock(session, session_id)

    if notification:
        await notification_service.notify_players(
            notification.session_id,
            notification.club_id,
            notification.round_number,
            notification.contexts,
            upcoming=notification.upcoming,
        )
    return outcome


async def _select_and_write(
    session: AsyncSession,
    session_id: int,
    assignment_status: AssignmentStatus,
    actor_type: str,
    rng: Optional[random.Random],
):
    sess = await session_store.get_session(session, session_id, refresh=True)
    if sess is None:
        return SelectionOutcome(status=NOT_FOUND), None

    pool = await session_store.get_available_players(session, session_id)
    if len(pool) < 4:
        logger.info(f"Session {session_id}: only {len(pool)} player(s) in pool, no round produced")
        return SelectionOutcome(status=INSUFFICIENT_PLAYERS), None

    courts = await session_store.get_unlocked_courts(session, sess.club_id, sess.number_of_courts)
    if not courts:
        logger.info(f"Session {session_id}: no unlocked courts, no round produced")
        return SelectionOutcome(status=NO_COURTS), None

    history = await session_store.get_partner_history(session, session_id)
    assignments = selection_engine.select_players(
        pool, len(courts), algorithm_config_for(sess), history, rng=rng
    )
    if not assignments:
        return SelectionOutcome(status=INSUFFICIENT_PLAYERS), None

    if assignment_status == AssignmentStatus.ACTIVE:
        # Anything pre-selected before this fresh round is stale now
        await session_store.discard_upcoming(session, session_id)
        await session_store.set_assignment_status(
            session, session_id, AssignmentStatus.ACTIVE, AssignmentStatus.COMPLETED
        )

    new_round = await session_store.get_max_round(session, session_id) + 1
    rows = _assignment_rows(session_id, new_round, assignment_status, assignments, courts)
    await session_store.write_assignments(session, rows)

    for pair in selection_engine.extract_pairs(assignments):
        await session_store.upsert_partner_history(session, session_id, pair)

    selected_ids = [p.id for court in assignments for p in court.players]
    now = utcnow()

    if assignment_status == AssignmentStatus.ACTIVE:
        await session_store.release_court_players(session, session_id)
        await session_store.mark_players_playing(session, session_id, selected_ids, now)
        await session_store.update_session_phase(
            session,
            session_id,
            current_phase=SessionPhase.PLAYING,
            current_round_started_at=now,
            next_round_selected=False,
        )
    else:
        await session_store.update_session_phase(session, session_id, next_round_selected=True)

    court_summary = [
        {
            "court_id": courts[a.court_index].id,
            "court_index": a.court_index,
            "game_type": a.game_type,
            "team_a": [p.id for p in a.team_a],
            "team_b": [p.id for p in a.team_b],
        }
        for a in assignments
    ]
    await session_store.log_event(
        session,
        sess.club_id,
        session_id,
        "selection_run",
        {
            "round": new_round,
            "assignment_status": assignment_status.value,
            "courts": court_summary,
        },
        actor_type=actor_type,
    )

    names = await session_store.get_player_names(session, selected_ids)
    notification = _Notification(
        session_id=session_id,
        club_id=sess.club_id,
        round_number=new_round,
        contexts=_push_contexts(assignments, courts, names),
        upcoming=assignment_status == AssignmentStatus.UPCOMING,
    )
    logger.info(
        f"Session {session_id}: round {new_round} selected ({assignment_status.value}, "
        f"{len(assignments)} court(s))"
    )
    outcome = SelectionOutcome(
        status=SELECTED,
        round=new_round,
        assignment_status=assignment_status,
        courts=court_summary,
    )
    return outcome, notification


def _assignment_rows(
    session_id: int,
    round_number: int,
    assignment_status: AssignmentStatus,
    assignments: List[CourtSelection],
    courts: List[Court],
) -> List[Dict]:
    rows = []
    for court in assignments:
        court_record = courts[court.court_index]
        for team, players in (("a", court.team_a), ("b", court.team_b)):
            for player in players:
                rows.append(
                    {
                        "session_id": session_id,
                        "court_id": court_record.id,
                        "player_id": player.id,
                        "round": round_number,
                        "team": team,
                        "assignment_status": assignment_status,
                        "game_type": GameType(court.game_type),
                    }
                )
    return rows


def _push_contexts(
    assignments: List[CourtSelection], courts: List[Court], names: Dict[int, str]
) -> Dict[int, PushContext]:
    contexts: Dict[int, PushContext] = {}
    for court in assignments:
        court_name = courts[court.court_index].name
        players = court.players
        for player in players:
            contexts[player.id] = PushContext(
                court_name=court_name,
                others=[names.get(p.id, "Player") for p in players if p.id != player.id],
            )
    return contexts


async def promote_or_select(
    session: AsyncSession,
    session_id: int,
    rng: Optional[random.Random] = None,
) -> SelectionOutcome:
    """
    Start the next round: promote the pre-selected upcoming round if there is
    one (no re-scoring), otherwise run a fresh active selection.
    """
    if not await session_store.has_upcoming_round(session, session_id):
        return await run_selection(session, session_id, AssignmentStatus.ACTIVE, rng=rng)

    if not await session_store.try_acquire_lock(session, session_id):
        logger.debug(f"Selection already in progress for session {session_id}, skipping promote")
        return SelectionOutcome(status=LOCKED)

    try:
        outcome = await _promote_upcoming(session, session_id)
    except Exception:
        await session.rollback()
        await session_store.release_lock(session, session_id)
        raise

    await session_store.release_lock(session, session_id)
    return outcome


async def _promote_upcoming(session: AsyncSession, session_id: int) -> SelectionOutcome:
    sess = await session_store.get_session(session, session_id, refresh=True)
    if sess is None:
        return SelectionOutcome(status=NOT_FOUND)

    upcoming = await session_store.get_assignments(
        session, session_id, [AssignmentStatus.UPCOMING]
    )
    if not upcoming:
        # Promoted or discarded by someone else between the check and the lock
        return SelectionOutcome(status=INSUFFICIENT_PLAYERS)

    round_number = max(a.round for a in upcoming)
    player_ids = [a.player_id for a in upcoming]
    now = utcnow()

    await session_store.release_court_players(session, session_id)
    await session_store.set_assignment_status(
        session, session_id, AssignmentStatus.ACTIVE, AssignmentStatus.COMPLETED
    )
    await session_store.set_assignment_status(
        session, session_id, AssignmentStatus.UPCOMING, AssignmentStatus.ACTIVE
    )
    await session_store.mark_players_playing(session, session_id, player_ids, now)
    await session_store.update_session_phase(
        session,
        session_id,
        current_phase=SessionPhase.PLAYING,
        current_round_started_at=now,
        next_round_selected=False,
    )
    await session_store.log_event(
        session,
        sess.club_id,
        session_id,
        "round_promoted",
        {"round": round_number, "players": player_ids},
    )
    logger.info(f"Session {session_id}: promoted upcoming round {round_number} to active")
    # Players were already told "You're up next!" when the round was pre-selected
    return SelectionOutcome(
        status=PROMOTED, round=round_number, assignment_status=AssignmentStatus.ACTIVE
    )
