"""
Session lifecycle and settings.

Lifecycle: draft → initiated → running ⇄ paused → ended. Only running
sessions are evaluated by the tick service; pausing or ending is just a
status write that the next tick observes.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from courtrotation.database.models import (
    AssignmentStatus,
    Club,
    Session,
    SessionPhase,
    SessionStatus,
)
from courtrotation.services import selection_service, session_store
from courtrotation.utils.constants import DEFAULT_PLAY_TIME_MINUTES
from courtrotation.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

SETTING_FIELDS = (
    "number_of_courts",
    "play_time_minutes",
    "rest_time_minutes",
    "selection_interval_minutes",
    "mixed_ratio",
    "skill_balance",
    "partner_variety",
    "strict_gender",
)


def validate_settings(settings: Dict) -> None:
    """
    Reject malformed session settings before they reach the algorithm.

    Raises:
        ValueError: If any provided value is out of range, missing where a
            value is required, or the selection interval is not shorter
            than the play time
    """
    for name in SETTING_FIELDS:
        if name != "selection_interval_minutes" and name in settings and settings[name] is None:
            raise ValueError(f"{name} cannot be null")
    for name in ("mixed_ratio", "skill_balance", "partner_variety"):
        if name in settings:
            value = settings[name]
            if value is None or not 0 <= value <= 100:
                raise ValueError(f"{name} must be between 0 and 100")
    if "number_of_courts" in settings and (settings["number_of_courts"] or 0) < 1:
        raise ValueError("number_of_courts must be at least 1")
    if "play_time_minutes" in settings and (settings["play_time_minutes"] or 0) < 1:
        raise ValueError("play_time_minutes must be at least 1")
    if "rest_time_minutes" in settings and (
        settings["rest_time_minutes"] is None or settings["rest_time_minutes"] < 0
    ):
        raise ValueError("rest_time_minutes cannot be negative")
    interval = settings.get("selection_interval_minutes")
    if interval is not None and interval < 1:
        raise ValueError("selection_interval_minutes must be at least 1")
    play_time = settings.get("play_time_minutes")
    if interval is not None and play_time is not None and interval >= play_time:
        raise ValueError("selection_interval_minutes must be less than play_time_minutes")


def session_to_dict(sess: Session) -> Dict:
    return {
        "id": sess.id,
        "club_id": sess.club_id,
        "name": sess.name,
        "status": sess.status.value if sess.status else None,
        "current_phase": sess.current_phase.value if sess.current_phase else None,
        "number_of_courts": sess.number_of_courts,
        "play_time_minutes": sess.play_time_minutes,
        "rest_time_minutes": sess.rest_time_minutes,
        "selection_interval_minutes": sess.selection_interval_minutes,
        "mixed_ratio": sess.mixed_ratio,
        "skill_balance": sess.skill_balance,
        "partner_variety": sess.partner_variety,
        "strict_gender": sess.strict_gender,
        "selecting": sess.selecting,
        "next_round_selected": sess.next_round_selected,
        "current_round_started_at": (
            sess.current_round_started_at.isoformat() if sess.current_round_started_at else None
        ),
        "started_at": sess.started_at.isoformat() if sess.started_at else None,
        "ended_at": sess.ended_at.isoformat() if sess.ended_at else None,
    }


async def create_session(session: AsyncSession, club_id: int, name: str, **settings) -> Session:
    """Create a draft session for a club."""
    club = await session.get(Club, club_id)
    if club is None:
        raise LookupError(f"Club {club_id} not found")
    unknown = set(settings) - set(SETTING_FIELDS)
    if unknown:
        raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")
    settings = {k: v for k, v in settings.items() if v is not None}
    validate_settings({"play_time_minutes": DEFAULT_PLAY_TIME_MINUTES, **settings})

    sess = Session(club_id=club_id, name=name, **settings)
    session.add(sess)
    await session.commit()
    await session.refresh(sess)
    logger.info(f"Created session {sess.id} ({name!r}) for club {club_id}")
    return sess


async def require_session(session: AsyncSession, session_id: int) -> Session:
    sess = await session_store.get_session(session, session_id, refresh=True)
    if sess is None:
        raise LookupError(f"Session {session_id} not found")
    return sess


async def update_session_settings(session: AsyncSession, session_id: int, settings: Dict) -> Session:
    """Apply a partial settings update after validating it."""
    sess = await require_session(session, session_id)
    if sess.status == SessionStatus.ENDED:
        raise ValueError("Cannot change settings of an ended session")
    unknown = set(settings) - set(SETTING_FIELDS)
    if unknown:
        raise ValueError(f"Unknown setting: {', '.join(sorted(unknown))}")
    # Cross-field rules apply to the stored values merged with the update
    merged = {name: getattr(sess, name) for name in SETTING_FIELDS}
    merged.update(settings)
    validate_settings(merged)
    for key, value in settings.items():
        setattr(sess, key, value)
    await session.commit()
    await session.refresh(sess)
    return sess


async def _transition(
    session: AsyncSession,
    session_id: int,
    allowed_from: List[SessionStatus],
    action: str,
    event_type: str,
    **values,
) -> Session:
    sess = await require_session(session, session_id)
    if sess.status not in allowed_from:
        raise ValueError(
            f"Cannot {action} a session that is {sess.status.value}"
        )
    await session_store.update_session_phase(session, session_id, **values)
    await session_store.log_event(
        session, sess.club_id, session_id, event_type, None, actor_type="manager"
    )
    await session.commit()
    logger.info(f"Session {session_id}: {event_type}")
    return await require_session(session, session_id)


async def initiate_session(session: AsyncSession, session_id: int) -> Session:
    """Open a draft session for players to join."""
    return await _transition(
        session,
        session_id,
        [SessionStatus.DRAFT],
        "initiate",
        "session_initiated",
        status=SessionStatus.INITIATED,
    )


async def start_session(session: AsyncSession, session_id: int) -> Session:
    """Start a session; the next tick runs the first selection."""
    return await _transition(
        session,
        session_id,
        [SessionStatus.DRAFT, SessionStatus.INITIATED],
        "start",
        "session_started",
        status=SessionStatus.RUNNING,
        current_phase=SessionPhase.IDLE,
        current_round_started_at=None,
        started_at=utcnow(),
    )


async def pause_session(session: AsyncSession, session_id: int) -> Session:
    return await _transition(
        session,
        session_id,
        [SessionStatus.RUNNING],
        "pause",
        "session_paused",
        status=SessionStatus.PAUSED,
    )


async def resume_session(session: AsyncSession, session_id: int) -> Session:
    """Resume a paused session; a fresh round is selected on the next tick."""
    return await _transition(
        session,
        session_id,
        [SessionStatus.PAUSED],
        "resume",
        "session_resumed",
        status=SessionStatus.RUNNING,
        current_phase=SessionPhase.IDLE,
        current_round_started_at=None,
    )


async def finish_session(session: AsyncSession, session_id: int, now: Optional[datetime] = None) -> None:
    """Stage the writes that end a session: status, phase, assignments, players."""
    now = now or utcnow()
    await session_store.update_session_phase(
        session,
        session_id,
        status=SessionStatus.ENDED,
        current_phase=SessionPhase.IDLE,
        ended_at=now,
        next_round_selected=False,
    )
    for status in (AssignmentStatus.ACTIVE, AssignmentStatus.UPCOMING):
        await session_store.set_assignment_status(
            session, session_id, status, AssignmentStatus.COMPLETED
        )
    await session_store.release_court_players(session, session_id)


async def end_session(session: AsyncSession, session_id: int) -> Session:
    sess = await require_session(session, session_id)
    if sess.status == SessionStatus.ENDED:
        raise ValueError("Session already ended")
    await finish_session(session, session_id)
    await session_store.log_event(
        session, sess.club_id, session_id, "session_ended", None, actor_type="manager"
    )
    await session.commit()
    logger.info(f"Session {session_id}: session_ended")
    return await require_session(session, session_id)


async def run_manual_selection(session: AsyncSession, session_id: int) -> selection_service.SelectionOutcome:
    """
    Manager-triggered "run selection now": a fresh active round.

    Goes through the same lock as the tick service; the outcome status is
    LOCKED when a selection is already running.
    """
    sess = await require_session(session, session_id)
    if sess.status in (SessionStatus.ENDED, SessionStatus.DRAFT):
        raise ValueError(f"Cannot run selection for a session that is {sess.status.value}")
    return await selection_service.run_selection(
        session, session_id, AssignmentStatus.ACTIVE, actor_type="manager"
    )


async def get_round_view(session: AsyncSession, session_id: int) -> Dict:
    """Active and upcoming assignments grouped by court."""
    await require_session(session, session_id)
    rows = await session_store.get_assignments(
        session, session_id, [AssignmentStatus.ACTIVE, AssignmentStatus.UPCOMING]
    )
    view: Dict[str, Dict] = {"active": {}, "upcoming": {}}
    for row in rows:
        bucket = view[row.assignment_status.value]
        court = bucket.setdefault(
            row.court_id,
            {
                "court_id": row.court_id,
                "round": row.round,
                "game_type": row.game_type.value,
                "team_a": [],
                "team_b": [],
            },
        )
        court[f"team_{row.team}"].append(row.player_id)
    return {
        "active": list(view["active"].values()),
        "upcoming": list(view["upcoming"].values()),
    }
