"""
Session tick service, the phase driver for running sessions.

Each tick evaluates every running, unlocked session independently:

    idle ──select──▶ playing ──(play time)──▶ resting ──(rest time)──▶ playing ...
                        │                                   ▲
                        └──(play time, no rest)── promote-or-select

Mid-round, once `selection_interval_minutes` has elapsed, the next round is
pre-selected as "upcoming" so players can be told ahead of time; at the end
of the play/rest timer that round is promoted without re-scoring.

Sessions running longer than MAX_SESSION_HOURS are ended automatically.
Can run as an in-process background worker (start/stop) or be driven by an
external trigger through tick_all().
"""

import asyncio
import logging
import os
from datetime import datetime, timedelta
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from courtrotation.database import db
from courtrotation.database.models import (
    AssignmentStatus,
    Session,
    SessionPhase,
    SessionPlayerStatus,
    SessionStatus,
)
from courtrotation.services import selection_service, session_store
from courtrotation.utils.constants import MAX_SESSION_HOURS, TICK_INTERVAL_SECONDS
from courtrotation.utils.datetime_utils import elapsed_seconds, utcnow

logger = logging.getLogger(__name__)

# How often the worker evaluates running sessions (seconds)
POLL_INTERVAL_SECONDS = int(os.getenv("TICK_INTERVAL_SECONDS", str(TICK_INTERVAL_SECONDS)))

# Running sessions older than this are ended automatically
MAX_SESSION_DURATION = timedelta(
    hours=float(os.getenv("MAX_SESSION_HOURS", str(MAX_SESSION_HOURS)))
)


async def tick(
    session: AsyncSession, session_id: int, now: Optional[datetime] = None
) -> Optional[str]:
    """
    Evaluate one session and perform at most one phase transition.

    Idempotent until the session's state changes: calling it again before a
    timer boundary does nothing.

    Args:
        session: Database session
        session_id: Session to evaluate
        now: Current time (defaults to utcnow(); injectable for tests)

    Returns:
        Description of the transition performed, or None
    """
    now = now or utcnow()
    sess = await session_store.get_session(session, session_id, refresh=True)
    if sess is None or sess.status != SessionStatus.RUNNING or sess.selecting:
        return None

    since_start = elapsed_seconds(sess.started_at, now)
    if since_start is not None and since_start >= MAX_SESSION_DURATION.total_seconds():
        await _auto_end(session, sess, now)
        return "auto-ended (time limit)"

    phase = sess.current_phase or SessionPhase.IDLE
    elapsed = elapsed_seconds(sess.current_round_started_at, now)

    if phase == SessionPhase.IDLE or elapsed is None:
        outcome = await selection_service.run_selection(
            session, session_id, AssignmentStatus.ACTIVE
        )
        return _describe("idle → selection → playing", outcome)

    if phase == SessionPhase.PLAYING:
        play_seconds = sess.play_time_minutes * 60
        interval = sess.selection_interval_minutes
        lookahead_seconds = interval * 60 if interval else None

        if (
            not sess.next_round_selected
            and lookahead_seconds is not None
            and lookahead_seconds < play_seconds
            and lookahead_seconds <= elapsed < play_seconds
        ):
            outcome = await selection_service.run_selection(
                session, session_id, AssignmentStatus.UPCOMING
            )
            return _describe("mid-round → next round selected", outcome)

        if elapsed >= play_seconds:
            if sess.rest_time_minutes > 0:
                return await _start_rest(session, sess, now)
            outcome = await selection_service.promote_or_select(session, session_id)
            return _describe("playing → selection → playing", outcome)

    elif phase == SessionPhase.RESTING:
        if elapsed >= sess.rest_time_minutes * 60:
            outcome = await selection_service.promote_or_select(session, session_id)
            return _describe("resting → selection → playing", outcome)

    return None


def _describe(transition: str, outcome: selection_service.SelectionOutcome) -> Optional[str]:
    if outcome.produced_round:
        return transition
    if outcome.status == selection_service.LOCKED:
        return None
    return f"{transition} skipped ({outcome.status})"


async def _start_rest(session: AsyncSession, sess: Session, now: datetime) -> Optional[str]:
    """Move a session from playing to resting under the selection lock."""
    session_id = sess.id
    if not await session_store.try_acquire_lock(session, session_id):
        return None
    try:
        await session_store.update_player_status(
            session,
            session_id,
            await _active_player_ids(session, session_id),
            SessionPlayerStatus.RESTING,
            from_statuses=[SessionPlayerStatus.PLAYING],
        )
        await session_store.update_session_phase(
            session,
            session_id,
            current_phase=SessionPhase.RESTING,
            current_round_started_at=now,
            next_round_selected=False,
        )
    except Exception:
        await session.rollback()
        await session_store.release_lock(session, session_id)
        raise
    await session_store.release_lock(session, session_id)
    logger.info(f"Session {session_id}: playing → resting")
    return "playing → resting"


async def _active_player_ids(session: AsyncSession, session_id: int):
    active = await session_store.get_assignments(session, session_id, [AssignmentStatus.ACTIVE])
    return [a.player_id for a in active]


async def _auto_end(session: AsyncSession, sess: Session, now: datetime) -> None:
    """End a session that hit the duration cap."""
    from courtrotation.services.session_service import finish_session

    await finish_session(session, sess.id, now)
    await session_store.log_event(
        session,
        sess.club_id,
        sess.id,
        "session_auto_ended",
        {"reason": f"{MAX_SESSION_DURATION.total_seconds() / 3600:g}h time limit"},
    )
    await session.commit()
    logger.info(f"Auto-ended session {sess.id} ({sess.name!r}) after reaching the time limit")


async def tick_all(now: Optional[datetime] = None) -> Dict:
    """
    One driver pass over every running, unlocked session.

    A failure in one session is logged and does not stop the others; the
    next pass retries from scratch.

    Returns:
        Dict with the number of sessions processed and the transitions made
    """
    transitions = []
    async with db.AsyncSessionLocal() as session:
        session_ids = await session_store.get_running_session_ids(session)
        for session_id in session_ids:
            try:
                result = await tick(session, session_id, now)
            except Exception as e:
                logger.error(f"Error processing session {session_id}: {e}", exc_info=True)
                await session.rollback()
                transitions.append(f"{session_id}: error - {e}")
                continue
            if result:
                transitions.append(f"{session_id}: {result}")

    return {"processed": len(session_ids), "transitions": transitions}


class SessionTickService:
    """Background service that drives session phases on a fixed interval."""

    def __init__(self, interval_seconds: Optional[float] = None):
        self._interval = interval_seconds if interval_seconds is not None else POLL_INTERVAL_SECONDS
        self._worker_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    def start(self) -> None:
        """Start the background tick worker."""
        if self._worker_task is None or self._worker_task.done():
            self._stop_event.clear()
            self._worker_task = asyncio.create_task(self._poll_loop())
            logger.info("Session tick worker started")

    def stop(self) -> None:
        """Stop the background tick worker."""
        self._stop_event.set()
        if self._worker_task and not self._worker_task.done():
            self._worker_task.cancel()
            logger.info("Session tick worker stopped")

    @property
    def running(self) -> bool:
        return self._worker_task is not None and not self._worker_task.done()

    async def _poll_loop(self) -> None:
        """Main loop: tick all sessions, then sleep. Repeats until stopped."""
        while not self._stop_event.is_set():
            try:
                result = await tick_all()
                if result["transitions"]:
                    logger.info(f"Tick transitions: {result['transitions']}")
            except Exception as e:
                logger.error(f"Error in session tick worker: {e}", exc_info=True)

            # Wait for poll interval or until stop is signalled
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                break
            except asyncio.TimeoutError:
                pass


# Global singleton
_tick_service = SessionTickService()


def get_session_tick_service() -> SessionTickService:
    """Get the global session tick service instance."""
    return _tick_service
