"""
Tests for the selection runner: lock handling, writes and round promotion.
"""

import asyncio
import random

import pytest
from sqlalchemy import select, update

from courtrotation.database import db
from courtrotation.database.models import (
    AssignmentStatus,
    Court,
    CourtAssignment,
    Event,
    PartnerHistory,
    SessionPhase,
    SessionPlayer,
    SessionPlayerStatus,
)
from courtrotation.services import (
    selection_engine,
    selection_service,
    session_player_service,
    session_store,
)
from courtrotation.utils.datetime_utils import utcnow

MIXED_EIGHT = [("male", 3)] * 4 + [("female", 3)] * 4


async def _assignments(db_session, session_id, status=None):
    query = select(CourtAssignment).where(CourtAssignment.session_id == session_id)
    if status is not None:
        query = query.where(CourtAssignment.assignment_status == status)
    result = await db_session.execute(query.execution_options(populate_existing=True))
    return list(result.scalars().all())


async def _player_states(db_session, session_id):
    result = await db_session.execute(
        select(SessionPlayer)
        .where(SessionPlayer.session_id == session_id)
        .execution_options(populate_existing=True)
    )
    return {sp.player_id: sp for sp in result.scalars().all()}


# ---------------------------------------------------------------------------
# Selection lock
# ---------------------------------------------------------------------------


class TestSelectionLock:
    @pytest.mark.asyncio
    async def test_acquire_and_release(self, db_session, make_players, make_session):
        sess = await make_session(await make_players(MIXED_EIGHT))

        assert await session_store.try_acquire_lock(db_session, sess.id) is True
        assert await session_store.try_acquire_lock(db_session, sess.id) is False

        await session_store.release_lock(db_session, sess.id)
        assert await session_store.try_acquire_lock(db_session, sess.id) is True

    @pytest.mark.asyncio
    async def test_concurrent_acquire_only_one_wins(self, db_session, make_players, make_session):
        sess = await make_session(await make_players(MIXED_EIGHT))

        async def acquire():
            async with db.AsyncSessionLocal() as session:
                return await session_store.try_acquire_lock(session, sess.id)

        results = await asyncio.gather(acquire(), acquire())

        assert sorted(results) == [False, True]

    @pytest.mark.asyncio
    async def test_locked_session_is_skipped(self, db_session, make_players, make_session):
        sess = await make_session(await make_players(MIXED_EIGHT))
        await session_store.try_acquire_lock(db_session, sess.id)

        outcome = await selection_service.run_selection(db_session, sess.id)

        assert outcome.status == selection_service.LOCKED
        assert await _assignments(db_session, sess.id) == []

    @pytest.mark.asyncio
    async def test_lock_released_when_write_fails(
        self, db_session, make_players, make_session, monkeypatch
    ):
        sess = await make_session(await make_players(MIXED_EIGHT))
        session_id = sess.id

        async def failing_write(session, rows):
            raise RuntimeError("disk full")

        monkeypatch.setattr(session_store, "write_assignments", failing_write)

        with pytest.raises(RuntimeError, match="disk full"):
            await selection_service.run_selection(db_session, session_id)

        refreshed = await session_store.get_session(db_session, session_id, refresh=True)
        assert refreshed.selecting is False
        assert refreshed.current_phase == SessionPhase.IDLE
        assert await _assignments(db_session, session_id) == []

    @pytest.mark.asyncio
    async def test_lock_released_when_no_courts(self, db_session, club, make_players, make_session):
        sess = await make_session(await make_players(MIXED_EIGHT))
        await db_session.execute(update(Court).where(Court.club_id == club.id).values(locked=True))
        await db_session.commit()

        outcome = await selection_service.run_selection(db_session, sess.id)

        assert outcome.status == selection_service.NO_COURTS
        refreshed = await session_store.get_session(db_session, sess.id, refresh=True)
        assert refreshed.selecting is False


# ---------------------------------------------------------------------------
# run_selection
# ---------------------------------------------------------------------------


class TestRunSelection:
    @pytest.mark.asyncio
    async def test_active_selection_writes_round(self, db_session, make_players, make_session):
        players = await make_players(MIXED_EIGHT)
        sess = await make_session(players, number_of_courts=2)

        outcome = await selection_service.run_selection(
            db_session, sess.id, rng=random.Random(1)
        )

        assert outcome.status == selection_service.SELECTED
        assert outcome.round == 1
        assert len(outcome.courts) == 2

        rows = await _assignments(db_session, sess.id, AssignmentStatus.ACTIVE)
        assert len(rows) == 8
        assert len({r.player_id for r in rows}) == 8
        assert {r.round for r in rows} == {1}

        refreshed = await session_store.get_session(db_session, sess.id, refresh=True)
        assert refreshed.current_phase == SessionPhase.PLAYING
        assert refreshed.current_round_started_at is not None
        assert refreshed.selecting is False
        assert refreshed.next_round_selected is False

        states = await _player_states(db_session, sess.id)
        assert all(sp.status == SessionPlayerStatus.PLAYING for sp in states.values())
        assert all(sp.play_count == 1 for sp in states.values())

    @pytest.mark.asyncio
    async def test_partner_history_counts_six_pairs_per_court(
        self, db_session, make_players, make_session
    ):
        sess = await make_session(await make_players(MIXED_EIGHT), number_of_courts=2)

        await selection_service.run_selection(db_session, sess.id, rng=random.Random(2))

        result = await db_session.execute(
            select(PartnerHistory).where(PartnerHistory.session_id == sess.id)
        )
        history = result.scalars().all()
        assert len(history) == 12
        assert all(h.player1_id < h.player2_id for h in history)
        assert all(h.times_paired == 1 for h in history)

    @pytest.mark.asyncio
    async def test_partner_history_upsert_increments(self, db_session, make_players, make_session):
        sess = await make_session(await make_players(MIXED_EIGHT))
        p1, p2 = 2, 1

        await session_store.upsert_partner_history(db_session, sess.id, (p1, p2))
        await session_store.upsert_partner_history(db_session, sess.id, (p2, p1))
        await db_session.commit()

        history = await session_store.get_partner_history(db_session, sess.id)
        assert len(history) == 1
        assert (history[0].player1_id, history[0].player2_id) == (1, 2)
        assert history[0].times_paired == 2

    @pytest.mark.asyncio
    async def test_next_round_completes_previous(self, db_session, make_players, make_session):
        sess = await make_session(await make_players(MIXED_EIGHT), number_of_courts=2)

        await selection_service.run_selection(db_session, sess.id, rng=random.Random(3))
        outcome = await selection_service.run_selection(db_session, sess.id, rng=random.Random(4))

        assert outcome.round == 2
        completed = await _assignments(db_session, sess.id, AssignmentStatus.COMPLETED)
        active = await _assignments(db_session, sess.id, AssignmentStatus.ACTIVE)
        assert {r.round for r in completed} == {1}
        assert {r.round for r in active} == {2}
        states = await _player_states(db_session, sess.id)
        assert all(sp.play_count == 2 for sp in states.values())

    @pytest.mark.asyncio
    async def test_locked_court_is_skipped(self, db_session, club, make_players, make_session):
        sess = await make_session(await make_players(MIXED_EIGHT), number_of_courts=2)
        result = await db_session.execute(
            select(Court).where(Court.club_id == club.id, Court.name == "Court 1")
        )
        court_1 = result.scalar_one()
        court_1.locked = True
        await db_session.commit()

        outcome = await selection_service.run_selection(db_session, sess.id)

        assert outcome.status == selection_service.SELECTED
        assert len(outcome.courts) == 1
        rows = await _assignments(db_session, sess.id, AssignmentStatus.ACTIVE)
        assert court_1.id not in {r.court_id for r in rows}
        assert len(rows) == 4

    @pytest.mark.asyncio
    async def test_insufficient_players(self, db_session, make_players, make_session):
        sess = await make_session(await make_players([("male", 3)] * 3))

        outcome = await selection_service.run_selection(db_session, sess.id)

        assert outcome.status == selection_service.INSUFFICIENT_PLAYERS
        assert await _assignments(db_session, sess.id) == []
        refreshed = await session_store.get_session(db_session, sess.id, refresh=True)
        assert refreshed.selecting is False

    @pytest.mark.asyncio
    async def test_leaving_players_are_removed_when_round_ends(
        self, db_session, make_players, make_session
    ):
        players = await make_players([("male", 3)] * 8)
        sess = await make_session(players, number_of_courts=1)
        await selection_service.run_selection(db_session, sess.id)
        on_court = [r.player_id for r in await _assignments(db_session, sess.id)]
        await session_store.update_player_status(
            db_session, sess.id, [on_court[0]], SessionPlayerStatus.LEAVING
        )
        await db_session.commit()

        await selection_service.run_selection(db_session, sess.id)

        states = await _player_states(db_session, sess.id)
        assert states[on_court[0]].status == SessionPlayerStatus.REMOVED
        active = await _assignments(db_session, sess.id, AssignmentStatus.ACTIVE)
        assert on_court[0] not in {r.player_id for r in active}

    @pytest.mark.asyncio
    async def test_selection_event_logged(self, db_session, make_players, make_session):
        sess = await make_session(await make_players(MIXED_EIGHT))

        await selection_service.run_selection(db_session, sess.id, actor_type="manager")

        result = await db_session.execute(select(Event).where(Event.session_id == sess.id))
        events = result.scalars().all()
        assert [e.event_type for e in events] == ["selection_run"]
        assert events[0].actor_type == "manager"
        assert events[0].payload["round"] == 1


# ---------------------------------------------------------------------------
# Upcoming rounds
# ---------------------------------------------------------------------------


class TestUpcomingRounds:
    @pytest.mark.asyncio
    async def test_upcoming_selection_leaves_current_round(
        self, db_session, make_players, make_session
    ):
        sess = await make_session(await make_players([("male", 3)] * 12), number_of_courts=1)
        await selection_service.run_selection(db_session, sess.id)

        outcome = await selection_service.run_selection(
            db_session, sess.id, AssignmentStatus.UPCOMING
        )

        assert outcome.status == selection_service.SELECTED
        assert outcome.round == 2
        assert len(await _assignments(db_session, sess.id, AssignmentStatus.ACTIVE)) == 4
        assert len(await _assignments(db_session, sess.id, AssignmentStatus.UPCOMING)) == 4
        refreshed = await session_store.get_session(db_session, sess.id, refresh=True)
        assert refreshed.next_round_selected is True

        # Upcoming players have not played yet
        states = await _player_states(db_session, sess.id)
        assert sum(sp.play_count for sp in states.values()) == 4

    @pytest.mark.asyncio
    async def test_promote_does_not_rescore(
        self, db_session, make_players, make_session, monkeypatch
    ):
        sess = await make_session(await make_players([("male", 3)] * 12), number_of_courts=1)
        await selection_service.run_selection(db_session, sess.id)
        await selection_service.run_selection(db_session, sess.id, AssignmentStatus.UPCOMING)
        upcoming_ids = {r.player_id for r in await _assignments(
            db_session, sess.id, AssignmentStatus.UPCOMING
        )}

        def no_scoring(*args, **kwargs):
            raise AssertionError("promotion must not run the engine")

        monkeypatch.setattr(selection_engine, "select_players", no_scoring)
        monkeypatch.setattr(selection_engine, "score_assignment", no_scoring)

        outcome = await selection_service.promote_or_select(db_session, sess.id)

        assert outcome.status == selection_service.PROMOTED
        assert outcome.round == 2
        active = await _assignments(db_session, sess.id, AssignmentStatus.ACTIVE)
        assert {r.player_id for r in active} == upcoming_ids
        assert await _assignments(db_session, sess.id, AssignmentStatus.UPCOMING) == []
        refreshed = await session_store.get_session(db_session, sess.id, refresh=True)
        assert refreshed.next_round_selected is False
        assert refreshed.selecting is False

    @pytest.mark.asyncio
    async def test_promote_without_upcoming_selects(self, db_session, make_players, make_session):
        sess = await make_session(await make_players(MIXED_EIGHT))

        outcome = await selection_service.promote_or_select(db_session, sess.id)

        assert outcome.status == selection_service.SELECTED
        assert outcome.round == 1

    @pytest.mark.asyncio
    async def test_fresh_active_round_discards_upcoming(
        self, db_session, make_players, make_session
    ):
        sess = await make_session(await make_players([("male", 3)] * 12), number_of_courts=1)
        await selection_service.run_selection(db_session, sess.id)
        await selection_service.run_selection(db_session, sess.id, AssignmentStatus.UPCOMING)

        outcome = await selection_service.run_selection(db_session, sess.id)

        assert outcome.round == 2
        assert await _assignments(db_session, sess.id, AssignmentStatus.UPCOMING) == []
        active = await _assignments(db_session, sess.id, AssignmentStatus.ACTIVE)
        assert {r.round for r in active} == {2}

    @pytest.mark.asyncio
    async def test_player_leaving_mid_game_not_promoted(
        self, db_session, make_players, make_session
    ):
        sess = await make_session(await make_players([("male", 3)] * 5), number_of_courts=1)
        session_id = sess.id
        await selection_service.run_selection(db_session, session_id)
        await selection_service.run_selection(db_session, session_id, AssignmentStatus.UPCOMING)
        active_ids = {r.player_id for r in await _assignments(
            db_session, session_id, AssignmentStatus.ACTIVE
        )}
        upcoming_ids = {r.player_id for r in await _assignments(
            db_session, session_id, AssignmentStatus.UPCOMING
        )}
        leaver = min(active_ids & upcoming_ids)

        await session_player_service.remove_player(db_session, session_id, leaver)

        assert await _assignments(db_session, session_id, AssignmentStatus.UPCOMING) == []
        refreshed = await session_store.get_session(db_session, session_id, refresh=True)
        assert refreshed.next_round_selected is False

        outcome = await selection_service.promote_or_select(db_session, session_id)

        assert outcome.status == selection_service.SELECTED
        active = await _assignments(db_session, session_id, AssignmentStatus.ACTIVE)
        assert leaver not in {r.player_id for r in active}
        states = await _player_states(db_session, session_id)
        assert states[leaver].status == SessionPlayerStatus.REMOVED
        assert states[leaver].play_count == 1

    @pytest.mark.asyncio
    async def test_benched_player_removed_after_preselection_not_promoted(
        self, db_session, make_players, make_session
    ):
        sess = await make_session(await make_players([("male", 3)] * 5), number_of_courts=1)
        session_id = sess.id
        await selection_service.run_selection(db_session, session_id)
        await selection_service.run_selection(db_session, session_id, AssignmentStatus.UPCOMING)
        active_ids = {r.player_id for r in await _assignments(
            db_session, session_id, AssignmentStatus.ACTIVE
        )}
        # The benched player has the fewest games so is always pre-selected
        benched = next(
            r.player_id
            for r in await _assignments(db_session, session_id, AssignmentStatus.UPCOMING)
            if r.player_id not in active_ids
        )

        await session_player_service.remove_player(db_session, session_id, benched)
        await selection_service.promote_or_select(db_session, session_id)

        states = await _player_states(db_session, session_id)
        assert states[benched].status == SessionPlayerStatus.REMOVED
        assert states[benched].play_count == 0
        active = await _assignments(db_session, session_id, AssignmentStatus.ACTIVE)
        assert benched not in {r.player_id for r in active}

    @pytest.mark.asyncio
    async def test_mark_playing_skips_players_outside_pool(
        self, db_session, make_players, make_session
    ):
        players = await make_players([("male", 3)] * 2)
        sess = await make_session(players)
        session_id = sess.id
        staying, gone = players[0].id, players[1].id
        await session_store.update_player_status(
            db_session, session_id, [gone], SessionPlayerStatus.REMOVED
        )

        await session_store.mark_players_playing(
            db_session, session_id, [staying, gone], utcnow()
        )
        await db_session.commit()

        states = await _player_states(db_session, session_id)
        assert (states[staying].status, states[staying].play_count) == (SessionPlayerStatus.PLAYING, 1)
        assert (states[gone].status, states[gone].play_count) == (SessionPlayerStatus.REMOVED, 0)


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class TestNotifications:
    @pytest.mark.asyncio
    async def test_selected_players_are_notified(
        self, db_session, make_players, make_session, monkeypatch
    ):
        sess = await make_session(await make_players(MIXED_EIGHT), number_of_courts=2)
        calls = []

        async def fake_notify(session_id, club_id, round_number, contexts, upcoming=False):
            calls.append((session_id, round_number, contexts, upcoming))
            return len(contexts)

        monkeypatch.setattr(selection_service.notification_service, "notify_players", fake_notify)

        await selection_service.run_selection(db_session, sess.id)

        assert len(calls) == 1
        session_id, round_number, contexts, upcoming = calls[0]
        assert (session_id, round_number, upcoming) == (sess.id, 1, False)
        assert len(contexts) == 8
        assert all(len(c.others) == 3 for c in contexts.values())
