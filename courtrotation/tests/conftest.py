"""
Shared pytest configuration for court rotation tests.

Each test gets its own SQLite database file (via aiosqlite) so tests stay
isolated and need no external database server.
"""

import asyncio
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from courtrotation.database import db
from courtrotation.database.db import Base
from courtrotation.database.models import (
    Club,
    Court,
    Player,
    Session,
    SessionPhase,
    SessionPlayer,
    SessionPlayerStatus,
    SessionStatus,
)
from courtrotation.utils.datetime_utils import utcnow


@pytest.fixture(autouse=True)
def no_push_webhook(monkeypatch):
    """Never send real push notifications from tests."""
    monkeypatch.delenv("PUSH_WEBHOOK_URL", raising=False)


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """Create a test database engine backed by a temporary SQLite file."""
    # NullPool: every operation gets its own connection, like separate workers would
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # Monkey-patch AsyncSessionLocal so code using db.AsyncSessionLocal()
    # (like the tick service) hits the test database
    test_session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )
    original_async_session_local = db.AsyncSessionLocal
    db.AsyncSessionLocal = test_session_maker

    yield engine

    db.AsyncSessionLocal = original_async_session_local
    await asyncio.sleep(0.01)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine):
    """A database session on the test engine."""
    async with db.AsyncSessionLocal() as session:
        yield session


# ---------------------------------------------------------------------------
# Data fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def club(db_session):
    """A club with three courts: Court 1, Court 2, Court 3."""
    club = Club(name="Test Club")
    db_session.add(club)
    await db_session.flush()
    for i in range(1, 4):
        db_session.add(Court(club_id=club.id, name=f"Court {i}", locked=False))
    await db_session.commit()
    return club


@pytest.fixture
def make_players(db_session):
    """Factory: create players from (gender, level) tuples."""

    async def _make(specs):
        players = []
        for i, (gender, level) in enumerate(specs):
            player = Player(full_name=f"Player {i + 1}", gender=gender, level=level)
            db_session.add(player)
            players.append(player)
        await db_session.flush()
        await db_session.commit()
        return players

    return _make


@pytest.fixture
def make_session(db_session, club):
    """Factory: create a session for the test club with players in its pool."""

    async def _make(players, status=SessionStatus.RUNNING, **settings):
        sess = Session(
            club_id=club.id,
            name="Tuesday Night",
            status=status,
            current_phase=SessionPhase.IDLE,
            started_at=utcnow() if status == SessionStatus.RUNNING else None,
            **settings,
        )
        db_session.add(sess)
        await db_session.flush()
        for player in players:
            db_session.add(
                SessionPlayer(
                    session_id=sess.id,
                    player_id=player.id,
                    status=SessionPlayerStatus.AVAILABLE,
                    play_count=0,
                )
            )
        await db_session.commit()
        return sess

    return _make
