"""
SQLAlchemy ORM models for the court rotation system.
"""

import enum
from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
    JSON,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from courtrotation.database.db import Base
from courtrotation.utils.constants import (
    DEFAULT_LEVEL,
    DEFAULT_NUMBER_OF_COURTS,
    DEFAULT_PLAY_TIME_MINUTES,
    DEFAULT_REST_TIME_MINUTES,
    DEFAULT_MIXED_RATIO,
    DEFAULT_SKILL_BALANCE,
    DEFAULT_PARTNER_VARIETY,
)


class SessionStatus(str, enum.Enum):
    """Session lifecycle status enum."""

    DRAFT = "draft"
    INITIATED = "initiated"
    RUNNING = "running"
    PAUSED = "paused"
    ENDED = "ended"


class SessionPhase(str, enum.Enum):
    """Phase of a running session."""

    IDLE = "idle"
    PLAYING = "playing"
    RESTING = "resting"


class SessionPlayerStatus(str, enum.Enum):
    """Status of a player within a session."""

    AVAILABLE = "available"
    PLAYING = "playing"
    RESTING = "resting"
    LEAVING = "leaving"  # removed while on court, dropped when the round ends
    REMOVED = "removed"


class AssignmentStatus(str, enum.Enum):
    """Court assignment status enum."""

    ACTIVE = "active"
    UPCOMING = "upcoming"
    COMPLETED = "completed"


class GameType(str, enum.Enum):
    """Court composition."""

    MIXED = "mixed"
    DOUBLES = "doubles"


class Club(Base):
    """Clubs owning courts and sessions."""

    __tablename__ = "clubs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    courts = relationship("Court", back_populates="club", order_by="Court.name")
    sessions = relationship("Session", back_populates="club")


class Player(Base):
    """Player profiles."""

    __tablename__ = "players"

    id = Column(Integer, primary_key=True, autoincrement=True)
    full_name = Column(String, nullable=False)
    gender = Column(String, nullable=True)  # 'male' | 'female' | None (unknown)
    level = Column(Integer, nullable=False, default=DEFAULT_LEVEL)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_players_full_name", "full_name"),)


class Court(Base):
    """Courts belonging to a club."""

    __tablename__ = "courts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    club_id = Column(Integer, ForeignKey("clubs.id"), nullable=False)
    name = Column(String, nullable=False)
    locked = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    club = relationship("Club", back_populates="courts")

    __table_args__ = (Index("idx_courts_club", "club_id"),)


class Session(Base):
    """Recurring play sessions driven by the phase driver."""

    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    club_id = Column(Integer, ForeignKey("clubs.id"), nullable=False)
    name = Column(String, nullable=False)
    status = Column(Enum(SessionStatus), default=SessionStatus.DRAFT, nullable=False)
    current_phase = Column(Enum(SessionPhase), default=SessionPhase.IDLE, nullable=False)

    # Settings
    number_of_courts = Column(Integer, nullable=False, default=DEFAULT_NUMBER_OF_COURTS)
    play_time_minutes = Column(Integer, nullable=False, default=DEFAULT_PLAY_TIME_MINUTES)
    rest_time_minutes = Column(Integer, nullable=False, default=DEFAULT_REST_TIME_MINUTES)
    # Minutes into a round at which the next round is pre-selected (None = never)
    selection_interval_minutes = Column(Integer, nullable=True)
    mixed_ratio = Column(Integer, nullable=False, default=DEFAULT_MIXED_RATIO)
    skill_balance = Column(Integer, nullable=False, default=DEFAULT_SKILL_BALANCE)
    partner_variety = Column(Integer, nullable=False, default=DEFAULT_PARTNER_VARIETY)
    strict_gender = Column(Boolean, nullable=False, default=False)

    # Runtime state
    selecting = Column(Boolean, nullable=False, default=False)  # exclusive selection lock
    next_round_selected = Column(Boolean, nullable=False, default=False)
    current_round_started_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    ended_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    club = relationship("Club", back_populates="sessions")
    players = relationship(
        "SessionPlayer", back_populates="session", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("idx_sessions_status", "status"),
        Index("idx_sessions_club", "club_id"),
        CheckConstraint("number_of_courts >= 1", name="ck_sessions_courts_positive"),
        CheckConstraint("mixed_ratio BETWEEN 0 AND 100", name="ck_sessions_mixed_ratio"),
        CheckConstraint("skill_balance BETWEEN 0 AND 100", name="ck_sessions_skill_balance"),
        CheckConstraint("partner_variety BETWEEN 0 AND 100", name="ck_sessions_partner_variety"),
    )


class SessionPlayer(Base):
    """A player's per-session state (status, play count)."""

    __tablename__ = "session_players"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("sessions.id"), nullable=False)
    player_id = Column(Integer, ForeignKey("players.id"), nullable=False)
    status = Column(
        Enum(SessionPlayerStatus), default=SessionPlayerStatus.AVAILABLE, nullable=False
    )
    play_count = Column(Integer, nullable=False, default=0)
    last_played_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    session = relationship("Session", back_populates="players")
    player = relationship("Player")

    __table_args__ = (
        UniqueConstraint("session_id", "player_id", name="uq_session_players"),
        Index("idx_session_players_status", "session_id", "status"),
    )


class CourtAssignment(Base):
    """One player placed on one court for one round."""

    __tablename__ = "court_assignments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("sessions.id"), nullable=False)
    court_id = Column(Integer, ForeignKey("courts.id"), nullable=False)
    player_id = Column(Integer, ForeignKey("players.id"), nullable=False)
    round = Column(Integer, nullable=False)
    team = Column(String(1), nullable=False)  # 'a' | 'b'
    assignment_status = Column(
        Enum(AssignmentStatus), default=AssignmentStatus.ACTIVE, nullable=False
    )
    game_type = Column(Enum(GameType), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    court = relationship("Court")
    player = relationship("Player")

    __table_args__ = (
        UniqueConstraint("session_id", "round", "player_id", name="uq_assignment_round_player"),
        Index("idx_assignments_session_status", "session_id", "assignment_status"),
        Index("idx_assignments_session_round", "session_id", "round"),
    )


class PartnerHistory(Base):
    """How many times two players shared a court within a session."""

    __tablename__ = "partner_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("sessions.id"), nullable=False)
    player1_id = Column(Integer, ForeignKey("players.id"), nullable=False)  # smaller id
    player2_id = Column(Integer, ForeignKey("players.id"), nullable=False)  # larger id
    times_paired = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("session_id", "player1_id", "player2_id", name="uq_partner_history_pair"),
        CheckConstraint("player1_id < player2_id", name="ck_partner_history_order"),
    )


class Event(Base):
    """Audit log of session events (selections, transitions, manager actions)."""

    __tablename__ = "events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    club_id = Column(Integer, ForeignKey("clubs.id"), nullable=True)
    session_id = Column(Integer, ForeignKey("sessions.id"), nullable=True)
    actor_type = Column(String, nullable=False, default="system")  # 'system' | 'manager'
    event_type = Column(String, nullable=False)
    payload = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_events_session", "session_id"),)
