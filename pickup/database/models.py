"""
SQLAlchemy ORM models for groups, play sessions, matches and ratings.
"""

import enum
from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from pickup.database.db import Base
from pickup.utils.constants import INITIAL_ELO


class EndReason(str, enum.Enum):
    """Why a play session was ended."""

    HOST_ENDED = "host_ended"
    HOST_INACTIVE = "host_inactive"


# Partial index predicate: a match is in progress until it ends or is cancelled
ACTIVE_MATCH_PREDICATE = text("ended_at IS NULL AND NOT cancelled")


class User(Base):
    """Identity row referenced by memberships, participants and ratings."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    memberships = relationship("GroupMember", back_populates="user")

    __table_args__ = (Index("idx_users_username", "username"),)


class Group(Base):
    """A standing group of players that shares ratings and sessions."""

    __tablename__ = "groups"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=True)
    invite_code = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)

    # Relationships
    members = relationship("GroupMember", back_populates="group", cascade="all, delete-orphan")
    play_sessions = relationship(
        "PlaySession", back_populates="group", cascade="all, delete-orphan"
    )
    ratings = relationship("RatingRecord", back_populates="group", cascade="all, delete-orphan")
    creator = relationship("User", foreign_keys=[created_by])

    __table_args__ = (Index("idx_groups_invite_code", "invite_code", unique=True),)


class GroupMember(Base):
    """Membership of a user in a group."""

    __tablename__ = "group_members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    group_id = Column(Integer, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    joined_at = Column(DateTime(timezone=True), server_default=func.now())

    group = relationship("Group", back_populates="members")
    user = relationship("User", back_populates="memberships")

    __table_args__ = (
        UniqueConstraint("group_id", "user_id", name="uq_group_members_group_user"),
        Index("idx_group_members_user", "user_id"),
    )


class PlaySession(Base):
    """A hosted gathering of group members from which matches are drawn."""

    __tablename__ = "play_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    group_id = Column(Integer, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False)
    host_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    ended_at = Column(DateTime(timezone=True), nullable=True)  # Active while NULL
    end_reason = Column(String, nullable=True)  # EndReason value
    host_last_seen_at = Column(DateTime(timezone=True), nullable=False)

    # Relationships
    group = relationship("Group", back_populates="play_sessions")
    host = relationship("User", foreign_keys=[host_id])
    participants = relationship(
        "SessionParticipant", back_populates="play_session", cascade="all, delete-orphan"
    )
    matches = relationship("Match", back_populates="play_session", cascade="all, delete-orphan")

    @property
    def is_active(self) -> bool:
        """A session is active until its end time is set."""
        return self.ended_at is None

    __table_args__ = (
        Index("idx_play_sessions_group", "group_id"),
        Index("idx_play_sessions_ended_last_seen", "ended_at", "host_last_seen_at"),
    )


class SessionParticipant(Base):
    """A user taking part in (or spectating) a play session."""

    __tablename__ = "session_participants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(
        Integer, ForeignKey("play_sessions.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    is_spectator = Column(Boolean, default=False, nullable=False)
    joined_at = Column(DateTime(timezone=True), server_default=func.now())

    play_session = relationship("PlaySession", back_populates="participants")
    user = relationship("User")

    __table_args__ = (
        UniqueConstraint("session_id", "user_id", name="uq_session_participants_session_user"),
        Index("idx_session_participants_session", "session_id"),
    )


class Match(Base):
    """One round of play between two equal-size teams."""

    __tablename__ = "matches"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(
        Integer, ForeignKey("play_sessions.id", ondelete="CASCADE"), nullable=False
    )
    started_at = Column(DateTime(timezone=True), nullable=False)
    ended_at = Column(DateTime(timezone=True), nullable=True)
    winning_team = Column(Integer, nullable=True)  # 0 or 1, NULL while open or when cancelled
    match_size = Column(Integer, nullable=False)
    cancelled = Column(Boolean, default=False, nullable=False)

    # Relationships
    play_session = relationship("PlaySession", back_populates="matches")
    participants = relationship(
        "MatchParticipant", back_populates="match", cascade="all, delete-orphan"
    )

    @property
    def is_in_progress(self) -> bool:
        """True until the match is completed or cancelled."""
        return self.ended_at is None and not self.cancelled

    __table_args__ = (
        CheckConstraint("match_size >= 2 AND match_size % 2 = 0", name="ck_matches_even_size"),
        CheckConstraint(
            "winning_team IS NULL OR winning_team IN (0, 1)", name="ck_matches_winning_team"
        ),
        Index("idx_matches_session", "session_id"),
        # At most one in-progress match per session, enforced by the store
        Index(
            "uq_matches_session_active",
            "session_id",
            unique=True,
            postgresql_where=ACTIVE_MATCH_PREDICATE,
            sqlite_where=ACTIVE_MATCH_PREDICATE,
        ),
    )


class MatchParticipant(Base):
    """A player's seat in a match, with rating snapshots."""

    __tablename__ = "match_participants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(Integer, ForeignKey("matches.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    team = Column(Integer, nullable=False)  # 0 = team 1, 1 = team 2
    elo_before = Column(Integer, nullable=True)  # NULL if the player had no rating yet
    elo_after = Column(Integer, nullable=True)  # Set only on completion
    elo_change = Column(Integer, nullable=True)
    penalized = Column(Boolean, default=False, nullable=False)

    match = relationship("Match", back_populates="participants")
    user = relationship("User")

    __table_args__ = (
        UniqueConstraint("match_id", "user_id", name="uq_match_participants_match_user"),
        CheckConstraint("team IN (0, 1)", name="ck_match_participants_team"),
        Index("idx_match_participants_user", "user_id"),
    )


class RatingRecord(Base):
    """Elo rating and win/loss record of a user within a group."""

    __tablename__ = "rating_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    group_id = Column(Integer, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    elo = Column(Integer, default=INITIAL_ELO, nullable=False)
    games_won = Column(Integer, default=0, nullable=False)
    games_lost = Column(Integer, default=0, nullable=False)
    games_tied = Column(Integer, default=0, nullable=False)
    total_games = Column(Integer, default=0, nullable=False)
    current_streak = Column(Integer, default=0, nullable=False)
    highest_streak = Column(Integer, default=0, nullable=False)
    last_played_at = Column(DateTime(timezone=True), nullable=True)

    group = relationship("Group", back_populates="ratings")
    user = relationship("User")

    __table_args__ = (
        UniqueConstraint("group_id", "user_id", name="uq_rating_records_group_user"),
        Index("idx_rating_records_group_elo", "group_id", "elo"),
    )
