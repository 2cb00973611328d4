from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column

from housecup.db import Base, as_utc, utcnow

PENDING = "pending"
APPROVED = "approved"
REJECTED = "rejected"
WINNER = "winner"

NOMINATION_STATUSES = (PENDING, APPROVED, REJECTED, WINNER)
# Candidates that appear in listings and tallies. Only approved ones receive votes.
CANDIDATE_STATUSES = (APPROVED, WINNER)


class Position(Base):
    __tablename__ = "positions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    house_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    voting_starts_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    voting_ends_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    @property
    def is_global(self) -> bool:
        return self.house_id is None

    def voting_open(self, now: datetime) -> bool:
        starts, ends = as_utc(self.voting_starts_at), as_utc(self.voting_ends_at)
        if starts is not None and now < starts:
            return False
        if ends is not None and now > ends:
            return False
        return True

    def __repr__(self) -> str:
        return f"<Position {self.id} {self.title!r} house={self.house_id}>"


class Nomination(Base):
    __tablename__ = "nominations"
    __table_args__ = (
        # One live candidacy per user and position; a rejected user may re-submit.
        Index(
            "uq_nominations_user_position_active",
            "user_id",
            "position_id",
            unique=True,
            sqlite_where=text("status != 'rejected'"),
            postgresql_where=text("status != 'rejected'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    position_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("positions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    house_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    manifesto: Mapped[str] = mapped_column(Text, nullable=False)
    photo_ref: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=PENDING)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<Nomination {self.id} user={self.user_id} position={self.position_id} {self.status}>"


class Vote(Base):
    __tablename__ = "votes"
    __table_args__ = (
        UniqueConstraint("voter_user_id", "position_id", name="uq_votes_voter_position"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    voter_user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    position_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("positions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    nomination_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("nominations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    house_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    cast_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<Vote by {self.voter_user_id} on position {self.position_id}>"


class AttendanceMark(Base):
    __tablename__ = "attendance_marks"

    registration_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    ticket_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    event_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    house_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    attended: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    attended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<AttendanceMark {self.registration_id} attended={self.attended}>"


__all__ = [
    "APPROVED",
    "AttendanceMark",
    "NOMINATION_STATUSES",
    "Nomination",
    "PENDING",
    "Position",
    "REJECTED",
    "CANDIDATE_STATUSES",
    "Vote",
    "WINNER",
]
