from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _ORM(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class IdentityOut(BaseModel):
    user_id: str
    role: str
    house_id: Optional[str] = None


# ---------------- Positions ----------------
class PositionCreate(BaseModel):
    title: str = Field(min_length=1, max_length=120)
    description: Optional[str] = Field(default=None, max_length=2000)
    priority: int = 0
    house_id: Optional[str] = Field(default=None, max_length=64)
    voting_starts_at: Optional[datetime] = None
    voting_ends_at: Optional[datetime] = None


class PositionUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=120)
    description: Optional[str] = Field(default=None, max_length=2000)
    priority: Optional[int] = None
    house_id: Optional[str] = Field(default=None, max_length=64)
    voting_starts_at: Optional[datetime] = None
    voting_ends_at: Optional[datetime] = None


class PositionOut(_ORM):
    id: int
    title: str
    description: Optional[str] = None
    priority: int
    house_id: Optional[str] = None
    is_global: bool
    voting_starts_at: Optional[datetime] = None
    voting_ends_at: Optional[datetime] = None


# ---------------- Nominations ----------------
class NominationCreate(BaseModel):
    position_id: int
    manifesto: str = Field(min_length=1, max_length=5000)
    photo_ref: Optional[str] = Field(default=None, max_length=255)

    @field_validator("manifesto")
    @classmethod
    def _manifesto_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("manifesto must not be blank")
        return v.strip()


class NominationOut(_ORM):
    id: int
    user_id: str
    position_id: int
    house_id: str
    manifesto: str
    photo_ref: Optional[str] = None
    status: str
    created_at: datetime


class ModerationRequest(BaseModel):
    decision: Literal["approve", "reject"]


# ---------------- Votes ----------------
class VoteRequest(BaseModel):
    position_id: int
    nomination_id: int


class VoteOut(_ORM):
    id: int
    voter_user_id: str
    position_id: int
    nomination_id: int
    house_id: Optional[str] = None
    cast_at: datetime


class VoteResponse(BaseModel):
    accepted: bool = True
    vote: VoteOut
    new_count: int


class CountResponse(BaseModel):
    nomination_id: int
    vote_count: int


# ---------------- Results ----------------
class ScopeRequest(BaseModel):
    house_id: Optional[str] = Field(default=None, max_length=64)


class TallyEntry(_ORM):
    nomination_id: int
    user_id: str
    house_id: str
    status: str
    vote_count: int
    first_vote_at: Optional[datetime] = None


class PositionResults(BaseModel):
    position: PositionOut
    tally: List[TallyEntry]
    winners: List[NominationOut]


class ResetResponse(BaseModel):
    position_id: int
    house_id: Optional[str] = None
    deleted: int


# ---------------- Attendance ----------------
class TicketRequest(BaseModel):
    registration_id: str = Field(min_length=1, max_length=64)
    event_id: Optional[str] = Field(default=None, max_length=64)
    house_id: Optional[str] = Field(default=None, max_length=64)


class TicketOut(_ORM):
    registration_id: str
    ticket_id: str
    event_id: Optional[str] = None
    house_id: Optional[str] = None
    attended: bool
    attended_at: Optional[datetime] = None


class MarkRequest(BaseModel):
    registration_id: str = Field(min_length=1, max_length=64)


class ScanRequest(BaseModel):
    ticket_id: str = Field(min_length=1, max_length=64)


class MarkResponse(_ORM):
    registration_id: str
    marked: bool
    already: bool = False


class AttendanceStats(BaseModel):
    event_id: Optional[str] = None
    registered: int
    attended: int
