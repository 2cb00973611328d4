"""
Vote ledger: the only writer of ``votes`` rows.

At most one vote exists per ``(voter_user_id, position_id)``. The check is
the insert itself: the unique constraint ``uq_votes_voter_position`` rejects
the second of two concurrent casts, and that rejection is reported as
``AlreadyVoted``. Nothing reads existing votes to decide whether to write.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from housecup.core.errors import (
    AlreadyVoted,
    HouseMismatch,
    HouseRequired,
    InvalidRequest,
    NominationNotApproved,
    NotFound,
    VotingClosed,
)
from housecup.core.logger import election_logger as logger
from housecup.db import run_atomic, utcnow
from housecup.db_models import APPROVED, WINNER, Nomination, Vote
from housecup.security import Identity, ensure_house_scope
from housecup.services.broadcast import Broadcaster, ResultsReset, VoteCountUpdated, publish_safely
from housecup.services.positions import PositionRegistry


@dataclass
class CastResult:
    vote: Vote
    new_count: int
    accepted: bool = True


class VoteLedger:
    def __init__(self, db: Session, broadcaster: Broadcaster) -> None:
        self.db = db
        self.broadcaster = broadcaster
        self.positions = PositionRegistry(db)

    def cast_vote(self, voter: Identity, position_id: int, nomination_id: int) -> CastResult:
        position = self.positions.get(position_id)
        nomination = self.db.get(Nomination, nomination_id)
        if nomination is None:
            raise NotFound(f"nomination {nomination_id} not found")
        if nomination.position_id != position_id:
            raise InvalidRequest("nomination does not stand for this position")
        if nomination.status != APPROVED:
            raise NominationNotApproved(f"nomination {nomination_id} is {nomination.status}")
        if not position.voting_open(utcnow()):
            raise VotingClosed("voting is not open for this position")
        if not voter.house_id:
            raise HouseRequired("you must belong to a house to vote")
        if voter.house_id != nomination.house_id:
            raise HouseMismatch("you can only vote for candidates of your own house")

        vote = Vote(
            voter_user_id=voter.user_id,
            position_id=position_id,
            nomination_id=nomination_id,
            house_id=voter.house_id,
        )

        def _insert() -> Vote:
            self.db.add(vote)
            self.db.flush()
            return vote

        try:
            run_atomic(self.db, _insert)
        except IntegrityError:
            logger.info(f"Rejected second vote by {voter.user_id} for position {position_id}")
            raise AlreadyVoted("you have already voted for this position")

        new_count = self.count(nomination_id)
        logger.info(f"Vote {vote.id} by {voter.user_id} for nomination {nomination_id} (now {new_count})")
        publish_safely(
            self.broadcaster,
            VoteCountUpdated(nomination_id=nomination_id, position_id=position_id, vote_count=new_count),
        )
        return CastResult(vote=vote, new_count=new_count)

    def count(self, nomination_id: int) -> int:
        stmt = select(func.count(Vote.id)).where(Vote.nomination_id == nomination_id)
        return int(self.db.execute(stmt).scalar_one())

    def count_for_position(self, position_id: int) -> int:
        stmt = select(func.count(Vote.id)).where(Vote.position_id == position_id)
        return int(self.db.execute(stmt).scalar_one())

    def my_votes(self, voter_user_id: str, position_id: Optional[int] = None) -> List[Vote]:
        stmt = select(Vote).where(Vote.voter_user_id == voter_user_id)
        if position_id is not None:
            stmt = stmt.where(Vote.position_id == position_id)
        return list(self.db.execute(stmt.order_by(Vote.cast_at.desc(), Vote.id.desc())).scalars())

    def list_votes(self, position_id: Optional[int] = None, house_id: Optional[str] = None) -> List[Vote]:
        """Audit listing over every vote, newest first; ``house_id`` narrows to one house's voters."""
        stmt = select(Vote)
        if position_id is not None:
            stmt = stmt.where(Vote.position_id == position_id)
        if house_id is not None:
            stmt = stmt.where(Vote.house_id == house_id)
        return list(self.db.execute(stmt.order_by(Vote.cast_at.desc(), Vote.id.desc())).scalars())

    def reset(self, position_id: int, actor: Identity, house_id: Optional[str] = None) -> int:
        """
        Delete every vote for the position (only the given house's voters when
        ``house_id`` is set) and demote that scope's winner back to approved.
        """
        position = self.positions.get(position_id)
        scope_house = house_id if house_id is not None else position.house_id
        ensure_house_scope(actor, scope_house)

        def _reset() -> int:
            votes = delete(Vote).where(Vote.position_id == position_id)
            winners = update(Nomination).where(Nomination.position_id == position_id, Nomination.status == WINNER)
            if scope_house is not None:
                votes = votes.where(Vote.house_id == scope_house)
                winners = winners.where(Nomination.house_id == scope_house)
            deleted = self.db.execute(votes).rowcount
            self.db.execute(winners.values(status=APPROVED))
            return deleted

        deleted = run_atomic(self.db, _reset)
        logger.info(f"Results for position {position_id} (house={scope_house}) reset by {actor.user_id}: {deleted} votes deleted")
        publish_safely(self.broadcaster, ResultsReset(position_id=position_id, house_id=scope_house, deleted=deleted))
        return deleted


__all__ = ["CastResult", "VoteLedger"]
