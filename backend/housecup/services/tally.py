"""
Result tally and winner declaration.

Ranking order (deterministic for a fixed set of votes):

1. ``vote_count`` descending;
2. ties go to the nomination whose first vote was cast earliest
   (nominations without votes rank after those with votes);
3. remaining ties by nomination id ascending.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from housecup.core.errors import InvalidTransition, NoApprovedNominations, VotingStillOpen
from housecup.core.logger import election_logger as logger
from housecup.db import as_utc, run_atomic, utcnow
from housecup.db_models import APPROVED, CANDIDATE_STATUSES, WINNER, Nomination, Vote
from housecup.security import Identity, ensure_house_scope
from housecup.services.broadcast import Broadcaster, WinnerDeclared, publish_safely
from housecup.services.positions import PositionRegistry

_NEVER = datetime.max.replace(tzinfo=timezone.utc)


@dataclass
class TallyRow:
    nomination_id: int
    user_id: str
    house_id: str
    status: str
    vote_count: int
    first_vote_at: Optional[datetime]

    def sort_key(self):
        return (-self.vote_count, self.first_vote_at or _NEVER, self.nomination_id)


class ResultTally:
    def __init__(self, db: Session, broadcaster: Broadcaster) -> None:
        self.db = db
        self.broadcaster = broadcaster
        self.positions = PositionRegistry(db)

    def tally(self, position_id: int, house_id: Optional[str] = None, viewer: Optional[Identity] = None) -> List[TallyRow]:
        if viewer is not None:
            self.positions.get_visible(viewer, position_id)
        else:
            self.positions.get(position_id)
        votes = (
            select(
                Vote.nomination_id.label("nomination_id"),
                func.count(Vote.id).label("vote_count"),
                func.min(Vote.cast_at).label("first_vote_at"),
            )
            .where(Vote.position_id == position_id)
            .group_by(Vote.nomination_id)
            .subquery()
        )
        stmt = (
            select(
                Nomination.id,
                Nomination.user_id,
                Nomination.house_id,
                Nomination.status,
                func.coalesce(votes.c.vote_count, 0),
                votes.c.first_vote_at,
            )
            .outerjoin(votes, votes.c.nomination_id == Nomination.id)
            .where(Nomination.position_id == position_id, Nomination.status.in_(CANDIDATE_STATUSES))
        )
        if house_id is not None:
            stmt = stmt.where(Nomination.house_id == house_id)

        rows = [
            TallyRow(
                nomination_id=nid,
                user_id=user_id,
                house_id=nomination_house,
                status=status,
                vote_count=int(count),
                first_vote_at=as_utc(first),
            )
            for nid, user_id, nomination_house, status, count, first in self.db.execute(stmt)
        ]
        rows.sort(key=TallyRow.sort_key)
        return rows

    def declare_winner(self, position_id: int, actor: Identity, house_id: Optional[str] = None) -> Nomination:
        position = self.positions.get(position_id)
        scope_house = house_id if house_id is not None else position.house_id
        ensure_house_scope(actor, scope_house)
        ends = as_utc(position.voting_ends_at)
        if ends is not None and utcnow() < ends:
            raise VotingStillOpen("voting has not ended yet for this position")

        ranking = self.tally(position_id, scope_house)
        if not ranking:
            raise NoApprovedNominations(f"no approved nominations for position {position_id}")
        head = ranking[0]

        def _declare() -> int:
            demote = update(Nomination).where(
                Nomination.position_id == position_id,
                Nomination.status == WINNER,
                Nomination.id != head.nomination_id,
            )
            if scope_house is not None:
                demote = demote.where(Nomination.house_id == scope_house)
            self.db.execute(demote.values(status=APPROVED))
            promote = (
                update(Nomination)
                .where(Nomination.id == head.nomination_id, Nomination.status.in_(CANDIDATE_STATUSES))
                .values(status=WINNER)
            )
            return self.db.execute(promote).rowcount

        if not run_atomic(self.db, _declare):
            # Moderated away between the tally read and the write.
            raise InvalidTransition(f"nomination {head.nomination_id} is no longer a candidate")

        winner = self.db.get(Nomination, head.nomination_id)
        self.db.refresh(winner)
        logger.info(
            f"Winner for position {position_id} (house={scope_house}): nomination {winner.id} "
            f"with {head.vote_count} votes, declared by {actor.user_id}"
        )
        publish_safely(
            self.broadcaster,
            WinnerDeclared(
                position_id=position_id,
                house_id=scope_house,
                winner_nomination_id=winner.id,
                winner_user_id=winner.user_id,
                vote_count=head.vote_count,
            ),
        )
        return winner

    def winners(self, position_id: int) -> List[Nomination]:
        stmt = select(Nomination).where(Nomination.position_id == position_id, Nomination.status == WINNER)
        return list(self.db.execute(stmt.order_by(Nomination.house_id, Nomination.id)).scalars())

    def results(self, identity: Identity) -> List[Dict]:
        """Full state for every position visible to ``identity``; clients re-fetch this on reconnect."""
        out = []
        for position in self.positions.list_for(identity):
            out.append(
                {
                    "position": position,
                    "tally": self.tally(position.id),
                    "winners": self.winners(position.id),
                }
            )
        return out


__all__ = ["ResultTally", "TallyRow"]
