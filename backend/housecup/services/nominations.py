"""
Nomination store: self-nominations and their moderation state machine.

    pending --approve--> approved --declare--> winner
       \\--reject--> rejected

Moderation only ever leaves ``pending``. ``winner`` is entered and left
(replacement or reset) exclusively by the tally module.
"""

from __future__ import annotations

from typing import List, Literal, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from housecup.core.errors import DuplicateNomination, HouseMismatch, HouseRequired, InvalidTransition, NotFound
from housecup.core.logger import election_logger as logger
from housecup.db import run_atomic
from housecup.db_models import APPROVED, CANDIDATE_STATUSES, PENDING, REJECTED, Nomination, Position
from housecup.security import Identity, ensure_house_scope
from housecup.services.broadcast import Broadcaster, NominationModerated, NominationSubmitted, publish_safely
from housecup.services.positions import PositionRegistry, visible_to

Decision = Literal["approve", "reject"]

_DECISIONS = {"approve": APPROVED, "reject": REJECTED}


class NominationStore:
    def __init__(self, db: Session, broadcaster: Broadcaster) -> None:
        self.db = db
        self.broadcaster = broadcaster
        self.positions = PositionRegistry(db)

    def get(self, nomination_id: int) -> Nomination:
        nomination = self.db.get(Nomination, nomination_id)
        if nomination is None:
            raise NotFound(f"nomination {nomination_id} not found")
        return nomination

    def submit(self, identity: Identity, position_id: int, manifesto: str, photo_ref: Optional[str] = None) -> Nomination:
        position = self.positions.get(position_id)
        if not identity.house_id:
            raise HouseRequired("you must belong to a house to stand for election")
        if position.house_id is not None and position.house_id != identity.house_id:
            raise HouseMismatch("this position is reserved for another house")

        nomination = Nomination(
            user_id=identity.user_id,
            position_id=position_id,
            house_id=identity.house_id,
            manifesto=manifesto,
            photo_ref=photo_ref,
            status=PENDING,
        )

        def _insert() -> Nomination:
            self.db.add(nomination)
            self.db.flush()
            return nomination

        try:
            run_atomic(self.db, _insert)
        except IntegrityError:
            logger.info(f"Duplicate nomination by {identity.user_id} for position {position_id}")
            raise DuplicateNomination("you have already nominated yourself for this position")

        logger.info(f"Nomination {nomination.id} submitted by {identity.user_id} for position {position_id}")
        publish_safely(
            self.broadcaster,
            NominationSubmitted(
                nomination_id=nomination.id,
                position_id=position_id,
                user_id=nomination.user_id,
                house_id=nomination.house_id,
            ),
        )
        return nomination

    def moderate(self, nomination_id: int, decision: Decision, actor: Identity) -> Nomination:
        if decision not in _DECISIONS:
            raise InvalidTransition(f"unknown decision {decision!r}")
        target = _DECISIONS[decision]
        nomination = self.get(nomination_id)
        ensure_house_scope(actor, nomination.house_id)

        def _transition() -> int:
            stmt = (
                update(Nomination)
                .where(Nomination.id == nomination_id, Nomination.status == PENDING)
                .values(status=target)
            )
            return self.db.execute(stmt).rowcount

        changed = run_atomic(self.db, _transition)
        self.db.refresh(nomination)
        if not changed:
            raise InvalidTransition(f"nomination {nomination_id} is {nomination.status}, not pending")

        logger.info(f"Nomination {nomination_id} {target} by {actor.user_id}")
        publish_safely(
            self.broadcaster,
            NominationModerated(nomination_id=nomination_id, position_id=nomination.position_id, status=target),
        )
        return nomination

    def list_approved(
        self,
        position_id: Optional[int] = None,
        house_id: Optional[str] = None,
        viewer: Optional[Identity] = None,
    ) -> List[Nomination]:
        """Candidates of the positions ``viewer`` can see (all of them when no viewer is given)."""
        stmt = select(Nomination).where(Nomination.status.in_(CANDIDATE_STATUSES))
        clause = visible_to(viewer) if viewer is not None else None
        if clause is not None:
            stmt = stmt.join(Position, Position.id == Nomination.position_id).where(clause)
        if position_id is not None:
            stmt = stmt.where(Nomination.position_id == position_id)
        if house_id is not None:
            stmt = stmt.where(Nomination.house_id == house_id)
        return list(self.db.execute(stmt.order_by(Nomination.id)).scalars())

    def list_all(
        self,
        *,
        status: Optional[str] = None,
        position_id: Optional[int] = None,
        house_id: Optional[str] = None,
    ) -> List[Nomination]:
        stmt = select(Nomination)
        if status is not None:
            stmt = stmt.where(Nomination.status == status)
        if position_id is not None:
            stmt = stmt.where(Nomination.position_id == position_id)
        if house_id is not None:
            stmt = stmt.where(Nomination.house_id == house_id)
        return list(self.db.execute(stmt.order_by(Nomination.id)).scalars())


__all__ = ["Decision", "NominationStore"]
