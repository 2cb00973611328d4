from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from housecup.core.errors import InvalidRequest, NotFound, Unauthorized
from housecup.core.logger import election_logger as logger
from housecup.db import as_utc, run_atomic
from housecup.db_models import Position
from housecup.security import Identity

_EDITABLE = ("title", "description", "priority", "house_id", "voting_starts_at", "voting_ends_at")
_REQUIRED = ("title", "priority")


def _check_window(starts: Optional[datetime], ends: Optional[datetime]) -> None:
    starts, ends = as_utc(starts), as_utc(ends)
    if starts is not None and ends is not None and starts >= ends:
        raise InvalidRequest("voting_starts_at must be before voting_ends_at")


def visible_to(identity: Identity):
    """Filter on ``Position`` for what a non-admin may see; ``None`` for admins."""
    if identity.is_admin:
        return None
    if identity.house_id:
        return or_(Position.house_id.is_(None), Position.house_id == identity.house_id)
    return Position.house_id.is_(None)


class PositionRegistry:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, position_id: int) -> Position:
        position = self.db.get(Position, position_id)
        if position is None:
            raise NotFound(f"position {position_id} not found")
        return position

    def create(
        self,
        actor: Identity,
        *,
        title: str,
        description: Optional[str] = None,
        priority: int = 0,
        house_id: Optional[str] = None,
        voting_starts_at: Optional[datetime] = None,
        voting_ends_at: Optional[datetime] = None,
    ) -> Position:
        if not actor.is_admin:
            raise Unauthorized("only admins manage positions")
        _check_window(voting_starts_at, voting_ends_at)
        position = Position(
            title=title,
            description=description,
            priority=priority,
            house_id=house_id,
            voting_starts_at=voting_starts_at,
            voting_ends_at=voting_ends_at,
        )

        def _insert() -> Position:
            self.db.add(position)
            self.db.flush()
            return position

        run_atomic(self.db, _insert)
        logger.info(f"Position {position.id} {title!r} created by {actor.user_id} (house={house_id})")
        return position

    def update(self, actor: Identity, position_id: int, **changes) -> Position:
        if not actor.is_admin:
            raise Unauthorized("only admins manage positions")
        unknown = set(changes) - set(_EDITABLE)
        if unknown:
            raise InvalidRequest(f"cannot edit {', '.join(sorted(unknown))}")
        cleared = [name for name in _REQUIRED if name in changes and changes[name] is None]
        if cleared:
            raise InvalidRequest(f"{', '.join(cleared)} cannot be empty")

        def _apply() -> Position:
            position = self.get(position_id)
            for name, value in changes.items():
                setattr(position, name, value)
            _check_window(position.voting_starts_at, position.voting_ends_at)
            self.db.flush()
            return position

        position = run_atomic(self.db, _apply)
        logger.info(f"Position {position_id} edited by {actor.user_id}: {sorted(changes)}")
        return position

    def list_for(self, identity: Identity) -> List[Position]:
        """Global positions plus the caller's house; admins see everything."""
        stmt = select(Position).order_by(Position.priority, Position.id)
        clause = visible_to(identity)
        if clause is not None:
            stmt = stmt.where(clause)
        return list(self.db.execute(stmt).scalars())

    def get_visible(self, identity: Identity, position_id: int) -> Position:
        """Like ``get``, but another house's position is reported as missing."""
        position = self.get(position_id)
        if not identity.is_admin and position.house_id is not None and position.house_id != identity.house_id:
            raise NotFound(f"position {position_id} not found")
        return position


__all__ = ["PositionRegistry", "visible_to"]
