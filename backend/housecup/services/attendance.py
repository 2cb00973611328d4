"""
Attendance marker for QR ticket check-in.

``attended`` flips false -> true with one conditional UPDATE; the rowcount
tells the first scanner it won. Every later scan, from any station, gets the
"already marked" result and changes nothing.
"""

from __future__ import annotations

import io
import secrets
from dataclasses import dataclass
from typing import Dict, Optional

import qrcode
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from housecup.core.errors import NotFound
from housecup.core.logger import attendance_logger as logger
from housecup.db import run_atomic, utcnow
from housecup.db_models import AttendanceMark
from housecup.security import Identity, ensure_house_scope
from housecup.services.broadcast import AttendanceMarked, Broadcaster, publish_safely

TICKET_PREFIX = "TKT-"


@dataclass
class MarkResult:
    registration_id: str
    marked: bool
    already: bool = False


def _new_ticket_id() -> str:
    return TICKET_PREFIX + secrets.token_hex(8).upper()


class AttendanceMarker:
    def __init__(self, db: Session, broadcaster: Broadcaster) -> None:
        self.db = db
        self.broadcaster = broadcaster

    def get(self, registration_id: str) -> AttendanceMark:
        mark = self.db.get(AttendanceMark, registration_id)
        if mark is None:
            raise NotFound(f"registration {registration_id} not found")
        return mark

    def issue_ticket(
        self,
        registration_id: str,
        actor: Identity,
        *,
        event_id: Optional[str] = None,
        house_id: Optional[str] = None,
    ) -> AttendanceMark:
        """Create the attendance record for a registration; repeated calls return the existing one."""
        ensure_house_scope(actor, house_id)
        existing = self.db.get(AttendanceMark, registration_id)
        if existing is not None:
            ensure_house_scope(actor, existing.house_id)
            return existing

        mark = AttendanceMark(
            registration_id=registration_id,
            ticket_id=_new_ticket_id(),
            event_id=event_id,
            house_id=house_id,
            attended=False,
        )

        def _insert() -> AttendanceMark:
            self.db.add(mark)
            self.db.flush()
            return mark

        try:
            run_atomic(self.db, _insert)
        except IntegrityError:
            # Issued concurrently by another request.
            existing = self.get(registration_id)
            ensure_house_scope(actor, existing.house_id)
            return existing
        logger.info(f"Ticket {mark.ticket_id} issued for registration {registration_id}")
        return mark

    def mark_attended(self, registration_id: str, actor: Identity) -> MarkResult:
        mark = self.get(registration_id)
        ensure_house_scope(actor, mark.house_id)
        now = utcnow()

        def _flip() -> int:
            stmt = (
                update(AttendanceMark)
                .where(AttendanceMark.registration_id == registration_id, AttendanceMark.attended.is_(False))
                .values(attended=True, attended_at=now)
            )
            return self.db.execute(stmt).rowcount

        if not run_atomic(self.db, _flip):
            logger.info(f"Registration {registration_id} already marked (scan by {actor.user_id})")
            return MarkResult(registration_id=registration_id, marked=False, already=True)

        logger.info(f"Registration {registration_id} marked attended by {actor.user_id}")
        publish_safely(
            self.broadcaster,
            AttendanceMarked(registration_id=registration_id, event_id=mark.event_id, attended_at=now.isoformat()),
        )
        return MarkResult(registration_id=registration_id, marked=True)

    def scan_ticket(self, ticket_id: str, actor: Identity) -> MarkResult:
        stmt = select(AttendanceMark.registration_id).where(AttendanceMark.ticket_id == ticket_id.strip())
        registration_id = self.db.execute(stmt).scalar_one_or_none()
        if registration_id is None:
            raise NotFound(f"ticket {ticket_id} not found")
        return self.mark_attended(registration_id, actor)

    def ticket_qrcode(self, registration_id: str) -> bytes:
        mark = self.get(registration_id)
        img = qrcode.make(mark.ticket_id)
        buf = io.BytesIO()
        img.save(buf, format="PNG")
        return buf.getvalue()

    def stats(self, event_id: Optional[str] = None) -> Dict[str, int]:
        stmt = select(
            func.count(AttendanceMark.registration_id),
            func.count(AttendanceMark.registration_id).filter(AttendanceMark.attended.is_(True)),
        )
        if event_id is not None:
            stmt = stmt.where(AttendanceMark.event_id == event_id)
        registered, attended = self.db.execute(stmt).one()
        return {"registered": int(registered), "attended": int(attended)}


__all__ = ["AttendanceMarker", "MarkResult"]
