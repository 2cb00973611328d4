from fastapi import Depends, Request
from sqlalchemy.orm import Session

from housecup.db import get_db
from housecup.services.attendance import AttendanceMarker
from housecup.services.broadcast import Broadcaster
from housecup.services.ledger import VoteLedger
from housecup.services.nominations import NominationStore
from housecup.services.positions import PositionRegistry
from housecup.services.tally import ResultTally


def get_broadcaster(request: Request) -> Broadcaster:
    return request.app.state.hub


def get_positions(db: Session = Depends(get_db)) -> PositionRegistry:
    return PositionRegistry(db)


def get_nominations(db: Session = Depends(get_db), broadcaster: Broadcaster = Depends(get_broadcaster)) -> NominationStore:
    return NominationStore(db, broadcaster)


def get_ledger(db: Session = Depends(get_db), broadcaster: Broadcaster = Depends(get_broadcaster)) -> VoteLedger:
    return VoteLedger(db, broadcaster)


def get_tally(db: Session = Depends(get_db), broadcaster: Broadcaster = Depends(get_broadcaster)) -> ResultTally:
    return ResultTally(db, broadcaster)


def get_attendance(db: Session = Depends(get_db), broadcaster: Broadcaster = Depends(get_broadcaster)) -> AttendanceMarker:
    return AttendanceMarker(db, broadcaster)
