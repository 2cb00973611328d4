from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from housecup.dependencies import get_ledger, get_nominations, get_positions, get_tally
from housecup.models import (
    ModerationRequest,
    NominationOut,
    PositionCreate,
    PositionOut,
    PositionUpdate,
    ResetResponse,
    ScopeRequest,
    VoteOut,
)
from housecup.security import Identity, require_role
from housecup.services.ledger import VoteLedger
from housecup.services.nominations import NominationStore
from housecup.services.positions import PositionRegistry
from housecup.services.tally import ResultTally

router = APIRouter(prefix="/admin", tags=["admin"])

admin_only = require_role("admin")
moderators = require_role("admin", "house_admin")


# ---------------- Positions ----------------
@router.post("/positions", response_model=PositionOut, status_code=status.HTTP_201_CREATED)
def create_position(payload: PositionCreate, user: Identity = Depends(admin_only), registry: PositionRegistry = Depends(get_positions)):
    return registry.create(user, **payload.model_dump())


@router.post("/positions/{position_id}", response_model=PositionOut)
def update_position(
    position_id: int,
    payload: PositionUpdate,
    user: Identity = Depends(admin_only),
    registry: PositionRegistry = Depends(get_positions),
):
    return registry.update(user, position_id, **payload.model_dump(exclude_unset=True))


# ---------------- Nominations ----------------
@router.get("/nominations", response_model=List[NominationOut])
def list_nominations(
    status_filter: Optional[str] = Query(None, alias="status"),
    position_id: Optional[int] = Query(None),
    house_id: Optional[str] = Query(None),
    user: Identity = Depends(moderators),
    store: NominationStore = Depends(get_nominations),
):
    # House admins only ever see their own house.
    if user.role == "house_admin":
        house_id = user.house_id
    return store.list_all(status=status_filter, position_id=position_id, house_id=house_id)


@router.post("/nominations/{nomination_id}/moderate", response_model=NominationOut)
def moderate_nomination(
    nomination_id: int,
    payload: ModerationRequest,
    user: Identity = Depends(moderators),
    store: NominationStore = Depends(get_nominations),
):
    return store.moderate(nomination_id, payload.decision, user)


# ---------------- Votes ----------------
@router.get("/votes", response_model=List[VoteOut])
def list_votes(
    position_id: Optional[int] = Query(None),
    house_id: Optional[str] = Query(None),
    user: Identity = Depends(moderators),
    ledger: VoteLedger = Depends(get_ledger),
):
    if user.role == "house_admin":
        house_id = user.house_id
    return ledger.list_votes(position_id, house_id)


# ---------------- Results ----------------
@router.post("/results/{position_id}/declare", response_model=NominationOut)
def declare_winner(
    position_id: int,
    payload: ScopeRequest,
    user: Identity = Depends(moderators),
    tally: ResultTally = Depends(get_tally),
):
    return tally.declare_winner(position_id, user, payload.house_id)


@router.post("/results/{position_id}/reset", response_model=ResetResponse)
def reset_results(
    position_id: int,
    payload: ScopeRequest,
    user: Identity = Depends(moderators),
    ledger: VoteLedger = Depends(get_ledger),
):
    deleted = ledger.reset(position_id, user, payload.house_id)
    return ResetResponse(position_id=position_id, house_id=payload.house_id, deleted=deleted)
