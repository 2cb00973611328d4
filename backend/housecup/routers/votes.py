from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status

from housecup.core.limiter import limiter
from housecup.core.settings import get_settings
from housecup.dependencies import get_ledger
from housecup.models import CountResponse, VoteOut, VoteRequest, VoteResponse
from housecup.security import Identity, get_current_user
from housecup.services.ledger import VoteLedger

router = APIRouter(prefix="/votes", tags=["votes"])


def _vote_rate_limit() -> str:
    return get_settings().vote_rate_limit


@router.post("", response_model=VoteResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(_vote_rate_limit)
def cast_vote(
    request: Request,
    payload: VoteRequest,
    user: Identity = Depends(get_current_user),
    ledger: VoteLedger = Depends(get_ledger),
):
    result = ledger.cast_vote(user, payload.position_id, payload.nomination_id)
    return VoteResponse(accepted=result.accepted, vote=VoteOut.model_validate(result.vote), new_count=result.new_count)


@router.get("/mine", response_model=List[VoteOut])
def my_votes(
    position_id: Optional[int] = Query(None),
    user: Identity = Depends(get_current_user),
    ledger: VoteLedger = Depends(get_ledger),
):
    return ledger.my_votes(user.user_id, position_id)


@router.get("/count/{nomination_id}", response_model=CountResponse)
def vote_count(nomination_id: int, user: Identity = Depends(get_current_user), ledger: VoteLedger = Depends(get_ledger)):
    return CountResponse(nomination_id=nomination_id, vote_count=ledger.count(nomination_id))
