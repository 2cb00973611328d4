from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from housecup.dependencies import get_tally
from housecup.models import PositionResults, TallyEntry
from housecup.security import Identity, get_current_user
from housecup.services.tally import ResultTally

router = APIRouter(prefix="/results", tags=["results"])


@router.get("", response_model=List[PositionResults])
def all_results(user: Identity = Depends(get_current_user), tally: ResultTally = Depends(get_tally)):
    return tally.results(user)


@router.get("/{position_id}", response_model=List[TallyEntry])
def position_tally(
    position_id: int,
    house_id: Optional[str] = Query(None),
    user: Identity = Depends(get_current_user),
    tally: ResultTally = Depends(get_tally),
):
    return tally.tally(position_id, house_id, viewer=user)
