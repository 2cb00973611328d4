from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from housecup.dependencies import get_nominations
from housecup.models import NominationCreate, NominationOut
from housecup.security import Identity, get_current_user
from housecup.services.nominations import NominationStore

router = APIRouter(prefix="/nominations", tags=["nominations"])


@router.post("", response_model=NominationOut, status_code=status.HTTP_201_CREATED)
def submit_nomination(
    payload: NominationCreate,
    user: Identity = Depends(get_current_user),
    store: NominationStore = Depends(get_nominations),
):
    return store.submit(user, payload.position_id, payload.manifesto, payload.photo_ref)


@router.get("/approved", response_model=List[NominationOut])
def list_approved_nominations(
    position_id: Optional[int] = Query(None),
    house_id: Optional[str] = Query(None),
    user: Identity = Depends(get_current_user),
    store: NominationStore = Depends(get_nominations),
):
    return store.list_approved(position_id, house_id, viewer=user)


@router.get("/{nomination_id}", response_model=NominationOut)
def get_nomination(nomination_id: int, user: Identity = Depends(get_current_user), store: NominationStore = Depends(get_nominations)):
    return store.get(nomination_id)
