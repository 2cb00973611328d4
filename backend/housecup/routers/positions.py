from typing import List

from fastapi import APIRouter, Depends

from housecup.dependencies import get_positions
from housecup.models import PositionOut
from housecup.security import Identity, get_current_user
from housecup.services.positions import PositionRegistry

router = APIRouter(prefix="/positions", tags=["positions"])


@router.get("", response_model=List[PositionOut])
def list_positions(user: Identity = Depends(get_current_user), registry: PositionRegistry = Depends(get_positions)):
    return registry.list_for(user)


@router.get("/{position_id}", response_model=PositionOut)
def get_position(position_id: int, user: Identity = Depends(get_current_user), registry: PositionRegistry = Depends(get_positions)):
    return registry.get_visible(user, position_id)
