from fastapi import APIRouter, Depends

from housecup.models import IdentityOut
from housecup.security import Identity, get_current_user

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me", response_model=IdentityOut)
def me(user: Identity = Depends(get_current_user)):
    return IdentityOut(user_id=user.user_id, role=user.role, house_id=user.house_id)
