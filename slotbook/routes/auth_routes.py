from fastapi import APIRouter, Depends

from slotbook.auth.dependencies import get_current_user
from slotbook.models.user import User

router = APIRouter()


@router.get("/me")
def me(current_user: User = Depends(get_current_user)):
    return {"id": current_user.id, "email": current_user.email, "name": current_user.name}
