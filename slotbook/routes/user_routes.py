from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from slotbook.auth.dependencies import get_current_user
from slotbook.database import get_db
from slotbook.models.user import User
from slotbook.routes.common import database_unavailable, ensure_database_ready
from slotbook.scheduling.intervals import get_timezone

router = APIRouter(tags=['user'])


class UserProfileResponse(BaseModel):
    id: int
    email: str
    name: str | None = None
    timezone: str
    widget_token: str

    class Config:
        from_attributes = True


class UpdateTimezoneRequest(BaseModel):
    timezone: str

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Timezone is required.')
        get_timezone(normalized)
        return normalized


@router.get('', response_model=UserProfileResponse)
def get_profile(current_user: User = Depends(get_current_user)):
    return current_user


@router.put('/timezone', response_model=UserProfileResponse)
def update_timezone(
    data: UpdateTimezoneRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        user = db.query(User).filter(User.id == current_user.id).first()
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='User not found.')

        user.timezone = data.timezone
        db.commit()
        db.refresh(user)
        return user
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc
