from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from slotbook.auth.dependencies import get_current_user
from slotbook.database import get_db
from slotbook.models.availability import AvailabilityRule
from slotbook.models.user import User
from slotbook.routes.common import database_unavailable, ensure_database_ready
from slotbook.scheduling.intervals import parse_time_of_day

router = APIRouter(tags=['availability'])

MAX_RULES_PER_SCHEDULE = 100


class AvailabilityRuleRequest(BaseModel):
    day_of_week: int
    start_time: str
    end_time: str

    @field_validator('day_of_week')
    @classmethod
    def validate_day_of_week(cls, value: int) -> int:
        if value < 0 or value > 6:
            raise ValueError('Day of week must be between 0 (Sunday) and 6 (Saturday).')
        return value

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_time_of_day(cls, value: str) -> str:
        normalized = value.strip()
        if len(normalized) != 5:
            raise ValueError('Times must use the HH:MM format.')
        parse_time_of_day(normalized)
        return normalized

    @model_validator(mode='after')
    def validate_window_order(self) -> 'AvailabilityRuleRequest':
        # Windows may not wrap past midnight.
        if self.start_time >= self.end_time:
            raise ValueError('Start time must be before end time.')
        return self


class SaveAvailabilityRequest(BaseModel):
    availability: list[AvailabilityRuleRequest]

    @field_validator('availability')
    @classmethod
    def validate_rule_count(cls, value: list[AvailabilityRuleRequest]) -> list[AvailabilityRuleRequest]:
        if len(value) > MAX_RULES_PER_SCHEDULE:
            raise ValueError(f'A schedule can have at most {MAX_RULES_PER_SCHEDULE} windows.')
        return value


class AvailabilityRuleResponse(BaseModel):
    day_of_week: int
    start_time: str
    end_time: str


def rule_to_response(rule: AvailabilityRule) -> AvailabilityRuleResponse:
    return AvailabilityRuleResponse(
        day_of_week=rule.day_of_week,
        start_time=rule.start_time.strftime('%H:%M'),
        end_time=rule.end_time.strftime('%H:%M'),
    )


def list_user_rules(user_id: int, db: Session) -> list[AvailabilityRule]:
    return db.query(AvailabilityRule).filter(
        AvailabilityRule.user_id == user_id,
    ).order_by(AvailabilityRule.day_of_week.asc(), AvailabilityRule.start_time.asc()).all()


@router.get('/rules', response_model=list[AvailabilityRuleResponse])
def list_availability_rules(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return [rule_to_response(rule) for rule in list_user_rules(current_user.id, db)]
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.put('/rules', response_model=list[AvailabilityRuleResponse])
def save_availability_rules(
    data: SaveAvailabilityRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Replace the operator's weekly schedule with the submitted windows."""
    ensure_database_ready()

    try:
        db.query(AvailabilityRule).filter(AvailabilityRule.user_id == current_user.id).delete(
            synchronize_session=False,
        )
        db.add_all(
            [
                AvailabilityRule(
                    user_id=current_user.id,
                    day_of_week=rule.day_of_week,
                    start_time=parse_time_of_day(rule.start_time),
                    end_time=parse_time_of_day(rule.end_time),
                )
                for rule in data.availability
            ]
        )
        db.commit()

        return [rule_to_response(rule) for rule in list_user_rules(current_user.id, db)]
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc
