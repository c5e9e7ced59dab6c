from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking.models.appointment import Appointment
from booking.models.availability import AvailabilityWindow
from booking.models.provider import ProviderPolicy
from booking.routes.dependencies import get_db

router = APIRouter(tags=['health'])


class HealthResponse(BaseModel):
    ok: bool
    providers: int
    availability_windows: int
    appointments: int


@router.get('/health', response_model=HealthResponse)
def healthcheck(db: Session = Depends(get_db)):
    try:
        return HealthResponse(
            ok=True,
            providers=db.query(ProviderPolicy).count(),
            availability_windows=db.query(AvailabilityWindow).count(),
            appointments=db.query(Appointment).count(),
        )
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={'kind': 'storage', 'message': 'Database unavailable. Verify DATABASE_URL and database credentials.'},
        ) from exc
