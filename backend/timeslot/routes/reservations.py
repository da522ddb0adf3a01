import re

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..auth import require_user_id
from ..db import get_session
from ..schemas import ReservationCreate, ReservationOut
from ..services.availability import parse_date_iso, parse_hhmm
from ..services.reservations import SlotUnavailableError, book_app_reservation, list_user_reservations

router = APIRouter()

TIME_PATTERN = re.compile(r"^\d{2}:\d{2}$", re.ASCII)


@router.get("/reservations", response_model=list[ReservationOut])
def list_reservations(
    db: Session = Depends(get_session),
    user_id: str = Depends(require_user_id),
) -> list[ReservationOut]:
    return list_user_reservations(db, user_id)


@router.post("/reservations", response_model=ReservationOut)
def create_reservation(
    payload: ReservationCreate,
    db: Session = Depends(get_session),
    user_id: str = Depends(require_user_id),
) -> ReservationOut:
    if not payload.area or not payload.professional or not payload.date_iso or not payload.time:
        raise HTTPException(status_code=400, detail="Missing reservation fields")
    try:
        parse_date_iso(payload.date_iso)
        if not TIME_PATTERN.match(payload.time):
            raise ValueError(payload.time)
        parse_hhmm(payload.time)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Expected dateISO as YYYY-MM-DD and time as HH:MM") from exc

    try:
        return book_app_reservation(
            db,
            user_id=user_id,
            area=payload.area,
            professional=payload.professional,
            date_iso=payload.date_iso,
            hhmm=payload.time,
        )
    except SlotUnavailableError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
