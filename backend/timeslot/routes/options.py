import logging
import re

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..auth import require_user_id
from ..db import get_session
from ..schemas import DaysOut, HoursOut
from ..services.availability import (
    days_available_in_month,
    list_areas,
    list_professionals,
    parse_date_iso,
    times_available,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/options", dependencies=[Depends(require_user_id)])

MONTH_PATTERN = re.compile(r"^(\d{4})-(\d{2})$", re.ASCII)


@router.get("/areas", response_model=list[str])
def get_areas(db: Session = Depends(get_session)) -> list[str]:
    return list_areas(db)


@router.get("/professionals", response_model=list[str])
def get_professionals(area: str | None = None, db: Session = Depends(get_session)) -> list[str]:
    if not area:
        raise HTTPException(status_code=400, detail="Missing area parameter")
    return list_professionals(db, area)


@router.get("/hours", response_model=HoursOut)
def get_hours(
    area: str | None = None,
    professional: str | None = None,
    date: str | None = None,
    db: Session = Depends(get_session),
) -> HoursOut:
    if not area or not professional or not date:
        raise HTTPException(status_code=400, detail="Missing parameters")
    try:
        parse_date_iso(date)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="date must be YYYY-MM-DD") from exc

    hours = times_available(db, area, professional, date)
    logger.info("options_hours area=%s date=%s count=%s", area, date, len(hours))
    return HoursOut(hours=hours)


@router.get("/available-days", response_model=DaysOut)
def get_available_days(
    area: str | None = None,
    professional: str | None = None,
    month: str | None = None,
    db: Session = Depends(get_session),
) -> DaysOut:
    if not area or not professional or not month:
        raise HTTPException(status_code=400, detail="Missing parameters")
    match = MONTH_PATTERN.match(month)
    if not match or not 1 <= int(match.group(2)) <= 12:
        raise HTTPException(status_code=400, detail="month must be YYYY-MM")

    days = days_available_in_month(db, area, professional, int(match.group(1)), int(match.group(2)))
    return DaysOut(days=days)
