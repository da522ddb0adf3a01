import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models import ChatbotReservation, Reservation, Service, ServiceSlot, User
from ..schemas import ReservationOut
from .availability import find_open_slot, format_hhmm, parse_date_iso, parse_hhmm

logger = logging.getLogger(__name__)

APP_MODALITY = "presencial"


class SlotTakenError(Exception):
    """Another assistant reservation already holds the same slot."""


class SlotUnavailableError(Exception):
    """No open slot matches the requested area, professional, date and time."""


def commit_chatbot_reservation(
    db: Session,
    user_id: str,
    area: str,
    professional: str,
    date_iso: str,
    hhmm: str,
    modality: str,
) -> str:
    reservation = ChatbotReservation(
        user_id=user_id,
        area=area,
        professional=professional,
        date=parse_date_iso(date_iso),
        time=parse_hhmm(hhmm),
        modality=modality,
    )
    db.add(reservation)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise SlotTakenError(f"{area} {professional} {date_iso} {hhmm}") from exc
    logger.info(
        "chatbot_reservation_created id=%s user_id=%s area=%s date=%s time=%s",
        reservation.id,
        user_id,
        area,
        date_iso,
        hhmm,
    )
    return reservation.id


def book_app_reservation(
    db: Session,
    user_id: str,
    area: str,
    professional: str,
    date_iso: str,
    hhmm: str,
) -> ReservationOut:
    slot = find_open_slot(db, area, professional, date_iso, hhmm)
    if slot is None:
        raise SlotUnavailableError("No open slot for that area, professional, date and time")

    reservation = Reservation(
        user_id=user_id,
        slot_id=slot.id,
        status="pending",
        date=slot.date,
        start_time=slot.start_time,
        end_time=slot.end_time,
    )
    db.add(reservation)
    db.commit()
    logger.info(
        "app_reservation_created id=%s user_id=%s slot_id=%s", reservation.id, user_id, slot.id
    )
    return ReservationOut(
        id=reservation.id,
        user_id=user_id,
        area=area,
        professional=professional,
        date_iso=date_iso,
        time=hhmm,
        modality=APP_MODALITY,
        origin="app",
    )


def list_user_reservations(db: Session, user_id: str) -> list[ReservationOut]:
    """Both reservation stores for one user, merged and sorted by date and time."""
    app_rows = db.execute(
        select(Reservation.id, Reservation.date, Reservation.start_time, Service.name, User.name, User.last)
        .join(ServiceSlot, Reservation.slot_id == ServiceSlot.id)
        .join(Service, ServiceSlot.service_id == Service.id)
        .join(User, Service.user_id == User.id)
        .where(Reservation.user_id == user_id)
    ).all()
    from_app = [
        ReservationOut(
            id=row[0],
            user_id=user_id,
            area=row[3],
            professional=f"{row[4]} {row[5]}",
            date_iso=row[1].isoformat(),
            time=format_hhmm(row[2]),
            modality=APP_MODALITY,
            origin="app",
        )
        for row in app_rows
    ]

    chatbot_rows = db.scalars(
        select(ChatbotReservation).where(ChatbotReservation.user_id == user_id)
    ).all()
    from_chatbot = [
        ReservationOut(
            id=row.id,
            user_id=user_id,
            area=row.area,
            professional=row.professional,
            date_iso=row.date.isoformat(),
            time=format_hhmm(row.time),
            modality=row.modality,
            origin="chatbot",
        )
        for row in chatbot_rows
    ]

    return sorted(from_app + from_chatbot, key=lambda item: item.date_iso + item.time)
