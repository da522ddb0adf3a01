"""Catalog reads and slot availability.

Every availability query subtracts the union of both reservation stores: app
reservations reference a slot by id, assistant reservations match it by
(area, professional, date, start time). Both checks live in the same statement.
"""

import calendar
from datetime import date, datetime, time, timedelta

from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from ..models import OCCUPYING_STATUSES, ChatbotReservation, Reservation, Service, ServiceSlot, User

PROFESSIONAL_NAME = (User.name + " " + User.last).label("professional")


def parse_date_iso(value: str) -> date:
    return date.fromisoformat(value)


def parse_hhmm(value: str) -> time:
    return datetime.strptime(value, "%H:%M").time()


def format_hhmm(value: time) -> str:
    return value.strftime("%H:%M")


def list_areas(db: Session) -> list[str]:
    stmt = select(Service.name).distinct().order_by(Service.name)
    return list(db.scalars(stmt).all())


def list_professionals(db: Session, area: str) -> list[str]:
    stmt = (
        select(PROFESSIONAL_NAME)
        .select_from(Service)
        .join(User, Service.user_id == User.id)
        .where(Service.name == area)
        .distinct()
        .order_by(PROFESSIONAL_NAME)
    )
    return list(db.scalars(stmt).all())


def _open_slots(area: str, professional: str) -> Select:
    professional_name = User.name + " " + User.last
    occupied_by_app = (
        select(Reservation.id)
        .where(
            Reservation.slot_id == ServiceSlot.id,
            Reservation.status.in_(OCCUPYING_STATUSES),
        )
        .exists()
    )
    occupied_by_chatbot = (
        select(ChatbotReservation.id)
        .where(
            ChatbotReservation.area == Service.name,
            ChatbotReservation.professional == professional_name,
            ChatbotReservation.date == ServiceSlot.date,
            ChatbotReservation.time == ServiceSlot.start_time,
        )
        .exists()
    )
    return (
        select(ServiceSlot)
        .join(Service, ServiceSlot.service_id == Service.id)
        .join(User, Service.user_id == User.id)
        .where(
            Service.name == area,
            professional_name == professional,
            ~occupied_by_app,
            ~occupied_by_chatbot,
        )
    )


def dates_available(
    db: Session,
    area: str,
    professional: str,
    limit: int = 10,
    today: date | None = None,
) -> list[str]:
    today = today or date.today()
    open_slots = _open_slots(area, professional).where(ServiceSlot.date >= today).subquery()
    stmt = select(open_slots.c.date).distinct().order_by(open_slots.c.date).limit(limit)
    return [value.isoformat() for value in db.scalars(stmt).all()]


def days_available_in_month(
    db: Session, area: str, professional: str, year: int, month: int
) -> list[str]:
    first_day = date(year, month, 1)
    last_day = first_day + timedelta(days=calendar.monthrange(year, month)[1] - 1)
    open_slots = (
        _open_slots(area, professional)
        .where(ServiceSlot.date >= first_day, ServiceSlot.date <= last_day)
        .subquery()
    )
    stmt = select(open_slots.c.date).distinct().order_by(open_slots.c.date)
    return [value.isoformat() for value in db.scalars(stmt).all()]


def times_available(db: Session, area: str, professional: str, date_iso: str) -> list[str]:
    stmt = (
        _open_slots(area, professional)
        .where(ServiceSlot.date == parse_date_iso(date_iso))
        .order_by(ServiceSlot.start_time)
    )
    return [format_hhmm(slot.start_time) for slot in db.scalars(stmt).all()]


def has_availability(db: Session, area: str, professional: str, date_iso: str) -> bool:
    stmt = _open_slots(area, professional).where(ServiceSlot.date == parse_date_iso(date_iso)).limit(1)
    return db.scalars(stmt).first() is not None


def find_open_slot(
    db: Session, area: str, professional: str, date_iso: str, hhmm: str
) -> ServiceSlot | None:
    stmt = _open_slots(area, professional).where(
        ServiceSlot.date == parse_date_iso(date_iso),
        ServiceSlot.start_time == parse_hhmm(hhmm),
    )
    return db.scalars(stmt).first()
