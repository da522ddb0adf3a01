from datetime import date, datetime, time, timedelta

from faker import Faker
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .db import SessionLocal
from .models import Service, ServiceSlot, User

AREAS = [
    "Cardiología",
    "Clínica Médica",
    "Dermatología",
    "Pediatría",
    "Trauma",
]
PROFESSIONALS_PER_AREA = 2
SLOT_DAYS = 14
SLOT_MINUTES = 30
DAY_START = time(9, 0)
DAY_END = time(16, 0)


def _slots_for(service: Service, today: date) -> list[ServiceSlot]:
    slots = []
    for day_offset in range(SLOT_DAYS):
        day = today + timedelta(days=day_offset)
        current = datetime.combine(day, DAY_START)
        end_dt = datetime.combine(day, DAY_END)
        while current <= end_dt:
            finish = current + timedelta(minutes=SLOT_MINUTES)
            slots.append(
                ServiceSlot(
                    service=service,
                    date=day,
                    start_time=current.time(),
                    end_time=finish.time(),
                )
            )
            current = finish
    return slots


def seed_data(db: Session | None = None) -> None:
    owns_session = db is None
    if owns_session:
        db = SessionLocal()
    try:
        service_count = db.scalar(select(func.count()).select_from(Service))
        existing_areas = set()
        if service_count:
            existing_areas = set(db.scalars(select(Service.name).distinct()).all())

        missing_areas = [area for area in AREAS if area not in existing_areas]
        if not missing_areas:
            return

        fake = Faker("es_ES")
        today = date.today()
        for area in missing_areas:
            for _ in range(PROFESSIONALS_PER_AREA):
                professional = User(
                    name=fake.first_name(),
                    last=fake.last_name(),
                    email=fake.unique.email(),
                    role="professional",
                )
                service = Service(name=area, owner=professional)
                db.add_all([professional, service, *_slots_for(service, today)])

        db.commit()
    finally:
        if owns_session:
            db.close()
