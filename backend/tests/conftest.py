"""
Shared fixtures: an in-memory database with a small catalog, signed tokens
and a FastAPI test client wired to that database.
"""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["GROQ_API_KEY"] = ""
os.environ["SEED_DEMO_DATA"] = "false"

import asyncio
from datetime import date, time, timedelta
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from timeslot import models  # noqa: F401
from timeslot.db import Base, get_session
from timeslot.main import app
from timeslot.models import Reservation, Service, ServiceSlot, User
from timeslot.services.assistant import handle_turn

TEST_SECRET = "test-secret"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    try:
        yield session
    finally:
        session.close()


def _slot(service, day, hour, minute):
    start = time(hour, minute)
    end = time(hour + (minute + 30) // 60, (minute + 30) % 60)
    return ServiceSlot(service=service, date=day, start_time=start, end_time=end)


@pytest.fixture
def catalog(db):
    """
    Trauma: Ana Pérez, Bruno Díaz. Dermatología: Carla Gómez.

    Ana Pérez's only slot on `full_day` is held by a confirmed app reservation;
    `open_day` has 09:00 and 14:30 free.
    """
    today = date.today()
    full_day = today + timedelta(days=10)
    open_day = today + timedelta(days=11)

    patient = User(name="Paula", last="Paciente", email="paula@example.com", role="patient")
    ana = User(name="Ana", last="Pérez", email="ana@example.com", role="professional")
    bruno = User(name="Bruno", last="Díaz", email="bruno@example.com", role="professional")
    carla = User(name="Carla", last="Gómez", email="carla@example.com", role="professional")

    trauma_ana = Service(name="Trauma", owner=ana)
    trauma_bruno = Service(name="Trauma", owner=bruno)
    dermatologia = Service(name="Dermatología", owner=carla)

    taken = _slot(trauma_ana, full_day, 10, 0)
    slots = [
        taken,
        _slot(trauma_ana, open_day, 14, 30),
        _slot(trauma_ana, open_day, 9, 0),
        _slot(trauma_bruno, open_day, 11, 0),
        _slot(dermatologia, open_day, 9, 0),
    ]
    db.add_all([patient, ana, bruno, carla, trauma_ana, trauma_bruno, dermatologia, *slots])
    db.flush()
    db.add(
        Reservation(
            user_id=patient.id,
            slot_id=taken.id,
            status="confirmed",
            date=taken.date,
            start_time=taken.start_time,
            end_time=taken.end_time,
        )
    )
    db.commit()

    return SimpleNamespace(
        patient_id=patient.id,
        full_day=full_day.isoformat(),
        open_day=open_day.isoformat(),
        slots=slots,
    )


@pytest.fixture
def token(catalog):
    return jwt.encode({"id": catalog.patient_id, "role": "patient"}, TEST_SECRET, algorithm="HS256")


@pytest.fixture
def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(db):
    def _override_session():
        yield db

    app.dependency_overrides[get_session] = _override_session
    yield TestClient(app)
    app.dependency_overrides.clear()


async def _no_freeform(message):
    raise AssertionError(f"completion service should not be called for {message!r}")


@pytest.fixture
def run_turn(db, catalog):
    """Run one assistant turn synchronously as the catalog's patient."""

    def _run(message, context=None, freeform=_no_freeform):
        return asyncio.run(
            handle_turn(db, catalog.patient_id, message, context or {}, freeform=freeform)
        )

    return _run
