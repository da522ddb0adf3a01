"""
Booking assistant: state transitions, validation and the full booking flow.
"""

import asyncio
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from timeslot.models import ChatbotReservation
from timeslot.schemas import ConversationContext
from timeslot.services import assistant
from timeslot.services.assistant import State, current_state, handle_turn, parse_context


def _context(catalog, **overrides):
    base = {
        "intent": "creating_reservation",
        "area": "Trauma",
        "professional": "Ana Pérez",
        "dateISO": catalog.open_day,
        "time": "14:30",
        "modality": "presencial",
    }
    base.update(overrides)
    return {key: value for key, value in base.items() if value is not None}


# ============================================================================
# Full flow
# ============================================================================


def test_full_booking_flow(db, catalog, run_turn):
    result = run_turn("quiero una reserva", {})
    assert result.context.intent == "creating_reservation"
    assert "- Dermatología" in result.reply and "- Trauma" in result.reply

    result = run_turn("trauma", result.context.to_wire())
    assert result.context.area == "Trauma"
    assert "Ana Pérez" in result.reply and "Bruno Díaz" in result.reply

    result = run_turn("Ana Pérez", result.context.to_wire())
    assert result.context.professional == "Ana Pérez"
    assert "AAAA-MM-DD" in result.reply

    result = run_turn(catalog.full_day, result.context.to_wire())
    assert result.context.date_iso is None
    assert "no encontré horarios libres" in result.reply

    result = run_turn(catalog.open_day, result.context.to_wire())
    assert result.context.date_iso == catalog.open_day
    assert "14:30" in result.reply

    result = run_turn("14:30", result.context.to_wire())
    assert result.context.time == "14:30"
    assert "presencial" in result.reply

    result = run_turn("presencial", result.context.to_wire())
    assert result.ready_to_create is True
    assert result.context.modality == "presencial"
    assert "¿Querés que confirme esta reserva?" in result.reply

    result = run_turn("sí", result.context.to_wire())
    reservation = db.query(ChatbotReservation).one()
    assert f"#{reservation.id}" in result.reply
    assert result.context.to_wire() == {}
    assert result.ready_to_create is False
    assert reservation.user_id == catalog.patient_id
    assert reservation.professional == "Ana Pérez"


# ============================================================================
# Intent detection
# ============================================================================


def test_no_booking_intent_uses_freeform_reply(run_turn):
    seen = []

    async def freeform(message):
        seen.append(message)
        return "Hola, soy TimeSlotBot"

    result = run_turn("Hola, ¿qué horario tienen?", {}, freeform=freeform)

    assert result.reply == "Hola, soy TimeSlotBot"
    assert result.context.to_wire() == {}
    assert seen == ["Hola, ¿qué horario tienen?"]


def test_freeform_errors_propagate(run_turn):
    async def failing(message):
        raise RuntimeError("down")

    with pytest.raises(RuntimeError):
        run_turn("hola", {}, freeform=failing)


@pytest.mark.parametrize("message", ["Necesito un TURNO", "quiero una cita", "hacer reserva"])
def test_booking_keywords_start_flow(run_turn, message):
    assert run_turn(message).context.intent == "creating_reservation"


# ============================================================================
# Area and professional
# ============================================================================


def test_unknown_area_reprompts_with_catalog(run_turn):
    context = {"intent": "creating_reservation"}
    result = run_turn("odontología", context)

    assert result.context.to_wire() == context
    assert "no la encontré" in result.reply
    assert "- Trauma" in result.reply


def test_area_without_accents_stores_catalog_name(run_turn):
    result = run_turn("dermatologia", {"intent": "creating_reservation"})
    assert result.context.area == "Dermatología"
    assert "Carla Gómez" in result.reply


def test_unknown_professional_reprompts(run_turn):
    context = {"intent": "creating_reservation", "area": "Trauma"}
    result = run_turn("Carla Gómez", context)

    assert result.context.to_wire() == context
    assert "Ana Pérez" in result.reply


# ============================================================================
# Date and time
# ============================================================================


@pytest.mark.parametrize("value", ["mañana", "01/12/2025", "2025-1-01", "2025-02-30", "２０２５-１２-０１"])
def test_bad_date_rejected_before_any_query(catalog, run_turn, value):
    context = _context(catalog, dateISO=None, time=None, modality=None)
    with patch.object(assistant, "has_availability") as has_availability:
        result = run_turn(value, context)

    has_availability.assert_not_called()
    assert "Formato de fecha inválido" in result.reply
    assert result.context.to_wire() == context


@pytest.mark.parametrize("value", ["2pm", "9:00", "14.30", "14:30hs"])
def test_bad_time_rejected_before_any_query(catalog, run_turn, value):
    context = _context(catalog, time=None, modality=None)
    with patch.object(assistant, "times_available") as times_available:
        result = run_turn(value, context)

    times_available.assert_not_called()
    assert "Formato de hora inválido" in result.reply
    assert result.context.to_wire() == context


def test_time_not_offered_is_rejected_with_list(catalog, run_turn):
    context = _context(catalog, time=None, modality=None)
    result = run_turn("10:00", context)

    assert result.context.to_wire() == context
    assert "no está disponible" in result.reply
    assert "- 09:00" in result.reply and "- 14:30" in result.reply


def test_asking_for_days_lists_dates_without_advancing(catalog, run_turn):
    context = _context(catalog, dateISO=None, time=None, modality=None)
    result = run_turn("¿qué días hay?", context)

    assert result.context.to_wire() == context
    assert f"- {catalog.open_day}" in result.reply
    assert catalog.full_day not in result.reply


def test_asking_for_hours_lists_times_without_advancing(catalog, run_turn):
    context = _context(catalog, time=None, modality=None)
    result = run_turn("que horarios tenés?", context)

    assert result.context.to_wire() == context
    assert "- 09:00\n- 14:30" in result.reply


# ============================================================================
# Modality and confirmation
# ============================================================================


@pytest.mark.parametrize("value,expected", [("Presencial", "presencial"), ("virtual por favor", "virtual")])
def test_modality_sets_ready_flag(catalog, run_turn, value, expected):
    result = run_turn(value, _context(catalog, modality=None))

    assert result.context.modality == expected
    assert result.ready_to_create is True
    assert f"Modalidad: *{expected}*" in result.reply


def test_unknown_modality_rejected(catalog, run_turn):
    context = _context(catalog, modality=None)
    result = run_turn("telefónica", context)

    assert result.context.to_wire() == context
    assert result.ready_to_create is False


def test_cancel_resets_context(db, catalog, run_turn):
    result = run_turn("no", _context(catalog))

    assert result.context.to_wire() == {}
    assert "cancelé" in result.reply
    assert db.query(ChatbotReservation).count() == 0


def test_unclear_confirmation_reprompts(catalog, run_turn):
    context = _context(catalog)
    result = run_turn("tal vez", context)

    assert result.context.to_wire() == context
    assert result.ready_to_create is True
    assert "sí* o *no" in result.reply


def test_confirming_a_slot_taken_meanwhile_keeps_context(db, catalog, run_turn):
    context = _context(catalog)
    run_turn("confirmo", context)
    result = run_turn("confirmo", context)

    assert result.context.to_wire() == context
    assert "acaba de ser reservado" in result.reply
    assert db.query(ChatbotReservation).count() == 1


# ============================================================================
# Failures and corrupted contexts
# ============================================================================


def test_store_failure_keeps_context(catalog, run_turn):
    context = {"intent": "creating_reservation"}
    with patch.object(assistant, "list_areas", side_effect=OperationalError("SELECT", {}, Exception("gone"))):
        result = run_turn("trauma", context)

    assert result.context.to_wire() == context
    assert "No pude validar el área" in result.reply
    assert result.ready_to_create is False


@pytest.mark.parametrize(
    "message,target,expected",
    [
        ("¿qué días hay?", "dates_available", "No pude obtener los días"),
        ("que horarios tenés?", "times_available", "No pude obtener los horarios"),
    ],
)
def test_listing_failure_has_its_own_apology(catalog, run_turn, message, target, expected):
    if target == "dates_available":
        context = _context(catalog, dateISO=None, time=None, modality=None)
    else:
        context = _context(catalog, time=None, modality=None)
    with patch.object(assistant, target, side_effect=OperationalError("SELECT", {}, Exception("gone"))):
        result = run_turn(message, context)

    assert result.context.to_wire() == context
    assert expected in result.reply


def test_catalog_failure_on_intent_keeps_context(run_turn):
    with patch.object(assistant, "list_areas", side_effect=OperationalError("SELECT", {}, Exception("gone"))):
        result = run_turn("quiero un turno", {})

    assert result.context.to_wire() == {}
    assert "no pude cargar las áreas" in result.reply


@pytest.mark.parametrize(
    "context",
    [
        {"area": "Trauma"},
        {"intent": "creating_reservation", "professional": "Ana Pérez"},
        {"intent": "something_else"},
        {"intent": "creating_reservation", "dateISO": "01-12-2025"},
        {"intent": "creating_reservation", "area": "Trauma", "professional": "Ana Pérez", "dateISO": "2025-02-30"},
        {"intent": "creating_reservation", "area": "Trauma", "professional": "Ana Pérez", "dateISO": "2025-13-45"},
        {
            "intent": "creating_reservation",
            "area": "Trauma",
            "professional": "Ana Pérez",
            "dateISO": "2025-12-01",
            "time": "99:99",
            "modality": "presencial",
        },
        {"intent": "creating_reservation", "area": "Trauma", "confirmed": True},
        ["not", "a", "mapping"],
    ],
)
def test_corrupted_context_restarts(run_turn, context):
    result = run_turn("hola", context)

    assert result.context.to_wire() == {}
    assert result.reply == assistant.RESTART_REPLY


def test_same_turn_is_idempotent(catalog, run_turn):
    context = _context(catalog, time=None, modality=None)
    first = run_turn("10:00", context)
    second = run_turn("10:00", context)

    assert first == second


def test_parse_context_and_state():
    assert parse_context(None) == ConversationContext()
    assert parse_context({"intent": "creating_reservation", "area": ""}).area is None
    context = parse_context({"intent": "creating_reservation", "area": "Trauma"})
    assert current_state(context) is State.PROFESSIONAL


def test_handle_turn_does_not_mutate_callers_context(db, catalog):
    context = {"intent": "creating_reservation"}

    async def unused(message):
        return ""

    asyncio.run(handle_turn(db, catalog.patient_id, "trauma", context, freeform=unused))

    assert context == {"intent": "creating_reservation"}
