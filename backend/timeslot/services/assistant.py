"""Slot-filling booking assistant.

Each turn receives the context the client kept from the previous turn plus a
free-text message, and returns a reply, the next context and whether every
booking field is collected. Fields fill in a fixed order:

    intent -> area -> professional -> date -> time -> modality -> confirmation

A field is only ever set when all earlier ones are, and the context is never
cleared field by field: it is either carried forward or reset to empty.
Nothing is kept server-side between turns.
"""

import enum
import logging
import re
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import date
from typing import Any

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..schemas import ConversationContext
from .availability import (
    dates_available,
    has_availability,
    list_areas,
    list_professionals,
    times_available,
)
from .matching import normalize_text, resolve_area, resolve_professional
from .reservations import SlotTakenError, commit_chatbot_reservation

logger = logging.getLogger(__name__)

FreeformReply = Callable[[str], Awaitable[str]]

BOOKING_KEYWORDS = ("reserva", "turno", "cita")
DATE_QUESTION_KEYWORDS = ("dia", "fecha")
TIME_QUESTION_KEYWORDS = ("hora",)
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$", re.ASCII)
TIME_PATTERN = re.compile(r"^\d{2}:\d{2}$", re.ASCII)
FIELD_ORDER = ("intent", "area", "professional", "date_iso", "time", "modality")

RESTART_REPLY = (
    "Mmm, creo que nos perdimos un poco 🤯. Decime de nuevo "
    "*quiero hacer una reserva* y empezamos otra vez."
)


class State(str, enum.Enum):
    NO_INTENT = "no_intent"
    AREA = "area"
    PROFESSIONAL = "professional"
    DATE = "date"
    TIME = "time"
    MODALITY = "modality"
    CONFIRMATION = "confirmation"


# Apologies for a failed store read or write; the context is left as it was.
STORE_FAILURE_REPLIES = {
    State.NO_INTENT: "Quiero ayudarte con tu reserva, pero no pude cargar las áreas 😓. Probá más tarde.",
    State.AREA: "No pude validar el área en este momento 😓. Probá de nuevo en unos minutos.",
    State.PROFESSIONAL: "No pude validar el profesional en este momento 😓. Probá de nuevo en unos minutos.",
    State.DATE: "No pude verificar la disponibilidad de esa fecha 😓. Probá de nuevo en unos minutos.",
    State.TIME: "No pude validar la hora en este momento 😓. Probá de nuevo más tarde.",
    State.CONFIRMATION: (
        "Ups, hubo un error al crear la reserva 😢. Intentá de nuevo más tarde "
        "o hacela desde la pantalla de reservas."
    ),
}
LIST_DATES_FAILURE_REPLY = "No pude obtener los días disponibles en este momento 😓. Probá de nuevo más tarde."
LIST_TIMES_FAILURE_REPLY = "No pude obtener los horarios disponibles en este momento 😓. Probá de nuevo más tarde."


@dataclass(frozen=True)
class TurnResult:
    reply: str
    context: ConversationContext
    ready_to_create: bool = False


@dataclass(frozen=True)
class Turn:
    db: Session
    user_id: str
    context: ConversationContext
    message: str

    @property
    def entry(self) -> str:
        return self.message.strip()

    @property
    def text(self) -> str:
        return normalize_text(self.message)

    def mentions(self, keywords: tuple[str, ...]) -> bool:
        text = self.text
        return any(keyword in text for keyword in keywords)

    def stay(self, reply: str, ready_to_create: bool = False) -> TurnResult:
        return TurnResult(reply, self.context, ready_to_create)

    def advance(self, reply: str, **fields: Any) -> TurnResult:
        return TurnResult(reply, self.context.model_copy(update=fields))


def _bullets(items: list[str]) -> str:
    return "\n- " + "\n- ".join(items)


def _summary(context: ConversationContext) -> str:
    return (
        f"• Área: *{context.area}*\n"
        f"• Profesional: *{context.professional}*\n"
        f"• Fecha: *{context.date_iso}*\n"
        f"• Hora: *{context.time}*\n"
        f"• Modalidad: *{context.modality}*"
    )


def _is_well_formed(context: ConversationContext) -> bool:
    gap = False
    for name in FIELD_ORDER:
        if getattr(context, name) is None:
            gap = True
        elif gap:
            return False
    return context.confirmed is None


def parse_context(raw: Any) -> ConversationContext | None:
    """Validate the client's context, returning None when it cannot be trusted."""
    if raw is None:
        return ConversationContext()
    if isinstance(raw, ConversationContext):
        context = raw
    elif isinstance(raw, Mapping):
        try:
            context = ConversationContext.model_validate(dict(raw))
        except ValidationError:
            return None
    else:
        return None
    return context if _is_well_formed(context) else None


def current_state(context: ConversationContext) -> State:
    if context.intent is None:
        return State.NO_INTENT
    if context.area is None:
        return State.AREA
    if context.professional is None:
        return State.PROFESSIONAL
    if context.date_iso is None:
        return State.DATE
    if context.time is None:
        return State.TIME
    if context.modality is None:
        return State.MODALITY
    return State.CONFIRMATION


def _handle_intent_detected(turn: Turn) -> TurnResult:
    areas = list_areas(turn.db)
    listing = "\n\nÁreas disponibles:" + _bullets(areas) if areas else ""
    return turn.advance(
        "Perfecto, te ayudo a crear una reserva 🩺\n\n"
        "¿Para qué área es? Escribí el nombre de una de las áreas." + listing,
        intent="creating_reservation",
    )


def _handle_area(turn: Turn) -> TurnResult:
    areas = list_areas(turn.db)
    area = resolve_area(turn.entry, areas)
    if area is None:
        listing = "\n\nAlgunas áreas disponibles son:" + _bullets(areas) if areas else ""
        return turn.stay(
            "Esa área no la encontré en el sistema ❌.\n"
            "Escribí un nombre de área válido (no importa si no ponés tildes)." + listing
        )

    professionals = list_professionals(turn.db, area)
    if professionals:
        listing = "\n\nProfesionales disponibles en esa área:" + _bullets(professionals)
    else:
        listing = "\n\n(No encontré profesionales para esa área)"
    return turn.advance(
        f"Genial, área: *{area}* ✅\n\n"
        "Ahora decime con qué profesional querés el turno. "
        "Podés escribir el nombre sin tildes, yo lo busco." + listing,
        area=area,
    )


def _handle_professional(turn: Turn) -> TurnResult:
    area = turn.context.area
    professionals = list_professionals(turn.db, area)
    professional = resolve_professional(area, turn.entry, professionals)
    if professional is None:
        if professionals:
            listing = "\n\nProfesionales válidos en esa área:" + _bullets(professionals)
        else:
            listing = "\n\n(No encontré profesionales para esa área)"
        return turn.stay(
            "Ese profesional no coincide con los que tengo en el sistema ❌.\n"
            "Podés escribir el nombre sin tildes, yo lo busco por vos." + listing
        )

    return turn.advance(
        f"Perfecto, profesional: *{professional}* ✅\n\n"
        "¿Para qué fecha lo querés? Usá el formato *AAAA-MM-DD* (Ej: 2025-12-01).",
        professional=professional,
    )


def _store_failed(turn: Turn, branch: str, reply: str) -> TurnResult:
    logger.exception("chat_store_failed state=%s user_id=%s", branch, turn.user_id)
    turn.db.rollback()
    return turn.stay(reply)


def _list_dates(turn: Turn) -> TurnResult:
    context = turn.context
    try:
        dates = dates_available(
            turn.db, context.area, context.professional, limit=settings.available_dates_limit
        )
    except SQLAlchemyError:
        return _store_failed(turn, "list_dates", LIST_DATES_FAILURE_REPLY)
    if not dates:
        return turn.stay(
            f"Por ahora no encontré días con turnos libres para *{context.area}* "
            f"con *{context.professional}* 😕.\n"
            "Probá más adelante o elegí otro profesional o área."
        )
    return turn.stay(
        f"Para *{context.area}* con *{context.professional}* tengo estos días con turnos disponibles:\n"
        + _bullets(dates)
        + "\n\nEscribí una de esas fechas en formato *AAAA-MM-DD* para seguir."
    )


def _is_valid_date(value: str) -> bool:
    if not DATE_PATTERN.match(value):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def _handle_date(turn: Turn) -> TurnResult:
    if turn.mentions(DATE_QUESTION_KEYWORDS):
        return _list_dates(turn)

    context = turn.context
    value = turn.entry
    if not _is_valid_date(value):
        return turn.stay(
            "Formato de fecha inválido ❌. Usá el formato *AAAA-MM-DD* (Ej: 2025-12-01)."
        )

    if not has_availability(turn.db, context.area, context.professional, value):
        return turn.stay(
            f"Para *{context.area}* con *{context.professional}* no encontré horarios libres "
            f"el *{value}* ❌.\nProbá con otra fecha (mismo formato AAAA-MM-DD)."
        )

    hours = times_available(turn.db, context.area, context.professional, value)
    listing = "\n\nHoras disponibles para ese día:" + _bullets(hours) if hours else ""
    return turn.advance(
        f"Fecha: *{value}* ✅\n\n"
        "¿A qué hora? Usá el formato *HH:MM* en 24 horas (Ej: 14:30)." + listing,
        date_iso=value,
    )


def _list_times(turn: Turn) -> TurnResult:
    context = turn.context
    try:
        hours = times_available(turn.db, context.area, context.professional, context.date_iso)
    except SQLAlchemyError:
        return _store_failed(turn, "list_times", LIST_TIMES_FAILURE_REPLY)
    if not hours:
        return turn.stay(
            f"Para *{context.area}* con *{context.professional}* el día *{context.date_iso}* "
            "no hay horarios libres 😕.\nProbá con otra fecha."
        )
    return turn.stay(
        f"El día *{context.date_iso}* tengo estos horarios disponibles:\n"
        + _bullets(hours)
        + "\n\nEscribí uno de esos horarios en formato *HH:MM* para continuar."
    )


def _handle_time(turn: Turn) -> TurnResult:
    if turn.mentions(TIME_QUESTION_KEYWORDS):
        return _list_times(turn)

    context = turn.context
    value = turn.entry
    if not TIME_PATTERN.match(value):
        return turn.stay(
            "Formato de hora inválido ❌. Usá el formato *HH:MM* en 24 horas (Ej: 09:00 o 14:30)."
        )

    hours = times_available(turn.db, context.area, context.professional, context.date_iso)
    if value not in hours:
        if hours:
            listing = "\n\nHoras disponibles para ese día:" + _bullets(hours)
        else:
            listing = "\n\n(No quedan horarios libres para ese día)"
        return turn.stay("Esa hora no está disponible para ese día ❌." + listing)

    return turn.advance(
        f"Hora: *{value}* ✅\n\nPor último, ¿la consulta es *presencial* o *virtual*?",
        time=value,
    )


def _handle_modality(turn: Turn) -> TurnResult:
    text = turn.text
    modality = None
    if "pres" in text:
        modality = "presencial"
    if "vir" in text:
        modality = "virtual"
    if modality is None:
        return turn.stay(
            "No entendí la modalidad ❌. Decime si la consulta es *presencial* o *virtual*."
        )

    context = turn.context.model_copy(update={"modality": modality})
    reply = (
        "Perfecto, ya tengo todos los datos ✅\n\n"
        + _summary(context)
        + "\n\n¿Querés que confirme esta reserva? "
        "Escribí *sí* para confirmar o *no* para cancelar."
    )
    return TurnResult(reply, context, True)


def _handle_confirmation(turn: Turn) -> TurnResult:
    text = turn.text
    context = turn.context

    if text == "si" or "confirm" in text:
        try:
            reservation_id = commit_chatbot_reservation(
                turn.db,
                user_id=turn.user_id,
                area=context.area,
                professional=context.professional,
                date_iso=context.date_iso,
                hhmm=context.time,
                modality=context.modality,
            )
        except SlotTakenError:
            logger.warning(
                "chat_slot_taken user_id=%s area=%s date=%s time=%s",
                turn.user_id,
                context.area,
                context.date_iso,
                context.time,
            )
            return turn.stay(
                "Ese horario acaba de ser reservado por otra persona ❌.\n"
                "Escribí *no* para empezar de nuevo y elegir otro horario."
            )
        return TurnResult(
            "Listo 🙌 tu reserva fue creada correctamente.\n\n"
            f"🆔 Código de reserva: *#{reservation_id}*\n"
            + _summary(context)
            + "\n\nGracias por usar el asistente de TimeSlot 💙",
            ConversationContext(),
        )

    if text == "no" or "cancel" in text:
        return TurnResult(
            "Ok, cancelé la creación de la reserva ❌.\n"
            'Si querés, podés empezar otra diciendo: *"quiero hacer una reserva"*.',
            ConversationContext(),
        )

    return turn.stay("No entendí 🤔. ¿Confirmás la reserva? Respondé *sí* o *no*.", ready_to_create=True)


_HANDLERS: dict[State, Callable[[Turn], TurnResult]] = {
    State.NO_INTENT: _handle_intent_detected,
    State.AREA: _handle_area,
    State.PROFESSIONAL: _handle_professional,
    State.DATE: _handle_date,
    State.TIME: _handle_time,
    State.MODALITY: _handle_modality,
    State.CONFIRMATION: _handle_confirmation,
}


async def handle_turn(
    db: Session,
    user_id: str,
    message: str,
    context: Any,
    freeform: FreeformReply,
) -> TurnResult:
    """Advance the booking conversation by one message.

    Raises whatever ``freeform`` raises when the message carries no booking
    intent and the completion service fails.
    """
    parsed = parse_context(context)
    if parsed is None:
        logger.warning("chat_context_reset user_id=%s", user_id)
        return TurnResult(RESTART_REPLY, ConversationContext())

    turn = Turn(db=db, user_id=user_id, context=parsed, message=message or "")
    state = current_state(parsed)
    logger.info("chat_turn state=%s user_id=%s", state.value, user_id)

    if state is State.NO_INTENT and not turn.mentions(BOOKING_KEYWORDS):
        reply = await freeform(turn.message)
        return turn.stay(reply)

    try:
        return _HANDLERS[state](turn)
    except SQLAlchemyError:
        return _store_failed(turn, state.value, STORE_FAILURE_REPLIES.get(state, RESTART_REPLY))
