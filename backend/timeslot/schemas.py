from datetime import date, datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

Intent = Literal["creating_reservation"]
Modality = Literal["presencial", "virtual"]
Origin = Literal["app", "chatbot"]


class ConversationContext(BaseModel):
    """Conversation state the client sends back on every chat turn."""

    intent: Optional[Intent] = None
    area: Optional[str] = None
    professional: Optional[str] = None
    date_iso: Optional[str] = Field(default=None, alias="dateISO", pattern=r"^\d{4}-\d{2}-\d{2}$")
    time: Optional[str] = Field(default=None, pattern=r"^\d{2}:\d{2}$")
    modality: Optional[Modality] = None
    confirmed: Optional[bool] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("*", mode="before")
    @classmethod
    def _blank_is_unset(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("date_iso")
    @classmethod
    def _real_date(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            date.fromisoformat(value)
        return value

    @field_validator("time")
    @classmethod
    def _real_time(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            datetime.strptime(value, "%H:%M")
        return value

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ChatRequest(BaseModel):
    message: str = ""
    # Parsed by the assistant; a malformed context restarts the conversation.
    context: Any = None


class ChatResponse(BaseModel):
    reply: str
    context: dict[str, Any]
    ready_to_create: bool = Field(alias="readyToCreate")

    model_config = ConfigDict(populate_by_name=True)


class ReservationCreate(BaseModel):
    area: Optional[str] = None
    professional: Optional[str] = None
    date_iso: Optional[str] = Field(default=None, alias="dateISO")
    time: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class ReservationOut(BaseModel):
    id: str
    user_id: str = Field(alias="userId")
    area: str
    professional: str
    date_iso: str = Field(alias="dateISO")
    time: str
    modality: str
    origin: Origin

    model_config = ConfigDict(populate_by_name=True)


class HoursOut(BaseModel):
    hours: list[str]


class DaysOut(BaseModel):
    days: list[str]
