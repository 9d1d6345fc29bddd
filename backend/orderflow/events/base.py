"""
Kafka envelope shared by every order event

Outbox rows store the envelope already serialized, so the worker publishes
them without knowing any payload type.
"""

from datetime import datetime, UTC
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

ENVELOPE_VERSION = "1.0"


class BaseEventData(BaseModel):
    """Base class for all event data payloads"""

    # Enum values in JSON, unknown fields from newer producers ignored
    model_config = ConfigDict(use_enum_values=True, extra="ignore")


class EventEnvelope(BaseModel):
    event_id: str = Field(default_factory=lambda: str(uuid4()))
    event_type: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    version: str = ENVELOPE_VERSION
    data: dict[str, Any]

    @classmethod
    def wrap(cls, event_type: str, event_data: BaseEventData) -> "EventEnvelope":
        return cls(event_type=event_type, data=event_data.model_dump(mode="json"))
