"""
Escalation policy model: an ordered list of relative-time alert steps.

Step delays are cumulative offsets from the reminder's trigger instant,
not from the previous step. Steps are kept in the order the caller gave
them; that order defines the step index used by the escalation cursor.
"""

import uuid
from enum import Enum
from typing import List, Optional

import pydantic
from pydantic import BaseModel, Field, TypeAdapter
from sqlalchemy import Column, String, Text, Boolean

from remindsync.domain.errors import ValidationError
from remindsync.domain.reminder import Base


class AlertKind(str, Enum):
    """How loudly a step alerts."""
    PUSH = "push"  # Standard notification
    ALARM = "alarm"  # Time-sensitive notification with a loud sound


class EscalationStep(BaseModel):
    """A single step of an escalation policy."""
    kind: AlertKind
    delay_minutes: int = Field(..., ge=0)
    repeat_interval_minutes: Optional[int] = Field(None, gt=0)

    class Config:
        frozen = True
        extra = "forbid"

    @property
    def display_description(self) -> str:
        label = "Alarm" if self.kind == AlertKind.ALARM else "Push notification"
        if self.delay_minutes == 0 and self.repeat_interval_minutes is None:
            return f"{label} at reminder time"
        if self.repeat_interval_minutes is not None:
            return f"{label} every {self.repeat_interval_minutes} min after {self.delay_minutes} min"
        return f"{label} after {self.delay_minutes} min"


_steps_adapter = TypeAdapter(List[EscalationStep])


def validate_steps(raw_steps) -> List[EscalationStep]:
    """
    Validate a sequence of steps (models or plain mappings).

    Raises:
        ValidationError: if any step is malformed
    """
    try:
        return list(_steps_adapter.validate_python(list(raw_steps)))
    except (pydantic.ValidationError, TypeError) as e:
        raise ValidationError(f"Invalid escalation steps: {e}") from e


def encode_steps(steps: List[EscalationStep]) -> str:
    """Encode steps as an ordered JSON list."""
    return _steps_adapter.dump_json(list(steps)).decode("utf-8")


def decode_steps(data: Optional[str]) -> List[EscalationStep]:
    """
    Decode a stored step list. Fails closed instead of defaulting to no steps.

    Raises:
        ValidationError: if the stored value is not a valid step list
    """
    if not data:
        return []
    try:
        return list(_steps_adapter.validate_json(data))
    except pydantic.ValidationError as e:
        raise ValidationError(f"Corrupt escalation steps: {e}") from e


class EscalationPolicy(Base):
    """SQLAlchemy model for escalation policies."""

    __tablename__ = "escalation_policies"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(100), nullable=False, index=True)
    steps_json = Column(Text, nullable=False, default="[]")
    is_preset = Column(Boolean, nullable=False, default=False)

    def __init__(self, steps=None, **kwargs):
        kwargs.setdefault("id", str(uuid.uuid4()))
        kwargs.setdefault("is_preset", False)
        super().__init__(**kwargs)
        self.steps = steps or []

    def __repr__(self) -> str:
        return f"<EscalationPolicy(id={self.id}, name={self.name}, preset={self.is_preset})>"

    @property
    def steps(self) -> List[EscalationStep]:
        return decode_steps(self.steps_json)

    @steps.setter
    def steps(self, value) -> None:
        self.steps_json = encode_steps(validate_steps(value))


def _push(delay: int, repeat: Optional[int] = None) -> EscalationStep:
    return EscalationStep(kind=AlertKind.PUSH, delay_minutes=delay, repeat_interval_minutes=repeat)


def _alarm(delay: int, repeat: Optional[int] = None) -> EscalationStep:
    return EscalationStep(kind=AlertKind.ALARM, delay_minutes=delay, repeat_interval_minutes=repeat)


PRESET_STEPS = {
    "Gentle": [_push(0), _push(120), _push(240)],
    "Standard": [_push(0), _push(60), _alarm(120), _alarm(150, repeat=30)],
    "Urgent": [_push(0), _alarm(15), _alarm(25, repeat=10)],
    "Nuclear": [_alarm(0), _alarm(5, repeat=5)],
}


def build_presets() -> List[EscalationPolicy]:
    """Create fresh, unsaved instances of the four canonical presets."""
    return [
        EscalationPolicy(name=name, steps=steps, is_preset=True)
        for name, steps in PRESET_STEPS.items()
    ]


# Pydantic Schemas

class PolicyCreate(BaseModel):
    """Schema for creating a custom policy."""
    name: str = Field(..., min_length=1, max_length=100)
    steps: List[EscalationStep] = Field(..., min_length=1)


class PolicyUpdate(BaseModel):
    """Schema for editing a custom policy."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    steps: Optional[List[EscalationStep]] = Field(None, min_length=1)


class PolicyResponse(BaseModel):
    """Schema for policy response."""
    id: str
    name: str
    steps: List[EscalationStep]
    is_preset: bool

    class Config:
        from_attributes = True

