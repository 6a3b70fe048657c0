# models.py

import re
from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .enums import (
    MessageDirection,
    MessageStatus,
    QuestionType,
    SideEffectType,
    StepKind,
    TurnOutcome,
)

_QUESTION_STEP_PATTERN = re.compile(r"^question_(\d+)$")


### Catalog ###
class QuestionOption(BaseModel):
    text: str
    value: str | None = None

    @property
    def canonical_value(self) -> str:
        """The stored representation of this option when it is chosen."""
        return self.value if self.value not in (None, "") else self.text


class ScaleConfig(BaseModel):
    min_value: int = 1
    max_value: int = 5
    min_label: str | None = None
    max_label: str | None = None


class QuestionDefinition(BaseModel):
    """
    One active question from an organization's catalog, with its
    type-specific configuration already resolved.
    """

    id: str
    text: str
    question_type: QuestionType
    order_index: int = 0
    category: str = "general"
    options: list[QuestionOption] = Field(default_factory=list)
    scale: ScaleConfig | None = None


class OrganizationBinding(BaseModel):
    """The slice of an organization the conversation engine needs."""

    id: str
    name: str
    sender_id: str
    sms_settings: dict[str, Any] = Field(default_factory=dict)
    webhook_secret: str | None = None


### Conversation state ###
class Step(BaseModel):
    """
    Tagged conversational position. Question steps carry the catalog index
    of the question awaiting an answer.
    """

    model_config = ConfigDict(frozen=True)

    kind: StepKind
    index: int | None = None

    @classmethod
    def consent(cls) -> "Step":
        return cls(kind=StepKind.CONSENT)

    @classmethod
    def question(cls, index: int) -> "Step":
        if index < 0:
            raise ValueError(f"Question index must be non-negative, got {index}")
        return cls(kind=StepKind.QUESTION, index=index)

    @classmethod
    def completed(cls) -> "Step":
        return cls(kind=StepKind.COMPLETED)

    @classmethod
    def from_identifier(cls, identifier: str) -> "Step":
        if identifier == StepKind.CONSENT.value:
            return cls.consent()
        if identifier == StepKind.COMPLETED.value:
            return cls.completed()
        match = _QUESTION_STEP_PATTERN.match(identifier or "")
        if match:
            return cls.question(int(match.group(1)))
        raise ValueError(f"Unknown conversation step identifier: {identifier!r}")

    @property
    def identifier(self) -> str:
        if self.kind == StepKind.QUESTION:
            return f"question_{self.index}"
        return self.kind.value

    @property
    def is_terminal(self) -> bool:
        return self.kind == StepKind.COMPLETED


class ConversationState(BaseModel):
    """Pydantic version of SmsConversationState for use within the engine."""

    id: str | None = None
    organization_id: str
    phone_number: str
    sender_id: str
    step: Step = Field(default_factory=Step.consent)
    consent_given: bool = False
    responses: dict[str, Any] = Field(default_factory=dict)
    feedback_session_id: str | None = None
    last_message_id: str | None = None
    last_outbound_message: str | None = None
    version: int = 1
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None
    expires_at: datetime | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        """An open conversation nobody has answered before expires_at is abandoned."""
        if self.expires_at is None or self.step.is_terminal:
            return False
        now = now or datetime.now(self.expires_at.tzinfo)
        return self.expires_at <= now


### Side effects emitted by the state machine ###
class CreateSession(BaseModel):
    type: Literal[SideEffectType.CREATE_SESSION] = SideEffectType.CREATE_SESSION


class StoreResponse(BaseModel):
    type: Literal[SideEffectType.STORE_RESPONSE] = SideEffectType.STORE_RESPONSE
    question: QuestionDefinition
    value: Any
    score: int | None = None


class CompleteSession(BaseModel):
    type: Literal[SideEffectType.COMPLETE_SESSION] = SideEffectType.COMPLETE_SESSION
    total_score: float


SideEffect = Annotated[
    CreateSession | StoreResponse | CompleteSession, Field(discriminator="type")
]


class ValidationResult(BaseModel):
    accepted: bool
    value: Any = None
    score: int | None = None
    reason: str | None = None


class StepResult(BaseModel):
    next_step: Step
    outbound_message: str
    side_effects: list[SideEffect] = Field(default_factory=list)
    responses: dict[str, Any] = Field(default_factory=dict)
    consent_given: bool = False


### Messaging ###
class InboundMessage(BaseModel):
    phone_number: str
    text: str = ""
    sender_id: str
    provider_message_id: str | None = None


class SendResult(BaseModel):
    delivered: bool
    provider_message_id: str | None = None
    cost: str | None = None
    error: str | None = None


class TurnResult(BaseModel):
    outcome: TurnOutcome
    step: str | None = None
    reply: str | None = None
    delivery: SendResult | None = None


### API Request and Response models ###
class SmsWebhookResponse(BaseModel):
    status: str
    step: str | None = None
    reply: str | None = None


class ConversationLogEntry(BaseModel):
    direction: MessageDirection
    content: str
    provider_message_id: str | None = None
    status: MessageStatus
    error: str | None = None
    created_at: datetime | None = None


class ConversationHistoryResponse(BaseModel):
    organization_id: str
    phone_number: str
    messages: list[dict[str, Any]]
