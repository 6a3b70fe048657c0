# sms_orchestrator.py
import logging
import uuid
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError

from . import conversation_engine, crud
from .crud import ConversationConflictError, StoredDataError
from .enums import MessageDirection, MessageStatus, TurnOutcome
from .messaging import Messenger, get_messenger
from .pydantic_models import (
    ConversationState,
    InboundMessage,
    OrganizationBinding,
    QuestionDefinition,
    SendResult,
    SideEffect,
    TurnResult,
)

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
MAX_CONFLICT_RETRIES = 3
GENERIC_ERROR_MESSAGE = (
    "Sorry, we’ve run into a technical problem. Please try again later."
)


class FeedbackStore(Protocol):
    """The persistence operations a conversation turn needs. `crud` provides them."""

    def find_conversation_state(
        self, organization_id: str, phone_number: str, sender_id: str
    ) -> ConversationState | None: ...

    def create_initial_conversation_state(
        self, organization_id: str, phone_number: str, sender_id: str
    ) -> ConversationState: ...

    def replace_expired_conversation_state(
        self, state: ConversationState
    ) -> ConversationState: ...

    def load_questions(self, organization_id: str) -> list[QuestionDefinition]: ...

    def commit_step(
        self, state: ConversationState, side_effects: list[SideEffect]
    ) -> ConversationState: ...

    def append_conversation_log(
        self,
        organization_id: str,
        phone_number: str,
        sender_id: str,
        direction: MessageDirection,
        content: str,
        status: MessageStatus,
        provider_message_id: str | None = None,
        error: str | None = None,
        cost: str | None = None,
    ) -> None: ...


# --- Main Orchestrator ---
def process_inbound_message(
    message: InboundMessage,
    organization: OrganizationBinding,
    store: FeedbackStore = crud,
    messenger: Messenger | None = None,
) -> TurnResult:
    """
    Runs one conversation turn for an authenticated inbound SMS: advances the
    tuple's conversation, persists the outcome, sends the reply and records
    both messages in the conversation log.
    """
    messenger = messenger or get_messenger(organization)
    trace_id = message.provider_message_id or str(uuid.uuid4())

    try:
        outcome, state, reply = _run_turn(message, organization, store)
    except (SQLAlchemyError, ConversationConflictError, StoredDataError) as e:
        logger.exception(
            "sms_turn_failed",
            extra={"trace_id": trace_id, "error": str(e)},
        )
        _append_log(store, organization, message, MessageStatus.RECEIVED)
        delivery = _send_reply(store, messenger, organization, message, GENERIC_ERROR_MESSAGE)
        return TurnResult(
            outcome=TurnOutcome.ERROR, reply=GENERIC_ERROR_MESSAGE, delivery=delivery
        )

    if outcome == TurnOutcome.DUPLICATE:
        logger.info(
            f"[{trace_id}] Duplicate delivery for {message.phone_number}; not reprocessing."
        )
        _append_log(store, organization, message, MessageStatus.DUPLICATE)
        return TurnResult(outcome=outcome, step=state.step.identifier, reply=reply)

    _append_log(store, organization, message, MessageStatus.RECEIVED)
    delivery = _send_reply(store, messenger, organization, message, reply)
    logger.info(
        f"[{trace_id}] {message.phone_number} is now at step '{state.step.identifier}'."
    )
    return TurnResult(
        outcome=outcome, step=state.step.identifier, reply=reply, delivery=delivery
    )


# --- State Machine Driver ---
def _run_turn(
    message: InboundMessage, organization: OrganizationBinding, store: FeedbackStore
) -> tuple[TurnOutcome, ConversationState, str | None]:
    """
    Recomputes the whole step from freshly loaded state whenever another
    request wrote the same conversation first.
    """
    for attempt in range(1, MAX_CONFLICT_RETRIES + 1):
        try:
            return _attempt_turn(message, organization, store)
        except ConversationConflictError:
            logger.warning(
                f"Conversation for {message.phone_number} changed concurrently "
                f"(attempt {attempt}/{MAX_CONFLICT_RETRIES}); retrying."
            )
    raise ConversationConflictError(
        f"Gave up on {message.phone_number} after {MAX_CONFLICT_RETRIES} conflicting writes"
    )


def _attempt_turn(
    message: InboundMessage, organization: OrganizationBinding, store: FeedbackStore
) -> tuple[TurnOutcome, ConversationState, str | None]:
    outcome = TurnOutcome.PROCESSED
    state = store.find_conversation_state(
        organization.id, message.phone_number, message.sender_id
    )

    if state is None:
        state = store.create_initial_conversation_state(
            organization.id, message.phone_number, message.sender_id
        )
    elif (
        message.provider_message_id
        and state.last_message_id == message.provider_message_id
    ):
        return TurnOutcome.DUPLICATE, state, state.last_outbound_message
    elif state.is_expired():
        logger.info(
            f"Conversation for {message.phone_number} expired at {state.step.identifier}; starting over."
        )
        state = store.replace_expired_conversation_state(state)
        outcome = TurnOutcome.RESTARTED
    elif state.step.is_terminal and conversation_engine.is_start_command(message.text):
        logger.info(f"{message.phone_number} asked to start a new conversation.")
        state = store.create_initial_conversation_state(
            organization.id, message.phone_number, message.sender_id
        )
        outcome = TurnOutcome.RESTARTED

    catalog = store.load_questions(organization.id)
    result = conversation_engine.step(state, message.text, catalog, organization)

    next_state = state.model_copy(
        update={
            "step": result.next_step,
            "responses": result.responses,
            "consent_given": result.consent_given,
            "last_message_id": message.provider_message_id,
            "last_outbound_message": result.outbound_message,
        }
    )
    saved = store.commit_step(next_state, result.side_effects)
    return outcome, saved, result.outbound_message


# --- Messaging & Audit ---
def _send_reply(
    store: FeedbackStore,
    messenger: Messenger,
    organization: OrganizationBinding,
    message: InboundMessage,
    reply: str,
) -> SendResult:
    delivery = messenger.send(organization, message.phone_number, reply)
    if not delivery.delivered:
        logger.error(
            f"Reply to {message.phone_number} was not delivered: {delivery.error}"
        )
    _append_log(
        store,
        organization,
        message,
        MessageStatus.SENT if delivery.delivered else MessageStatus.FAILED,
        direction=MessageDirection.OUTBOUND,
        content=reply,
        provider_message_id=delivery.provider_message_id,
        error=delivery.error,
        cost=delivery.cost,
    )
    return delivery


def _append_log(
    store: FeedbackStore,
    organization: OrganizationBinding,
    message: InboundMessage,
    status: MessageStatus,
    direction: MessageDirection = MessageDirection.INBOUND,
    content: str | None = None,
    provider_message_id: str | None = None,
    error: str | None = None,
    cost: str | None = None,
) -> None:
    if direction == MessageDirection.INBOUND:
        content = message.text
        provider_message_id = message.provider_message_id
    try:
        store.append_conversation_log(
            organization.id,
            message.phone_number,
            message.sender_id,
            direction,
            content or "",
            status,
            provider_message_id=provider_message_id,
            error=error,
            cost=cost,
        )
    except SQLAlchemyError:
        logger.exception(
            f"Could not record {direction.value} message for {message.phone_number} in the conversation log."
        )
