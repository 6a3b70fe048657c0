import logging
import os
from datetime import datetime, timedelta

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.future import select
from sqlalchemy.orm import Session, selectinload

from sms_feedback.enums import (
    MessageDirection,
    MessageStatus,
    QuestionType,
    SessionStatus,
    SideEffectType,
    StepKind,
)
from sms_feedback.pydantic_models import (
    ConversationLogEntry,
    ConversationState,
    OrganizationBinding,
    QuestionDefinition,
    QuestionOption,
    ScaleConfig,
    SideEffect,
    Step,
    StoreResponse,
)

from .database import SessionLocal
from .sqlalchemy_models import (
    FeedbackResponse,
    FeedbackSession,
    Organization,
    Question,
    SmsConversationLog,
    SmsConversationState,
)

logger = logging.getLogger(__name__)

# An open conversation with no reply for this long is abandoned.
CONVERSATION_TTL = timedelta(
    hours=float(os.getenv("SMS_CONVERSATION_TTL_HOURS", "24"))
)


class ConversationConflictError(Exception):
    """
    Raised when a conversation state was changed by another request between
    being read and being written back.
    """


class StoredDataError(ValueError):
    """Raised when a stored record cannot be used to continue a conversation."""


### Organizations ###
def get_organization_by_sender_id(sender_id: str) -> OrganizationBinding | None:
    """Resolves the SMS-enabled organization that owns an inbound sender id."""
    with SessionLocal() as session:
        result = session.execute(
            select(Organization).where(
                Organization.sms_sender_id == sender_id,
                Organization.sms_enabled.is_(True),
            )
        )
        organization = result.scalar_one_or_none()
        if not organization:
            return None
        return OrganizationBinding(
            id=organization.id,
            name=organization.name,
            sender_id=organization.sms_sender_id,
            sms_settings=organization.sms_settings or {},
            webhook_secret=organization.webhook_secret,
        )


### Question catalog ###
def _question_to_definition(question: Question) -> QuestionDefinition | None:
    try:
        question_type = QuestionType(question.question_type)
    except ValueError:
        logger.error(
            f"Skipping question {question.id} with unsupported type '{question.question_type}'."
        )
        return None

    scale = None
    if question.scale_config:
        scale = ScaleConfig(
            min_value=question.scale_config.min_value,
            max_value=question.scale_config.max_value,
            min_label=question.scale_config.min_label,
            max_label=question.scale_config.max_label,
        )
    return QuestionDefinition(
        id=question.id,
        text=question.question_text,
        question_type=question_type,
        order_index=question.order_index,
        category=question.category or "general",
        options=[
            QuestionOption(text=option.option_text, value=option.option_value)
            for option in question.options
        ],
        scale=scale,
    )


def load_questions(organization_id: str) -> list[QuestionDefinition]:
    """
    Loads an organization's active questions in traversal order.
    An empty list means the organization has no questions configured.
    Questions of a type we cannot ask over SMS are left out.
    """
    with SessionLocal() as session:
        result = session.execute(
            select(Question)
            .options(
                selectinload(Question.options), selectinload(Question.scale_config)
            )
            .where(
                Question.organization_id == organization_id,
                Question.is_active.is_(True),
            )
            .order_by(Question.order_index.asc(), Question.id.asc())
        )
        definitions = (_question_to_definition(q) for q in result.scalars().all())
        return [d for d in definitions if d is not None]


### Conversation state ###
def _state_to_model(record: SmsConversationState) -> ConversationState:
    try:
        step = Step.from_identifier(record.current_step)
    except ValueError as e:
        raise StoredDataError(
            f"Conversation state {record.id} has an unreadable step: {e}"
        ) from e
    return ConversationState(
        id=record.id,
        organization_id=record.organization_id,
        phone_number=record.phone_number,
        sender_id=record.sender_id,
        step=step,
        consent_given=record.consent_given,
        responses=dict(record.responses or {}),
        feedback_session_id=record.feedback_session_id,
        last_message_id=record.last_message_id,
        last_outbound_message=record.last_outbound_message,
        version=record.version,
        created_at=record.created_at,
        updated_at=record.updated_at,
        completed_at=record.completed_at,
        expires_at=record.expires_at,
    )


def find_conversation_state(
    organization_id: str, phone_number: str, sender_id: str
) -> ConversationState | None:
    """
    Returns the open conversation for a tuple, or the most recent completed
    one when no conversation is open.
    """
    tuple_filter = (
        SmsConversationState.organization_id == organization_id,
        SmsConversationState.phone_number == phone_number,
        SmsConversationState.sender_id == sender_id,
    )
    with SessionLocal() as session:
        open_state = session.execute(
            select(SmsConversationState).where(
                *tuple_filter,
                SmsConversationState.current_step != StepKind.COMPLETED.value,
            )
        ).scalar_one_or_none()
        if open_state:
            return _state_to_model(open_state)

        latest = (
            session.execute(
                select(SmsConversationState)
                .where(*tuple_filter)
                .order_by(SmsConversationState.created_at.desc())
                .limit(1)
            )
            .scalars()
            .first()
        )
        return _state_to_model(latest) if latest else None


def _new_state_record(
    organization_id: str, phone_number: str, sender_id: str
) -> SmsConversationState:
    return SmsConversationState(
        organization_id=organization_id,
        phone_number=phone_number,
        sender_id=sender_id,
        current_step=Step.consent().identifier,
        consent_given=False,
        responses={},
        version=1,
        expires_at=datetime.now() + CONVERSATION_TTL,
    )


def create_initial_conversation_state(
    organization_id: str, phone_number: str, sender_id: str
) -> ConversationState:
    """
    Opens a new conversation for a tuple at the consent step. Only valid when
    the tuple has no open conversation.
    """
    record = _new_state_record(organization_id, phone_number, sender_id)
    try:
        with SessionLocal() as session:
            with session.begin():
                session.add(record)
            session.refresh(record)
            logger.info(f"Created conversation state for {phone_number} via {sender_id}.")
            return _state_to_model(record)
    except IntegrityError as e:
        raise ConversationConflictError(
            f"An open conversation already exists for {phone_number} via {sender_id}"
        ) from e


def _write_state(session: Session, state: ConversationState) -> ConversationState:
    """Compare-and-swap update keyed on the state's version."""
    now = datetime.now()
    completed_at = state.completed_at
    expires_at = state.expires_at
    if state.step.is_terminal:
        completed_at = completed_at or now
    else:
        expires_at = now + CONVERSATION_TTL

    result = session.execute(
        update(SmsConversationState)
        .where(
            SmsConversationState.id == state.id,
            SmsConversationState.version == state.version,
        )
        .values(
            current_step=state.step.identifier,
            consent_given=state.consent_given,
            responses=state.responses,
            feedback_session_id=state.feedback_session_id,
            last_message_id=state.last_message_id,
            last_outbound_message=state.last_outbound_message,
            version=state.version + 1,
            updated_at=now,
            completed_at=completed_at,
            expires_at=expires_at,
        )
    )
    if result.rowcount != 1:
        raise ConversationConflictError(
            f"Conversation state {state.id} changed since version {state.version}"
        )
    return state.model_copy(
        update={
            "version": state.version + 1,
            "updated_at": now,
            "completed_at": completed_at,
            "expires_at": expires_at,
        }
    )


def save_conversation_state(state: ConversationState) -> ConversationState:
    """Writes the full state back. Raises ConversationConflictError on a stale version."""
    with SessionLocal() as session:
        with session.begin():
            return _write_state(session, state)


def replace_expired_conversation_state(state: ConversationState) -> ConversationState:
    """
    Closes an abandoned conversation, marks its feedback session expired and
    opens a fresh conversation for the same tuple, all in one transaction.
    """
    try:
        with SessionLocal() as session:
            with session.begin():
                _write_state(session, state.model_copy(update={"step": Step.completed()}))
                if state.feedback_session_id:
                    session.execute(
                        update(FeedbackSession)
                        .where(FeedbackSession.id == state.feedback_session_id)
                        .values(status=SessionStatus.EXPIRED.value)
                    )
                record = _new_state_record(
                    state.organization_id, state.phone_number, state.sender_id
                )
                session.add(record)
            session.refresh(record)
            logger.info(
                f"Conversation {state.id} for {state.phone_number} expired at {state.step.identifier}; opened {record.id}."
            )
            return _state_to_model(record)
    except IntegrityError as e:
        raise ConversationConflictError(
            f"An open conversation already exists for {state.phone_number} via {state.sender_id}"
        ) from e


### Feedback sessions and responses ###
def _create_session(session: Session, state: ConversationState) -> str:
    feedback_session = FeedbackSession(
        organization_id=state.organization_id,
        phone_number=state.phone_number,
        status=SessionStatus.IN_PROGRESS.value,
        metadata_={"source": "sms", "sender_id": state.sender_id},
        started_at=datetime.now(),
    )
    session.add(feedback_session)
    session.flush()
    logger.info(
        f"Started feedback session {feedback_session.id} for {state.phone_number}."
    )
    return feedback_session.id


def _store_response(
    session: Session, state: ConversationState, effect: StoreResponse
) -> None:
    if not state.feedback_session_id:
        raise StoredDataError(
            f"Cannot store an answer for {state.phone_number} without a feedback session"
        )
    logger.info(
        f"Saving response '{effect.value}' with score '{effect.score}' to question {effect.question.id}"
    )
    session.add(
        FeedbackResponse(
            session_id=state.feedback_session_id,
            question_id=effect.question.id,
            organization_id=state.organization_id,
            response_value=effect.value,
            score=effect.score,
            question_category=effect.question.category,
            question_snapshot=effect.question.model_dump(mode="json"),
            question_type_snapshot=effect.question.question_type.value,
        )
    )


def _complete_session(
    session: Session, state: ConversationState, total_score: float
) -> None:
    if not state.feedback_session_id:
        return
    session.execute(
        update(FeedbackSession)
        .where(FeedbackSession.id == state.feedback_session_id)
        .values(
            status=SessionStatus.COMPLETED.value,
            total_score=total_score,
            completed_at=datetime.now(),
        )
    )
    logger.info(
        f"Completed feedback session {state.feedback_session_id} with score {total_score}."
    )


def commit_step(
    state: ConversationState, side_effects: list[SideEffect]
) -> ConversationState:
    """
    Applies a step's side effects and writes the new state in a single
    transaction. If anything fails, nothing is persisted and the previously
    stored state stays current.
    """
    with SessionLocal() as session:
        with session.begin():
            for effect in side_effects:
                if effect.type == SideEffectType.CREATE_SESSION:
                    session_id = _create_session(session, state)
                    state = state.model_copy(update={"feedback_session_id": session_id})
                elif effect.type == SideEffectType.STORE_RESPONSE:
                    _store_response(session, state, effect)
                elif effect.type == SideEffectType.COMPLETE_SESSION:
                    _complete_session(session, state, effect.total_score)
            return _write_state(session, state)


def get_feedback_session(session_id: str) -> FeedbackSession | None:
    with SessionLocal() as session:
        result = session.execute(
            select(FeedbackSession).where(FeedbackSession.id == session_id)
        )
        return result.scalar_one_or_none()


def get_feedback_responses(session_id: str) -> list[FeedbackResponse]:
    with SessionLocal() as session:
        result = session.execute(
            select(FeedbackResponse)
            .where(FeedbackResponse.session_id == session_id)
            .order_by(FeedbackResponse.created_at.asc())
        )
        return list(result.scalars().all())


### Conversation log ###
def append_conversation_log(
    organization_id: str,
    phone_number: str,
    sender_id: str,
    direction: MessageDirection,
    content: str,
    status: MessageStatus,
    provider_message_id: str | None = None,
    error: str | None = None,
    cost: str | None = None,
) -> None:
    with SessionLocal() as session:
        with session.begin():
            session.add(
                SmsConversationLog(
                    organization_id=organization_id,
                    phone_number=phone_number,
                    sender_id=sender_id,
                    direction=direction.value,
                    content=content,
                    status=status.value,
                    provider_message_id=provider_message_id,
                    error=error,
                    cost=cost,
                )
            )


def get_conversation_log(
    organization_id: str, phone_number: str
) -> list[ConversationLogEntry]:
    with SessionLocal() as session:
        result = session.execute(
            select(SmsConversationLog)
            .where(
                SmsConversationLog.organization_id == organization_id,
                SmsConversationLog.phone_number == phone_number,
            )
            .order_by(SmsConversationLog.id.asc())
        )
        return [
            ConversationLogEntry(
                direction=MessageDirection(entry.direction),
                content=entry.content,
                provider_message_id=entry.provider_message_id,
                status=MessageStatus(entry.status),
                error=entry.error,
                created_at=entry.created_at,
            )
            for entry in result.scalars().all()
        ]

