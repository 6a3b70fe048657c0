import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String, nullable=False)
    sms_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    sms_sender_id: Mapped[str] = mapped_column(
        String, unique=True, index=True, nullable=True
    )
    sms_settings: Mapped[dict] = mapped_column(JSON, nullable=True)
    webhook_secret: Mapped[str] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.now
    )

    __table_args__ = {"extend_existing": True}

    def __repr__(self):
        return f"<Organization(id='{self.id}', name='{self.name}', sender_id='{self.sms_sender_id}')>"


class Question(Base):
    __tablename__ = "questions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(
        ForeignKey("organizations.id"), index=True, nullable=False
    )
    question_text: Mapped[str] = mapped_column(String(500), nullable=False)
    question_type: Mapped[str] = mapped_column(String, nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    category: Mapped[str] = mapped_column(String, default="general", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), onupdate=datetime.now, nullable=True
    )

    options: Mapped[list["QuestionOption"]] = relationship(
        back_populates="question",
        order_by="QuestionOption.order_index",
        cascade="all, delete-orphan",
    )
    scale_config: Mapped["QuestionScaleConfig"] = relationship(
        back_populates="question", uselist=False, cascade="all, delete-orphan"
    )

    __table_args__ = {"extend_existing": True}

    def __repr__(self):
        return f"<Question(id='{self.id}', type='{self.question_type}', order_index='{self.order_index}')>"


class QuestionOption(Base):
    __tablename__ = "question_options"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    question_id: Mapped[str] = mapped_column(
        ForeignKey("questions.id"), index=True, nullable=False
    )
    option_text: Mapped[str] = mapped_column(String, nullable=False)
    option_value: Mapped[str] = mapped_column(String, nullable=True)
    order_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    question: Mapped[Question] = relationship(back_populates="options")

    __table_args__ = {"extend_existing": True}


class QuestionScaleConfig(Base):
    __tablename__ = "question_scale_config"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    question_id: Mapped[str] = mapped_column(
        ForeignKey("questions.id"), unique=True, nullable=False
    )
    min_value: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    max_value: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    min_label: Mapped[str] = mapped_column(String, nullable=True)
    max_label: Mapped[str] = mapped_column(String, nullable=True)

    question: Mapped[Question] = relationship(back_populates="scale_config")

    __table_args__ = {"extend_existing": True}


class SmsConversationState(Base):
    __tablename__ = "sms_conversation_states"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(
        ForeignKey("organizations.id"), nullable=False
    )
    phone_number: Mapped[str] = mapped_column(String, nullable=False)
    sender_id: Mapped[str] = mapped_column(String, nullable=False)
    current_step: Mapped[str] = mapped_column(
        String, default="consent", nullable=False
    )
    consent_given: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    responses: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    feedback_session_id: Mapped[str] = mapped_column(
        ForeignKey("feedback_sessions.id"), nullable=True
    )
    last_message_id: Mapped[str] = mapped_column(String, nullable=True)
    last_outbound_message: Mapped[str] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), onupdate=datetime.now, default=datetime.now
    )
    completed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index(
            "ix_sms_conversation_states_tuple",
            "organization_id",
            "phone_number",
            "sender_id",
        ),
        # At most one open conversation per tuple; completed rows are history.
        Index(
            "uq_sms_conversation_states_open_tuple",
            "organization_id",
            "phone_number",
            "sender_id",
            unique=True,
            postgresql_where=text("current_step != 'completed'"),
            sqlite_where=text("current_step != 'completed'"),
        ),
        {"extend_existing": True},
    )

    def __repr__(self):
        return f"<SmsConversationState(phone_number='{self.phone_number}', sender_id='{self.sender_id}', step='{self.current_step}', version='{self.version}')>"


class FeedbackSession(Base):
    __tablename__ = "feedback_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(
        ForeignKey("organizations.id"), index=True, nullable=False
    )
    phone_number: Mapped[str] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, default="in_progress", nullable=False)
    total_score: Mapped[float] = mapped_column(Float, nullable=True)
    metadata_: Mapped[dict] = mapped_column("metadata", JSON, nullable=True)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.now
    )
    completed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = {"extend_existing": True}

    def __repr__(self):
        return f"<FeedbackSession(id='{self.id}', status='{self.status}', total_score='{self.total_score}')>"


class FeedbackResponse(Base):
    __tablename__ = "feedback_responses"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    session_id: Mapped[str] = mapped_column(
        ForeignKey("feedback_sessions.id"), index=True, nullable=False
    )
    question_id: Mapped[str] = mapped_column(String(36), nullable=False)
    organization_id: Mapped[str] = mapped_column(
        ForeignKey("organizations.id"), nullable=False
    )
    response_value: Mapped[Any] = mapped_column(JSON, nullable=False)
    score: Mapped[int] = mapped_column(Integer, nullable=True)
    question_category: Mapped[str] = mapped_column(
        String, default="general", nullable=False
    )
    question_snapshot: Mapped[dict] = mapped_column(JSON, nullable=False)
    question_type_snapshot: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.now
    )

    __table_args__ = (
        UniqueConstraint(
            "session_id", "question_id", name="uq_feedback_responses_session_question"
        ),
        {"extend_existing": True},
    )

    def __repr__(self):
        return f"<FeedbackResponse(session_id='{self.session_id}', question_id='{self.question_id}', score='{self.score}')>"


class SmsConversationLog(Base):
    __tablename__ = "sms_conversation_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[str] = mapped_column(
        ForeignKey("organizations.id"), nullable=False
    )
    phone_number: Mapped[str] = mapped_column(String, index=True, nullable=False)
    sender_id: Mapped[str] = mapped_column(String, nullable=False)
    direction: Mapped[str] = mapped_column(String, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    provider_message_id: Mapped[str] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False)
    error: Mapped[str] = mapped_column(Text, nullable=True)
    cost: Mapped[str] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=datetime.now
    )

    __table_args__ = {"extend_existing": True}

    def __repr__(self):
        return f"<SmsConversationLog(phone_number='{self.phone_number}', direction='{self.direction}', status='{self.status}')>"
