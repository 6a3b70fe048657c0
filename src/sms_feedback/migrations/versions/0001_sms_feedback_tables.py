"""sms feedback tables

Revision ID: 0001
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "organizations",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("sms_enabled", sa.Boolean(), nullable=False),
        sa.Column("sms_sender_id", sa.String(), nullable=True),
        sa.Column("sms_settings", sa.JSON(), nullable=True),
        sa.Column("webhook_secret", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_organizations_sms_sender_id",
        "organizations",
        ["sms_sender_id"],
        unique=True,
    )

    op.create_table(
        "questions",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("organization_id", sa.String(length=36), nullable=False),
        sa.Column("question_text", sa.String(length=500), nullable=False),
        sa.Column("question_type", sa.String(), nullable=False),
        sa.Column("order_index", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_questions_organization_id", "questions", ["organization_id"]
    )

    op.create_table(
        "question_options",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("question_id", sa.String(length=36), nullable=False),
        sa.Column("option_text", sa.String(), nullable=False),
        sa.Column("option_value", sa.String(), nullable=True),
        sa.Column("order_index", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["question_id"], ["questions.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_question_options_question_id", "question_options", ["question_id"]
    )

    op.create_table(
        "question_scale_config",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("question_id", sa.String(length=36), nullable=False),
        sa.Column("min_value", sa.Integer(), nullable=False),
        sa.Column("max_value", sa.Integer(), nullable=False),
        sa.Column("min_label", sa.String(), nullable=True),
        sa.Column("max_label", sa.String(), nullable=True),
        sa.ForeignKeyConstraint(["question_id"], ["questions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("question_id"),
    )

    op.create_table(
        "feedback_sessions",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("organization_id", sa.String(length=36), nullable=False),
        sa.Column("phone_number", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("total_score", sa.Float(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_feedback_sessions_organization_id",
        "feedback_sessions",
        ["organization_id"],
    )

    op.create_table(
        "feedback_responses",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("session_id", sa.String(length=36), nullable=False),
        sa.Column("question_id", sa.String(length=36), nullable=False),
        sa.Column("organization_id", sa.String(length=36), nullable=False),
        sa.Column("response_value", sa.JSON(), nullable=False),
        sa.Column("score", sa.Integer(), nullable=True),
        sa.Column("question_category", sa.String(), nullable=False),
        sa.Column("question_snapshot", sa.JSON(), nullable=False),
        sa.Column("question_type_snapshot", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["session_id"], ["feedback_sessions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "session_id",
            "question_id",
            name="uq_feedback_responses_session_question",
        ),
    )
    op.create_index(
        "ix_feedback_responses_session_id", "feedback_responses", ["session_id"]
    )

    op.create_table(
        "sms_conversation_states",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("organization_id", sa.String(length=36), nullable=False),
        sa.Column("phone_number", sa.String(), nullable=False),
        sa.Column("sender_id", sa.String(), nullable=False),
        sa.Column("current_step", sa.String(), nullable=False),
        sa.Column("consent_given", sa.Boolean(), nullable=False),
        sa.Column("responses", sa.JSON(), nullable=False),
        sa.Column("feedback_session_id", sa.String(length=36), nullable=True),
        sa.Column("last_message_id", sa.String(), nullable=True),
        sa.Column("last_outbound_message", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
        sa.ForeignKeyConstraint(["feedback_session_id"], ["feedback_sessions.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_sms_conversation_states_tuple",
        "sms_conversation_states",
        ["organization_id", "phone_number", "sender_id"],
    )
    op.create_index(
        "uq_sms_conversation_states_open_tuple",
        "sms_conversation_states",
        ["organization_id", "phone_number", "sender_id"],
        unique=True,
        postgresql_where=sa.text("current_step != 'completed'"),
        sqlite_where=sa.text("current_step != 'completed'"),
    )

    op.create_table(
        "sms_conversation_logs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("organization_id", sa.String(length=36), nullable=False),
        sa.Column("phone_number", sa.String(), nullable=False),
        sa.Column("sender_id", sa.String(), nullable=False),
        sa.Column("direction", sa.String(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("provider_message_id", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("cost", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_sms_conversation_logs_phone_number",
        "sms_conversation_logs",
        ["phone_number"],
    )


def downgrade() -> None:
    op.drop_index(
        "ix_sms_conversation_logs_phone_number", table_name="sms_conversation_logs"
    )
    op.drop_table("sms_conversation_logs")
    op.drop_index(
        "uq_sms_conversation_states_open_tuple", table_name="sms_conversation_states"
    )
    op.drop_index(
        "ix_sms_conversation_states_tuple", table_name="sms_conversation_states"
    )
    op.drop_table("sms_conversation_states")
    op.drop_index(
        "ix_feedback_responses_session_id", table_name="feedback_responses"
    )
    op.drop_table("feedback_responses")
    op.drop_index(
        "ix_feedback_sessions_organization_id", table_name="feedback_sessions"
    )
    op.drop_table("feedback_sessions")
    op.drop_table("question_scale_config")
    op.drop_index("ix_question_options_question_id", table_name="question_options")
    op.drop_table("question_options")
    op.drop_index("ix_questions_organization_id", table_name="questions")
    op.drop_table("questions")
    op.drop_index("ix_organizations_sms_sender_id", table_name="organizations")
    op.drop_table("organizations")
