# tests/conftest.py

import os
import tempfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine

# Set the environment variable for the test database BEFORE any app code is imported.
# This is critical to ensure all modules use the correct test database URL from the start.
TEST_DB_PATH = Path(tempfile.gettempdir()) / "sms_feedback_test.db"
os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB_PATH}"

# Now that the environment is configured, we can safely import app and database code.
# Importing the models module registers the table definitions with Base.metadata.
from sms_feedback import sqlalchemy_models  # noqa: F401, E402
from sms_feedback.api import app  # noqa: E402
from sms_feedback.database import Base, SessionLocal  # noqa: E402
from sms_feedback.sqlalchemy_models import (  # noqa: E402
    Organization,
    Question,
    QuestionOption,
    QuestionScaleConfig,
)


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """
    Creates all tables once per test session and removes them, and the
    database file, afterwards.
    """
    engine = create_engine(os.environ["DATABASE_URL"])
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    yield

    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    TEST_DB_PATH.unlink(missing_ok=True)


@pytest.fixture(autouse=True)
def clean_tables():
    """Every test starts from empty tables."""
    yield
    with SessionLocal() as session:
        with session.begin():
            for table in reversed(Base.metadata.sorted_tables):
                session.execute(table.delete())


@pytest.fixture
def client() -> TestClient:
    """Provides a TestClient instance for making API requests."""
    return TestClient(app)


@pytest.fixture
def create_organization():
    """
    Factory that stores an SMS-enabled organization with a question catalog.
    Questions are dicts with keys text, type and optionally options, scale,
    category, order_index and is_active.
    """

    def _create(
        name: str = "Acme Clinic",
        sender_id: str = "22384",
        questions: list[dict] | None = None,
        webhook_secret: str | None = None,
        sms_enabled: bool = True,
        sms_settings: dict | None = None,
    ) -> str:
        with SessionLocal() as session:
            with session.begin():
                organization = Organization(
                    name=name,
                    sms_enabled=sms_enabled,
                    sms_sender_id=sender_id,
                    sms_settings=sms_settings
                    or {
                        "provider": "africastalking",
                        "username": "sandbox",
                        "api_key": "test-key",
                    },
                    webhook_secret=webhook_secret,
                )
                session.add(organization)
                session.flush()
                organization_id = organization.id

                for position, definition in enumerate(questions or []):
                    question = Question(
                        organization_id=organization_id,
                        question_text=definition["text"],
                        question_type=definition["type"],
                        order_index=definition.get("order_index", position),
                        category=definition.get("category", "general"),
                        is_active=definition.get("is_active", True),
                    )
                    for option_position, option in enumerate(definition.get("options", [])):
                        if isinstance(option, str):
                            option = {"text": option}
                        question.options.append(
                            QuestionOption(
                                option_text=option["text"],
                                option_value=option.get("value"),
                                order_index=option_position,
                            )
                        )
                    if "scale" in definition:
                        question.scale_config = QuestionScaleConfig(**definition["scale"])
                    session.add(question)
        return organization_id

    return _create
