import logging
import sys
from contextlib import asynccontextmanager
from os import environ
from typing import Annotated, Any

import sentry_sdk
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.concurrency import run_in_threadpool

from sms_feedback.crud import get_conversation_log, get_organization_by_sender_id
from sms_feedback.database import run_migrations
from sms_feedback.enums import TurnOutcome
from sms_feedback.pydantic_models import (
    ConversationHistoryResponse,
    SmsWebhookResponse,
)
from sms_feedback.sms_orchestrator import process_inbound_message
from sms_feedback.utilities import chat_messages_to_json, log_entries_to_chat_messages
from sms_feedback.webhook import (
    SIGNATURE_HEADER,
    InvalidPayloadError,
    extract_inbound_message,
    verify_path_secret,
    verify_signature,
)

load_dotenv()

# Logging config for the API is handled by uvicorn, setup in log_conf.yaml
logger = logging.getLogger(__name__)


def setup_sentry():
    if dsn := environ.get("SENTRY_DSN"):
        sentry_sdk.init(dsn=dsn, send_default_pii=True)


setup_sentry()


def is_running_in_pytest():
    """Checks if the current execution environment is within a pytest test run."""
    return "pytest" in sys.modules


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Handles application startup logic. Migrations are run on startup
    unless the application is being run by pytest.
    """
    logger.info("Application startup...")

    if not is_running_in_pytest():
        logger.info("Running database migrations...")
        run_migrations()
    else:
        logger.info("Skipping migrations: running in pytest environment.")

    logger.info("Application setup complete")
    yield
    logger.info("Application shutdown...")


app = FastAPI(lifespan=lifespan)

Instrumentator().instrument(app).expose(app)


@app.get("/health")
def health():
    return {"health": "ok"}


def verify_token(authorization: Annotated[str, Header()]):
    """
    Verify the API token from the Authorization header.
    """
    scheme, _, credential = authorization.partition(" ")
    if scheme.lower() != "token":
        raise HTTPException(
            status_code=401,
            detail="Invalid authentication format. Expected 'Token <token>'",
        )

    if credential != environ["API_TOKEN"]:
        raise HTTPException(
            status_code=401,
            detail="Invalid authentication token",
        )

    return credential


async def _read_payload(request: Request) -> tuple[bytes, dict[str, Any]]:
    """Reads the raw body (for signature checks) and the decoded form or JSON payload."""
    raw_body = await request.body()
    content_type = request.headers.get("content-type", "")

    if "application/json" in content_type:
        try:
            payload = await request.json()
        except ValueError:
            raise HTTPException(status_code=422, detail="Invalid JSON body")
        if not isinstance(payload, dict):
            raise HTTPException(status_code=422, detail="Expected a JSON object")
        return raw_body, payload

    form = await request.form()
    return raw_body, {key: value for key, value in form.items()}


async def _handle_sms_webhook(
    request: Request, path_secret: str | None = None
) -> SmsWebhookResponse:
    raw_body, payload = await _read_payload(request)

    try:
        message = extract_inbound_message(payload)
    except InvalidPayloadError as e:
        logger.warning(f"Rejected SMS webhook with invalid payload: {e}")
        raise HTTPException(status_code=422, detail=str(e))

    organization = await run_in_threadpool(
        get_organization_by_sender_id, message.sender_id
    )
    if not organization:
        logger.warning(f"No SMS-enabled organization for sender id {message.sender_id}.")
        raise HTTPException(status_code=404, detail="Unknown sender id")

    if path_secret is not None and not verify_path_secret(
        path_secret, organization.webhook_secret
    ):
        logger.warning(f"Webhook secret mismatch for organization {organization.id}.")
        raise HTTPException(status_code=401, detail="Invalid webhook secret")

    if not verify_signature(
        raw_body, request.headers.get(SIGNATURE_HEADER), organization.webhook_secret
    ):
        logger.warning(f"Webhook signature mismatch for organization {organization.id}.")
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    logger.info(
        f"Processing SMS from {message.phone_number} for organization {organization.id}"
    )
    result = await run_in_threadpool(process_inbound_message, message, organization)

    status = {
        TurnOutcome.ERROR: "error",
        TurnOutcome.DUPLICATE: "duplicate",
    }.get(result.outcome, "ok")
    return SmsWebhookResponse(status=status, step=result.step, reply=result.reply)


@app.post("/v1/sms/webhook")
async def sms_webhook(request: Request) -> SmsWebhookResponse:
    return await _handle_sms_webhook(request)


@app.post("/v1/sms/webhook/{webhook_secret}")
async def sms_webhook_with_secret(
    webhook_secret: str, request: Request
) -> SmsWebhookResponse:
    return await _handle_sms_webhook(request, path_secret=webhook_secret)


@app.get("/v1/sms/conversations/{organization_id}/{phone_number}")
def conversation_history(
    organization_id: str, phone_number: str, token: str = Depends(verify_token)
) -> ConversationHistoryResponse:
    entries = get_conversation_log(organization_id, phone_number)
    messages = log_entries_to_chat_messages(entries)
    return ConversationHistoryResponse(
        organization_id=organization_id,
        phone_number=phone_number,
        messages=chat_messages_to_json(messages),
    )
