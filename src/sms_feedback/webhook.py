"""
Helpers for inbound SMS provider callbacks: signature verification and
normalisation of the provider's field names into an InboundMessage.
"""

import hashlib
import hmac
import logging
from typing import Any, Mapping

from pydantic import ValidationError

from sms_feedback.pydantic_models import InboundMessage

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"

# Africa's Talking posts from/to/text/id; Twilio-style providers use
# From/To/Body/MessageSid.
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "phone_number": ("from", "From", "phoneNumber", "phone_number", "msisdn"),
    "text": ("text", "Text", "Body", "body", "message"),
    "provider_message_id": ("id", "messageId", "message_id", "MessageSid", "SmsSid"),
    "sender_id": ("to", "To", "shortCode", "short_code", "sender_id", "senderId"),
}


class InvalidPayloadError(ValueError):
    """Raised when a callback is missing the fields needed to route it."""


def _first_present(payload: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = payload.get(key)
        if value not in (None, ""):
            return value
    return None


def extract_inbound_message(payload: Mapping[str, Any]) -> InboundMessage:
    fields = {
        name: _first_present(payload, keys) for name, keys in FIELD_ALIASES.items()
    }
    missing = [name for name in ("phone_number", "sender_id") if not fields[name]]
    if missing:
        raise InvalidPayloadError(f"Missing required field(s): {', '.join(missing)}")

    try:
        return InboundMessage(
            phone_number=str(fields["phone_number"]).strip(),
            sender_id=str(fields["sender_id"]).strip(),
            text=str(fields["text"] or ""),
            provider_message_id=(
                str(fields["provider_message_id"])
                if fields["provider_message_id"] is not None
                else None
            ),
        )
    except ValidationError as e:
        raise InvalidPayloadError(str(e)) from e


def compute_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()


def verify_signature(
    raw_body: bytes, signature_header: str | None, secret: str | None
) -> bool:
    """
    Returns False only for a signature that does not match the organization's
    secret. Unsigned callbacks, and organizations without a secret, pass.
    """
    if not signature_header:
        return True
    if not secret:
        logger.warning("Signed webhook received but no webhook secret is configured.")
        return True

    received = signature_header.strip()
    if received.startswith("sha256="):
        received = received[len("sha256=") :]
    return hmac.compare_digest(compute_signature(raw_body, secret), received)


def verify_path_secret(path_secret: str, secret: str | None) -> bool:
    if not secret:
        return False
    return hmac.compare_digest(path_secret.encode(), secret.encode())
