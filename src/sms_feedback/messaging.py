"""
Outbound SMS delivery.

Messengers report every delivery problem, including missing credentials and
provider errors, through the returned SendResult instead of raising.
"""

import logging
from os import environ
from typing import Protocol

import requests

from sms_feedback.pydantic_models import OrganizationBinding, SendResult

logger = logging.getLogger(__name__)

AFRICASTALKING_API_URL = environ.get(
    "AFRICASTALKING_API_URL", "https://api.africastalking.com/version1/messaging"
)
AFRICASTALKING_SANDBOX_API_URL = environ.get(
    "AFRICASTALKING_SANDBOX_API_URL",
    "https://api.sandbox.africastalking.com/version1/messaging",
)
REQUEST_TIMEOUT = float(environ.get("SMS_SEND_TIMEOUT", "15"))

DEFAULT_PROVIDER = "africastalking"


class Messenger(Protocol):
    def send(
        self, organization: OrganizationBinding, phone_number: str, message: str
    ) -> SendResult: ...


class AfricasTalkingMessenger:
    """
    Sends a single SMS through the Africa's Talking messaging API using the
    organization's own username and API key.
    """

    def __init__(self, session: requests.Session | None = None):
        self.session = session or requests.Session()

    @staticmethod
    def api_url_for(username: str) -> str:
        if username == "sandbox":
            return AFRICASTALKING_SANDBOX_API_URL
        return AFRICASTALKING_API_URL

    def send(
        self, organization: OrganizationBinding, phone_number: str, message: str
    ) -> SendResult:
        username = organization.sms_settings.get("username")
        api_key = organization.sms_settings.get("api_key")
        if not username or not api_key:
            logger.error(
                f"Organization {organization.id} has no SMS credentials configured."
            )
            return SendResult(delivered=False, error="SMS credentials not configured")

        try:
            resp = self.session.post(
                self.api_url_for(username),
                data={
                    "username": username,
                    "to": phone_number,
                    "message": message,
                    "from": organization.sender_id,
                },
                headers={"apiKey": api_key, "Accept": "application/json"},
                timeout=REQUEST_TIMEOUT,
            )
            resp.raise_for_status()
            data = resp.json()
        except requests.exceptions.HTTPError as exc:
            body = exc.response.text if exc.response is not None else "(no body)"
            status = exc.response.status_code if exc.response is not None else "?"
            logger.error(f"Africa's Talking HTTP error: {status} - {body}")
            return SendResult(delivered=False, error=f"HTTP {status}: {body}")
        except requests.exceptions.RequestException as exc:
            logger.error(f"Africa's Talking request failed: {exc}")
            return SendResult(delivered=False, error=str(exc))

        recipients = data.get("SMSMessageData", {}).get("Recipients", [])
        if not recipients:
            summary = data.get("SMSMessageData", {}).get("Message", "No recipients")
            logger.warning(f"Africa's Talking did not accept the message: {summary}")
            return SendResult(delivered=False, error=summary)

        recipient = recipients[0]
        delivered = str(recipient.get("status", "")).lower() == "success"
        if not delivered:
            logger.warning(
                f"SMS to {phone_number} not accepted: {recipient.get('status')}"
            )
        return SendResult(
            delivered=delivered,
            provider_message_id=recipient.get("messageId"),
            cost=recipient.get("cost"),
            error=None if delivered else str(recipient.get("status")),
        )


PROVIDERS: dict[str, type[AfricasTalkingMessenger]] = {
    DEFAULT_PROVIDER: AfricasTalkingMessenger,
}


class UnsupportedProviderMessenger:
    """Stands in for providers the organization selected but we cannot send through."""

    def __init__(self, provider: str):
        self.provider = provider

    def send(
        self, organization: OrganizationBinding, phone_number: str, message: str
    ) -> SendResult:
        logger.error(
            f"Organization {organization.id} uses unsupported SMS provider '{self.provider}'."
        )
        return SendResult(
            delivered=False, error=f"Unsupported SMS provider: {self.provider}"
        )


def get_messenger(organization: OrganizationBinding) -> Messenger:
    provider = organization.sms_settings.get("provider") or DEFAULT_PROVIDER
    messenger_class = PROVIDERS.get(provider)
    if messenger_class is None:
        return UnsupportedProviderMessenger(provider)
    return messenger_class()
