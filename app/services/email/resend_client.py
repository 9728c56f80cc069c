"""
Transactional email through the Resend REST API.

One attempt per call; retries and backoff belong to the notification outbox.
"""

import httpx

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"
REQUEST_TIMEOUT = 15  # seconds


class EmailSendError(Exception):
    """Raised when the email provider rejects or fails a send."""

    def __init__(self, message: str, status_code: int | None = None, recoverable: bool = True):
        super().__init__(message)
        self.status_code = status_code
        self.recoverable = recoverable


class ResendClient:
    """Thin async wrapper over POST /emails."""

    def __init__(self, api_key: str | None = None, sender: str | None = None):
        self.api_key = api_key if api_key is not None else settings.RESEND_API_KEY
        self.sender = sender if sender is not None else settings.EMAIL_FROM

    def is_configured(self) -> bool:
        return bool(self.api_key and self.sender)

    async def send(
        self, to: str, subject: str, html: str, text: str, idempotency_key: str | None = None
    ) -> dict:
        """
        Send one email.

        Resend answers a repeated idempotency_key (within 24h) with the original
        message instead of sending again.

        Returns:
            Dict with the provider message id under "id"

        Raises:
            EmailSendError: provider not configured, request failed, or no id returned
        """
        if not self.is_configured():
            raise EmailSendError("Email provider not configured", recoverable=False)

        body = {
            "from": self.sender,
            "to": [to],
            "subject": subject,
            "html": html,
            "text": text,
        }
        if settings.EMAIL_REPLY_TO:
            body["reply_to"] = settings.EMAIL_REPLY_TO

        headers = {"Authorization": f"Bearer {self.api_key}"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        try:
            async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
                response = await client.post(RESEND_API_URL, json=body, headers=headers)
        except httpx.RequestError as e:
            logger.warning("Resend request error", error=str(e), error_type=type(e).__name__)
            raise EmailSendError(f"Resend request failed: {e}") from e

        if not response.is_success:
            logger.error(
                "Resend send failed",
                status_code=response.status_code,
                response_text=response.text[:200],
            )
            raise EmailSendError(
                f"Resend error (HTTP {response.status_code}): {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            message_id = response.json().get("id")
        except ValueError:
            message_id = None

        if not message_id:
            raise EmailSendError("Resend returned no message id", status_code=response.status_code)

        return {"id": message_id}


email_client = ResendClient()
