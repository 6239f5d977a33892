import httpx
import logging
from typing import Optional

from app.models.email import EmailMessage, EmailProviderType
from app.services.providers.base import EmailProvider, EmailProviderError

logger = logging.getLogger(__name__)


class ResendProvider(EmailProvider):
    """Resend transactional email API"""

    provider_type = EmailProviderType.RESEND
    BASE_URL = "https://api.resend.com/emails"

    def __init__(
        self,
        api_key: str,
        from_email: str,
        from_name: str,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(from_email, from_name)
        self.api_key = api_key
        self.base_url = base_url or self.BASE_URL
        self.timeout = timeout
        self._transport = transport

    def describe(self) -> str:
        return "Resend API configured"

    async def send(self, message: EmailMessage) -> str:
        payload = {
            "from": f"{self.from_name} <{self.from_email}>",
            "to": [message.to_email],
            "subject": message.subject,
            "html": message.html,
            "text": message.text,
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    self.base_url,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json"
                    },
                    json=payload
                )
        except httpx.HTTPError as e:
            raise EmailProviderError(f"Resend request failed: {e!r}") from e

        if response.status_code not in (200, 201, 202):
            logger.error(f"Resend API error {response.status_code}: {response.text}")
            raise EmailProviderError(f"Resend API Error: {response.status_code} {response.text}")

        try:
            return response.json().get("id", "")
        except ValueError:
            return ""
