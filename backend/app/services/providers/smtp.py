import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid

from app.models.email import EmailMessage, EmailProviderType
from app.services.providers.base import EmailProvider, EmailProviderError

logger = logging.getLogger(__name__)


class SmtpProvider(EmailProvider):
    """SMTP relay. Port 465 uses implicit TLS, other ports upgrade with STARTTLS when offered."""

    provider_type = EmailProviderType.SMTP

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        from_email: str,
        from_name: str,
        timeout: float = 30.0,
    ):
        super().__init__(from_email, from_name)
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.timeout = timeout

    def describe(self) -> str:
        return f"SMTP configured ({self.host})"

    def _build_mime(self, message: EmailMessage, message_id: str) -> MIMEMultipart:
        mime = MIMEMultipart("alternative")
        mime["Subject"] = message.subject
        mime["From"] = formataddr((self.from_name, self.from_email))
        mime["To"] = message.to_email
        mime["Message-ID"] = message_id
        mime.attach(MIMEText(message.text, "plain", "utf-8"))
        mime.attach(MIMEText(message.html, "html", "utf-8"))
        return mime

    def _send_sync(self, message: EmailMessage) -> str:
        message_id = make_msgid(domain=self.from_email.rsplit("@", 1)[-1])
        mime = self._build_mime(message, message_id)

        if self.port == 465:
            server = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout)
        else:
            server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)

        with server:
            if self.port != 465:
                server.ehlo()
                if server.has_extn("starttls"):
                    server.starttls()
                    server.ehlo()
            server.login(self.username, self.password)
            server.sendmail(self.from_email, [message.to_email], mime.as_string())

        return message_id

    async def send(self, message: EmailMessage) -> str:
        try:
            return await asyncio.to_thread(self._send_sync, message)
        except (smtplib.SMTPException, OSError) as e:
            raise EmailProviderError(f"SMTP delivery failed: {e}") from e
