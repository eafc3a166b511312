from __future__ import annotations

import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from vexillum.logging import get_logger, redact_email

logger = get_logger(__name__)


class EmailService:
    """Delivers magic-link emails over SMTP.

    Without ``smtp_host`` and a sender address the message is logged instead
    of sent (dev mode). Delivery failures are logged and reported as
    ``False``; callers never see SMTP exceptions.
    """

    def __init__(
        self,
        *,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        from_email: Optional[str] = None,
        from_name: str = "Vexillum",
        base_url: Optional[str] = None,
        link_ttl_hours: int = 24,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.base_url = (base_url or "http://localhost:3000").rstrip("/")
        self.link_ttl_hours = link_ttl_hours

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def magic_link_url(self, token: str) -> str:
        return f"{self.base_url}/auth/magic-link?token={token}"

    def _send_email(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: Optional[str] = None,
    ) -> bool:
        if not self.is_configured:
            # the body holds a live sign-in link; only its envelope is logged
            logger.info("email_dev_mode", to=redact_email(to_email), subject=subject)
            return True

        try:
            msg = MIMEMultipart("alternative")
            msg["Subject"] = subject
            msg["From"] = f"{self.from_name} <{self.from_email}>"
            msg["To"] = to_email
            if text_body:
                msg.attach(MIMEText(text_body, "plain"))
            msg.attach(MIMEText(html_body, "html"))

            context = ssl.create_default_context()
            logger.debug(
                "email_connecting",
                host=self.smtp_host,
                port=self.smtp_port,
                use_tls=self.smtp_use_tls,
                to=redact_email(to_email),
            )
            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
                    server.starttls(context=context)
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
            else:
                with smtplib.SMTP_SSL(
                    self.smtp_host, self.smtp_port, context=context, timeout=30
                ) as server:
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())

            logger.info("email_sent", to=redact_email(to_email), subject=subject)
            return True

        except smtplib.SMTPAuthenticationError as e:
            logger.error(
                "email_auth_failed",
                to=redact_email(to_email),
                host=self.smtp_host,
                error=str(e),
                error_code=getattr(e, "smtp_code", None),
            )
            return False
        except smtplib.SMTPRecipientsRefused as e:
            logger.error(
                "email_recipient_refused",
                to=redact_email(to_email),
                error=str(e),
            )
            return False
        except smtplib.SMTPException as e:
            logger.error(
                "email_smtp_error",
                to=redact_email(to_email),
                host=self.smtp_host,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False
        except (ssl.SSLError, OSError) as e:
            logger.error(
                "email_transport_error",
                to=redact_email(to_email),
                host=self.smtp_host,
                port=self.smtp_port,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False

    def send_magic_link(self, to_email: str, token: str) -> bool:
        """Send a one-time sign-in link."""
        link_url = self.magic_link_url(token)
        subject = f"Your {self.from_name} sign-in link"

        html_body = f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <style>
        body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #1f2933; }}
        .container {{ max-width: 600px; margin: 0 auto; padding: 40px 20px; }}
        .button {{ display: inline-block; background: #2f6fde; color: white; padding: 12px 24px; border-radius: 8px; text-decoration: none; font-weight: 600; }}
        .footer {{ margin-top: 40px; font-size: 12px; color: #5b6470; }}
    </style>
</head>
<body>
    <div class="container">
        <h1>Sign in to {self.from_name}</h1>
        <p>Click the button below to sign in. The link works once.</p>
        <p style="margin: 30px 0;">
            <a href="{link_url}" class="button">Sign in</a>
        </p>
        <p>This link will expire in {self.link_ttl_hours} hours.</p>
        <p>If you didn't request this, you can safely ignore this email.</p>
        <div class="footer">
            <p>{self.from_name}</p>
            <p>If the button doesn't work, copy and paste this URL: {link_url}</p>
        </div>
    </div>
</body>
</html>
"""

        text_body = f"""Sign in to {self.from_name}

Visit the link below to sign in. The link works once.

{link_url}

This link will expire in {self.link_ttl_hours} hours.

If you didn't request this, you can safely ignore this email.

---
{self.from_name}
"""

        return self._send_email(to_email, subject, html_body, text_body)
