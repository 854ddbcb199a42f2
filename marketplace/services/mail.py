import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from typing import Any, Dict

from jinja2 import Environment, FileSystemLoader, select_autoescape

from marketplace.config import settings

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "mails"

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(["html"]),
)


def render_template(template: str, data: Dict[str, Any]) -> str:
    return _env.get_template(template).render(**data)


class Mailer:
    """Renders a mail template and sends it over SMTP."""

    def __init__(self, host: str = None, port: int = None, user: str = None,
                 password: str = None, sender: str = None):
        self.host = host or settings.SMTP_HOST
        self.port = port or settings.SMTP_PORT
        self.user = settings.SMTP_USER if user is None else user
        self.password = settings.SMTP_PASSWORD if password is None else password
        self.sender = sender or settings.SMTP_MAIL

    def send(self, to: str, subject: str, template: str, data: Dict[str, Any]) -> bool:
        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = self.sender
        message["To"] = to
        message.attach(MIMEText(render_template(template, data), "html"))

        try:
            with smtplib.SMTP(self.host, self.port) as server:
                server.starttls()
                if self.user:
                    server.login(self.user, self.password)
                server.sendmail(self.sender, to, message.as_string())
            logger.info(f"Mail '{subject}' sent to {to}")
            return True
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send mail '{subject}' to {to}: {e}")
            return False


mailer = None


def get_mailer() -> Mailer:
    global mailer
    if mailer is None:
        mailer = Mailer()
    return mailer
