import logging
import smtplib
from email.message import EmailMessage
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

from thcplus.core.config import settings

logger = logging.getLogger(__name__)

TEMPLATE_PATH = Path(__file__).parent.parent / "templates" / "emails"
env = Environment(loader=FileSystemLoader(TEMPLATE_PATH), autoescape=select_autoescape(["html", "xml", "html.j2"]))


def _build_message(
    to_email: str, subject: str, text_body: str, html_body: str | None = None, reply_to: str | None = None
) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = settings.smtp_from_email or "no-reply@thcplus.com"
    msg["To"] = to_email
    if reply_to:
        msg["Reply-To"] = reply_to
    msg.set_content(text_body)
    if html_body:
        msg.add_alternative(html_body, subtype="html")
    return msg


async def send_email(
    to_email: str, subject: str, text_body: str, html_body: str | None = None, reply_to: str | None = None
) -> bool:
    if not settings.smtp_enabled:
        return False
    msg = _build_message(to_email, subject, text_body, html_body, reply_to)
    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=10) as smtp:
            if settings.smtp_use_tls:
                smtp.starttls()
            if settings.smtp_username and settings.smtp_password:
                smtp.login(settings.smtp_username, settings.smtp_password)
            smtp.send_message(msg)
        return True
    except Exception as exc:
        logger.warning("Email send failed: %s", exc)
        return False


def render_template(template_name: str, context: dict) -> tuple[str, str]:
    base_text = env.get_template("base.txt.j2")
    base_html = env.get_template("base.html.j2")
    body_text = env.get_template(template_name).render(**context)
    body_html = env.get_template(template_name.replace(".txt.j2", ".html.j2")).render(**context)
    return base_text.render(body=body_text), base_html.render(body=body_html)


async def send_contact_notification(name: str, email: str, message: str) -> bool:
    subject = f"New Contact Form Submission from {name}"
    text_body, html_body = render_template(
        "contact_notification.txt.j2", {"name": name, "email": email, "message": message}
    )
    return await send_email(settings.admin_notification_email, subject, text_body, html_body, reply_to=email)


async def send_contact_confirmation(to_email: str, name: str) -> bool:
    subject = "Thank you for contacting THC Plus"
    text_body, html_body = render_template("contact_confirmation.txt.j2", {"name": name})
    return await send_email(to_email, subject, text_body, html_body)
