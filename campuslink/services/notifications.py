"""Join-request notifications: in-app rows plus SMTP e-mail with a logged fallback."""

import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from campuslink.config import settings
from campuslink.models.notification import Notification

logger = logging.getLogger(__name__)

HTML_TEMPLATE_BASE = """
<!DOCTYPE html>
<html>
<head>
    <style>
        body { font-family: 'Inter', -apple-system, sans-serif; background-color: #f8f9fa; color: #333; margin: 0; padding: 0; }
        .container { max-width: 600px; margin: 40px auto; background: #ffffff; border-radius: 12px; overflow: hidden; }
        .header { background: #198754; padding: 30px 40px; text-align: center; }
        .header h1 { color: #ffffff; margin: 0; font-size: 24px; }
        .content { padding: 40px; line-height: 1.6; }
        .btn { display: inline-block; background: #198754; color: #ffffff; text-decoration: none; padding: 14px 28px; border-radius: 8px; font-weight: 600; }
        .footer { background: #f1f3f5; padding: 20px; text-align: center; color: #6c757d; font-size: 13px; }
    </style>
</head>
<body>
    <div class="container">
        <div class="header"><h1>CampusLink</h1></div>
        <div class="content">{body}</div>
        <div class="footer"><p>You received this email because you are a registered member of CampusLink.</p></div>
    </div>
</body>
</html>
"""


def project_link(project_id: int) -> str:
    return f"/projects/{project_id}"


async def notify_user(
    db: AsyncSession, user_id: int, message: str, link: Optional[str] = None
) -> None:
    """Store an in-app notification.

    Runs after the team change has been committed, so a failure here is
    logged and rolled back without undoing the change itself.
    """
    db.add(Notification(user_id=user_id, message=message, link=link))
    try:
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Could not store notification for user %s", user_id)


def _send_email_sync(recipient_email: str, subject: str, html_body: str):
    """Send the email, or log it when SMTP credentials are not configured."""
    if not settings.SMTP_USERNAME or not settings.SMTP_PASSWORD:
        logger.info("Simulated email to %s: %s", recipient_email, subject)
        logger.debug("Simulated email body:\n%s", html_body)
        return

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f"CampusLink <{settings.SMTP_USERNAME}>"
    msg["To"] = recipient_email
    msg.attach(MIMEText(html_body, "html"))

    try:
        server = smtplib.SMTP(settings.SMTP_SERVER, settings.SMTP_PORT)
        server.starttls()
        server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        server.send_message(msg)
        server.quit()
        logger.info("Email sent to %s", recipient_email)
    except (smtplib.SMTPException, OSError) as e:
        logger.error("Failed to send email to %s: %s", recipient_email, e)


async def _send(recipient_email: str, subject: str, body: str, project_id: int):
    body += f"""
    <p style="text-align:center">
        <a href="{settings.PUBLIC_BASE_URL}{project_link(project_id)}" class="btn">Open Project</a>
    </p>
    """
    html = HTML_TEMPLATE_BASE.replace("{body}", body)
    # SMTP is blocking; keep it off the event loop
    await asyncio.to_thread(_send_email_sync, recipient_email, subject, html)


async def send_join_request_email(
    recipient_email: str, project_id: int, project_title: str, requester_name: str
):
    """Tell a project creator that someone wants to join."""
    subject = f"New join request for {project_title}"
    body = f"""
    <h2>Hello,</h2>
    <p><strong>{requester_name}</strong> has requested to join your project
    <strong>{project_title}</strong>. Review the request to approve or deny it.</p>
    """
    await _send(recipient_email, subject, body, project_id)


async def send_join_decision_email(
    recipient_email: str, project_id: int, project_title: str, approved: bool
):
    """Tell a requester how the creator decided."""
    verdict = "approved" if approved else "denied"
    subject = f"Your request to join {project_title} was {verdict}"
    body = f"""
    <h2>Hello,</h2>
    <p>Your request to join <strong>{project_title}</strong> was <strong>{verdict}</strong>.</p>
    """
    if not approved:
        body += "<p>You are welcome to send a new request at any time.</p>"
    await _send(recipient_email, subject, body, project_id)


async def send_removal_email(recipient_email: str, project_id: int, project_title: str):
    subject = f"You were removed from {project_title}"
    body = f"""
    <h2>Hello,</h2>
    <p>The creator of <strong>{project_title}</strong> removed you from the team.
    You can send a new join request after one hour.</p>
    """
    await _send(recipient_email, subject, body, project_id)
