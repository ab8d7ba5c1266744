"""Service helpers for logging and composing import notification emails."""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from html import escape
from typing import Callable

from sqlalchemy.orm import Session

from jira_migrator.core.config import settings
from jira_migrator.models.email_log import EmailLog
from jira_migrator.models.enums import EmailKind
from jira_migrator.models.project import Project
from jira_migrator.models.user import User

logger = logging.getLogger(__name__)


def _wrap_email_html(*, title: str, intro: str, content: str, footer: str) -> str:
    return f"""\
<!doctype html>
<html lang="en">
  <head>
    <meta charset="utf-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1" />
    <title>{escape(title)}</title>
  </head>
  <body style="margin:0;padding:0;background:#f3f6f8;font-family:Arial,sans-serif;color:#0f172a;">
    <table role="presentation" width="100%" cellpadding="0" cellspacing="0" style="padding:24px 12px;">
      <tr>
        <td align="center">
          <table role="presentation" width="100%" cellpadding="0" cellspacing="0" style="max-width:620px;background:#ffffff;border-radius:14px;border:1px solid #e2e8f0;overflow:hidden;">
            <tr>
              <td style="padding:20px 24px;background:#26b5ce;color:#ffffff;">
                <h1 style="margin:0;font-size:20px;line-height:1.3;">{escape(title)}</h1>
              </td>
            </tr>
            <tr>
              <td style="padding:24px;">
                <p style="margin:0 0 14px;font-size:15px;line-height:1.6;">{escape(intro)}</p>
                {content}
              </td>
            </tr>
            <tr>
              <td style="padding:16px 24px;background:#f8fafc;border-top:1px solid #e2e8f0;">
                <p style="margin:0;font-size:12px;line-height:1.6;color:#475569;">{escape(footer)}</p>
              </td>
            </tr>
          </table>
        </td>
      </tr>
    </table>
  </body>
</html>
"""


def _cta_button(label: str, href: str) -> str:
    safe_label = escape(label)
    safe_href = escape(href, quote=True)
    return (
        '<p style="margin:20px 0;">'
        f'<a href="{safe_href}" '
        'style="display:inline-block;background:#26b5ce;color:#ffffff;text-decoration:none;'
        'padding:12px 18px;border-radius:8px;font-weight:600;font-size:14px;">'
        f"{safe_label}</a></p>"
    )


def _paragraph(text: str) -> str:
    return f'<p style="margin:0 0 14px;font-size:14px;color:#334155;line-height:1.6;">{escape(text)}</p>'


def build_import_started_email(name: str, project_name: str, project_key: str) -> tuple[str, str, str]:
    subject = f"Jira import of {project_key} started"
    body = (
        f"Hello {name},\n\n"
        f"The import of Jira project {project_name} ({project_key}) has started.\n\n"
        "You will receive another message once it is finished."
    )
    html_body = _wrap_email_html(
        title="Jira import started",
        intro=f"Hello {name},",
        content=_paragraph(f"The import of Jira project {project_name} ({project_key}) has started.")
        + _paragraph("You will receive another message once it is finished."),
        footer="This message was sent automatically.",
    )
    return subject, body, html_body


def build_import_finished_email(
    name: str,
    project_name: str,
    project_key: str,
    *,
    link: str,
    total_issues: int,
    failed_attachments: int,
) -> tuple[str, str, str]:
    subject = f"Jira import of {project_key} finished"
    body = (
        f"Hello {name},\n\n"
        f"Jira project {project_name} ({project_key}) has been imported: {total_issues} issues.\n"
        f"Attachments not transferred: {failed_attachments}.\n\n"
        f"Open the project: {link}"
    )
    html_content = (
        _paragraph(f"Jira project {project_name} ({project_key}) has been imported: {total_issues} issues.")
        + _paragraph(f"Attachments not transferred: {failed_attachments}.")
        + _cta_button("Open the project", link)
    )
    html_body = _wrap_email_html(
        title="Jira import finished",
        intro=f"Hello {name},",
        content=html_content,
        footer="This message was sent automatically.",
    )
    return subject, body, html_body


def build_new_user_password_email(name: str, username: str, password: str) -> tuple[str, str, str]:
    link = f"{settings.web_url}/signin"
    subject = "Your planner account"
    body = (
        f"Hello {name},\n\n"
        "An account was created for you while importing a Jira project.\n\n"
        f"Login: {username}\n"
        f"Password: {password}\n\n"
        f"Sign in: {link}\n\n"
        "Change the password after the first sign in."
    )
    html_content = (
        _paragraph("An account was created for you while importing a Jira project.")
        + '<div style="margin:0 0 18px;padding:14px;border:1px dashed #26b5ce;border-radius:10px;background:#f0fbfd;">'
        f'<p style="margin:0;font-size:14px;">Login: <b>{escape(username)}</b></p>'
        f'<p style="margin:6px 0 0;font-size:14px;">Password: <b>{escape(password)}</b></p>'
        "</div>"
        + _cta_button("Sign in", link)
    )
    html_body = _wrap_email_html(
        title="Your planner account",
        intro=f"Hello {name},",
        content=html_content,
        footer="Change the password after the first sign in. Never share it.",
    )
    return subject, body, html_body


def send_email(to: str, subject: str, body: str, *, html_body: str | None = None) -> bool:
    if not settings.SMTP_HOST:
        logger.info("SMTP not configured; skipping send to %s", to)
        return False
    if not settings.SMTP_FROM:
        logger.warning("SMTP_FROM not configured; skipping send to %s", to)
        return False

    message = EmailMessage()
    message["From"] = settings.SMTP_FROM
    message["To"] = to
    message["Subject"] = subject
    message.set_content(body)
    if html_body:
        message.add_alternative(html_body, subtype="html")

    try:
        with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=30) as server:
            server.ehlo()
            if settings.SMTP_TLS:
                server.starttls()
                server.ehlo()
            if settings.SMTP_USER:
                server.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
            server.send_message(message)
        logger.info("Email sent: %s", to)
        return True
    except Exception:
        logger.exception("Email send failed: %s", to)
        return False


def log_email(
    db: Session,
    to: str,
    subject: str,
    body: str,
    kind: EmailKind,
    *,
    html_body: str | None = None,
    import_id: str | None = None,
) -> EmailLog:
    send_email(to, subject, body, html_body=html_body)
    record = EmailLog(to=to, subject=subject, body=body, kind=kind, import_id=import_id)
    db.add(record)
    db.commit()
    db.refresh(record)
    logger.info("Email logged: %s (%s)", to, kind.value)
    return record


class ImportNotifier:
    """Import notifications, delivered through ``log_email``."""

    def __init__(self, session_factory: Callable[..., Session]) -> None:
        self.session_factory = session_factory

    def _deliver(self, to: str | None, kind: EmailKind, message: tuple[str, str, str], import_id: str | None) -> None:
        if not to:
            logger.info("No e-mail address for %s notification", kind.value)
            return
        subject, body, html_body = message
        with self.session_factory() as db:
            log_email(db, to, subject, body, kind, html_body=html_body, import_id=import_id)

    def import_started(self, actor: User, project: Project | None, *, import_id: str | None = None) -> None:
        name = project.name if project is not None else ""
        key = project.identifier if project is not None else ""
        message = build_import_started_email(actor.display_name, name, key)
        self._deliver(actor.email, EmailKind.import_started, message, import_id)

    def import_finished(
        self,
        actor: User,
        project: Project,
        *,
        total_issues: int,
        failed_attachments: int,
        import_id: str | None = None,
    ) -> None:
        link = f"{settings.web_url}/{project.workspace_id}/projects/{project.id}/issues"
        message = build_import_finished_email(
            actor.display_name,
            project.name,
            project.identifier,
            link=link,
            total_issues=total_issues,
            failed_attachments=failed_attachments,
        )
        self._deliver(actor.email, EmailKind.import_finished, message, import_id)

    def new_user_password(self, user: User, password: str, *, import_id: str | None = None) -> None:
        message = build_new_user_password_email(user.display_name, user.username or user.email or "", password)
        self._deliver(user.email, EmailKind.new_user_password, message, import_id)
