from __future__ import annotations

import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import TYPE_CHECKING

from .db import logger
from .settings import settings

if TYPE_CHECKING:
    from .reconciler import ReloadResult


def _smtp_configured() -> bool:
    return all(
        [
            settings.smtp_host,
            settings.smtp_port,
            settings.smtp_user,
            settings.smtp_password,
            settings.email_from,
            settings.email_to,
        ]
    )


def send_email(subject: str, body: str) -> bool:
    """Send an email if ASR_ENABLE_EMAIL and the ASR_SMTP_* / ASR_EMAIL_* settings are set."""
    if not settings.enable_email or not _smtp_configured():
        return False

    msg = MIMEMultipart()
    msg["From"] = settings.email_from
    msg["To"] = settings.email_to
    msg["Subject"] = subject
    msg.attach(MIMEText(body, "plain"))
    try:
        server = smtplib.SMTP(settings.smtp_host, settings.smtp_port)
        server.starttls()
        server.login(settings.smtp_user, settings.smtp_password)
        server.sendmail(settings.email_from, [settings.email_to], msg.as_string())
        server.quit()
        return True
    except (smtplib.SMTPException, OSError) as e:
        logger.warning(f"Alert email failed: {e}")
        return False


def format_reload_alert(result: ReloadResult) -> tuple[str, str] | None:
    """Subject and body for a reload worth telling an operator about, else None."""
    if not result.committed:
        return (
            "Policy reload REJECTED",
            f"The policy document was rejected; revision {result.revision} stays active.\n\n{result.error}",
        )
    if not result.failed_targets and not result.skipped:
        return None

    lines = [f"Revision {result.revision} committed with convergence problems."]
    for report in result.reports:
        for err in report.errors:
            lines.append(f"  {report.criterion}: {err.target}: {err}")
    for criterion, reason in result.skipped:
        lines.append(f"  {criterion}: skipped: {reason}")
    return f"Policy reload: {result.failed_targets} failed target(s), {len(result.skipped)} skipped", "\n".join(lines)


def alert_reload(result: ReloadResult) -> bool:
    alert = format_reload_alert(result)
    if alert is None:
        return False
    return send_email(*alert)
