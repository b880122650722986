from __future__ import annotations

import html
import logging
import smtplib
import socket
from email.message import EmailMessage
from typing import Mapping, Optional, Sequence

from .config import EmailSettings, get_settings
from .schemas import DigestItem


logger = logging.getLogger("taskreport.email")


SMTP_CONNECT_TIMEOUT_SECONDS = 20

REMINDER_SUBJECTS = {
    "due_tomorrow": 'Reminder: Task "{title}" is due tomorrow',
    "due_today": 'Reminder: Task "{title}" is due today',
    "overdue": 'Overdue: Task "{title}" is past due',
}

REMINDER_LEADS = {
    "due_tomorrow": 'This is a reminder that your task "{title}" is due on {deadline}.',
    "due_today": 'Your task "{title}" is due today ({deadline}). Please complete it before the deadline.',
    "overdue": 'Your task "{title}" was due on {deadline} and is now overdue. Please take action immediately.',
}

DIGEST_SUBJECT = "Your Daily Task Digest"

# (bucket, heading) in display order.
DIGEST_SECTIONS = (
    ("overdue", "Overdue Tasks"),
    ("due_today", "Due Today"),
    ("upcoming", "Upcoming - Next {days} Days"),
    ("completed", "Completed"),
    ("in_progress", "Due Later"),
)


def _safe_smtp_host_for_logs(host: str) -> str:
    """Return a log-safe SMTP host string.

    Operators occasionally paste URLs or include credentials. Common
    prefixes/suffixes and any embedded credentials are stripped.
    """

    raw = str(host or "").strip()
    if not raw:
        return "<empty>"

    if "://" in raw:
        raw = raw.split("://", 1)[1]

    if "@" in raw:
        raw = raw.split("@", 1)[1]

    raw = raw.split("/", 1)[0]
    raw = raw.split("?", 1)[0]

    if raw.startswith("[") and raw.endswith("]"):
        raw = raw[1:-1]

    # A stray ":port" suffix.
    if raw.count(":") == 1:
        left, right = raw.rsplit(":", 1)
        if right.isdigit():
            raw = left

    return raw or "<empty>"


def _email_config() -> EmailSettings:
    return get_settings().email


def email_enabled() -> bool:
    cfg = _email_config()
    return bool(cfg.enabled) and bool(str(cfg.smtp_host or "").strip())


def _smtp_connect(cfg: EmailSettings):
    host = _safe_smtp_host_for_logs(str(cfg.smtp_host))
    port = int(cfg.smtp_port)
    timeout = int(SMTP_CONNECT_TIMEOUT_SECONDS)

    try:
        server = smtplib.SMTP(host, port, timeout=timeout)
    except (socket.timeout, TimeoutError) as e:
        hint = ""
        if host in {"localhost", "127.0.0.1", "::1"}:
            hint = " (Docker note: 'localhost' inside the container refers to the container itself)"
        raise RuntimeError(f"SMTP connect to {host}:{port} timed out after {timeout}s{hint}") from e
    except socket.gaierror as e:
        raise RuntimeError(f"SMTP hostname lookup failed for {host}: {e}") from e
    except OSError as e:
        raise RuntimeError(f"SMTP connect to {host}:{port} failed: {e.__class__.__name__}: {e}") from e
    try:
        server.ehlo()
        if bool(cfg.use_tls):
            try:
                server.starttls()
            except smtplib.SMTPNotSupportedError as e:
                raise RuntimeError(
                    f"SMTP STARTTLS is not supported by {host}:{port} (set email.use_tls=false or use a STARTTLS port)"
                ) from e
            server.ehlo()
        if cfg.smtp_username:
            try:
                server.login(cfg.smtp_username, cfg.smtp_password)
            except smtplib.SMTPAuthenticationError as e:
                raise RuntimeError(
                    f"SMTP authentication failed for {host}:{port} (check smtp_username/smtp_password)"
                ) from e
        return server
    except Exception:
        try:
            server.quit()
        except Exception as e:
            logger.debug("SMTP quit failed: %s", e)
        raise


def send_email(
    *,
    to_address: str,
    subject: str,
    body_text: str,
    body_html: Optional[str] = None,
) -> None:
    """Send an email over the configured SMTP server.

    Raises on failure. Callers should catch exceptions and log.
    """
    if not email_enabled():
        raise RuntimeError("Email is not configured (email.enabled=false or smtp_host missing)")
    cfg = _email_config()

    msg = EmailMessage()
    msg["From"] = cfg.smtp_from
    msg["To"] = to_address
    msg["Subject"] = subject
    msg.set_content(body_text)
    if body_html:
        msg.add_alternative(body_html, subtype="html")

    server = _smtp_connect(cfg)
    try:
        server.send_message(msg)
    finally:
        try:
            server.quit()
        except Exception as e:
            logger.debug("SMTP quit failed: %s", e)


def _task_url(task_id: int) -> str:
    base = str(get_settings().app.base_url or "").strip().rstrip("/")
    return f"{base}/tasks/{int(task_id)}" if base else ""


def build_reminder_email(
    *,
    task_id: int,
    title: str,
    status: str,
    description: str | None,
    deadline_display: str,
    reminder_type: str,
) -> tuple[str, str, str]:
    """Return (subject, body_text, body_html) for a deadline reminder."""
    if reminder_type not in REMINDER_SUBJECTS:
        raise ValueError(f"Unknown reminder type: {reminder_type!r}")
    subject = REMINDER_SUBJECTS[reminder_type].format(title=title)
    lead = REMINDER_LEADS[reminder_type].format(title=title, deadline=deadline_display)
    url = _task_url(task_id)
    desc = description or "No description provided"

    lines = ["Hello,", "", lead, "", f"Status: {status or 'N/A'}", f"Description: {desc}"]
    if url:
        lines.extend(["", f"View task: {url}"])
    lines.extend(["", "Regards,", "Task Reminder Bot"])
    body_text = "\n".join(lines) + "\n"

    parts = [
        "<p>Hello,</p>",
        f"<p>{html.escape(lead)}</p>",
        f"<p><strong>Status:</strong> {html.escape(status or 'N/A')}<br>"
        f"<strong>Description:</strong> {html.escape(desc)}</p>",
    ]
    if url:
        parts.append(f'<p><a href="{html.escape(url, quote=True)}">View task</a></p>')
    parts.append("<p>Regards,<br>Task Reminder Bot</p>")
    body_html = "".join(parts)

    return subject, body_text, body_html


def _due_phrase(item: DigestItem) -> str:
    days = int(item.days_until_due)
    if days < 0:
        return f"{-days} day{'s' if days != -1 else ''} overdue"
    if days == 0:
        return "due today"
    return f"{days} day{'s' if days != 1 else ''} left"


def build_digest_email(
    *,
    user_name: str | None,
    digest_date: str,
    buckets: Mapping[str, Sequence[DigestItem]],
    upcoming_days: int = 14,
) -> tuple[str, str, str]:
    """Return (subject, body_text, body_html) for one user's daily digest.

    `buckets` maps a bucket name from DIGEST_SECTIONS to its items; empty
    buckets are left out of the body but still counted in the summary line.
    """
    greeting = f"Hi {user_name or 'there'},"
    lead = f"Here's a summary of your tasks for {digest_date}."
    counts = " | ".join(
        f"{label}: {len(buckets.get(key, ()))}"
        for key, label in (
            ("overdue", "Overdue"),
            ("due_today", "Due today"),
            ("upcoming", "Upcoming"),
            ("completed", "Completed"),
        )
    )

    lines = [greeting, "", lead, "", counts]
    parts = [
        f"<p>{html.escape(greeting)}</p>",
        f"<p>{html.escape(lead)}</p>",
        f"<p><strong>{html.escape(counts)}</strong></p>",
    ]
    for key, heading in DIGEST_SECTIONS:
        items = list(buckets.get(key, ()))
        if not items:
            continue
        title = f"{heading.format(days=int(upcoming_days))} ({len(items)})"
        lines.extend(["", title])
        parts.append(f"<h3>{html.escape(title)}</h3><ul>")
        for item in items:
            when = f"due {item.deadline_display}"
            if key != "completed":
                when += f" ({_due_phrase(item)})"
            lines.append(f"- {item.title} [{item.status}] {when}")
            url = _task_url(item.task_id)
            label = html.escape(item.title)
            if url:
                lines.append(f"  {url}")
                label = f'<a href="{html.escape(url, quote=True)}">{label}</a>'
            parts.append(f"<li>{label} [{html.escape(item.status)}] {html.escape(when)}</li>")
        parts.append("</ul>")

    lines.extend(["", "Regards,", "Task Reminder Bot"])
    parts.append("<p>Regards,<br>Task Reminder Bot</p>")
    return DIGEST_SUBJECT, "\n".join(lines) + "\n", "".join(parts)
