"""
Notification Manager for call transcripts.

Sends an HTML email with the call details and transcript when a call
ends. Sending is best-effort: failures are logged and reported as
False, never raised to the caller.
"""

import asyncio
import smtplib
import ssl
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape as _html_escape
from pathlib import Path

import structlog
import yaml

from callrelay.notifications.models import NotificationConfig, NotifyRequest

logger = structlog.get_logger("notifications")

# Default config path relative to project root
DEFAULT_CONFIG_PATH = "config/notifications.yaml"

# Default YAML content written when config file does not exist
_DEFAULT_CONFIG_YAML = """\
# Notifications configuration
email:
  enabled: false
  smtp_server: "smtp.gmail.com"
  smtp_port: 587
  use_tls: true
  username: ""
  password: ""
  from_address: "Voice Support <noreply@example.com>"

  # Where call transcripts are sent
  to_address: "support@example.com"
  subject: "New Voice Service Usage - {date} at {time}"
  site_name: "Voice Support"
"""


def format_duration(seconds: int) -> str:
    """Human-readable duration, e.g. ``1 minute 5 seconds``."""
    seconds = max(0, int(seconds))
    mins, secs = divmod(seconds, 60)
    return (
        f"{mins} minute{'' if mins == 1 else 's'} "
        f"{secs} second{'' if secs == 1 else 's'}"
    )


class NotificationManager:
    """Sends call transcript emails.

    Usage::

        notifier = NotificationManager()
        sent = await notifier.send_transcript_notification(request)
    """

    def __init__(self, config_path: str = DEFAULT_CONFIG_PATH, config: NotificationConfig = None) -> None:
        self.config_path = Path(config_path)
        self.config = config if config is not None else self._load_config()

    @property
    def enabled(self) -> bool:
        return self.config.email.enabled

    # ------------------------------------------------------------------
    # Config loading
    # ------------------------------------------------------------------

    def _load_config(self) -> NotificationConfig:
        """Load notification config from YAML, creating a default file if absent."""
        if not self.config_path.exists():
            logger.info(
                "notifications_config_not_found",
                path=str(self.config_path),
                action="creating_default",
            )
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            self.config_path.write_text(_DEFAULT_CONFIG_YAML, encoding="utf-8")
            return NotificationConfig()

        try:
            raw = yaml.safe_load(self.config_path.read_text(encoding="utf-8")) or {}
            return NotificationConfig(**raw)
        except Exception as exc:
            logger.error("notifications_config_load_error", error=str(exc))
            return NotificationConfig()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def send_transcript_notification(self, request: NotifyRequest) -> bool:
        """Email the transcript of a finished call.

        Returns True when the email was handed to the SMTP server.
        """
        email_cfg = self.config.email
        if not email_cfg.enabled:
            logger.debug("transcript_email_skipped", reason="email_disabled")
            return False

        try:
            subject = self._build_subject(request.call_start_time)
            body = self._build_transcript_email_body(request)

            await asyncio.to_thread(
                self._send_email,
                to_address=email_cfg.to_address,
                subject=subject,
                body_html=body,
            )
            logger.info(
                "transcript_email_sent",
                to=email_cfg.to_address,
                duration=request.duration,
                transcript_chars=len(request.transcript),
            )
            return True
        except Exception as exc:
            logger.error(
                "transcript_email_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return False

    # ------------------------------------------------------------------
    # Email helpers
    # ------------------------------------------------------------------

    def _send_email(self, to_address: str, subject: str, body_html: str) -> None:
        """Send an email via SMTP (synchronous, called from async context)."""
        email_cfg = self.config.email

        msg = MIMEMultipart("alternative")
        msg["From"] = email_cfg.from_address
        msg["To"] = to_address
        msg["Subject"] = subject
        msg.attach(MIMEText(body_html, "html", "utf-8"))

        with smtplib.SMTP(email_cfg.smtp_server, email_cfg.smtp_port, timeout=30) as server:
            if email_cfg.use_tls:
                server.starttls(context=ssl.create_default_context())
            if email_cfg.username and email_cfg.password:
                server.login(email_cfg.username, email_cfg.password)
            server.sendmail(email_cfg.from_address, to_address, msg.as_string())

    def _build_subject(self, started: datetime) -> str:
        return self.config.email.subject.format(
            date=started.strftime("%Y-%m-%d"),
            time=started.strftime("%H:%M:%S"),
        )

    def _build_transcript_email_body(self, request: NotifyRequest) -> str:
        """Build the HTML body; every client-provided value is escaped."""
        site = _html_escape(self.config.email.site_name)
        started = request.call_start_time.strftime("%Y-%m-%d %H:%M:%S")
        ended = request.call_end_time.strftime("%Y-%m-%d %H:%M:%S")
        duration = format_duration(request.duration)
        browser = _html_escape(request.browser_info or "Unknown")
        transcript = _html_escape(request.transcript)

        row = "padding: 8px 0; border-bottom: 1px solid #334155;"
        html = f"""\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: #2dd4bf;">New Voice Service Usage</h2>
  <p>A visitor used the voice service on the {site} website.</p>

  <div style="background-color: #1e293b; padding: 20px; border-radius: 8px; margin: 20px 0;">
    <h3 style="color: #2dd4bf; margin-top: 0;">Call Details</h3>
    <table style="width: 100%; color: #e2e8f0;">
      <tr><td style="{row}"><strong>Start Time:</strong></td><td style="{row}">{started}</td></tr>
      <tr><td style="{row}"><strong>End Time:</strong></td><td style="{row}">{ended}</td></tr>
      <tr><td style="{row}"><strong>Duration:</strong></td><td style="{row}">{duration}</td></tr>
      <tr><td style="padding: 8px 0;"><strong>Browser/Device:</strong></td><td style="padding: 8px 0;">{browser}</td></tr>
    </table>
  </div>

  <div style="background-color: #0f172a; padding: 20px; border-radius: 8px; margin: 20px 0;">
    <h3 style="color: #2dd4bf; margin-top: 0;">Transcript</h3>
    <pre style="color: #e2e8f0; white-space: pre-wrap; word-wrap: break-word; font-family: monospace; font-size: 14px; line-height: 1.6; margin: 0;">{transcript}</pre>
  </div>

  <hr style="border: none; border-top: 1px solid #334155; margin: 20px 0;">
  <p style="color: #64748b; font-size: 12px;">This is an automated notification from {site}.</p>
</div>"""
        return html
