"""
Pydantic models for notification configuration and requests.

EmailConfig is loaded from config/notifications.yaml; NotifyRequest is
the body of ``POST /api/notify`` sent by the client at call end.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EmailConfig(BaseModel):
    """SMTP email configuration."""

    enabled: bool = Field(default=False, description="Whether email notifications are enabled")
    smtp_server: str = Field(default="smtp.gmail.com", description="SMTP server hostname")
    smtp_port: int = Field(default=587, description="SMTP server port")
    use_tls: bool = Field(default=True, description="Use STARTTLS for SMTP connection")
    username: str = Field(default="", description="SMTP authentication username")
    password: str = Field(default="", description="SMTP authentication password")
    from_address: str = Field(default="Voice Support <noreply@example.com>", description="Sender email address")
    to_address: str = Field(default="support@example.com", description="Recipient of call transcripts")
    subject: str = Field(
        default="New Voice Service Usage - {date} at {time}",
        description="Subject template; {date} and {time} are the call start",
    )
    site_name: str = Field(default="Voice Support", description="Shown in the email body")


class NotificationConfig(BaseModel):
    """Top-level notification configuration."""

    email: EmailConfig = Field(default_factory=EmailConfig)


class NotifyRequest(BaseModel):
    """Transcript notification sent by the client when a call ends."""

    model_config = ConfigDict(populate_by_name=True)

    transcript: str = Field(default="", max_length=200000)
    call_start_time: datetime = Field(..., alias="callStartTime")
    call_end_time: datetime = Field(..., alias="callEndTime")
    duration: int = Field(default=0)
    browser_info: Optional[str] = Field(default=None, alias="browserInfo", max_length=500)

    @field_validator("duration", mode="before")
    @classmethod
    def parse_duration(cls, v):
        """Clients send the duration as a string; anything unparsable counts as 0."""
        try:
            return max(0, int(float(v)))
        except (TypeError, ValueError, OverflowError):
            return 0
