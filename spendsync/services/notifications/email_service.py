"""
Email Notification Service

Sends anomaly alert emails via SMTP. smtplib is blocking, so the send runs in a
worker thread.
"""

import asyncio
import html
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

import structlog

from spendsync.core.config import get_settings
from spendsync.schemas.anomalies import AnomalyOut

logger = structlog.get_logger()


def escape_html(text: str) -> str:
    """Escape provider-supplied content (service names, aliases) before templating."""
    if not text:
        return ""
    return html.escape(str(text))


class EmailService:
    def __init__(
        self,
        smtp_host: Optional[str],
        smtp_port: int,
        smtp_user: Optional[str],
        smtp_password: Optional[str],
        from_email: str,
        dashboard_url: str = "",
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.from_email = from_email
        self.dashboard_url = dashboard_url

    @classmethod
    def from_settings(cls) -> "EmailService":
        settings = get_settings()
        return cls(
            smtp_host=settings.SMTP_HOST,
            smtp_port=settings.SMTP_PORT,
            smtp_user=settings.SMTP_USER,
            smtp_password=settings.SMTP_PASSWORD,
            from_email=settings.SMTP_FROM,
            dashboard_url=settings.FRONTEND_URL,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host)

    async def send_anomaly_alert(self, recipient: str, anomaly: AnomalyOut) -> bool:
        """
        Send one anomaly alert. Returns True when the message was handed to SMTP.
        Failures are logged and reported as False.
        """
        if not self.is_configured:
            logger.info("email_not_configured", type="anomaly_alert")
            return False
        if not recipient:
            logger.warning("email_alert_skipped", reason="No recipient")
            return False

        direction = "increase" if anomaly.is_increase else "decrease"
        subject = (
            f"SpendSync: {anomaly.service_name} cost {direction} of "
            f"{abs(anomaly.variance_percent):.0f}% on {anomaly.account_alias}"
        )
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.from_email
        msg["To"] = recipient
        msg.attach(MIMEText(self._build_text(anomaly), "plain"))
        msg.attach(MIMEText(self._build_html(anomaly), "html"))

        try:
            await asyncio.to_thread(self._send, recipient, msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("anomaly_email_failed", error=str(e))
            return False

        logger.info("anomaly_email_sent", service=anomaly.service_name, severity=anomaly.severity)
        return True

    def _send(self, recipient: str, msg: MIMEMultipart) -> None:
        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
            server.starttls()
            if self.smtp_user and self.smtp_password:
                server.login(self.smtp_user, self.smtp_password)
            server.sendmail(self.from_email, [recipient], msg.as_string())

    def _build_text(self, anomaly: AnomalyOut) -> str:
        return (
            f"{anomaly.message}\n\n"
            f"Account: {anomaly.account_alias} ({anomaly.provider_id})\n"
            f"Date: {anomaly.date.isoformat()}\n"
            f"Cost: ${anomaly.current_cost:,.2f} (30-day baseline ${anomaly.baseline_cost:,.2f})\n"
            f"Severity: {anomaly.severity}\n\n"
            f"{self.dashboard_url}/anomalies\n"
        )

    def _build_html(self, anomaly: AnomalyOut) -> str:
        color = {"critical": "#b91c1c", "high": "#c2410c", "medium": "#a16207"}.get(anomaly.severity, "#374151")
        return f"""
        <html><body style="font-family: sans-serif;">
          <h2 style="color: {color};">Cost anomaly detected</h2>
          <p>{escape_html(anomaly.message)}</p>
          <table cellpadding="6">
            <tr><td><b>Account</b></td><td>{escape_html(anomaly.account_alias)} ({escape_html(anomaly.provider_id)})</td></tr>
            <tr><td><b>Date</b></td><td>{anomaly.date.isoformat()}</td></tr>
            <tr><td><b>Cost</b></td><td>${anomaly.current_cost:,.2f}</td></tr>
            <tr><td><b>30-day baseline</b></td><td>${anomaly.baseline_cost:,.2f}</td></tr>
            <tr><td><b>Severity</b></td><td>{escape_html(anomaly.severity)}</td></tr>
          </table>
          <p><a href="{escape_html(self.dashboard_url)}/anomalies">Open the anomalies dashboard</a></p>
        </body></html>
        """
