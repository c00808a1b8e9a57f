"""
Order confirmation emails.

EmailPort is the outbound transport. SmtpEmailAdapter talks to a real server;
UnconfiguredEmailAdapter reports every send as failed when no EMAIL_HOST is
set. OrderNotifier renders the confirmation and never lets a transport
failure escape to its caller.
"""
import smtplib
import ssl
from abc import ABC, abstractmethod
from email.message import EmailMessage
from email.utils import make_msgid
from html import escape
from typing import Any, Dict, Optional

import structlog

import config

logger = structlog.get_logger(__name__)


class EmailPort(ABC):
    """Abstract interface for email dispatch adapters."""

    @abstractmethod
    def send(self, to: str, subject: str, body: str, html_body: Optional[str] = None) -> dict:
        """Send an email message.

        Returns:
            dict with keys: message_id, status ("sent" or "failed"), error (optional)
        """
        ...


class SmtpEmailAdapter(EmailPort):
    def __init__(self, host: str, port: int, username: Optional[str] = None, password: Optional[str] = None,
                 sender: Optional[str] = None, use_ssl: bool = True, timeout: float = 10.0):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender or username
        self.use_ssl = use_ssl
        self.timeout = timeout

    def _connect(self) -> smtplib.SMTP:
        if self.use_ssl:
            return smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout, context=ssl.create_default_context())
        server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        server.starttls(context=ssl.create_default_context())
        return server

    def send(self, to: str, subject: str, body: str, html_body: Optional[str] = None) -> dict:
        message = EmailMessage()
        message["Subject"] = subject
        message["To"] = to
        if self.sender:
            message["From"] = self.sender
        message["Message-ID"] = make_msgid()
        message.set_content(body)
        if html_body:
            message.add_alternative(html_body, subtype="html")

        try:
            with self._connect() as server:
                if self.username:
                    server.login(self.username, self.password or "")
                server.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            return {"message_id": None, "status": "failed", "error": str(e)}
        return {"message_id": message["Message-ID"], "status": "sent"}


class UnconfiguredEmailAdapter(EmailPort):
    """Stands in for SMTP when no EMAIL_HOST is set: nothing is sent or kept."""

    def send(self, to: str, subject: str, body: str, html_body: Optional[str] = None) -> dict:
        return {"message_id": None, "status": "failed", "error": "email not configured"}


def render_order_confirmation(order: Dict[str, Any]) -> Dict[str, str]:
    number = order["order_number"]
    placed = order["created_at"].strftime("%Y-%m-%d")
    total = f"${order['total_amount']:.2f}"

    lines = [
        f"- {it['name']} (size {it['size']}) x {it['quantity']} @ ${it['price']:.2f}"
        for it in order["items"]
    ]
    body = (
        "Thank you for your order!\n\n"
        f"Order Number: {number}\n"
        f"Order Date: {placed}\n"
        f"Total Amount: {total}\n\n"
        "Items Ordered:\n" + "\n".join(lines) + "\n\n"
        "We'll send you another email when your order ships."
    )

    rows = "".join(
        "<tr>"
        f"<td>{escape(str(it['name']))}</td><td>{escape(str(it['size']))}</td>"
        f"<td>{it['quantity']}</td><td>${it['price']:.2f}</td>"
        "</tr>"
        for it in order["items"]
    )
    html_body = (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        "<h2>Order Confirmation</h2>"
        "<p>Thank you for your order!</p>"
        f"<p><strong>Order Number:</strong> {escape(number)}<br>"
        f"<strong>Order Date:</strong> {placed}<br>"
        f"<strong>Total Amount:</strong> {total}</p>"
        '<table style="width: 100%; border-collapse: collapse;">'
        "<thead><tr><th>Product</th><th>Size</th><th>Quantity</th><th>Unit Price</th></tr></thead>"
        f"<tbody>{rows}</tbody></table>"
        "<p>We'll send you another email when your order ships.</p>"
        "</div>"
    )
    return {"subject": f"Order Confirmation - {number}", "body": body, "html_body": html_body}


class OrderNotifier:
    def __init__(self, email: EmailPort):
        self.email = email

    def send_order_confirmation(self, recipient: str, order: Dict[str, Any]) -> bool:
        """Best effort: every failure is logged and reported as False, never raised."""
        try:
            content = render_order_confirmation(order)
            result = self.email.send(recipient, content["subject"], content["body"], content["html_body"])
        except Exception:
            logger.exception("order_confirmation_failed", order_number=order.get("order_number"))
            return False

        if result.get("status") != "sent":
            logger.error("order_confirmation_failed", order_number=order.get("order_number"),
                         error=result.get("error"))
            return False
        logger.info("order_confirmation_sent", order_number=order["order_number"], message_id=result["message_id"])
        return True


_email_adapter: Optional[EmailPort] = None


def get_email_adapter() -> EmailPort:
    """Return the configured email adapter (one per process)."""
    global _email_adapter
    if _email_adapter is None:
        if config.EMAIL_HOST:
            _email_adapter = SmtpEmailAdapter(
                host=config.EMAIL_HOST,
                port=config.EMAIL_PORT,
                username=config.EMAIL_USER,
                password=config.EMAIL_PASS,
                sender=config.EMAIL_FROM,
                use_ssl=config.EMAIL_USE_SSL,
            )
        else:
            logger.warning("email_not_configured", detail="EMAIL_HOST unset, order confirmations are not sent")
            _email_adapter = UnconfiguredEmailAdapter()
    return _email_adapter


def get_notifier() -> OrderNotifier:
    """FastAPI dependency."""
    return OrderNotifier(get_email_adapter())
