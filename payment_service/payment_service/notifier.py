"""Notification sinks for order status changes.

Sinks are best effort: they report failure by returning False and never raise
for delivery problems, so a failed notification cannot fail a payment event.
"""

import html
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Protocol

import requests
from confluent_kafka import KafkaException, Producer
from pydantic import ValidationError

from logging_utils import get_component_logger

from .schemas import OrderStatusNotification

logger = get_component_logger("payment-service", "notifier")

RESEND_API_URL = "https://api.resend.com/emails"

STATUS_MESSAGES = {
    "pending": {
        "subject": "Order Received",
        "message": "We have received your order and are processing it.",
    },
    "processing": {
        "subject": "Order Being Processed",
        "message": "Great news! Your order is now being processed and prepared for shipment.",
    },
    "shipped": {
        "subject": "Order Shipped!",
        "message": "Your order has been shipped and is on its way to you!",
    },
    "delivered": {
        "subject": "Order Delivered!",
        "message": "Your order has been delivered. We hope you enjoy your purchase!",
    },
    "cancelled": {
        "subject": "Order Cancelled",
        "message": "Your order has been cancelled. If you have any questions, please contact support.",
    },
}


class NotificationSink(Protocol):
    """Protocol defining the interface for order status notification sinks."""

    def send(self, recipient: str, order_id: str, new_status: str, order_total: Decimal) -> bool:
        """Send an order status notification.

        Args:
            recipient: Customer email address
            order_id: Order UUID
            new_status: Order status being announced
            order_total: Order total in USD

        Returns:
            bool: True if handed off successfully, False otherwise
        """
        ...


def status_message(new_status: str) -> dict:
    """Subject and body text for a status, with a generic fallback."""
    return STATUS_MESSAGES.get(
        new_status,
        {
            "subject": "Order Status Update",
            "message": f"Your order status has been updated to: {new_status}",
        },
    )


def render_order_status_email(notification: OrderStatusNotification) -> tuple[str, str]:
    """Render the subject line and HTML body of a status email.

    Args:
        notification: The notification to render

    Returns:
        tuple[str, str]: Subject and HTML body
    """
    info = status_message(notification.new_status)
    short_id = notification.order_id[:8]
    greeting = f" {html.escape(notification.customer_name)}" if notification.customer_name else ""
    status = html.escape(notification.new_status)
    year = datetime.now(timezone.utc).year

    subject = f"{info['subject']} - Order #{short_id}"
    body = f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"></head>
<body style="font-family: -apple-system, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333;">
  <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
    <div style="background: #7c3aed; color: white; padding: 30px; text-align: center; border-radius: 12px 12px 0 0;">
      <h1 style="margin: 0; font-size: 24px;">CryptoShop</h1>
      <p style="margin: 10px 0 0;">Order Status Update</p>
    </div>
    <div style="background: #f8f9fa; padding: 30px; border-radius: 0 0 12px 12px;">
      <p>Hi{greeting},</p>
      <p>{html.escape(info['message'])}</p>
      <div style="background: white; padding: 20px; border-radius: 8px; margin: 20px 0;">
        <p><strong>Order ID:</strong> #{short_id}</p>
        <p><strong>Status:</strong> {status}</p>
        <p><strong>Total:</strong> ${notification.order_total:.2f}</p>
      </div>
      <p>If you have any questions about your order, please don't hesitate to contact us.</p>
      <p>Thank you for shopping with CryptoShop!</p>
    </div>
    <p style="text-align: center; color: #666; font-size: 12px;">&copy; {year} CryptoShop. All rights reserved.</p>
  </div>
</body>
</html>
"""
    return subject, body


def _build_notification(
    recipient: str, order_id: str, new_status: str, order_total: Decimal
) -> Optional[OrderStatusNotification]:
    try:
        return OrderStatusNotification(
            recipient=recipient, order_id=order_id, new_status=new_status, order_total=order_total
        )
    except ValidationError as e:
        logger.warning(f"Invalid notification for order {order_id}: {e}")
        return None


class LogNotificationSink:
    """Sink that only logs; used when no delivery backend is configured."""

    def send(self, recipient: str, order_id: str, new_status: str, order_total: Decimal) -> bool:
        logger.info(f"[STUB] Would notify {recipient}: order {order_id} is {new_status} (total ${order_total})")
        return True


class EmailNotificationSink:
    """Sends status emails through the Resend HTTP API."""

    def __init__(
        self,
        api_key: Optional[str],
        from_address: str,
        timeout: float = 10.0,
        api_url: str = RESEND_API_URL,
        session: Optional[requests.Session] = None,
    ):
        """Initialize the email sink.

        Args:
            api_key: Resend API key
            from_address: Sender, e.g. ``"Shop <orders@example.com>"``
            timeout: Per-request timeout in seconds
            api_url: Resend email endpoint
            session: Optional pre-built HTTP session
        """
        self.api_key = api_key
        self.from_address = from_address
        self.timeout = timeout
        self.api_url = api_url
        self.session = session or requests.Session()

    def send(self, recipient: str, order_id: str, new_status: str, order_total: Decimal) -> bool:
        if not self.api_key:
            logger.error("RESEND_API_KEY is not configured, email not sent")
            return False

        notification = _build_notification(recipient, order_id, new_status, order_total)
        if notification is None:
            return False

        subject, body = render_order_status_email(notification)
        try:
            response = self.session.post(
                self.api_url,
                headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
                json={"from": self.from_address, "to": [notification.recipient], "subject": subject, "html": body},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"Failed to send status email for order {order_id}: {e}")
            return False

        logger.info(f"Order status email sent for order {order_id} ({new_status})")
        return True


class KafkaNotificationSink:
    """Publishes status notifications to a Kafka topic for a downstream mailer."""

    def __init__(self, bootstrap_servers: str, topic: str = "orders.status", client_id: str = "payment-service"):
        """Initialize the Kafka sink.

        Args:
            bootstrap_servers: Kafka bootstrap servers
            topic: Topic notifications are published to
            client_id: Producer client ID
        """
        self.topic = topic
        self.producer = Producer(
            {
                "bootstrap.servers": bootstrap_servers,
                "client.id": client_id,
                "message.timeout.ms": 5000,
            }
        )

    def _delivery_callback(self, err, msg) -> None:
        """Handle delivery reports from Kafka.

        Args:
            err: Error that occurred during delivery
            msg: The delivered message
        """
        if err:
            logger.error(f"Notification delivery failed: {err}")
        else:
            logger.debug(f"Notification delivered to {msg.topic()} [{msg.partition()}]")

    def send(self, recipient: str, order_id: str, new_status: str, order_total: Decimal) -> bool:
        notification = _build_notification(recipient, order_id, new_status, order_total)
        if notification is None:
            return False

        try:
            self.producer.produce(
                topic=self.topic,
                key=order_id.encode("utf-8"),
                value=notification.model_dump_json().encode("utf-8"),
                on_delivery=self._delivery_callback,
            )
            self.producer.poll(0)
        except (BufferError, KafkaException) as e:
            logger.error(f"Failed to publish notification for order {order_id}: {e}")
            return False
        return True

    def close(self) -> None:
        remaining = self.producer.flush(5.0)
        if remaining > 0:
            logger.warning(f"{remaining} notifications still pending delivery")
