"""External service communication layer."""
import html
import httpx
import logging
import time
from typing import Dict, Any, Optional

from config import (
    RAZORPAY_API_URL,
    RAZORPAY_KEY_ID,
    RAZORPAY_KEY_SECRET,
    BREVO_API_URL,
    BREVO_API_KEY,
    EMAIL_SENDER,
    EMAIL_SENDER_NAME,
    ADMIN_EMAIL,
    STORE_NAME
)
from monitoring import (
    external_payment_duration_histogram,
    external_email_duration_histogram
)

logger = logging.getLogger(__name__)


class ExternalServiceClient:
    """Client for the payment provider and the transactional email API."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        razorpay_api_url: str = RAZORPAY_API_URL,
        razorpay_key_id: str = RAZORPAY_KEY_ID,
        razorpay_key_secret: str = RAZORPAY_KEY_SECRET,
        brevo_api_url: str = BREVO_API_URL,
        brevo_api_key: str = BREVO_API_KEY,
        admin_email: str = ADMIN_EMAIL
    ):
        """
        Initialize external service client.

        Args:
            http_client: Async HTTP client
            razorpay_api_url: Payment provider base URL
            razorpay_key_id: Payment provider key id
            razorpay_key_secret: Payment provider key secret
            brevo_api_url: Email API base URL
            brevo_api_key: Email API key
            admin_email: Recipient of admin alerts
        """
        self.http_client = http_client
        self.razorpay_api_url = razorpay_api_url.rstrip("/")
        self.razorpay_auth = (razorpay_key_id, razorpay_key_secret)
        self.razorpay_key_id = razorpay_key_id
        self.brevo_api_url = brevo_api_url.rstrip("/")
        self.brevo_api_key = brevo_api_key
        self.admin_email = admin_email

    async def create_provider_order(
        self,
        amount_minor: int,
        currency: str,
        receipt: str
    ) -> Dict[str, Any]:
        """
        Create an order with the payment provider.

        Args:
            amount_minor: Amount in minor units
            currency: Currency code
            receipt: Our order number

        Returns:
            Provider order data (``id``, ``amount``, ``currency``)

        Raises:
            httpx.HTTPError: If the provider is unavailable or rejects the order
        """
        # HTTPXClientInstrumentor already creates spans for HTTP calls
        start_time = time.time()
        status = "success"
        try:
            response = await self.http_client.post(
                f"{self.razorpay_api_url}/v1/orders",
                auth=self.razorpay_auth,
                json={
                    "amount": amount_minor,
                    "currency": currency,
                    "receipt": receipt
                }
            )
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            status = "error"
            logger.error("Payment provider order creation failed", extra={
                "receipt": receipt,
                "amount_minor": amount_minor,
                "currency": currency,
                "error": str(e)
            })
            raise
        finally:
            external_payment_duration_histogram.record(
                time.time() - start_time,
                {"operation": "create_order", "status": status}
            )

    async def notify_customer(self, email: str, order_summary: Dict[str, Any]) -> bool:
        """
        Send the order confirmation email.

        Args:
            email: Customer email address
            order_summary: Order number, customer name, items and total

        Returns:
            True if the email API accepted the message
        """
        subject = f"Order Confirmed - {order_summary['order_number']}"
        return await self._send_email(
            to_email=email,
            to_name=order_summary.get("customer_name"),
            subject=subject,
            html_content=render_order_confirmation(order_summary),
            kind="order_confirmation"
        )

    async def notify_admin(self, subject: str, body: str) -> bool:
        """
        Send an alert to the store admin.

        Returns:
            True if the email API accepted the message
        """
        return await self._send_email(
            to_email=self.admin_email,
            to_name=None,
            subject=f"[Admin Alert] {subject}",
            html_content=f"<p>{html.escape(body)}</p>",
            kind="admin_alert"
        )

    async def _send_email(
        self,
        to_email: str,
        to_name: Optional[str],
        subject: str,
        html_content: str,
        kind: str
    ) -> bool:
        """Post a transactional email. Failures are logged, never raised."""
        start_time = time.time()
        status = "success"
        status_code = None
        recipient = {"email": to_email}
        if to_name:
            recipient["name"] = to_name
        try:
            response = await self.http_client.post(
                f"{self.brevo_api_url}/v3/smtp/email",
                headers={
                    "api-key": self.brevo_api_key,
                    "accept": "application/json"
                },
                json={
                    "sender": {"name": EMAIL_SENDER_NAME, "email": EMAIL_SENDER},
                    "to": [recipient],
                    "subject": subject,
                    "htmlContent": html_content
                }
            )
            status_code = response.status_code
            if response.status_code >= 400:
                status = "error"
                logger.warning("Email service returned error status", extra={
                    "status_code": response.status_code,
                    "email_kind": kind,
                    "recipient": to_email
                })
                return False
            return True
        except Exception as e:
            status = "error"
            status_code = 0  # Connection failure
            logger.error("Failed to send email", extra={
                "email_kind": kind,
                "recipient": to_email,
                "error": str(e)
            })
            return False
        finally:
            external_email_duration_histogram.record(
                time.time() - start_time,
                {
                    "kind": kind,
                    "status": status,
                    "status_code": str(status_code) if status_code else "0"
                }
            )


def render_order_confirmation(order_summary: Dict[str, Any]) -> str:
    """HTML body of the order confirmation email."""
    rows = "".join(
        "<tr><td>{name}</td><td>{details}</td><td>{qty}</td><td>{price}</td></tr>".format(
            name=html.escape(item["product_name"]),
            details=html.escape(item["variant_details"]),
            qty=item["quantity"],
            price=item["unit_price"]
        )
        for item in order_summary["items"]
    )
    return (
        f"<h2>{html.escape(STORE_NAME)}</h2>"
        f"<p>Hi {html.escape(order_summary.get('customer_name') or '')}, "
        f"your order <strong>{html.escape(order_summary['order_number'])}</strong> is confirmed.</p>"
        "<table><tr><th>Product</th><th>Variant</th><th>Qty</th><th>Price</th></tr>"
        f"{rows}</table>"
        f"<p>Total: {order_summary['total']}</p>"
        f"<p>Estimated delivery: {html.escape(order_summary.get('estimated_delivery') or '-')}</p>"
    )
