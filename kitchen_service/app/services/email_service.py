"""
Transactional order emails via SendGrid.

Every send is fire-and-forget from the caller's point of view: a bounded number
of attempts with linear backoff, each capped by a timeout, after which the
email is abandoned and ``False`` is returned.
"""

import asyncio
from typing import Any, Dict, Optional

from jinja2 import DictLoader, Environment, select_autoescape
from sendgrid import SendGridAPIClient  # type: ignore
from sendgrid.helpers.mail import Content, Email, Mail, To  # type: ignore
from starlette.concurrency import run_in_threadpool

from ..core.settings import KitchenServiceSettings
from ..schemas.order import OrderSnapshot
from ..utils.logging import setup_kitchen_logging

logger = setup_kitchen_logging("kitchen_service.email")

EMAIL_TEMPLATES: Dict[str, str] = {
    "order_placed.html": """
<h2>New order #{{ order.order_number }}</h2>
<p>Total: ${{ "%.2f"|format(order.total_amount) }} ({{ order.delivery_type }})</p>
<ul>
{% for item in order.items %}  <li>{{ item.quantity }} x {{ item.dish_name }} - ${{ "%.2f"|format(item.subtotal) }}</li>
{% endfor %}</ul>
{% if order.delivery_address %}<p>Deliver to: {{ order.delivery_address.street }}, {{ order.delivery_address.city }}</p>{% endif %}
""",
    "order_cancelled.html": """
<h2>Order #{{ order.order_number }} was cancelled</h2>
<p>Total: ${{ "%.2f"|format(order.total_amount) }}. Payment status: {{ order.payment_status }}.</p>
{% if reason %}<p>Reason: {{ reason }}</p>{% endif %}
""",
    "status_update.html": """
<h2>{{ headline }}</h2>
<p>Your order #{{ order.order_number }} is now <strong>{{ status }}</strong>.</p>
{% if order.estimated_delivery_time %}<p>Estimated time: {{ order.estimated_delivery_time.strftime("%H:%M") }} UTC</p>{% endif %}
""",
}

STATUS_HEADLINES = {
    "ready": "Your order is ready!",
    "completed": "Order delivered successfully!",
}


class EmailService:
    def __init__(self, settings: KitchenServiceSettings):
        self.api_key: str = settings.SENDGRID_API_KEY or ""
        self.from_email: str = settings.FROM_EMAIL or ""
        self.from_name: str = settings.FROM_NAME
        self.admin_email: Optional[str] = settings.ADMIN_EMAIL
        self.max_attempts = max(1, settings.EMAIL_MAX_ATTEMPTS)
        self.backoff_seconds = settings.EMAIL_RETRY_BACKOFF_SECONDS
        self.timeout_seconds = settings.EMAIL_SEND_TIMEOUT_SECONDS
        self.template_env = Environment(
            loader=DictLoader(EMAIL_TEMPLATES),
            autoescape=select_autoescape(["html"]),
        )

    @property
    def enabled(self) -> bool:
        return bool(self.api_key and self.from_email)

    async def send_order_placed_alert(self, order: OrderSnapshot) -> bool:
        return await self._send(
            to_email=self.admin_email,
            subject=f"New order #{order.order_number}",
            template="order_placed.html",
            context={"order": order},
        )

    async def send_cancellation_alert(
        self, order: OrderSnapshot, reason: Optional[str] = None
    ) -> bool:
        return await self._send(
            to_email=self.admin_email,
            subject=f"Order #{order.order_number} cancelled",
            template="order_cancelled.html",
            context={"order": order, "reason": reason},
        )

    async def send_status_update(self, order: OrderSnapshot, status: str) -> bool:
        headline = STATUS_HEADLINES.get(status, "Order update")
        return await self._send(
            to_email=order.customer_email,
            subject=f"{headline} (#{order.order_number})",
            template="status_update.html",
            context={"order": order, "status": status, "headline": headline},
        )

    async def _send(
        self,
        to_email: Optional[str],
        subject: str,
        template: str,
        context: Dict[str, Any],
    ) -> bool:
        if not self.enabled or not to_email:
            logger.debug(
                "Email skipped: delivery not configured",
                extra={"email_subject": subject, "has_recipient": bool(to_email)},
            )
            return False

        html = self.template_env.get_template(template).render(**context)
        mail = Mail(Email(self.from_email, self.from_name), To(to_email), subject)
        mail.add_content(Content("text/html", html))

        for attempt in range(1, self.max_attempts + 1):
            try:
                response = await asyncio.wait_for(
                    run_in_threadpool(self._deliver, mail),
                    timeout=self.timeout_seconds,
                )
                logger.info(
                    "Email sent",
                    extra={
                        "recipient": to_email,
                        "email_subject": subject,
                        "attempt": attempt,
                        "status_code": getattr(response, "status_code", None),
                    },
                )
                return True
            except Exception as e:
                logger.warning(
                    "Email send attempt failed",
                    extra={
                        "recipient": to_email,
                        "attempt": attempt,
                        "max_attempts": self.max_attempts,
                        "error_type": type(e).__name__,
                        "error_message": str(e),
                    },
                )
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.backoff_seconds * attempt)

        logger.error(
            "Email abandoned after retries",
            extra={"recipient": to_email, "email_subject": subject},
        )
        return False

    def _deliver(self, mail: Mail) -> Any:
        return SendGridAPIClient(api_key=self.api_key).send(mail)
