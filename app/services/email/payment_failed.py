"""Payment failure notification email.

Sent when Stripe reports a failed invoice payment, pointing the customer at
the hosted invoice page so they can update their card.
"""

import logging
from html import escape as html_escape

from app.config import settings
from app.services.email.postmark import PostmarkService, postmark_service

logger = logging.getLogger(__name__)

SUBJECT = "Payment Failed - Action Required"


def _build_html(name: str, action_url: str) -> str:
    """Build the HTML email body."""
    safe_name = html_escape(name)
    safe_url = html_escape(action_url, quote=True)
    return f"""\
<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>Payment Failed</title>
</head>
<body style="margin: 0; padding: 20px; background-color: #f4f4f4;
             font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif;">
  <table role="presentation" width="100%" cellpadding="0" cellspacing="0">
    <tr>
      <td align="center">
        <table role="presentation" width="100%" cellpadding="0" cellspacing="0"
               style="max-width: 600px; background-color: #ffffff; border-radius: 8px;
                      padding: 40px; box-shadow: 0 2px 4px rgba(0,0,0,0.1);">
          <tr>
            <td>
              <h1 style="color: #d32f2f; font-size: 24px; margin: 0 0 20px;">
                Payment Failed
              </h1>
              <p style="color: #555; line-height: 1.6;">Hi {safe_name},</p>
              <p style="color: #555; line-height: 1.6;">
                We were unable to process the payment for your subscription.
                Your account has been suspended until the payment goes through.
              </p>
              <p style="text-align: center; margin: 30px 0;">
                <a href="{safe_url}"
                   style="display: inline-block; padding: 14px 28px; background-color: #d32f2f;
                          color: #ffffff; text-decoration: none; border-radius: 5px;
                          font-weight: 600;">
                  Update Payment Method
                </a>
              </p>
              <p style="color: #999; font-size: 13px; line-height: 1.6;">
                If you believe this is a mistake, reply to this email and we'll help.
              </p>
            </td>
          </tr>
        </table>
      </td>
    </tr>
  </table>
</body>
</html>"""


def _build_text(name: str, action_url: str) -> str:
    """Build the plain-text email body."""
    return (
        f"Hi {name},\n\n"
        "We were unable to process the payment for your subscription.\n"
        "Your account has been suspended until the payment goes through.\n\n"
        f"Update your payment method: {action_url}\n"
    )


class PaymentNotifier:
    """Fire-and-forget notifications for billing problems."""

    def __init__(self, mailer: PostmarkService | None = None) -> None:
        self.mailer = mailer or postmark_service

    async def notify_payment_failed(
        self,
        email: str,
        name: str | None = None,
        invoice_url: str | None = None,
    ) -> bool:
        """
        Tell the customer their payment failed.

        Falls back to the frontend billing page when Stripe gave no hosted
        invoice URL. Returns the delivery result; never raises.
        """
        action_url = invoice_url or f"{settings.frontend_url}/subscriptions"
        display_name = name or "Customer"
        sent = await self.mailer.send(
            to=email,
            subject=SUBJECT,
            html_body=_build_html(display_name, action_url),
            text_body=_build_text(display_name, action_url),
            tag="payment-failed",
        )
        if not sent:
            logger.warning(f"Payment failure notification to {email} was not delivered")
        return sent
