"""
Payment processor seam for rent-to-own payments.

The orchestrator only talks to :class:`PaymentProcessor`. The Stripe
implementation charges the borrower's saved card off-session through a
PaymentIntent and pays the lender through a Connect transfer. Both calls
carry an idempotency key, and the key is also written into the intent's
metadata so a later attempt can find a capture that was made but never
recorded.
"""

from typing import Optional, Protocol

import stripe
import structlog
from django.conf import settings

from .exceptions import (
    CaptureOutcomeUnknownError,
    ProcessorCaptureFailedError,
    ProcessorTransferFailedError,
)

logger = structlog.get_logger()

SUCCEEDED = "succeeded"


class PaymentProcessor(Protocol):
    def capture(self, amount: int, payer_account: str, idempotency_key: str) -> str: ...

    def transfer(self, amount: int, destination_account: str, idempotency_key: str) -> str: ...

    def find_capture(self, idempotency_key: str) -> Optional[str]: ...


class StripeProcessor:
    """PaymentIntents for captures, Connect transfers for payouts."""

    def __init__(self, api_key: Optional[str] = None, currency: Optional[str] = None):
        self.api_key = api_key or settings.STRIPE_API_KEY
        self.currency = currency or settings.STRIPE_CURRENCY

    def capture(self, amount: int, payer_account: str, idempotency_key: str) -> str:
        try:
            payment_method = self._payment_method(payer_account)
            intent = stripe.PaymentIntent.create(
                amount=amount,
                currency=self.currency,
                customer=payer_account,
                payment_method=payment_method,
                confirm=True,
                off_session=True,
                automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
                metadata={"idempotency_key": idempotency_key, "type": "rto_payment"},
                idempotency_key=idempotency_key,
                api_key=self.api_key,
            )
        except stripe.CardError as e:
            raise ProcessorCaptureFailedError(
                e.user_message or "Card declined", decline_code=e.code
            ) from e
        except stripe.AuthenticationError as e:
            # Rejected before reaching the card network; nothing was charged.
            logger.error("rto.stripe.unauthenticated", error=str(e))
            raise ProcessorCaptureFailedError("Payment processor is not configured") from e
        except (stripe.APIConnectionError, stripe.RateLimitError) as e:
            raise CaptureOutcomeUnknownError(str(e), idempotency_key=idempotency_key) from e
        except stripe.StripeError as e:
            # 5xx from Stripe leaves the charge state unknown; anything else is a rejection.
            if e.http_status is None or e.http_status >= 500:
                raise CaptureOutcomeUnknownError(str(e), idempotency_key=idempotency_key) from e
            raise ProcessorCaptureFailedError(str(e)) from e

        if intent.status != SUCCEEDED:
            raise ProcessorCaptureFailedError(
                f"Payment intent {intent.id} ended in status {intent.status}"
            )
        logger.info("rto.stripe.captured", intent_id=intent.id, amount=amount)
        return intent.id

    def _payment_method(self, customer_id: str) -> str:
        """The customer's default card, falling back to the first saved card.

        Off-session intents are not charged to a default method implicitly,
        so the method is always named on the intent.
        """

        customer = stripe.Customer.retrieve(customer_id, api_key=self.api_key)
        invoice_settings = getattr(customer, "invoice_settings", None)
        default = getattr(invoice_settings, "default_payment_method", None)
        if default:
            return default if isinstance(default, str) else default.id

        cards = stripe.PaymentMethod.list(
            customer=customer_id, type="card", limit=1, api_key=self.api_key
        )
        if not cards.data:
            raise ProcessorCaptureFailedError("No saved payment method on file")
        return cards.data[0].id

    def transfer(self, amount: int, destination_account: str, idempotency_key: str) -> str:
        try:
            transfer = stripe.Transfer.create(
                amount=amount,
                currency=self.currency,
                destination=destination_account,
                metadata={"idempotency_key": idempotency_key, "type": "rto_payout"},
                idempotency_key=idempotency_key,
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            raise ProcessorTransferFailedError(str(e)) from e
        return transfer.id

    def find_capture(self, idempotency_key: str) -> Optional[str]:
        # Search results can lag recent writes by up to a minute. A miss falls
        # through to capture(), which Stripe replays for the same key instead
        # of charging again.
        try:
            result = stripe.PaymentIntent.search(
                query=f"metadata['idempotency_key']:'{idempotency_key}'",
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            raise CaptureOutcomeUnknownError(str(e), idempotency_key=idempotency_key) from e
        for intent in result.data:
            if intent.status == SUCCEEDED:
                return intent.id
        return None
