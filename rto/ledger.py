"""
Persistence of the contract aggregate.

:class:`ContractLedger` is the only code that writes contract progress or
payment financial fields. Each public method is its own short transaction
and locks the contract row first, so concurrent writers on one contract
queue behind each other. No method here talks to the payment processor.
"""

from datetime import timedelta
from typing import Iterable, List, Optional, Tuple

import structlog
from django.db import transaction
from django.db.models import F, Q
from django.utils import timezone

from . import state
from .exceptions import (
    ContractNotFoundError,
    ListingUnavailableError,
    NoPendingPaymentError,
    NotBorrowerError,
    NotContractPartyError,
    PaymentInProgressError,
)
from .models import Contract, Listing, Payment
from .schedule import PaymentSpec

logger = structlog.get_logger()


class ContractLedger:
    def get_contract(self, contract_id) -> Contract:
        try:
            return Contract.objects.select_related("listing").get(pk=contract_id)
        except Contract.DoesNotExist:
            raise ContractNotFoundError(contract_id) from None

    def lock_contract(self, contract_id) -> Contract:
        # Must run inside transaction.atomic().
        try:
            return Contract.objects.select_for_update().get(pk=contract_id)
        except Contract.DoesNotExist:
            raise ContractNotFoundError(contract_id) from None

    def payments_for(self, contract: Contract) -> List[Payment]:
        return list(contract.payments.order_by("payment_number"))

    def contracts_for(self, user_id, role: Optional[str] = None, status: Optional[str] = None):
        if role == Contract.Party.BORROWER:
            qs = Contract.objects.filter(borrower_id=user_id)
        elif role == Contract.Party.LENDER:
            qs = Contract.objects.filter(lender_id=user_id)
        else:
            qs = Contract.objects.filter(Q(borrower_id=user_id) | Q(lender_id=user_id))
        if status:
            qs = qs.filter(status=status)
        return qs.select_related("listing").order_by("-created_at", "-id")

    def outstanding_payouts(self):
        """Completed payments whose lender payout has not been sent."""

        return Payment.objects.awaiting_payout().select_related("contract").order_by(
            "contract_id", "payment_number"
        )

    # ------------------------------------------------------------------
    # Contract lifecycle
    # ------------------------------------------------------------------

    def create_contract(
        self,
        listing: Listing,
        borrower_id,
        cadence: str,
        first_payment_date,
        rental_credit_percent: int,
        schedule: Iterable[PaymentSpec],
    ) -> Contract:
        schedule = list(schedule)
        with transaction.atomic():
            contract = Contract.objects.create(
                listing=listing,
                borrower_id=borrower_id,
                lender_id=listing.owner_id,
                purchase_price=sum(spec.equity_portion for spec in schedule),
                total_payments=len(schedule),
                payment_amount=schedule[0].total_amount,
                rental_credit_percent=rental_credit_percent,
                cadence=cadence,
                first_payment_date=first_payment_date,
                next_payment_date=schedule[0].due_date,
                terms_accepted_at=timezone.now(),
            )
            Payment.objects.bulk_create(
                [
                    Payment(
                        contract=contract,
                        payment_number=spec.payment_number,
                        total_amount=spec.total_amount,
                        equity_portion=spec.equity_portion,
                        rental_portion=spec.rental_portion,
                        platform_fee=spec.platform_fee,
                        lender_payout=spec.lender_payout,
                        due_date=spec.due_date,
                        idempotency_key=Payment.key_for(contract.pk, spec.payment_number),
                    )
                    for spec in schedule
                ]
            )
        return contract

    def approve(self, contract_id, lender_id) -> Contract:
        with transaction.atomic():
            contract = self._lock_for_party(contract_id, lender_id, Contract.Party.LENDER)
            state.apply(contract, state.APPROVE)
            listing = Listing.objects.select_for_update().get(pk=contract.listing_id)
            if not listing.is_available:
                raise ListingUnavailableError(
                    f"Listing {listing.pk} is already committed to another transaction"
                )
            listing.is_available = False
            listing.save(update_fields=["is_available", "updated_at"])
            contract.approved_at = timezone.now()
            contract.save(update_fields=["status", "approved_at", "updated_at"])
        return contract

    def decline(self, contract_id, lender_id, reason: str) -> Contract:
        with transaction.atomic():
            contract = self._lock_for_party(contract_id, lender_id, Contract.Party.LENDER)
            state.apply(contract, state.DECLINE)
            contract.cancelled_at = timezone.now()
            contract.cancelled_by = Contract.Party.LENDER
            contract.cancellation_reason = reason
            contract.save(
                update_fields=[
                    "status",
                    "cancelled_at",
                    "cancelled_by",
                    "cancellation_reason",
                    "updated_at",
                ]
            )
        return contract

    def cancel(self, contract_id, caller_id, reason: str) -> Contract:
        with transaction.atomic():
            contract = self._lock_for_party(contract_id, caller_id)
            state.apply(contract, state.CANCEL)
            in_flight = contract.payments.filter(status=Payment.Status.CAPTURING).first()
            if in_flight is not None:
                raise PaymentInProgressError(contract.pk, in_flight.payment_number)
            contract.cancelled_at = timezone.now()
            contract.cancelled_by = contract.party_of(caller_id)
            contract.cancellation_reason = reason
            contract.save(
                update_fields=[
                    "status",
                    "cancelled_at",
                    "cancelled_by",
                    "cancellation_reason",
                    "updated_at",
                ]
            )
            Listing.objects.filter(pk=contract.listing_id).update(
                is_available=True, updated_at=timezone.now()
            )
        return contract

    def _lock_for_party(self, contract_id, user_id, party: Optional[str] = None) -> Contract:
        contract = self.lock_contract(contract_id)
        caller = contract.party_of(user_id)
        if caller is None:
            # Non-parties learn nothing about the contract.
            raise ContractNotFoundError(contract_id)
        if party is not None and caller != party:
            raise NotContractPartyError(f"Only the {party} can do this on contract {contract_id}")
        return contract

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def claim_next_payment(self, contract_id, payer_id, claim_timeout: int) -> Payment:
        """Take the lowest-numbered unpaid payment for a capture attempt.

        A ``pending`` payment moves to ``capturing``. A payment already in
        ``capturing`` is handed back for resumption when it holds a capture
        reference or its claim is older than ``claim_timeout`` seconds;
        otherwise another request owns it.
        """

        now = timezone.now()
        with transaction.atomic():
            contract = self.lock_contract(contract_id)
            if contract.party_of(payer_id) is None:
                raise ContractNotFoundError(contract_id)
            if contract.borrower_id != payer_id:
                raise NotBorrowerError(f"User {payer_id} is not the borrower on contract {contract_id}")
            payment = (
                contract.payments.unpaid()
                .select_for_update()
                .order_by("payment_number")
                .first()
            )
            if payment is None:
                raise NoPendingPaymentError(contract_id)
            state.next_status(contract.status, state.PAY)

            if payment.status == Payment.Status.PENDING:
                claimed = Payment.objects.filter(
                    pk=payment.pk, status=Payment.Status.PENDING
                ).update(status=Payment.Status.CAPTURING, claimed_at=now, updated_at=now)
                if not claimed:
                    raise PaymentInProgressError(contract_id, payment.payment_number)
                payment.status = Payment.Status.CAPTURING
                payment.claimed_at = now
                return payment

            stale = payment.claimed_at is None or payment.claimed_at <= now - timedelta(
                seconds=claim_timeout
            )
            if not payment.capture_ref and not stale:
                raise PaymentInProgressError(contract_id, payment.payment_number)
            Payment.objects.filter(pk=payment.pk).update(claimed_at=now, updated_at=now)
            payment.claimed_at = now
            logger.info(
                "rto.payment.resumed",
                contract_id=contract_id,
                payment_number=payment.payment_number,
                idempotency_key=payment.idempotency_key,
                capture_ref=payment.capture_ref or None,
            )
            return payment

    def release_claim(self, payment: Payment, reason: str) -> None:
        """Return a declined payment to ``pending`` under a fresh capture key."""

        now = timezone.now()
        key = Payment.key_for(
            payment.contract_id, payment.payment_number, payment.retry_count + 1
        )
        released = Payment.objects.filter(
            pk=payment.pk, status=Payment.Status.CAPTURING
        ).update(
            status=Payment.Status.PENDING,
            idempotency_key=key,
            claimed_at=None,
            failure_reason=reason,
            retry_count=F("retry_count") + 1,
            last_retry_at=now,
            updated_at=now,
        )
        if released:
            logger.info(
                "rto.payment.key_rotated",
                contract_id=payment.contract_id,
                payment_number=payment.payment_number,
                previous_key=payment.idempotency_key,
                idempotency_key=key,
            )
            payment.idempotency_key = key

    def note_attempt(self, payment: Payment, reason: str) -> None:
        """Record a capture attempt whose outcome is unknown; the claim stays."""

        now = timezone.now()
        Payment.objects.filter(pk=payment.pk).update(
            failure_reason=reason,
            retry_count=F("retry_count") + 1,
            last_retry_at=now,
            updated_at=now,
        )

    def record_capture(self, payment: Payment, capture_ref: str) -> None:
        Payment.objects.filter(pk=payment.pk, status=Payment.Status.CAPTURING).update(
            capture_ref=capture_ref, updated_at=timezone.now()
        )
        payment.capture_ref = capture_ref

    def complete_payment(
        self, payment: Payment, capture_ref: str
    ) -> Tuple[Contract, Payment, bool]:
        """Settle a captured payment and, on the last one, the whole contract.

        Payment, contract progress, completion and the listing's change of
        owner are written in one transaction. The flag is False when another
        request had already settled the payment.
        """

        now = timezone.now()
        with transaction.atomic():
            contract = self.lock_contract(payment.contract_id)
            payment = Payment.objects.select_for_update().get(pk=payment.pk)
            if payment.status == Payment.Status.COMPLETED:
                return contract, payment, False

            payment.status = Payment.Status.COMPLETED
            payment.paid_at = now
            payment.capture_ref = capture_ref
            payment.claimed_at = None
            payment.failure_reason = ""
            payment.save(
                update_fields=[
                    "status",
                    "paid_at",
                    "capture_ref",
                    "claimed_at",
                    "failure_reason",
                    "updated_at",
                ]
            )

            following = contract.payments.unpaid().order_by("payment_number").first()
            contract.payments_completed += 1
            contract.equity_accumulated += payment.equity_portion
            contract.rental_paid += payment.rental_portion
            contract.next_payment_date = following.due_date if following else None
            fields = [
                "payments_completed",
                "equity_accumulated",
                "rental_paid",
                "next_payment_date",
                "updated_at",
            ]
            if contract.payments_completed == contract.total_payments:
                state.apply(contract, state.COMPLETE)
                contract.completed_at = now
                fields += ["status", "completed_at"]
                Listing.objects.filter(pk=contract.listing_id).update(
                    owner_id=contract.borrower_id, is_available=True, updated_at=now
                )
            contract.save(update_fields=fields)
        return contract, payment, True

    def record_payout(
        self, payment: Payment, payout_status: str, transfer_ref: str = "", error: str = ""
    ) -> None:
        Payment.objects.filter(pk=payment.pk).update(
            payout_status=payout_status,
            transfer_ref=transfer_ref,
            payout_error=error,
            updated_at=timezone.now(),
        )
        payment.payout_status = payout_status
        payment.transfer_ref = transfer_ref
        payment.payout_error = error
