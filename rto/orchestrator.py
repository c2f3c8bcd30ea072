"""
Make one rent-to-own payment.

The steps, in order:

1. claim the lowest-numbered unpaid payment (ledger transaction);
2. capture the amount from the borrower, unless an earlier attempt under the
   same idempotency key already did;
3. remember the capture reference on the claimed payment;
4. settle the payment, contract progress and, on the final payment, the
   contract completion and ownership transfer (one ledger transaction);
5. pay the lender out, recording but never raising a failure;
6. notify both parties after commit.

No database transaction is held open across a processor call.
"""

from dataclasses import dataclass
from typing import Optional

import structlog
from django.conf import settings
from django.db import DatabaseError

from . import notifier as events
from .exceptions import (
    CaptureOutcomeUnknownError,
    LedgerWriteFailedError,
    ProcessorCaptureFailedError,
    ProcessorTransferFailedError,
)
from .ledger import ContractLedger
from .models import Contract, Payment, PaymentAccount
from .notifier import SettlementNotifier
from .processor import PaymentProcessor

logger = structlog.get_logger()


@dataclass(frozen=True)
class PaymentResult:
    payment_id: int
    payment_number: int
    contract_status: str
    transfer_ref: Optional[str] = None


class PaymentOrchestrator:
    def __init__(
        self,
        ledger: ContractLedger,
        processor: PaymentProcessor,
        notifier: SettlementNotifier,
        claim_timeout: Optional[int] = None,
    ):
        self.ledger = ledger
        self.processor = processor
        self.notifier = notifier
        self.claim_timeout = (
            settings.RTO_CAPTURE_CLAIM_TIMEOUT if claim_timeout is None else claim_timeout
        )

    def make_payment(self, contract_id, payer_id) -> PaymentResult:
        payment = self.ledger.claim_next_payment(contract_id, payer_id, self.claim_timeout)
        log = logger.bind(
            contract_id=contract_id,
            payment_number=payment.payment_number,
            idempotency_key=payment.idempotency_key,
        )

        capture_ref = self._capture(payment, payer_id, log)
        contract, payment, settled = self._settle(payment, capture_ref, log)
        if settled:
            self._pay_out(contract, payment, log)
            self._notify(contract, payment)
        else:
            log.info("rto.payment.already_settled")

        return PaymentResult(
            payment_id=payment.pk,
            payment_number=payment.payment_number,
            contract_status=contract.status,
            transfer_ref=payment.transfer_ref or None,
        )

    def _capture(self, payment: Payment, payer_id, log) -> str:
        if payment.capture_ref:
            log.info("rto.payment.capture_reused", capture_ref=payment.capture_ref)
            return payment.capture_ref

        try:
            capture_ref = self.processor.find_capture(payment.idempotency_key)
            if capture_ref:
                log.warning("rto.payment.capture_recovered", capture_ref=capture_ref)
            else:
                capture_ref = self.processor.capture(
                    payment.total_amount,
                    self._payer_account(payer_id),
                    payment.idempotency_key,
                )
        except ProcessorCaptureFailedError as exc:
            self.ledger.release_claim(payment, exc.message)
            log.warning("rto.payment.declined", reason=exc.message)
            raise
        except CaptureOutcomeUnknownError as exc:
            self.ledger.note_attempt(payment, exc.message)
            log.warning("rto.payment.capture_unknown", error=exc.message)
            raise

        log.info("rto.payment.captured", capture_ref=capture_ref, amount=payment.total_amount)
        try:
            self.ledger.record_capture(payment, capture_ref)
        except DatabaseError:
            # The processor can still find this capture by its idempotency key.
            log.exception("rto.payment.capture_unrecorded", capture_ref=capture_ref)
        return capture_ref

    def _settle(self, payment: Payment, capture_ref: str, log):
        try:
            return self.ledger.complete_payment(payment, capture_ref)
        except DatabaseError as exc:
            log.exception("rto.payment.ledger_write_failed", capture_ref=capture_ref)
            raise LedgerWriteFailedError(
                "Payment was captured but could not be recorded; retry to finish it",
                idempotency_key=payment.idempotency_key,
                capture_ref=capture_ref,
            ) from exc

    def _pay_out(self, contract: Contract, payment: Payment, log) -> None:
        if payment.payout_status == Payment.PayoutStatus.TRANSFERRED:
            return

        destination = self._payout_account(contract.lender_id)
        if not destination:
            self.ledger.record_payout(payment, Payment.PayoutStatus.NO_DESTINATION)
            log.warning("rto.payout.no_destination", lender_id=contract.lender_id)
            return

        try:
            transfer_ref = self.processor.transfer(
                payment.lender_payout, destination, payment.payout_key
            )
        except ProcessorTransferFailedError as exc:
            self.ledger.record_payout(payment, Payment.PayoutStatus.FAILED, error=exc.message)
            log.error("rto.payout.failed", amount=payment.lender_payout, error=exc.message)
            return

        self.ledger.record_payout(payment, Payment.PayoutStatus.TRANSFERRED, transfer_ref)
        log.info("rto.payout.transferred", transfer_ref=transfer_ref, amount=payment.lender_payout)

    def _notify(self, contract: Contract, payment: Payment) -> None:
        payload = {
            "contract_id": contract.pk,
            "payment_number": payment.payment_number,
            "amount": payment.total_amount,
        }
        self.notifier.send(contract.lender_id, events.RTO_PAYMENT_RECEIVED, **payload)
        self.notifier.send(contract.borrower_id, events.RTO_PAYMENT_CONFIRMED, **payload)
        if contract.status == Contract.Status.COMPLETED:
            for user_id in (contract.lender_id, contract.borrower_id):
                self.notifier.send(
                    user_id, events.RTO_COMPLETED, contract_id=contract.pk, listing_id=contract.listing_id
                )

    def _payer_account(self, user_id) -> str:
        account = PaymentAccount.objects.filter(user_id=user_id).first()
        if account is None or not account.processor_customer_id:
            raise ProcessorCaptureFailedError("No saved payment method on file")
        return account.processor_customer_id

    def _payout_account(self, user_id) -> str:
        account = PaymentAccount.objects.filter(user_id=user_id).first()
        return account.payout_account_id if account else ""
