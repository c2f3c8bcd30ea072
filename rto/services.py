from datetime import date
from typing import List, Optional, Tuple

import structlog
from django.conf import settings

from . import notifier as events
from .exceptions import ContractNotFoundError, InvalidTermsError, ListingUnavailableError
from .ledger import ContractLedger
from .models import Contract, Listing, Payment
from .notifier import SettlementNotifier
from .schedule import generate_schedule

logger = structlog.get_logger()

DECLINED_BY_LENDER = "Declined by lender"


class ContractService:
    """Contract lifecycle operations other than payments."""

    def __init__(self, ledger: ContractLedger, notifier: SettlementNotifier):
        self.ledger = ledger
        self.notifier = notifier

    def create_contract(
        self,
        listing_id,
        borrower_id,
        total_payments: int,
        cadence: str,
        first_payment_date: date,
    ) -> Contract:
        listing = self._eligible_listing(listing_id, borrower_id)
        check_payment_bounds(listing, total_payments)

        schedule = generate_schedule(
            purchase_price=listing.rto_purchase_price,
            total_payments=total_payments,
            rental_credit_percent=listing.rto_rental_credit_percent,
            cadence=cadence,
            first_payment_date=first_payment_date,
            platform_fee_bps=settings.RTO_PLATFORM_FEE_BPS,
            max_payments=settings.RTO_MAX_PAYMENTS,
        )
        contract = self.ledger.create_contract(
            listing=listing,
            borrower_id=borrower_id,
            cadence=cadence,
            first_payment_date=first_payment_date,
            rental_credit_percent=listing.rto_rental_credit_percent,
            schedule=schedule,
        )
        logger.info(
            "rto.contract.created",
            contract_id=contract.pk,
            listing_id=listing.pk,
            purchase_price=contract.purchase_price,
            total_payments=total_payments,
        )
        self.notifier.send(
            listing.owner_id,
            events.RTO_REQUEST,
            contract_id=contract.pk,
            listing_id=listing.pk,
            from_user_id=borrower_id,
        )
        return contract

    def approve_contract(self, contract_id, lender_id) -> Contract:
        contract = self.ledger.approve(contract_id, lender_id)
        logger.info("rto.contract.approved", contract_id=contract.pk)
        self.notifier.send(
            contract.borrower_id,
            events.RTO_APPROVED,
            contract_id=contract.pk,
            listing_id=contract.listing_id,
        )
        return contract

    def decline_contract(self, contract_id, lender_id, reason: Optional[str] = None) -> Contract:
        contract = self.ledger.decline(contract_id, lender_id, reason or DECLINED_BY_LENDER)
        logger.info("rto.contract.declined", contract_id=contract.pk)
        self.notifier.send(
            contract.borrower_id,
            events.RTO_DECLINED,
            contract_id=contract.pk,
            reason=contract.cancellation_reason,
        )
        return contract

    def cancel_contract(self, contract_id, caller_id, reason: str) -> Contract:
        contract = self.ledger.cancel(contract_id, caller_id, reason)
        logger.info(
            "rto.contract.cancelled",
            contract_id=contract.pk,
            cancelled_by=contract.cancelled_by,
            equity_accumulated=contract.equity_accumulated,
        )
        other = (
            contract.lender_id
            if contract.cancelled_by == Contract.Party.BORROWER
            else contract.borrower_id
        )
        self.notifier.send(
            other,
            events.RTO_CANCELLED,
            contract_id=contract.pk,
            cancelled_by=contract.cancelled_by,
            reason=reason,
        )
        return contract

    def get_contract(self, contract_id, caller_id) -> Tuple[Contract, List[Payment]]:
        contract = self._visible_contract(contract_id, caller_id)
        return contract, self.ledger.payments_for(contract)

    def list_payments(self, contract_id, caller_id) -> List[Payment]:
        return self.ledger.payments_for(self._visible_contract(contract_id, caller_id))

    def list_contracts(self, user_id, role: Optional[str] = None, status: Optional[str] = None):
        return self.ledger.contracts_for(user_id, role=role, status=status)

    def _visible_contract(self, contract_id, caller_id) -> Contract:
        contract = self.ledger.get_contract(contract_id)
        if contract.party_of(caller_id) is None:
            raise ContractNotFoundError(contract_id)
        return contract

    def _eligible_listing(self, listing_id, borrower_id) -> Listing:
        listing = Listing.objects.filter(
            pk=listing_id, rto_available=True, status=Listing.Status.ACTIVE
        ).first()
        if listing is None or not listing.rto_purchase_price:
            raise ListingUnavailableError("Listing not found or rent-to-own not available")
        if listing.owner_id == borrower_id:
            raise InvalidTermsError("Cannot create a rent-to-own contract for your own item")
        if not listing.is_available:
            raise ListingUnavailableError("Listing is committed to another transaction")
        open_request = Contract.objects.filter(
            listing=listing,
            borrower_id=borrower_id,
            status__in=[Contract.Status.PENDING, Contract.Status.ACTIVE],
        ).exists()
        if open_request:
            raise ListingUnavailableError("You already have an open contract for this listing")
        return listing


def check_payment_bounds(listing: Listing, total_payments: int) -> None:
    low = listing.rto_min_payments
    high = listing.rto_max_payments
    if low is not None and total_payments < low:
        raise InvalidTermsError(f"This listing requires at least {low} payments.")
    if high is not None and total_payments > high:
        raise InvalidTermsError(f"This listing allows at most {high} payments.")
