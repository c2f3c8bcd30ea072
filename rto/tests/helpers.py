from concurrent.futures import Future
from datetime import date

from django.contrib.auth import get_user_model

from rto.exceptions import (
    CaptureOutcomeUnknownError,
    ProcessorCaptureFailedError,
    ProcessorTransferFailedError,
)
from rto.ledger import ContractLedger
from rto.models import Listing, PaymentAccount
from rto.notifier import SettlementNotifier
from rto.services import ContractService


def make_user(username, customer_id="", payout_id=""):
    user = get_user_model().objects.create_user(username=username, password="secret")
    PaymentAccount.objects.create(
        user=user, processor_customer_id=customer_id, payout_account_id=payout_id
    )
    return user


def make_listing(owner, price=36000, percent=50, **kwargs):
    return Listing.objects.create(
        owner=owner,
        title=kwargs.pop("title", "Cordless drill"),
        rto_available=True,
        rto_purchase_price=price,
        rto_rental_credit_percent=percent,
        **kwargs,
    )


class InlineExecutor:
    def submit(self, fn, *args, **kwargs):
        future = Future()
        future.set_result(fn(*args, **kwargs))
        return future


class RecordingChannel:
    def __init__(self):
        self.sent = []

    def notify(self, user_id, event_type, payload):
        self.sent.append((user_id, event_type, payload))

    def events_for(self, user_id):
        return [event for uid, event, _ in self.sent if uid == user_id]


class FakeProcessor:
    """In-memory processor that replays by idempotency key like Stripe does.

    A declined key keeps answering with the decline.
    """

    def __init__(self):
        self.captures = {}
        self.declined = set()
        self.transfers = {}
        self.capture_calls = 0
        self.decline_next = False
        self.timeout_next = False
        self.fail_transfers = False

    def capture(self, amount, payer_account, idempotency_key):
        self.capture_calls += 1
        if self.decline_next or idempotency_key in self.declined:
            self.decline_next = False
            self.declined.add(idempotency_key)
            raise ProcessorCaptureFailedError("Your card was declined.", decline_code="card_declined")
        if idempotency_key not in self.captures:
            self.captures[idempotency_key] = (f"pi_{len(self.captures) + 1}", amount, payer_account)
        if self.timeout_next:
            self.timeout_next = False
            raise CaptureOutcomeUnknownError("Read timed out", idempotency_key=idempotency_key)
        return self.captures[idempotency_key][0]

    def transfer(self, amount, destination_account, idempotency_key):
        if self.fail_transfers:
            raise ProcessorTransferFailedError("Insufficient platform balance")
        if idempotency_key not in self.transfers:
            self.transfers[idempotency_key] = (f"tr_{len(self.transfers) + 1}", amount, destination_account)
        return self.transfers[idempotency_key][0]

    def find_capture(self, idempotency_key):
        capture = self.captures.get(idempotency_key)
        return capture[0] if capture else None

    @property
    def captured_total(self):
        return sum(amount for _, amount, _ in self.captures.values())


def inline_notifier(channel=None):
    return SettlementNotifier(channel=channel or RecordingChannel(), executor=InlineExecutor())


def active_contract(borrower, lender, listing, total_payments=12, cadence="monthly", notifier=None):
    service = ContractService(ContractLedger(), notifier or inline_notifier())
    contract = service.create_contract(
        listing.pk, borrower.pk, total_payments, cadence, date(2024, 1, 15)
    )
    return service.approve_contract(contract.pk, lender.pk)
