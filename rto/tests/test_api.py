from unittest import mock

from django.test import TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient

from rto.ledger import ContractLedger
from rto.models import Contract, Listing, Payment
from rto.orchestrator import PaymentOrchestrator

from .helpers import FakeProcessor, inline_notifier, make_listing, make_user


class ContractAPITestCase(TestCase):
    def setUp(self):
        self.lender = make_user("lender", payout_id="acct_lender")
        self.borrower = make_user("borrower", customer_id="cus_borrower")
        self.listing = make_listing(self.lender)
        self.client = APIClient()
        self.processor = FakeProcessor()
        patcher = mock.patch(
            "rto.views.payment_orchestrator",
            lambda: PaymentOrchestrator(ContractLedger(), self.processor, inline_notifier()),
        )
        patcher.start()
        self.addCleanup(patcher.stop)

    def as_user(self, user):
        self.client.force_authenticate(user=user)
        return self.client

    def create_contract(self, **overrides):
        payload = {
            "listing_id": self.listing.pk,
            "total_payments": 12,
            "cadence": "monthly",
            "first_payment_date": "2024-01-15",
        }
        payload.update(overrides)
        return self.as_user(self.borrower).post(
            reverse("contract-list"), data=payload, format="json"
        )

    def approved_contract_id(self):
        contract_id = self.create_contract().data["id"]
        response = self.as_user(self.lender).post(reverse("contract-approve", args=[contract_id]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        return contract_id


class CreateContractAPITest(ContractAPITestCase):
    def test_create_contract(self):
        response = self.create_contract()

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        data = response.data
        self.assertEqual(data["status"], "pending")
        self.assertEqual(data["purchase_price"], 36000)
        self.assertEqual(data["payment_amount"], 6000)
        self.assertEqual(data["rental_credit_percent"], 50)
        self.assertEqual(data["next_payment_date"], "2024-01-15")
        self.assertTrue(data["is_borrower"])
        self.assertEqual(len(data["payments"]), 12)
        self.assertEqual(data["payments"][0]["payment_number"], 1)
        self.assertEqual(data["payments"][-1]["due_date"], "2024-12-15")
        self.assertEqual(sum(p["equity_portion"] for p in data["payments"]), 36000)

    def test_accepts_day_first_dates(self):
        response = self.create_contract(first_payment_date="15-01-2024", cadence="weekly")

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["payments"][1]["due_date"], "2024-01-22")

    def test_rejects_too_many_payments(self):
        response = self.create_contract(total_payments=37)

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("total_payments", response.data)
        self.assertFalse(Contract.objects.exists())

    def test_rejects_unknown_cadence(self):
        response = self.create_contract(cadence="daily")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_respects_listing_payment_bounds(self):
        Listing.objects.filter(pk=self.listing.pk).update(rto_min_payments=6, rto_max_payments=10)

        response = self.create_contract(total_payments=12)

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["error"], "invalid_terms")

    def test_owner_cannot_buy_own_listing(self):
        response = self.as_user(self.lender).post(
            reverse("contract-list"),
            data={
                "listing_id": self.listing.pk,
                "total_payments": 12,
                "first_payment_date": "2024-01-15",
            },
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_listing_without_rto_is_unavailable(self):
        Listing.objects.filter(pk=self.listing.pk).update(rto_available=False)

        response = self.create_contract()

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["error"], "listing_unavailable")

    def test_encumbered_listing_is_unavailable(self):
        self.approved_contract_id()
        other = make_user("other", customer_id="cus_other")

        response = self.as_user(other).post(
            reverse("contract-list"),
            data={
                "listing_id": self.listing.pk,
                "total_payments": 12,
                "first_payment_date": "2024-01-15",
            },
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_duplicate_open_request(self):
        self.create_contract()

        response = self.create_contract()

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_requires_authentication(self):
        response = APIClient().post(reverse("contract-list"), data={}, format="json")

        self.assertIn(
            response.status_code, (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN)
        )


class ContractLifecycleAPITest(ContractAPITestCase):
    def test_approve_encumbers_listing(self):
        contract_id = self.approved_contract_id()

        contract = Contract.objects.get(pk=contract_id)
        self.assertEqual(contract.status, Contract.Status.ACTIVE)
        self.assertIsNotNone(contract.approved_at)
        self.assertFalse(Listing.objects.get(pk=self.listing.pk).is_available)

    def test_only_one_active_contract_per_listing(self):
        first = self.create_contract().data["id"]
        other = make_user("other", customer_id="cus_other")
        second = self.as_user(other).post(
            reverse("contract-list"),
            data={"listing_id": self.listing.pk, "total_payments": 6, "first_payment_date": "2024-01-15"},
            format="json",
        ).data["id"]

        self.as_user(self.lender).post(reverse("contract-approve", args=[first]))
        response = self.as_user(self.lender).post(reverse("contract-approve", args=[second]))

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(Contract.objects.get(pk=second).status, Contract.Status.PENDING)

    def test_borrower_cannot_approve(self):
        contract_id = self.create_contract().data["id"]

        response = self.as_user(self.borrower).post(reverse("contract-approve", args=[contract_id]))

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data["error"], "not_contract_party")

    def test_decline_with_default_reason(self):
        contract_id = self.create_contract().data["id"]

        response = self.as_user(self.lender).post(
            reverse("contract-decline", args=[contract_id]), data={}, format="json"
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        contract = Contract.objects.get(pk=contract_id)
        self.assertEqual(contract.status, Contract.Status.CANCELLED)
        self.assertEqual(contract.cancellation_reason, "Declined by lender")
        self.assertTrue(Listing.objects.get(pk=self.listing.pk).is_available)

    def test_cancel_pending_contract_is_rejected(self):
        contract_id = self.create_contract().data["id"]

        response = self.as_user(self.borrower).post(
            reverse("contract-cancel", args=[contract_id]), data={"reason": "Changed mind"}, format="json"
        )

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["error"], "contract_not_active")

    def test_cancel_requires_reason(self):
        contract_id = self.approved_contract_id()

        response = self.as_user(self.lender).post(
            reverse("contract-cancel", args=[contract_id]), data={}, format="json"
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_lender_cancels_active_contract(self):
        contract_id = self.approved_contract_id()

        response = self.as_user(self.lender).post(
            reverse("contract-cancel", args=[contract_id]), data={"reason": "Item broke"}, format="json"
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        contract = Contract.objects.get(pk=contract_id)
        self.assertEqual(contract.cancelled_by, Contract.Party.LENDER)
        self.assertEqual(contract.cancellation_reason, "Item broke")
        self.assertTrue(Listing.objects.get(pk=self.listing.pk).is_available)

        again = self.as_user(self.borrower).post(
            reverse("contract-cancel", args=[contract_id]), data={"reason": "again"}, format="json"
        )
        self.assertEqual(again.status_code, status.HTTP_409_CONFLICT)


class ContractReadAPITest(ContractAPITestCase):
    def test_detail_for_parties_only(self):
        contract_id = self.create_contract().data["id"]
        stranger = make_user("stranger")

        lender_view = self.as_user(self.lender).get(reverse("contract-detail", args=[contract_id]))
        stranger_view = self.as_user(stranger).get(reverse("contract-detail", args=[contract_id]))

        self.assertEqual(lender_view.status_code, status.HTTP_200_OK)
        self.assertTrue(lender_view.data["is_lender"])
        self.assertFalse(lender_view.data["is_borrower"])
        self.assertEqual(lender_view.data["remaining_equity"], 36000)
        self.assertEqual(lender_view.data["progress_percent"], 0)
        self.assertEqual(stranger_view.status_code, status.HTTP_404_NOT_FOUND)

    def test_list_filters_by_role_and_status(self):
        contract_id = self.create_contract().data["id"]

        as_borrower = self.as_user(self.borrower).get(reverse("contract-list"), {"role": "borrower"})
        as_lender = self.as_user(self.borrower).get(reverse("contract-list"), {"role": "lender"})
        active_only = self.as_user(self.lender).get(reverse("contract-list"), {"status": "active"})
        everything = self.as_user(self.lender).get(reverse("contract-list"))

        self.assertEqual([c["id"] for c in as_borrower.data], [contract_id])
        self.assertEqual(as_lender.data, [])
        self.assertEqual(active_only.data, [])
        self.assertEqual([c["id"] for c in everything.data], [contract_id])
        self.assertEqual(everything.data[0]["listing"]["title"], "Cordless drill")

    def test_list_rejects_unknown_filter_values(self):
        response = self.as_user(self.borrower).get(reverse("contract-list"), {"status": "x' OR 1=1"})

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_payment_history(self):
        contract_id = self.approved_contract_id()
        self.as_user(self.borrower).post(reverse("contract-pay", args=[contract_id]))

        response = self.as_user(self.lender).get(reverse("contract-payments", args=[contract_id]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 12)
        self.assertEqual(response.data[0]["status"], "completed")
        self.assertEqual(response.data[1]["status"], "pending")


class MakePaymentAPITest(ContractAPITestCase):
    def test_pay(self):
        contract_id = self.approved_contract_id()

        response = self.as_user(self.borrower).post(reverse("contract-pay", args=[contract_id]))

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["payment_number"], 1)
        self.assertEqual(response.data["contract_status"], "active")
        payment = Payment.objects.get(pk=response.data["payment_id"])
        self.assertEqual(payment.status, Payment.Status.COMPLETED)

    def test_pay_to_completion(self):
        contract_id = self.approved_contract_id()
        for _ in range(12):
            response = self.as_user(self.borrower).post(reverse("contract-pay", args=[contract_id]))
            self.assertEqual(response.status_code, status.HTTP_201_CREATED)

        self.assertEqual(response.data["contract_status"], "completed")
        detail = self.as_user(self.borrower).get(reverse("contract-detail", args=[contract_id]))
        self.assertEqual(detail.data["equity_accumulated"], 36000)
        self.assertEqual(detail.data["progress_percent"], 100)
        self.assertEqual(Listing.objects.get(pk=self.listing.pk).owner_id, self.borrower.pk)

        extra = self.as_user(self.borrower).post(reverse("contract-pay", args=[contract_id]))
        self.assertEqual(extra.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(extra.data["error"], "no_pending_payment")

    def test_declined_card(self):
        contract_id = self.approved_contract_id()
        self.processor.decline_next = True

        response = self.as_user(self.borrower).post(reverse("contract-pay", args=[contract_id]))

        self.assertEqual(response.status_code, status.HTTP_402_PAYMENT_REQUIRED)
        self.assertEqual(response.data["error"], "capture_declined")
        self.assertEqual(Contract.objects.get(pk=contract_id).payments_completed, 0)

    def test_capture_timeout(self):
        contract_id = self.approved_contract_id()
        self.processor.timeout_next = True

        response = self.as_user(self.borrower).post(reverse("contract-pay", args=[contract_id]))

        self.assertEqual(response.status_code, status.HTTP_503_SERVICE_UNAVAILABLE)
        self.assertEqual(response.data["error"], "capture_outcome_unknown")

    def test_lender_cannot_pay(self):
        contract_id = self.approved_contract_id()

        response = self.as_user(self.lender).post(reverse("contract-pay", args=[contract_id]))

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data["error"], "not_borrower")
