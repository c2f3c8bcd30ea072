from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models

from . import schedule


class Listing(models.Model):
    class Status(models.TextChoices):
        ACTIVE = "active", "Active"
        INACTIVE = "inactive", "Inactive"

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL, related_name="listings", on_delete=models.PROTECT
    )
    title = models.CharField(max_length=200)
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.ACTIVE)
    is_available = models.BooleanField(default=True)
    rto_available = models.BooleanField(default=False)
    rto_purchase_price = models.PositiveBigIntegerField(null=True, blank=True)
    rto_rental_credit_percent = models.PositiveSmallIntegerField(
        default=50, validators=[MinValueValidator(1), MaxValueValidator(100)]
    )
    rto_min_payments = models.PositiveSmallIntegerField(null=True, blank=True)
    rto_max_payments = models.PositiveSmallIntegerField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return self.title


class PaymentAccount(models.Model):
    """Processor identities of a user: who we charge and where payouts go."""

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL, related_name="payment_account", on_delete=models.CASCADE
    )
    processor_customer_id = models.CharField(max_length=255, blank=True)
    payout_account_id = models.CharField(max_length=255, blank=True)

    def __str__(self) -> str:
        return f"Payment account for user {self.user_id}"


class Contract(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        ACTIVE = "active", "Active"
        COMPLETED = "completed", "Completed"
        CANCELLED = "cancelled", "Cancelled"

    class Cadence(models.TextChoices):
        WEEKLY = schedule.WEEKLY, "Weekly"
        BIWEEKLY = schedule.BIWEEKLY, "Biweekly"
        MONTHLY = schedule.MONTHLY, "Monthly"

    class Party(models.TextChoices):
        BORROWER = "borrower", "Borrower"
        LENDER = "lender", "Lender"

    listing = models.ForeignKey(Listing, related_name="rto_contracts", on_delete=models.PROTECT)
    borrower = models.ForeignKey(
        settings.AUTH_USER_MODEL, related_name="rto_borrowed", on_delete=models.PROTECT
    )
    lender = models.ForeignKey(
        settings.AUTH_USER_MODEL, related_name="rto_lent", on_delete=models.PROTECT
    )

    # Terms, fixed at creation. Money is in minor units.
    purchase_price = models.PositiveBigIntegerField()
    total_payments = models.PositiveSmallIntegerField()
    payment_amount = models.PositiveBigIntegerField()
    rental_credit_percent = models.PositiveSmallIntegerField()
    cadence = models.CharField(max_length=10, choices=Cadence.choices, default=Cadence.MONTHLY)
    first_payment_date = models.DateField()

    # Progress
    payments_completed = models.PositiveSmallIntegerField(default=0)
    equity_accumulated = models.PositiveBigIntegerField(default=0)
    rental_paid = models.PositiveBigIntegerField(default=0)
    next_payment_date = models.DateField(null=True, blank=True)

    status = models.CharField(max_length=10, choices=Status.choices, default=Status.PENDING)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    terms_accepted_at = models.DateTimeField(null=True, blank=True)
    approved_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancelled_by = models.CharField(max_length=10, choices=Party.choices, blank=True)
    cancellation_reason = models.TextField(blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["status"], name="rto_contract_status_idx"),
            models.Index(fields=["next_payment_date"], name="rto_contract_next_due_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(equity_accumulated__lte=models.F("purchase_price")),
                name="rto_equity_within_price",
            ),
            models.CheckConstraint(
                condition=models.Q(payments_completed__lte=models.F("total_payments")),
                name="rto_completed_within_total",
            ),
        ]

    def __str__(self) -> str:
        return f"RTO contract {self.pk}"

    @property
    def remaining_equity(self) -> int:
        return self.purchase_price - self.equity_accumulated

    @property
    def progress_percent(self) -> int:
        return schedule.divide_half_up(self.equity_accumulated * 100, self.purchase_price)

    @property
    def is_terminal(self) -> bool:
        return self.status in (self.Status.COMPLETED, self.Status.CANCELLED)

    def party_of(self, user_id):
        if user_id == self.borrower_id:
            return self.Party.BORROWER
        if user_id == self.lender_id:
            return self.Party.LENDER
        return None


class PaymentQuerySet(models.QuerySet):
    def unpaid(self):
        return self.filter(status__in=[Payment.Status.PENDING, Payment.Status.CAPTURING])

    def completed(self):
        return self.filter(status=Payment.Status.COMPLETED)

    def awaiting_payout(self):
        return self.completed().filter(
            payout_status__in=[Payment.PayoutStatus.FAILED, Payment.PayoutStatus.NO_DESTINATION]
        )


class Payment(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        CAPTURING = "capturing", "Capturing"
        COMPLETED = "completed", "Completed"
        FAILED = "failed", "Failed"

    class PayoutStatus(models.TextChoices):
        TRANSFERRED = "transferred", "Transferred"
        FAILED = "failed", "Failed"
        NO_DESTINATION = "no_destination", "No destination"

    contract = models.ForeignKey(Contract, related_name="payments", on_delete=models.CASCADE)
    payment_number = models.PositiveSmallIntegerField()

    total_amount = models.PositiveBigIntegerField()
    equity_portion = models.PositiveBigIntegerField()
    rental_portion = models.PositiveBigIntegerField()
    platform_fee = models.PositiveBigIntegerField()
    lender_payout = models.PositiveBigIntegerField()

    due_date = models.DateField()
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.PENDING)
    paid_at = models.DateTimeField(null=True, blank=True)

    idempotency_key = models.CharField(max_length=100, unique=True)
    claimed_at = models.DateTimeField(null=True, blank=True)
    capture_ref = models.CharField(max_length=255, blank=True)
    transfer_ref = models.CharField(max_length=255, blank=True)
    payout_status = models.CharField(
        max_length=15, choices=PayoutStatus.choices, null=True, blank=True
    )
    payout_error = models.TextField(blank=True)

    failure_reason = models.TextField(blank=True)
    retry_count = models.PositiveIntegerField(default=0)
    last_retry_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = PaymentQuerySet.as_manager()

    class Meta:
        ordering = ["payment_number"]
        unique_together = ("contract", "payment_number")
        indexes = [models.Index(fields=["status"], name="rto_payment_status_idx")]

    def __str__(self) -> str:
        return f"Payment {self.payment_number} for contract {self.contract_id}"

    @staticmethod
    def key_for(contract_id, payment_number: int, attempt: int = 0) -> str:
        """Capture key for a payment.

        The processor replays the stored response for a key, declines
        included, so each retry after a confirmed decline gets a new
        ``attempt``. An unknown outcome keeps the key it was sent with.
        """

        key = f"rto:{contract_id}:{payment_number}"
        return f"{key}:{attempt}" if attempt else key

    @property
    def payout_key(self) -> str:
        return f"{Payment.key_for(self.contract_id, self.payment_number)}:payout"
