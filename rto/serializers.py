from django.conf import settings
from rest_framework import serializers

from .models import Contract, Listing, Payment


class PaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payment
        fields = [
            "id",
            "payment_number",
            "total_amount",
            "equity_portion",
            "rental_portion",
            "platform_fee",
            "lender_payout",
            "due_date",
            "paid_at",
            "status",
        ]


class ListingSummarySerializer(serializers.ModelSerializer):
    class Meta:
        model = Listing
        fields = ["id", "title"]


class ContractListSerializer(serializers.ModelSerializer):
    listing = ListingSummarySerializer(read_only=True)
    is_borrower = serializers.SerializerMethodField()

    class Meta:
        model = Contract
        fields = [
            "id",
            "status",
            "listing",
            "borrower_id",
            "lender_id",
            "purchase_price",
            "total_payments",
            "payments_completed",
            "payment_amount",
            "equity_accumulated",
            "next_payment_date",
            "is_borrower",
            "created_at",
        ]

    def get_is_borrower(self, contract: Contract) -> bool:
        return contract.borrower_id == self.context["request"].user.pk


class ContractDetailSerializer(ContractListSerializer):
    payments = serializers.SerializerMethodField()
    is_lender = serializers.SerializerMethodField()

    class Meta(ContractListSerializer.Meta):
        fields = ContractListSerializer.Meta.fields + [
            "rental_credit_percent",
            "cadence",
            "first_payment_date",
            "rental_paid",
            "remaining_equity",
            "progress_percent",
            "payments",
            "terms_accepted_at",
            "approved_at",
            "cancelled_at",
            "cancelled_by",
            "cancellation_reason",
            "completed_at",
            "is_lender",
        ]

    def get_payments(self, contract: Contract):
        payments = self.context.get("payments")
        if payments is None:
            payments = contract.payments.all()
        return PaymentSerializer(payments, many=True).data

    def get_is_lender(self, contract: Contract) -> bool:
        return contract.lender_id == self.context["request"].user.pk


class ContractCreateSerializer(serializers.Serializer):
    listing_id = serializers.IntegerField(min_value=1)
    total_payments = serializers.IntegerField(min_value=1)
    cadence = serializers.ChoiceField(
        choices=Contract.Cadence.choices, default=Contract.Cadence.MONTHLY
    )
    first_payment_date = serializers.DateField(input_formats=["%Y-%m-%d", "%d-%m-%Y"])

    def validate_total_payments(self, value: int) -> int:
        if value > settings.RTO_MAX_PAYMENTS:
            raise serializers.ValidationError(
                f"Ensure this value is less than or equal to {settings.RTO_MAX_PAYMENTS}."
            )
        return value


class DeclineSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=500, required=False, allow_blank=True)


class CancelSerializer(serializers.Serializer):
    reason = serializers.CharField(min_length=1, max_length=500)


class ContractFilterSerializer(serializers.Serializer):
    role = serializers.ChoiceField(choices=Contract.Party.choices, required=False)
    status = serializers.ChoiceField(choices=Contract.Status.choices, required=False)


class PaymentResultSerializer(serializers.Serializer):
    payment_id = serializers.IntegerField()
    payment_number = serializers.IntegerField()
    contract_status = serializers.CharField()
    transfer_ref = serializers.CharField(allow_null=True)
