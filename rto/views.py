import structlog
from rest_framework import generics, status
from rest_framework.response import Response
from rest_framework.views import exception_handler

from . import exceptions as errors
from .ledger import ContractLedger
from .notifier import SettlementNotifier
from .orchestrator import PaymentOrchestrator
from .processor import StripeProcessor
from .serializers import (
    CancelSerializer,
    ContractCreateSerializer,
    ContractDetailSerializer,
    ContractFilterSerializer,
    ContractListSerializer,
    DeclineSerializer,
    PaymentResultSerializer,
    PaymentSerializer,
)
from .services import ContractService

logger = structlog.get_logger()

ERROR_STATUS = [
    (errors.InvalidTermsError, status.HTTP_400_BAD_REQUEST),
    (errors.ContractNotFoundError, status.HTTP_404_NOT_FOUND),
    (errors.AccessDeniedError, status.HTTP_403_FORBIDDEN),
    (errors.StateError, status.HTTP_409_CONFLICT),
    (errors.ProcessorCaptureFailedError, status.HTTP_402_PAYMENT_REQUIRED),
    (errors.CaptureOutcomeUnknownError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (errors.LedgerWriteFailedError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def rto_exception_handler(exc, context):
    if not isinstance(exc, errors.RTOError):
        return exception_handler(exc, context)
    for error_class, code in ERROR_STATUS:
        if isinstance(exc, error_class):
            break
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    if code >= 500:
        logger.error("rto.request.failed", error=exc.code, detail=exc.message)
    return Response({"error": exc.code, "detail": exc.message}, status=code)


def contract_service() -> ContractService:
    return ContractService(ContractLedger(), SettlementNotifier())


def payment_orchestrator() -> PaymentOrchestrator:
    return PaymentOrchestrator(ContractLedger(), StripeProcessor(), SettlementNotifier())


class ContractListCreateView(generics.GenericAPIView):
    serializer_class = ContractCreateSerializer

    def get(self, request, *args, **kwargs):
        filters = ContractFilterSerializer(data=request.query_params)
        filters.is_valid(raise_exception=True)
        contracts = contract_service().list_contracts(request.user.pk, **filters.validated_data)
        data = ContractListSerializer(contracts, many=True, context={"request": request}).data
        return Response(data)

    def post(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        contract = contract_service().create_contract(
            borrower_id=request.user.pk, **serializer.validated_data
        )
        data = ContractDetailSerializer(contract, context={"request": request}).data
        return Response(data, status=status.HTTP_201_CREATED)


class ContractDetailView(generics.GenericAPIView):
    def get(self, request, contract_id: int, *args, **kwargs):
        contract, payments = contract_service().get_contract(contract_id, request.user.pk)
        data = ContractDetailSerializer(
            contract, context={"request": request, "payments": payments}
        ).data
        return Response(data)


class ContractApproveView(generics.GenericAPIView):
    def post(self, request, contract_id: int, *args, **kwargs):
        contract = contract_service().approve_contract(contract_id, request.user.pk)
        return Response({"id": contract.pk, "status": contract.status})


class ContractDeclineView(generics.GenericAPIView):
    serializer_class = DeclineSerializer

    def post(self, request, contract_id: int, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        contract = contract_service().decline_contract(
            contract_id, request.user.pk, serializer.validated_data.get("reason")
        )
        return Response({"id": contract.pk, "status": contract.status})


class ContractCancelView(generics.GenericAPIView):
    serializer_class = CancelSerializer

    def post(self, request, contract_id: int, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        contract = contract_service().cancel_contract(
            contract_id, request.user.pk, serializer.validated_data["reason"]
        )
        return Response({"id": contract.pk, "status": contract.status})


class ContractPaymentsView(generics.GenericAPIView):
    def get(self, request, contract_id: int, *args, **kwargs):
        payments = contract_service().list_payments(contract_id, request.user.pk)
        return Response(PaymentSerializer(payments, many=True).data)


class MakePaymentView(generics.GenericAPIView):
    def post(self, request, contract_id: int, *args, **kwargs):
        result = payment_orchestrator().make_payment(contract_id, request.user.pk)
        return Response(PaymentResultSerializer(result).data, status=status.HTTP_201_CREATED)
