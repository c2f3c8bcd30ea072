from django.urls import path

from .views import (
    ContractApproveView,
    ContractCancelView,
    ContractDeclineView,
    ContractDetailView,
    ContractListCreateView,
    ContractPaymentsView,
    MakePaymentView,
)

urlpatterns = [
    path("contracts/", ContractListCreateView.as_view(), name="contract-list"),
    path("contracts/<int:contract_id>/", ContractDetailView.as_view(), name="contract-detail"),
    path(
        "contracts/<int:contract_id>/approve/",
        ContractApproveView.as_view(),
        name="contract-approve",
    ),
    path(
        "contracts/<int:contract_id>/decline/",
        ContractDeclineView.as_view(),
        name="contract-decline",
    ),
    path(
        "contracts/<int:contract_id>/cancel/",
        ContractCancelView.as_view(),
        name="contract-cancel",
    ),
    path(
        "contracts/<int:contract_id>/payments/",
        ContractPaymentsView.as_view(),
        name="contract-payments",
    ),
    path("contracts/<int:contract_id>/pay/", MakePaymentView.as_view(), name="contract-pay"),
]
