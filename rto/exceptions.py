"""
Typed errors raised by the rent-to-own engine.

Every error carries a machine-readable ``code`` and the structured values
that caused it, so callers catch by type and the API layer can render a
stable payload without parsing messages.

    RTOError
    +-- InvalidTermsError               terms rejected before persistence
    +-- ContractNotFoundError
    +-- StateError
    |   +-- InvalidStateTransitionError
    |   +-- ContractNotActiveError
    |   +-- ListingUnavailableError
    |   +-- NoPendingPaymentError
    |   +-- PaymentInProgressError
    +-- AccessDeniedError
    |   +-- NotContractPartyError
    |   +-- NotBorrowerError
    +-- ProcessorError
    |   +-- ProcessorCaptureFailedError  declined, nothing moved
    |   +-- CaptureOutcomeUnknownError   timeout, retry with the same key
    |   +-- ProcessorTransferFailedError payout not sent, recorded only
    +-- LedgerWriteFailedError          capture happened, ledger not written
"""

from typing import Optional


class RTOError(Exception):
    code = "rto_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidTermsError(RTOError):
    code = "invalid_terms"


class ContractNotFoundError(RTOError):
    code = "contract_not_found"

    def __init__(self, contract_id):
        super().__init__(f"Contract {contract_id} not found")
        self.contract_id = contract_id


class StateError(RTOError):
    code = "invalid_state"


class InvalidStateTransitionError(StateError):
    code = "invalid_state_transition"

    def __init__(self, current: str, action: str):
        super().__init__(f"Cannot {action} a contract that is {current}")
        self.current = current
        self.action = action


class ContractNotActiveError(InvalidStateTransitionError):
    code = "contract_not_active"


class ListingUnavailableError(StateError):
    code = "listing_unavailable"


class NoPendingPaymentError(StateError):
    code = "no_pending_payment"

    def __init__(self, contract_id):
        super().__init__(f"Contract {contract_id} has no pending payments")
        self.contract_id = contract_id


class PaymentInProgressError(StateError):
    code = "payment_in_progress"

    def __init__(self, contract_id, payment_number: int):
        super().__init__(
            f"Payment {payment_number} of contract {contract_id} is already being captured"
        )
        self.contract_id = contract_id
        self.payment_number = payment_number


class AccessDeniedError(RTOError):
    code = "forbidden"


class NotContractPartyError(AccessDeniedError):
    code = "not_contract_party"


class NotBorrowerError(AccessDeniedError):
    code = "not_borrower"


class ProcessorError(RTOError):
    code = "processor_error"


class ProcessorCaptureFailedError(ProcessorError):
    code = "capture_declined"

    def __init__(self, message: str, decline_code: Optional[str] = None):
        super().__init__(message)
        self.decline_code = decline_code


class CaptureOutcomeUnknownError(ProcessorError):
    code = "capture_outcome_unknown"

    def __init__(self, message: str, idempotency_key: Optional[str] = None):
        super().__init__(message)
        self.idempotency_key = idempotency_key


class ProcessorTransferFailedError(ProcessorError):
    code = "transfer_failed"


class LedgerWriteFailedError(RTOError):
    code = "ledger_write_failed"

    def __init__(self, message: str, idempotency_key: str, capture_ref: Optional[str]):
        super().__init__(message)
        self.idempotency_key = idempotency_key
        self.capture_ref = capture_ref
