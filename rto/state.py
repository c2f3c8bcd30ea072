"""Legal transitions of a rent-to-own contract."""

from .exceptions import ContractNotActiveError, InvalidStateTransitionError
from .models import Contract

APPROVE = "approve"
DECLINE = "decline"
CANCEL = "cancel"
PAY = "pay"
COMPLETE = "complete"

PENDING = Contract.Status.PENDING.value
ACTIVE = Contract.Status.ACTIVE.value
COMPLETED = Contract.Status.COMPLETED.value
CANCELLED = Contract.Status.CANCELLED.value

TRANSITIONS = {
    (PENDING, APPROVE): ACTIVE,
    (PENDING, DECLINE): CANCELLED,
    (ACTIVE, CANCEL): CANCELLED,
    (ACTIVE, PAY): ACTIVE,
    (ACTIVE, COMPLETE): COMPLETED,
}

# Actions that only make sense on a running contract.
ACTIVE_ONLY = {CANCEL, PAY, COMPLETE}


def next_status(current: str, action: str) -> str:
    try:
        return TRANSITIONS[(current, action)]
    except KeyError:
        if action in ACTIVE_ONLY:
            raise ContractNotActiveError(current, action) from None
        raise InvalidStateTransitionError(current, action) from None


def apply(contract: Contract, action: str) -> Contract:
    """Move ``contract`` along ``action`` in memory; the caller saves it."""

    contract.status = next_status(contract.status, action)
    return contract


def allowed_actions(current: str):
    return sorted(action for status, action in TRANSITIONS if status == current)
