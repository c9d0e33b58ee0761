"""
Approval state machine for reimbursement items.

Items move through a fixed chain::

    pending -> approved_by_manager -> approved_by_hr -> approved_by_finance -> paid

and every level can instead reject, which ends the chain in
``rejected_by_<level>``. Employees without a manager (or who manage
themselves) skip the manager stage: HR may act on their ``pending`` items.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional

logger = logging.getLogger(__name__)


class ItemStatus(str, Enum):
    PENDING = 'pending'
    APPROVED_BY_MANAGER = 'approved_by_manager'
    REJECTED_BY_MANAGER = 'rejected_by_manager'
    APPROVED_BY_HR = 'approved_by_hr'
    REJECTED_BY_HR = 'rejected_by_hr'
    APPROVED_BY_FINANCE = 'approved_by_finance'
    REJECTED_BY_FINANCE = 'rejected_by_finance'
    PAID = 'paid'


class ReimbursementStatus(str, Enum):
    DRAFT = 'draft'
    SUBMITTED = 'submitted'
    PENDING_APPROVAL = 'pending approval'
    PARTIALLY_APPROVED = 'partially_approved'
    FULLY_APPROVED = 'fully_approved'
    PAID = 'paid'
    REJECTED = 'rejected'


class ApprovalLevel(str, Enum):
    MANAGER = 'manager'
    HR = 'hr'
    FINANCE = 'finance'


class Decision(str, Enum):
    APPROVED = 'approved'
    REJECTED = 'rejected'


def status_value(status) -> str:
    return str(getattr(status, 'value', status))


class InvalidTransitionError(Exception):
    def __init__(self, current, level: ApprovalLevel, decision: Decision):
        self.current = current
        self.level = level
        self.decision = decision
        super().__init__(f"Cannot {decision.value[:-1]} item in status '{status_value(current)}' at {level.value} level")


@dataclass(frozen=True)
class Stage:
    level: ApprovalLevel
    label: str
    requires: ItemStatus
    approved: ItemStatus
    rejected: ItemStatus
    accepts_unmanaged: bool = False

    def source_statuses(self, unmanaged: bool = False) -> FrozenSet[ItemStatus]:
        statuses = {self.requires}
        if unmanaged and self.accepts_unmanaged:
            statuses.add(ItemStatus.PENDING)
        return frozenset(statuses)


STAGES = {
    ApprovalLevel.MANAGER: Stage(
        ApprovalLevel.MANAGER, 'Manager',
        requires=ItemStatus.PENDING,
        approved=ItemStatus.APPROVED_BY_MANAGER,
        rejected=ItemStatus.REJECTED_BY_MANAGER,
    ),
    ApprovalLevel.HR: Stage(
        ApprovalLevel.HR, 'HR',
        requires=ItemStatus.APPROVED_BY_MANAGER,
        approved=ItemStatus.APPROVED_BY_HR,
        rejected=ItemStatus.REJECTED_BY_HR,
        accepts_unmanaged=True,
    ),
    ApprovalLevel.FINANCE: Stage(
        ApprovalLevel.FINANCE, 'Finance',
        requires=ItemStatus.APPROVED_BY_HR,
        approved=ItemStatus.APPROVED_BY_FINANCE,
        rejected=ItemStatus.REJECTED_BY_FINANCE,
    ),
}

REJECTED_STATUSES = frozenset(stage.rejected.value for stage in STAGES.values())
FINANCE_CLEARED_STATUSES = frozenset({ItemStatus.APPROVED_BY_FINANCE.value, ItemStatus.PAID.value})
OPEN_REIMBURSEMENT_STATUSES = (
    ReimbursementStatus.SUBMITTED,
    ReimbursementStatus.PENDING_APPROVAL,
    ReimbursementStatus.PARTIALLY_APPROVED,
)


def is_open_reimbursement(status) -> bool:
    """True while the reimbursement is still in the approval chain (not draft or settled)."""
    return status_value(status) in {status_value(value) for value in OPEN_REIMBURSEMENT_STATUSES}


def transition(current, level: ApprovalLevel, decision: Decision, unmanaged: bool = False) -> ItemStatus:
    """Return the status an item moves to, or raise ``InvalidTransitionError``."""
    stage = STAGES[ApprovalLevel(level)]
    decision = Decision(decision)
    try:
        current_status = ItemStatus(current)
    except ValueError:
        raise InvalidTransitionError(current, stage.level, decision)

    if current_status not in stage.source_statuses(unmanaged):
        raise InvalidTransitionError(current, stage.level, decision)

    new_status = stage.approved if decision is Decision.APPROVED else stage.rejected
    logger.info("Item %s -> %s (%s %s)", current_status.value, new_status.value, stage.level.value, decision.value)
    return new_status


def mark_paid(current) -> ItemStatus:
    if current != ItemStatus.APPROVED_BY_FINANCE:
        raise InvalidTransitionError(current, ApprovalLevel.FINANCE, Decision.APPROVED)
    return ItemStatus.PAID


class PaymentValidationError(ValueError):
    pass


PAYMENT_TOLERANCE = Decimal('0.01')


def _money(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def payment_breakdown(item_amount, paid_amount=None, tds_amount=None, final_amount=None) -> Dict[str, Decimal]:
    """
    Settle the amounts of a payment.

    ``paid_amount`` defaults to the item amount and ``tds_amount`` to zero;
    ``final_amount`` defaults to ``paid - tds`` and, when given, has to agree
    with it within one cent.
    """
    paid = _money(item_amount if paid_amount is None else paid_amount)
    tds = _money(0 if tds_amount is None else tds_amount)

    if paid <= 0:
        raise PaymentValidationError("Paid amount must be greater than 0")
    if tds < 0:
        raise PaymentValidationError("TDS amount cannot be negative")
    if tds > paid:
        raise PaymentValidationError("TDS amount cannot exceed the paid amount")

    expected = paid - tds
    final = expected if final_amount is None else _money(final_amount)
    if abs(final - expected) > PAYMENT_TOLERANCE:
        raise PaymentValidationError(
            f"Final Amount validation failed. Expected: ${expected:.2f} "
            f"(Paid Amount: ${paid:.2f} - TDS: ${tds:.2f}), Provided: ${final:.2f}"
        )
    return {'paid_amount': paid, 'tds_amount': tds, 'final_amount': final}


def is_rejected(status) -> bool:
    return status is not None and 'rejected' in status_value(status)


def reimbursement_status_after(level: ApprovalLevel, decision: Decision,
                               item_statuses: Iterable[str] = ()) -> ReimbursementStatus:
    """Reimbursement status once an item of it has been approved or rejected."""
    if Decision(decision) is Decision.REJECTED:
        return ReimbursementStatus.PARTIALLY_APPROVED
    if ApprovalLevel(level) is not ApprovalLevel.FINANCE:
        return ReimbursementStatus.PENDING_APPROVAL

    statuses = list(item_statuses)
    all_cleared = all(status_value(status) in FINANCE_CLEARED_STATUSES for status in statuses)
    has_rejected = any(is_rejected(status) for status in statuses)
    if all_cleared and not has_rejected:
        return ReimbursementStatus.FULLY_APPROVED
    return ReimbursementStatus.PARTIALLY_APPROVED


def reimbursement_status_after_payment(item_statuses: Iterable[str]) -> Optional[ReimbursementStatus]:
    statuses = list(item_statuses)
    if statuses and all(status == ItemStatus.PAID for status in statuses):
        return ReimbursementStatus.PAID
    return None


def initial_reimbursement_status(requested) -> str:
    """``submitted`` enters the approval queue; anything else is stored as given."""
    if requested == ReimbursementStatus.SUBMITTED:
        return ReimbursementStatus.PENDING_APPROVAL.value
    return requested or ReimbursementStatus.DRAFT.value
