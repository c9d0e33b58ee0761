import logging
from datetime import date
from decimal import Decimal
from typing import Annotated, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session
from starlette import status

from ..approval_queries import (
    SUPERADMIN_VIEWS,
    build_approved_items_query,
    build_pending_items_query,
    build_superadmin_query,
    enrich_items,
    fetch_item_for_action,
    fetch_item_statuses,
    fetch_items,
    record_decision,
    record_payment,
    update_reimbursement_status,
)
from ..common_helpers import error_response
from ..database import get_db
from ..filters import is_blank
from ..workflow import (
    STAGES,
    ApprovalLevel,
    Decision,
    InvalidTransitionError,
    PaymentValidationError,
    is_open_reimbursement,
    mark_paid,
    payment_breakdown,
    reimbursement_status_after,
    reimbursement_status_after_payment,
    transition,
)
from .auth import UserResponse, require_roles

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix='/approvals',
    tags=['approvals']
)

db_dependency = Annotated[Session, Depends(get_db)]
manager_dependency = Annotated[UserResponse, Depends(require_roles('manager'))]
hr_dependency = Annotated[UserResponse, Depends(require_roles('hr'))]
finance_dependency = Annotated[UserResponse, Depends(require_roles('finance'))]
superadmin_dependency = Annotated[UserResponse, Depends(require_roles('superadmin'))]


class ApprovalActionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    item_id: Optional[int] = Field(default=None, alias='itemId')
    comments: Optional[str] = None


class MarkPaidRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    item_id: Optional[int] = Field(default=None, alias='itemId')
    paid_amount: Optional[Decimal] = Field(default=None, alias='paidAmount')
    tds_amount: Optional[Decimal] = Field(default=None, alias='tdsAmount')
    final_amount: Optional[Decimal] = Field(default=None, alias='finalAmount')
    payment_method: Optional[str] = Field(default=None, alias='paymentMethod')
    payment_reference: Optional[str] = Field(default=None, alias='paymentReference')
    payment_date: Optional[date] = Field(default=None, alias='paymentDate')


def list_pending(db: Session, level: ApprovalLevel, current_user: UserResponse):
    try:
        items = fetch_items(db, build_pending_items_query(level, current_user.id))
        return {'success': True, 'data': enrich_items(db, items)}
    except Exception as e:
        logger.error("Error fetching %s pending approvals: %s", level.value, e, exc_info=e)
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, 'Failed to fetch pending approvals', str(e))


def list_decided(db: Session, level: ApprovalLevel, current_user: UserResponse):
    try:
        items = fetch_items(db, build_approved_items_query(level, current_user.id))
        return {'success': True, 'data': enrich_items(db, items, level)}
    except Exception as e:
        logger.error("Error fetching %s approved/rejected items: %s", level.value, e, exc_info=e)
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR, 'Failed to fetch approved/rejected items', str(e)
        )


def next_item_status(item, level: ApprovalLevel, decision: Decision, current_user: UserResponse):
    """Status the item moves to, or None when this user may not act on it at ``level``."""
    if item is None or not is_open_reimbursement(item.get('reimbursement_status')):
        return None
    if item.get('user_id') == current_user.id:
        return None

    unmanaged = bool(item.get('unmanaged'))
    if level is ApprovalLevel.MANAGER and not unmanaged and item.get('owner_manager_id') != current_user.id:
        return None

    try:
        return transition(item['status'], level, decision, unmanaged=unmanaged)
    except InvalidTransitionError as e:
        logger.info("Rejected %s action on item %s: %s", level.value, item.get('id'), e)
        return None


def is_payable(item) -> bool:
    if item is None:
        return False
    try:
        mark_paid(item['status'])
    except InvalidTransitionError:
        return False
    return True


def decide(db: Session, level: ApprovalLevel, decision: Decision,
           request: ApprovalActionRequest, current_user: UserResponse):
    stage = STAGES[level]
    action = 'approve' if decision is Decision.APPROVED else 'reject'

    if not request.item_id:
        return error_response(status.HTTP_400_BAD_REQUEST, 'Item ID is required')
    if decision is Decision.REJECTED and is_blank(request.comments):
        return error_response(status.HTTP_400_BAD_REQUEST, 'Comments are required for rejection')

    try:
        item = fetch_item_for_action(db, request.item_id)
        new_status = next_item_status(item, level, decision, current_user)
        if new_status is None:
            db.rollback()
            return error_response(
                status.HTTP_404_NOT_FOUND,
                f'Item not found or not ready for {stage.label} {"approval" if action == "approve" else "rejection"}',
            )

        record_decision(db, item['id'], current_user.id, level, decision, new_status, request.comments)
        item_statuses = fetch_item_statuses(db, item['reimbursement_id']) if level is ApprovalLevel.FINANCE else ()
        update_reimbursement_status(
            db, item['reimbursement_id'], reimbursement_status_after(level, decision, item_statuses)
        )
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error("Error trying to %s item: %s", action, e, exc_info=e)
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, f'Failed to {action} item', str(e))

    return {'success': True, 'message': f'Item {decision.value} by {stage.label} successfully'}


@router.get("/manager/pending")
async def manager_pending(db: db_dependency, current_user: manager_dependency):
    return list_pending(db, ApprovalLevel.MANAGER, current_user)


@router.get("/manager/approved")
async def manager_approved(db: db_dependency, current_user: manager_dependency):
    return list_decided(db, ApprovalLevel.MANAGER, current_user)


@router.post("/manager/approve")
async def manager_approve(request: ApprovalActionRequest, db: db_dependency, current_user: manager_dependency):
    return decide(db, ApprovalLevel.MANAGER, Decision.APPROVED, request, current_user)


@router.post("/manager/reject")
async def manager_reject(request: ApprovalActionRequest, db: db_dependency, current_user: manager_dependency):
    return decide(db, ApprovalLevel.MANAGER, Decision.REJECTED, request, current_user)


@router.get("/hr/pending")
async def hr_pending(db: db_dependency, current_user: hr_dependency):
    return list_pending(db, ApprovalLevel.HR, current_user)


@router.get("/hr/approved")
async def hr_approved(db: db_dependency, current_user: hr_dependency):
    return list_decided(db, ApprovalLevel.HR, current_user)


@router.post("/hr/approve")
async def hr_approve(request: ApprovalActionRequest, db: db_dependency, current_user: hr_dependency):
    return decide(db, ApprovalLevel.HR, Decision.APPROVED, request, current_user)


@router.post("/hr/reject")
async def hr_reject(request: ApprovalActionRequest, db: db_dependency, current_user: hr_dependency):
    return decide(db, ApprovalLevel.HR, Decision.REJECTED, request, current_user)


@router.get("/finance/pending")
async def finance_pending(db: db_dependency, current_user: finance_dependency):
    return list_pending(db, ApprovalLevel.FINANCE, current_user)


@router.get("/finance/approved")
async def finance_approved(db: db_dependency, current_user: finance_dependency):
    return list_decided(db, ApprovalLevel.FINANCE, current_user)


@router.post("/finance/approve")
async def finance_approve(request: ApprovalActionRequest, db: db_dependency, current_user: finance_dependency):
    return decide(db, ApprovalLevel.FINANCE, Decision.APPROVED, request, current_user)


@router.post("/finance/reject")
async def finance_reject(request: ApprovalActionRequest, db: db_dependency, current_user: finance_dependency):
    return decide(db, ApprovalLevel.FINANCE, Decision.REJECTED, request, current_user)


@router.post("/finance/mark-paid")
async def finance_mark_paid(request: MarkPaidRequest, db: db_dependency, current_user: finance_dependency):
    if not request.item_id:
        return error_response(status.HTTP_400_BAD_REQUEST, 'Item ID is required')

    try:
        item = fetch_item_for_action(db, request.item_id)
        if not is_payable(item):
            db.rollback()
            return error_response(status.HTTP_404_NOT_FOUND, 'Item not found or not approved by finance')

        try:
            payment = payment_breakdown(
                item['amount'], request.paid_amount, request.tds_amount, request.final_amount
            )
        except PaymentValidationError as e:
            db.rollback()
            return error_response(status.HTTP_400_BAD_REQUEST, str(e))

        payment.update(
            payment_method=request.payment_method,
            payment_reference=request.payment_reference,
            payment_date=request.payment_date,
        )
        record_payment(db, item['id'], payment)

        reimbursement_status = reimbursement_status_after_payment(fetch_item_statuses(db, item['reimbursement_id']))
        if reimbursement_status is not None:
            update_reimbursement_status(db, item['reimbursement_id'], reimbursement_status)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error("Error marking item as paid: %s", e, exc_info=e)
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, 'Failed to mark item as paid', str(e))

    return {'success': True, 'message': 'Item marked as paid successfully'}


@router.get("/superadmin/{level}/{view}")
async def superadmin_approvals(db: db_dependency, current_user: superadmin_dependency,
                               level: ApprovalLevel, view: str):
    if view not in SUPERADMIN_VIEWS:
        return error_response(status.HTTP_400_BAD_REQUEST, 'Invalid status. Use: pending, approved, or rejected')

    try:
        items = fetch_items(db, build_superadmin_query(view, level))
        return {'success': True, 'data': enrich_items(db, items, level)}
    except Exception as e:
        logger.error("Error fetching superadmin %s %s approvals: %s", level.value, view, e, exc_info=e)
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, f'Failed to fetch {view} approvals', str(e))
