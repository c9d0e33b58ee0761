"""
SQL for the approval queues and the approve/reject/mark-paid actions.

Every query that lists items starts from ``BASE_ITEM_SELECT`` so the queues
return the same row shape: the item (as ``item_id``) joined with its
reimbursement, the requesting user and the master-data names.
"""

import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import text

from .filters import ParamBinder
from .workflow import (
    OPEN_REIMBURSEMENT_STATUSES,
    STAGES,
    ApprovalLevel,
    Decision,
    ItemStatus,
    status_value,
)

logger = logging.getLogger(__name__)

BASE_ITEM_SELECT = """
    SELECT
        ri.id AS item_id,
        ri.reimbursement_id,
        ri.expense_type,
        ri.amount,
        ri.paid_amount,
        ri.tds_amount,
        ri.final_amount,
        ri.payment_method,
        ri.payment_reference,
        ri.payment_date,
        ri.description,
        ri.expense_date,
        ri.meal_type,
        ri.people_count,
        ri.travel_purpose,
        ri.lodging_city,
        ri.status AS item_status,
        ri.created_at,
        ri.updated_at,
        ec.name AS expense_category_name,
        r.user_id,
        r.department_id,
        r.cost_center_id,
        r.project_id,
        r.request_date,
        r.total_amount,
        r.status AS reimbursement_status,
        CONCAT(u.first_name, ' ', u.last_name) AS user_name,
        u.email AS user_email,
        u.manager_id,
        d.name AS department_name,
        cc.name AS cost_center_name,
        p.name AS project_name
    FROM reimbursement_items ri
    INNER JOIN reimbursements r ON ri.reimbursement_id = r.id
    LEFT JOIN expense_categories ec ON ri.expense_category_id = ec.id
    LEFT JOIN users u ON r.user_id = u.id
    LEFT JOIN departments d ON r.department_id = d.id
    LEFT JOIN cost_centers cc ON r.cost_center_id = cc.id
    LEFT JOIN projects p ON r.project_id = p.id
"""

# Employees with no manager, or who are their own manager.
UNMANAGED = "(u.manager_id IS NULL OR u.manager_id = u.id)"

SUPERADMIN_VIEWS = ('pending', 'approved', 'rejected')

Query = Tuple[str, Dict[str, Any]]


def _finish(where: List[str], bind: ParamBinder, order_by: str) -> Query:
    query = f"{BASE_ITEM_SELECT} WHERE {' AND '.join(where)} ORDER BY {order_by}"
    return query.strip(), bind.params


def _awaiting(level: ApprovalLevel, bind: ParamBinder) -> str:
    stage = STAGES[level]
    condition = f"ri.status = {bind(stage.requires.value)}"
    if stage.accepts_unmanaged:
        condition = f"({condition} OR (ri.status = {bind(ItemStatus.PENDING.value)} AND {UNMANAGED}))"
    return condition


def _decided(level: ApprovalLevel, bind: ParamBinder, decision: Optional[Decision] = None,
             approver_id: Optional[int] = None) -> str:
    condition = (
        "EXISTS (SELECT 1 FROM reimbursement_approvals ra "
        f"WHERE ra.reimbursement_item_id = ri.id AND ra.approval_level = {bind(level.value)}"
    )
    if decision is not None:
        condition += f" AND ra.status = {bind(decision.value)}"
    if approver_id is not None:
        condition += f" AND ra.approver_id = {bind(approver_id)}"
    return condition + ")"


def _open_reimbursement(bind: ParamBinder) -> str:
    return f"r.status IN ({bind.many(status_value(s) for s in OPEN_REIMBURSEMENT_STATUSES)})"


def build_pending_items_query(level, approver_id: Optional[int] = None) -> Query:
    """Items waiting for ``level``, minus the approver's own claims.

    A manager only sees reports and unmanaged employees.
    """
    level = ApprovalLevel(level)
    bind = ParamBinder()
    where = [_open_reimbursement(bind)]

    if level is ApprovalLevel.MANAGER:
        where.append(f"ri.status = {bind(ItemStatus.PENDING.value)}")
        where.append(f"(u.manager_id = {bind(approver_id)} OR {UNMANAGED})")
    else:
        where.append(_awaiting(level, bind))
    if approver_id is not None:
        where.append(f"r.user_id <> {bind(approver_id)}")

    return _finish(where, bind, 'ri.created_at DESC')


def build_approved_items_query(level, manager_id: Optional[int] = None) -> Query:
    """Items ``level`` already approved or rejected; a manager sees only their own decisions."""
    level = ApprovalLevel(level)
    bind = ParamBinder()
    approver_id = manager_id if level is ApprovalLevel.MANAGER else None
    return _finish([_decided(level, bind, approver_id=approver_id)], bind, 'ri.updated_at DESC')


def build_superadmin_query(status: str, level) -> Query:
    level = ApprovalLevel(level)
    if status not in SUPERADMIN_VIEWS:
        raise ValueError(f"Unknown approval view: {status}")

    bind = ParamBinder()
    if status == 'pending':
        where = [_open_reimbursement(bind), _awaiting(level, bind)]
    elif status == 'approved':
        where = [_decided(level, bind, Decision.APPROVED)]
    else:
        where = [f"ri.status = {bind(STAGES[level].rejected.value)}"]
    return _finish(where, bind, 'ri.created_at DESC')


def build_item_for_action_query(item_id: int) -> Query:
    """Lock one item for an approval action, with what the ownership checks need."""
    query = """
        SELECT ri.*, r.user_id, r.status AS reimbursement_status,
               u.manager_id AS owner_manager_id,
               (u.manager_id IS NULL OR u.manager_id = u.id) AS unmanaged
        FROM reimbursement_items ri
        INNER JOIN reimbursements r ON ri.reimbursement_id = r.id
        LEFT JOIN users u ON r.user_id = u.id
        WHERE ri.id = :p1
        FOR UPDATE OF ri
    """
    return query.strip(), {'p1': item_id}


def fetch_items(db, query: Query) -> List[Dict[str, Any]]:
    sql, params = query
    return [dict(row) for row in db.execute(text(sql), params).mappings().all()]


def fetch_item_for_action(db, item_id: int) -> Optional[Dict[str, Any]]:
    sql, params = build_item_for_action_query(item_id)
    row = db.execute(text(sql), params).mappings().first()
    return dict(row) if row else None


def fetch_item_statuses(db, reimbursement_id: int) -> List[str]:
    rows = db.execute(
        text("SELECT status FROM reimbursement_items WHERE reimbursement_id = :p1"),
        {'p1': reimbursement_id},
    ).mappings().all()
    return [row['status'] for row in rows]


def enrich_items(db, items: List[Dict[str, Any]], approval_level=None) -> List[Dict[str, Any]]:
    """Attach each item's approval trail (optionally one level only) and attachments."""
    if not items:
        return []

    item_ids = [item['item_id'] for item in items]
    reimbursement_ids = sorted({item['reimbursement_id'] for item in items})

    bind = ParamBinder()
    approvals_sql = (
        "SELECT ra.*, CONCAT(u.first_name, ' ', u.last_name) AS approver_name "
        "FROM reimbursement_approvals ra "
        "LEFT JOIN users u ON ra.approver_id = u.id "
        f"WHERE ra.reimbursement_item_id IN ({bind.many(item_ids)})"
    )
    if approval_level is not None:
        approvals_sql += f" AND ra.approval_level = {bind(ApprovalLevel(approval_level).value)}"
    approvals_sql += " ORDER BY ra.created_at ASC"

    approvals = defaultdict(list)
    for row in db.execute(text(approvals_sql), bind.params).mappings().all():
        approvals[row['reimbursement_item_id']].append(dict(row))

    bind = ParamBinder()
    attachments_sql = (
        "SELECT id, reimbursement_id, reimbursement_item_id, file_name, file_path, file_type, file_size "
        "FROM reimbursement_attachments "
        f"WHERE reimbursement_item_id IN ({bind.many(item_ids)}) "
        f"OR reimbursement_id IN ({bind.many(reimbursement_ids)})"
    )
    attachments = [dict(row) for row in db.execute(text(attachments_sql), bind.params).mappings().all()]

    return [
        {
            **item,
            'approvals': approvals.get(item['item_id'], []),
            'attachments': [
                attachment for attachment in attachments
                if attachment['reimbursement_item_id'] == item['item_id']
                or attachment['reimbursement_id'] == item['reimbursement_id']
            ],
        }
        for item in items
    ]


def record_decision(db, item_id: int, approver_id: int, level: ApprovalLevel, decision: Decision,
                    new_status: ItemStatus, comments: Optional[str]) -> None:
    """Move the item to ``new_status`` and append the approval trail row."""
    db.execute(
        text("UPDATE reimbursement_items SET status = :p1, updated_at = CURRENT_TIMESTAMP WHERE id = :p2"),
        {'p1': new_status.value, 'p2': item_id},
    )
    db.execute(
        text(
            "INSERT INTO reimbursement_approvals "
            "(reimbursement_item_id, approver_id, approval_level, status, comments) "
            "VALUES (:p1, :p2, :p3, :p4, :p5)"
        ),
        {'p1': item_id, 'p2': approver_id, 'p3': level.value, 'p4': decision.value, 'p5': comments or None},
    )


def update_reimbursement_status(db, reimbursement_id: int, new_status) -> None:
    db.execute(
        text("UPDATE reimbursements SET status = :p1, updated_at = CURRENT_TIMESTAMP WHERE id = :p2"),
        {'p1': status_value(new_status), 'p2': reimbursement_id},
    )


def record_payment(db, item_id: int, payment: Dict[str, Any]) -> None:
    db.execute(
        text(
            "UPDATE reimbursement_items SET status = :p1, paid_amount = :p2, tds_amount = :p3, "
            "final_amount = :p4, payment_method = :p5, payment_reference = :p6, payment_date = :p7, "
            "updated_at = CURRENT_TIMESTAMP WHERE id = :p8"
        ),
        {
            'p1': ItemStatus.PAID.value,
            'p2': payment['paid_amount'],
            'p3': payment['tds_amount'],
            'p4': payment['final_amount'],
            'p5': payment.get('payment_method'),
            'p6': payment.get('payment_reference'),
            'p7': payment.get('payment_date'),
            'p8': item_id,
        },
    )
    logger.info("Item %s marked as paid (%s)", item_id, payment['final_amount'])
