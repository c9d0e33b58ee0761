import logging
from datetime import date
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import text
from sqlalchemy.orm import Session
from starlette import status

from ..common_helpers import build_date_filter, error_response
from ..database import get_db
from ..filters import param_name
from ..workflow import OPEN_REIMBURSEMENT_STATUSES, ReimbursementStatus, status_value
from .auth import UserResponse, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix='/dashboard',
    tags=['dashboard']
)

db_dependency = Annotated[Session, Depends(get_db)]
user_dependency = Annotated[UserResponse, Depends(get_current_user)]

ORG_WIDE_ROLES = ('superadmin', 'hr', 'finance')
RECENT_LIMIT = 5
APPROVED_REIMBURSEMENT_STATUSES = (
    ReimbursementStatus.PARTIALLY_APPROVED,
    ReimbursementStatus.FULLY_APPROVED,
    ReimbursementStatus.PAID,
)

STATUS_BUCKET = """
    CASE
        WHEN ri.status = 'paid' THEN 'Paid'
        WHEN ri.status = 'approved_by_finance' THEN 'Approved by Finance'
        WHEN ri.status = 'approved_by_hr' THEN 'Approved by HR'
        WHEN ri.status = 'approved_by_manager' THEN 'Approved by Manager'
        WHEN ri.status LIKE 'rejected_by_%' THEN 'Rejected'
        WHEN ri.status = 'pending' THEN 'Pending'
        ELSE 'Other'
    END
"""


def scope_filter(user: UserResponse, start_date=None, end_date=None):
    """`` AND ...`` restricting reimbursements to what ``user`` may see, plus the date range."""
    clause = ''
    params = {}
    if user.role not in ORG_WIDE_ROLES:
        clause = f" AND r.user_id = :{param_name(1)}"
        params[param_name(1)] = user.id

    date_clause, date_params = build_date_filter(start_date, end_date, 'r.created_at', len(params))
    return clause + date_clause, {**params, **date_params}


def _in_list(statuses):
    return ', '.join(f"'{status_value(value)}'" for value in statuses)


def count_and_amount(db: Session, where: str, params):
    row = db.execute(
        text(
            "SELECT COUNT(*) AS count, COALESCE(SUM(r.total_amount), 0) AS amount "
            f"FROM reimbursements r WHERE 1=1{where}"
        ),
        params,
    ).mappings().first()
    return int(row['count'] or 0), float(row['amount'] or 0)


def activity_percentages(total: int, pending: int, approved: int):
    base = total or 1
    return {
        'reimbursements': round(total / base * 100),
        'pending': round(pending / base * 100),
        'approved': round(approved / base * 100),
    }


def card(title: str, count: int, amount: float, icon: str):
    return {'title': title, 'value': str(count), 'subtitle': f'Amount: ${amount:,.2f}', 'icon': icon}


@router.get("/stats-cards")
async def get_stats_cards(db: db_dependency, user: user_dependency):
    try:
        if user.role == 'superadmin':
            rows = db.execute(text(
                "SELECT * FROM dashboard_stats WHERE is_active = true ORDER BY display_order ASC"
            )).mappings().all()
        else:
            rows = db.execute(
                text(
                    "SELECT * FROM dashboard_stats WHERE (role_name = :p1 OR role_name IS NULL) "
                    "AND is_active = true ORDER BY display_order ASC"
                ),
                {'p1': user.role},
            ).mappings().all()
    except Exception as e:
        logger.error("Error fetching dashboard stats cards: %s", e, exc_info=e)
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, 'Failed to fetch dashboard stats cards')

    logger.info("Dashboard stats cards fetched for role: %s, count: %d", user.role, len(rows))
    return {'success': True, 'data': [dict(row) for row in rows]}


@router.get("/stats")
async def get_stats(db: db_dependency, user: user_dependency,
                    start_date: Optional[date] = Query(default=None, alias='startDate'),
                    end_date: Optional[date] = Query(default=None, alias='endDate')):
    logger.info("Dashboard stats requested for user: %s, role: %s, range: %s to %s",
                user.id, user.role, start_date or 'none', end_date or 'none')
    where, params = scope_filter(user, start_date, end_date)

    try:
        total, total_amount = count_and_amount(db, where, params)
        pending, pending_amount = count_and_amount(
            db, f"{where} AND r.status IN ({_in_list(OPEN_REIMBURSEMENT_STATUSES)})", params
        )
        approved, approved_amount = count_and_amount(
            db, f"{where} AND r.status IN ({_in_list(APPROVED_REIMBURSEMENT_STATUSES)})", params
        )
        rejected, rejected_amount = count_and_amount(
            db,
            f"{where} AND EXISTS (SELECT 1 FROM reimbursement_items ri "
            "WHERE ri.reimbursement_id = r.id AND ri.status LIKE 'rejected_by_%')",
            params,
        )
        recent = db.execute(
            text(
                "SELECT r.id, r.status, r.total_amount, r.request_date, r.created_at, "
                "CONCAT(u.first_name, ' ', u.last_name) AS user_name, d.name AS department_name "
                "FROM reimbursements r "
                "LEFT JOIN users u ON r.user_id = u.id "
                "LEFT JOIN departments d ON r.department_id = d.id "
                f"WHERE 1=1{where} ORDER BY r.created_at DESC LIMIT {RECENT_LIMIT}"
            ),
            params,
        ).mappings().all()
    except Exception as e:
        logger.error("Error fetching dashboard stats: %s", e, exc_info=e)
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, 'Failed to fetch dashboard statistics')

    return {
        'success': True,
        'data': {
            'cards': [
                card('Total Reimbursements', total, total_amount, 'FiFileText'),
                card('Pending', pending, pending_amount, 'FiClock'),
                card('Approved', approved, approved_amount, 'FiCheckCircle'),
                card('Rejected', rejected, rejected_amount, 'FiXCircle'),
            ],
            'activity': activity_percentages(total, pending, approved),
            'recentReimbursements': [dict(row) for row in recent],
        },
    }


@router.get("/charts")
async def get_charts(db: db_dependency, user: user_dependency,
                     start_date: Optional[date] = Query(default=None, alias='startDate'),
                     end_date: Optional[date] = Query(default=None, alias='endDate')):
    where, params = scope_filter(user, start_date, end_date)

    try:
        distribution = db.execute(
            text(
                f"SELECT {STATUS_BUCKET} AS status, COUNT(*) AS count, "
                "COALESCE(SUM(ri.amount), 0) AS total_amount "
                "FROM reimbursement_items ri "
                "INNER JOIN reimbursements r ON r.id = ri.reimbursement_id "
                f"WHERE 1=1{where} GROUP BY 1 ORDER BY count DESC"
            ),
            params,
        ).mappings().all()
        departments = db.execute(
            text(
                "SELECT COALESCE(d.name, 'N/A') AS department, COUNT(DISTINCT r.id) AS count, "
                "COALESCE(SUM(ri.amount), 0) AS total_amount "
                "FROM reimbursements r "
                "LEFT JOIN reimbursement_items ri ON ri.reimbursement_id = r.id "
                "LEFT JOIN departments d ON d.id = r.department_id "
                f"WHERE 1=1{where} GROUP BY d.name ORDER BY total_amount DESC LIMIT 10"
            ),
            params,
        ).mappings().all()
    except Exception as e:
        logger.error("Error fetching dashboard charts: %s", e, exc_info=e)
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, 'Failed to fetch chart data')

    return {
        'success': True,
        'data': {
            'statusDistribution': [
                {'status': row['status'], 'count': int(row['count']), 'amount': float(row['total_amount'])}
                for row in distribution
            ],
            'departmentWise': [
                {'department': row['department'], 'count': int(row['count']), 'amount': float(row['total_amount'])}
                for row in departments
            ],
        },
    }
