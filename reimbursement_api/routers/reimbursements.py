import logging
from datetime import date
from decimal import Decimal
from typing import Annotated, List, Literal, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.orm import Session
from starlette import status

from ..common_helpers import build_pagination, build_where_clause, error_code, error_response
from ..database import get_db
from ..query_helpers import handle_create
from ..workflow import ItemStatus, initial_reimbursement_status
from .auth import UserResponse, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix='/reimbursements',
    tags=['reimbursements']
)

db_dependency = Annotated[Session, Depends(get_db)]
user_dependency = Annotated[UserResponse, Depends(get_current_user)]

UNDEFINED_TABLE = '42P01'
ALL_RECORDS_ROLES = ('hr', 'superadmin')

ITEM_FIELDS = [
    'reimbursement_id', 'expense_category_id', 'expense_type', 'amount', 'description',
    'expense_date', 'meal_type', 'people_count', 'travel_purpose', 'lodging_city', 'status',
]

REIMBURSEMENT_SELECT = """
    SELECT r.*,
        d.name AS department_name,
        cc.name AS cost_center_name,
        p.name AS project_name,
        CONCAT(u.first_name, ' ', u.last_name) AS user_name
    FROM reimbursements r
    LEFT JOIN departments d ON r.department_id = d.id
    LEFT JOIN cost_centers cc ON r.cost_center_id = cc.id
    LEFT JOIN projects p ON r.project_id = p.id
    LEFT JOIN users u ON r.user_id = u.id
"""


class ReimbursementItemRequest(BaseModel):
    expense_category_id: Optional[int] = None
    expense_type: Optional[str] = None
    amount: Optional[Decimal] = None
    description: Optional[str] = None
    expense_date: Optional[date] = None
    meal_type: Optional[str] = None
    people_count: Optional[int] = None
    travel_purpose: Optional[str] = None
    lodging_city: Optional[str] = None


class ReimbursementRequest(BaseModel):
    department_id: Optional[int] = None
    cost_center_id: Optional[int] = None
    project_id: Optional[int] = None
    description: Optional[str] = None
    status: Literal['draft', 'submitted'] = 'draft'
    items: List[ReimbursementItemRequest] = []


def validate_items(items: List[ReimbursementItemRequest]) -> Optional[str]:
    """First problem found with the submitted items, if any."""
    if not items:
        return 'At least one reimbursement item is required'

    for item in items:
        if not item.expense_type or item.amount is None or not item.expense_date:
            return 'Expense type, amount, and date are required for each item'
        if item.amount <= 0:
            return f'Invalid amount for item: {item.amount}. Amount must be a positive number.'

    if sum(item.amount for item in items) <= 0:
        return 'Total amount must be greater than 0'
    return None


def list_rows(db: Session, query: str, params=None):
    try:
        rows = db.execute(text(query), params or {}).mappings().all()
        return {'success': True, 'data': [dict(row) for row in rows]}
    except Exception as e:
        if error_code(e) == UNDEFINED_TABLE:
            return {'success': True, 'data': []}
        logger.error("Error fetching lookup data: %s", e, exc_info=e)
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, 'Failed to fetch data', str(e))


def fetch_items(db: Session, reimbursement_id: int):
    rows = db.execute(
        text(
            "SELECT ri.*, ec.name AS expense_category_name, "
            "COALESCE(ri.paid_amount, ri.amount) AS display_amount "
            "FROM reimbursement_items ri "
            "LEFT JOIN expense_categories ec ON ri.expense_category_id = ec.id "
            "WHERE ri.reimbursement_id = :p1 ORDER BY ri.id ASC"
        ),
        {'p1': reimbursement_id},
    ).mappings().all()
    return [dict(row) for row in rows]


def fetch_reimbursement(db: Session, reimbursement_id: int):
    """The reimbursement with its master-data names, items and attachments."""
    row = db.execute(text(f"{REIMBURSEMENT_SELECT} WHERE r.id = :p1"), {'p1': reimbursement_id}).mappings().first()
    attachments = db.execute(
        text(
            "SELECT id, reimbursement_item_id, file_name, file_path, file_size, file_type, created_at "
            "FROM reimbursement_attachments WHERE reimbursement_id = :p1"
        ),
        {'p1': reimbursement_id},
    ).mappings().all()
    return {
        **dict(row),
        'items': fetch_items(db, reimbursement_id),
        'attachments': [dict(attachment) for attachment in attachments],
    }


@router.get("/departments")
async def get_departments(db: db_dependency, user: user_dependency):
    return list_rows(db, """
        SELECT id, name, code, description, status
        FROM departments
        WHERE status = 'active'
        ORDER BY name ASC
    """)


@router.get("/cost-centers")
async def get_cost_centers(db: db_dependency, user: user_dependency, department_id: Optional[int] = None):
    query = """
        SELECT cc.id, cc.name, cc.code, cc.description, cc.status, d.name AS department_name
        FROM cost_centers cc
        LEFT JOIN departments d ON cc.department_id = d.id
        WHERE cc.status = 'active'
    """
    params = {}
    if department_id:
        query += " AND cc.department_id = :p1"
        params['p1'] = department_id
    return list_rows(db, query + " ORDER BY cc.name ASC", params)


@router.get("/projects")
async def get_projects(db: db_dependency, user: user_dependency):
    return list_rows(db, """
        SELECT id, name, code, description, start_date, end_date, status
        FROM projects
        WHERE status = 'active'
        ORDER BY name ASC
    """)


@router.get("/expense-categories")
async def get_expense_categories(db: db_dependency, user: user_dependency):
    return list_rows(db, """
        SELECT id, name, code, description
        FROM expense_categories
        ORDER BY name ASC
    """)


@router.post("/")
async def create_reimbursement(request: ReimbursementRequest, db: db_dependency, user: user_dependency):
    error = validate_items(request.items)
    if error:
        return error_response(status.HTTP_400_BAD_REQUEST, error)

    try:
        reimbursement = handle_create(
            db,
            'reimbursements',
            ['user_id', 'department_id', 'cost_center_id', 'project_id', 'description', 'total_amount', 'status'],
            [
                user.id,
                request.department_id,
                request.cost_center_id,
                request.project_id,
                request.description or None,
                sum(item.amount for item in request.items),
                initial_reimbursement_status(request.status),
            ],
        )[0]

        for item in request.items:
            handle_create(db, 'reimbursement_items', ITEM_FIELDS, [
                reimbursement['id'],
                item.expense_category_id,
                item.expense_type,
                item.amount,
                item.description or None,
                item.expense_date,
                item.meal_type or None,
                item.people_count or None,
                item.travel_purpose or None,
                item.lodging_city or None,
                ItemStatus.PENDING.value,
            ], returning='id')

        # Stored total always follows the inserted items.
        db.execute(
            text(
                "UPDATE reimbursements SET total_amount = ("
                "SELECT COALESCE(SUM(amount), 0) FROM reimbursement_items WHERE reimbursement_id = :p1"
                "), updated_at = CURRENT_TIMESTAMP WHERE id = :p1"
            ),
            {'p1': reimbursement['id']},
        )
        data = fetch_reimbursement(db, reimbursement['id'])
        db.commit()
    except Exception as e:
        db.rollback()
        if error_code(e) == UNDEFINED_TABLE:
            return error_response(
                status.HTTP_503_SERVICE_UNAVAILABLE,
                'Database tables not initialized. Please restart the server.',
            )
        logger.error("Error creating reimbursement: %s", e, exc_info=e)
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, 'Failed to create reimbursement', str(e))

    logger.info("Reimbursement %s created by %s with %d item(s)", data['id'], user.username, len(request.items))
    return {'success': True, 'data': data}


@router.get("/")
async def get_reimbursements(request: Request, db: db_dependency, user: user_dependency,
                             status_filter: Optional[str] = Query(default=None, alias='status')):
    where_clause, params = build_where_clause({
        'r.user_id': None if user.role in ALL_RECORDS_ROLES else user.id,
        'r.status': None if status_filter == 'all' else status_filter,
    })
    pagination = build_pagination(request.query_params)
    query = f"{REIMBURSEMENT_SELECT} {where_clause} ORDER BY r.created_at DESC LIMIT :limit OFFSET :offset"
    params.update(limit=pagination['limit'], offset=pagination['offset'])

    try:
        rows = db.execute(text(query), params).mappings().all()
        data = [{**dict(row), 'items': fetch_items(db, row['id'])} for row in rows]
    except Exception as e:
        if error_code(e) == UNDEFINED_TABLE:
            return {'success': True, 'data': []}
        logger.error("Error fetching reimbursements: %s", e, exc_info=e)
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, 'Failed to fetch reimbursements', str(e))

    return {'success': True, 'data': data}
