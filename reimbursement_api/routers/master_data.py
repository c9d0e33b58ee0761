from datetime import date
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Path
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.orm import Session

from ..config import MASTER_DATA_ADMIN_ROLES
from ..database import get_db
from .auth import UserResponse, get_current_user, require_roles
from .crud_helpers import (
    EntityConfig,
    handle_delete_request,
    handle_get_request,
    handle_post_request,
    handle_put_request,
)

router = APIRouter(
    prefix='/master-data',
    tags=['master-data']
)

db_dependency = Annotated[Session, Depends(get_db)]
user_dependency = Annotated[UserResponse, Depends(get_current_user)]
admin_dependency = Annotated[UserResponse, Depends(require_roles(*MASTER_DATA_ADMIN_ROLES))]


class DepartmentRequest(BaseModel):
    name: Optional[str] = None
    code: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None


class CostCenterRequest(DepartmentRequest):
    department_id: Optional[int] = None


class ProjectRequest(DepartmentRequest):
    start_date: Optional[date] = None
    end_date: Optional[date] = None


def attach_department_name(db, data, body):
    row = db.execute(
        text("SELECT name FROM departments WHERE id = :p1"),
        {'p1': body.get('department_id')},
    ).mappings().first()
    return {**data, 'department_name': row['name'] if row else None}


DEPARTMENT_FIELDS = ['name', 'code', 'description', 'status']
COST_CENTER_FIELDS = ['name', 'code', 'department_id', 'description', 'status']
PROJECT_FIELDS = ['name', 'code', 'description', 'start_date', 'end_date', 'status']


def columns(fields, creating):
    """Column/value pairs for a write; an update without a status keeps the stored one."""
    def pairs(body):
        result = []
        for name in fields:
            value = body.get(name)
            if name == 'description':
                value = value or None
            elif name == 'status':
                if not value and not creating:
                    continue
                value = value or 'active'
            result.append((name, value))
        return result

    return (
        lambda body: [name for name, _ in pairs(body)],
        lambda body: [value for _, value in pairs(body)],
    )


def department_config(creating: bool = False) -> EntityConfig:
    get_fields, get_values = columns(DEPARTMENT_FIELDS, creating)
    return EntityConfig(
        table_name='departments',
        entity_name='Department',
        get_fields=get_fields,
        get_values=get_values,
        check_table='cost_centers',
        check_field='department_id',
    )


def cost_center_config(creating: bool = False) -> EntityConfig:
    get_fields, get_values = columns(COST_CENTER_FIELDS, creating)
    return EntityConfig(
        table_name='cost_centers',
        entity_name='Cost center',
        get_fields=get_fields,
        get_values=get_values,
        get_additional_fields=lambda body: {'department_id': body.get('department_id')},
        post_process=attach_department_name,
        check_table='reimbursements',
        check_field='cost_center_id',
    )


def project_config(creating: bool = False) -> EntityConfig:
    get_fields, get_values = columns(PROJECT_FIELDS, creating)
    return EntityConfig(
        table_name='projects',
        entity_name='Project',
        get_fields=get_fields,
        get_values=get_values,
    )


@router.get("/departments")
async def get_departments(db: db_dependency, user: user_dependency,
                          status: Optional[str] = None, search: Optional[str] = None):
    return handle_get_request(db, EntityConfig(
        table_name='departments',
        entity_name='departments',
        select_fields='d.*, COUNT(DISTINCT cc.id) AS cost_center_count',
        join_clause="LEFT JOIN cost_centers cc ON d.id = cc.department_id AND cc.status = 'active'",
        group_by='GROUP BY d.id',
        order_by='ORDER BY d.name ASC',
        table_alias='d',
    ), search, status)


@router.post("/departments")
async def create_department(request: DepartmentRequest, db: db_dependency, user: admin_dependency):
    return handle_post_request(db, department_config(creating=True), request.model_dump())


@router.put("/departments/{department_id}")
async def update_department(request: DepartmentRequest, db: db_dependency, user: admin_dependency,
                            department_id: int = Path(gt=0)):
    return handle_put_request(db, department_config(), department_id, request.model_dump())


@router.delete("/departments/{department_id}")
async def delete_department(db: db_dependency, user: admin_dependency, department_id: int = Path(gt=0)):
    return handle_delete_request(db, department_config(), department_id)


@router.get("/cost-centers")
async def get_cost_centers(db: db_dependency, user: user_dependency,
                           status: Optional[str] = None, search: Optional[str] = None,
                           department_id: Optional[int] = None):
    return handle_get_request(db, EntityConfig(
        table_name='cost_centers',
        entity_name='cost centers',
        select_fields='cc.*, d.name AS department_name, COUNT(DISTINCT r.id) AS reimbursement_count',
        join_clause=(
            'LEFT JOIN departments d ON cc.department_id = d.id '
            'LEFT JOIN reimbursements r ON cc.id = r.cost_center_id'
        ),
        group_by='GROUP BY cc.id, d.name',
        order_by='ORDER BY cc.name ASC',
        table_alias='cc',
        additional_filters={'department_id': department_id},
    ), search, status)


@router.post("/cost-centers")
async def create_cost_center(request: CostCenterRequest, db: db_dependency, user: admin_dependency):
    return handle_post_request(db, cost_center_config(creating=True), request.model_dump())


@router.put("/cost-centers/{cost_center_id}")
async def update_cost_center(request: CostCenterRequest, db: db_dependency, user: admin_dependency,
                             cost_center_id: int = Path(gt=0)):
    return handle_put_request(db, cost_center_config(), cost_center_id, request.model_dump())


@router.delete("/cost-centers/{cost_center_id}")
async def delete_cost_center(db: db_dependency, user: admin_dependency, cost_center_id: int = Path(gt=0)):
    return handle_delete_request(db, cost_center_config(), cost_center_id)


@router.get("/projects")
async def get_projects(db: db_dependency, user: user_dependency,
                       status: Optional[str] = None, search: Optional[str] = None):
    return handle_get_request(db, EntityConfig(
        table_name='projects',
        entity_name='projects',
        select_fields=(
            'p.*, COUNT(DISTINCT r.id) AS reimbursement_count, '
            'COALESCE(SUM(r.total_amount), 0) AS total_expenses'
        ),
        join_clause='LEFT JOIN reimbursements r ON p.id = r.project_id',
        group_by='GROUP BY p.id',
        order_by='ORDER BY p.name ASC',
        table_alias='p',
    ), search, status)


@router.post("/projects")
async def create_project(request: ProjectRequest, db: db_dependency, user: admin_dependency):
    return handle_post_request(db, project_config(creating=True), request.model_dump())


@router.put("/projects/{project_id}")
async def update_project(request: ProjectRequest, db: db_dependency, user: admin_dependency,
                         project_id: int = Path(gt=0)):
    return handle_put_request(db, project_config(), project_id, request.model_dump())


@router.delete("/projects/{project_id}")
async def delete_project(db: db_dependency, user: admin_dependency, project_id: int = Path(gt=0)):
    return handle_delete_request(db, project_config(), project_id)
