"""Reference data loaded into an empty database at startup."""

import logging
from datetime import date

from sqlalchemy.orm import Session

from .config import ADMIN_EMAIL, ADMIN_PASSWORD, ADMIN_USERNAME
from .models import CostCenter, DashboardStat, Department, ExpenseCategory, Project, User

logger = logging.getLogger(__name__)

EXPENSE_CATEGORIES = [
    ('Food', 'FOOD'),
    ('Travel', 'TRAVEL'),
    ('Accommodation', 'ACCOMMODATION'),
    ('Material', 'MATERIAL'),
    ('Others', 'OTHERS'),
]

DASHBOARD_CARDS = [
    dict(title='My Reimbursements', subtitle='Pending: $0', icon='FiFileText', role_name='employee', display_order=1),
    dict(title='Total Users', icon='FiUsers', role_name='superadmin', display_order=2),
    dict(title='Departments', icon='FiBriefcase', role_name='superadmin', display_order=3),
    dict(title='Cost Centers', icon='FiDollarSign', role_name='superadmin', display_order=4),
    dict(title='Projects', icon='FiFolder', role_name='superadmin', display_order=5),
    dict(title='Pending Approvals', subtitle='Amount: $0', icon='FiCheckCircle', role_name='manager', display_order=8),
    dict(title='Pending Approvals', subtitle='Amount: $0', icon='FiCheckCircle', role_name='hr', display_order=9),
    dict(title='Pending Approvals', subtitle='Amount: $0', icon='FiCheckCircle', role_name='finance', display_order=10),
]

DEPARTMENTS = [
    ('DEPT-001', 'Engineering', 'Engineering Department'),
    ('DEPT-002', 'Sales', 'Sales Department'),
    ('DEPT-003', 'Marketing', 'Marketing Department'),
    ('DEPT-004', 'HR', 'Human Resources'),
    ('DEPT-005', 'Finance', 'Finance Department'),
]

# code, name, budget, department name
COST_CENTERS = [
    ('CC-001', 'R&D', 100000, 'Engineering'),
    ('CC-002', 'Product Development', 150000, 'Engineering'),
    ('CC-003', 'Sales Operations', 75000, 'Sales'),
    ('CC-004', 'Marketing Campaigns', 80000, 'Marketing'),
    ('CC-005', 'Admin', 50000, 'HR'),
]

PROJECTS = [
    ('PROJ-001', 'Project Alpha', 'Alpha Project', date(2024, 1, 1), 'active'),
    ('PROJ-002', 'Project Beta', 'Beta Project', date(2024, 2, 1), 'active'),
    ('PROJ-003', 'Project Gamma', 'Gamma Project', date(2024, 3, 1), 'planning'),
]


def seed_expense_categories(db: Session):
    existing = {code for (code,) in db.query(ExpenseCategory.code).all()}
    for name, code in EXPENSE_CATEGORIES:
        if code not in existing:
            db.add(ExpenseCategory(name=name, code=code))


def seed_dashboard_cards(db: Session):
    existing = {(title, role) for title, role in db.query(DashboardStat.title, DashboardStat.role_name).all()}
    for card in DASHBOARD_CARDS:
        if (card['title'], card['role_name']) not in existing:
            db.add(DashboardStat(value='0', **card))


def seed_master_data(db: Session):
    if db.query(Department).count() == 0:
        departments = {}
        for code, name, description in DEPARTMENTS:
            departments[name] = Department(code=code, name=name, description=description)
            db.add(departments[name])
        db.flush()

        for code, name, budget, department_name in COST_CENTERS:
            db.add(CostCenter(code=code, name=name, budget=budget, department_id=departments[department_name].id))

    if db.query(Project).count() == 0:
        for code, name, description, start_date, status in PROJECTS:
            db.add(Project(code=code, name=name, description=description, start_date=start_date, status=status))


def seed_admin(db: Session, password_hasher):
    if not ADMIN_PASSWORD:
        return
    if db.query(User).filter(User.username == ADMIN_USERNAME).first():
        return

    db.add(User(
        username=ADMIN_USERNAME,
        email=ADMIN_EMAIL,
        first_name='Super',
        last_name='Admin',
        hashed_password=password_hasher.hash(ADMIN_PASSWORD),
        role='superadmin',
        is_active=True,
    ))
    logger.info("Created superadmin account %s", ADMIN_USERNAME)


def seed_all(db: Session, password_hasher):
    seed_expense_categories(db)
    seed_dashboard_cards(db)
    seed_master_data(db)
    seed_admin(db, password_hasher)
    db.commit()
    logger.info("Reference data seeded")
