from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import relationship

from .database import Base


class Department(Base):
    __tablename__ = 'departments'

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    code = Column(String(50), unique=True, nullable=False)
    description = Column(Text)
    status = Column(String(20), default='active')
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())

    cost_centers = relationship("CostCenter", back_populates="department")


class CostCenter(Base):
    __tablename__ = 'cost_centers'

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    code = Column(String(50), unique=True, nullable=False)
    budget = Column(Numeric(15, 2), default=0)
    department_id = Column(Integer, ForeignKey('departments.id', ondelete='RESTRICT'), index=True)
    description = Column(Text)
    status = Column(String(20), default='active')
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())

    department = relationship("Department", back_populates="cost_centers")
    reimbursements = relationship("Reimbursement", back_populates="cost_center")


class Project(Base):
    __tablename__ = 'projects'

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    code = Column(String(50), unique=True, nullable=False)
    description = Column(Text)
    start_date = Column(Date)
    end_date = Column(Date)
    status = Column(String(20), default='active')
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())

    reimbursements = relationship("Reimbursement", back_populates="project")


class ExpenseCategory(Base):
    __tablename__ = 'expense_categories'

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, nullable=False)
    code = Column(String(50), unique=True, nullable=False)
    description = Column(Text)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())


class User(Base):
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(40), unique=True, nullable=False)
    email = Column(String(100), unique=True, nullable=False)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    hashed_password = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default='employee')
    is_active = Column(Boolean, default=True, nullable=True)
    manager_id = Column(Integer, ForeignKey('users.id'), index=True)
    department_id = Column(Integer, ForeignKey('departments.id'), index=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())

    manager = relationship("User", remote_side=[id])
    reimbursements = relationship("Reimbursement", back_populates="user")

    @property
    def display_name(self):
        return f"{self.first_name} {self.last_name}".strip()


class Reimbursement(Base):
    __tablename__ = 'reimbursements'

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), index=True)
    department_id = Column(Integer, ForeignKey('departments.id'))
    cost_center_id = Column(Integer, ForeignKey('cost_centers.id'))
    project_id = Column(Integer, ForeignKey('projects.id'))
    request_date = Column(Date, server_default=func.current_date())
    status = Column(String(50), default='draft', index=True)
    total_amount = Column(Numeric(10, 2), default=0)
    description = Column(Text)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())

    user = relationship("User", back_populates="reimbursements")
    cost_center = relationship("CostCenter", back_populates="reimbursements")
    project = relationship("Project", back_populates="reimbursements")
    items = relationship("ReimbursementItem", back_populates="reimbursement", cascade="all, delete-orphan")


class ReimbursementItem(Base):
    __tablename__ = 'reimbursement_items'

    id = Column(Integer, primary_key=True, index=True)
    reimbursement_id = Column(Integer, ForeignKey('reimbursements.id', ondelete='CASCADE'), index=True)
    expense_category_id = Column(Integer, ForeignKey('expense_categories.id'))
    expense_type = Column(String(50), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    description = Column(Text)
    expense_date = Column(Date, nullable=False)
    meal_type = Column(String(50))
    people_count = Column(Integer)
    travel_purpose = Column(String(255))
    lodging_city = Column(String(255))
    status = Column(String(50), default='pending')
    paid_amount = Column(Numeric(10, 2))
    tds_amount = Column(Numeric(10, 2))
    final_amount = Column(Numeric(10, 2))
    payment_method = Column(String(50))
    payment_reference = Column(String(255))
    payment_date = Column(Date)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())

    reimbursement = relationship("Reimbursement", back_populates="items")
    approvals = relationship("ReimbursementApproval", back_populates="item", cascade="all, delete-orphan")


class ReimbursementApproval(Base):
    __tablename__ = 'reimbursement_approvals'

    id = Column(Integer, primary_key=True, index=True)
    reimbursement_item_id = Column(Integer, ForeignKey('reimbursement_items.id', ondelete='CASCADE'), index=True)
    approver_id = Column(Integer, ForeignKey('users.id'), index=True)
    approval_level = Column(String(50), nullable=False)
    status = Column(String(50), nullable=False)
    comments = Column(Text)
    created_at = Column(DateTime, server_default=func.now())

    item = relationship("ReimbursementItem", back_populates="approvals")


class ReimbursementAttachment(Base):
    __tablename__ = 'reimbursement_attachments'

    id = Column(Integer, primary_key=True, index=True)
    reimbursement_id = Column(Integer, ForeignKey('reimbursements.id', ondelete='CASCADE'))
    reimbursement_item_id = Column(Integer, ForeignKey('reimbursement_items.id', ondelete='CASCADE'))
    file_name = Column(String(255), nullable=False)
    file_path = Column(String(500), nullable=False)
    file_size = Column(Integer)
    file_type = Column(String(100))
    uploaded_by = Column(Integer, ForeignKey('users.id'))
    created_at = Column(DateTime, server_default=func.now())


class DashboardStat(Base):
    __tablename__ = 'dashboard_stats'

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    value = Column(String(100), nullable=False, default='0')
    subtitle = Column(String(255))
    icon = Column(String(50), nullable=False)
    color = Column(String(50))
    role_name = Column(String(50), index=True)
    display_order = Column(Integer, default=0)
    is_active = Column(Boolean, default=True, index=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())
