import logging
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Path
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session
from starlette import status

from ..config import ROLES
from ..database import get_db
from ..models import User
from .auth import UserResponse, bcrypt_context, get_current_user, require_roles

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix='/users',
    tags=['users']
)

db_dependency = Annotated[Session, Depends(get_db)]
user_dependency = Annotated[UserResponse, Depends(get_current_user)]
superadmin_dependency = Annotated[UserResponse, Depends(require_roles('superadmin'))]


class UserVerification(BaseModel):
    password: str
    new_password: str = Field(min_length=6)


class CreateUserRequest(BaseModel):
    username: str = Field(min_length=1, max_length=40)
    email: EmailStr
    first_name: str
    last_name: str
    password: str = Field(min_length=6)
    role: str = 'employee'
    manager_id: Optional[int] = None
    department_id: Optional[int] = None


class UpdateUserRequest(BaseModel):
    username: Optional[str] = None
    email: Optional[EmailStr] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    department_id: Optional[int] = None


class ManagerAssignment(BaseModel):
    manager_id: Optional[int] = None


class RoleAssignment(BaseModel):
    role: str


class UserListEntry(UserResponse):
    manager_name: Optional[str] = None


def get_user_or_404(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


@router.get("/current_user", response_model=UserResponse)
async def read_me(current_user: user_dependency):
    return current_user


@router.put("/change-password", status_code=status.HTTP_204_NO_CONTENT)
async def change_password(user_verification: UserVerification, db: db_dependency, current_user: user_dependency):
    user = get_user_or_404(db, current_user.id)

    if not bcrypt_context.verify(user_verification.password, user.hashed_password):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Incorrect password")

    user.hashed_password = bcrypt_context.hash(user_verification.new_password)
    db.commit()


@router.get("/", response_model=List[UserListEntry])
async def get_all_users(db: db_dependency, current_user: superadmin_dependency):
    users = db.query(User).order_by(User.created_at.desc()).all()
    return [
        UserListEntry(
            **UserResponse.model_validate(user).model_dump(),
            manager_name=user.manager.display_name if user.manager else None,
        )
        for user in users
    ]


@router.post("/", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(create_user_request: CreateUserRequest, db: db_dependency, current_user: superadmin_dependency):
    if create_user_request.role not in ROLES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown role")

    existing_user = db.query(User).filter(
        (User.username == create_user_request.username) |
        (User.email == create_user_request.email)
    ).first()
    if existing_user:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT,
                            detail="Username or email already registered.")

    if create_user_request.manager_id is not None:
        get_user_or_404(db, create_user_request.manager_id)

    new_user = User(
        username=create_user_request.username,
        email=create_user_request.email,
        first_name=create_user_request.first_name,
        last_name=create_user_request.last_name,
        hashed_password=bcrypt_context.hash(create_user_request.password),
        role=create_user_request.role,
        manager_id=create_user_request.manager_id,
        department_id=create_user_request.department_id,
        is_active=True,
    )
    db.add(new_user)
    db.commit()
    db.refresh(new_user)

    logger.info("User %s created with role %s", new_user.username, new_user.role)
    return new_user


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(update_user_request: UpdateUserRequest, db: db_dependency,
                      current_user: superadmin_dependency, user_id: int = Path(gt=0)):
    user = get_user_or_404(db, user_id)

    if update_user_request.email and update_user_request.email != user.email:
        existing_user = db.query(User).filter(User.email == update_user_request.email).first()
        if existing_user and existing_user.id != user_id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email is already in use")
        user.email = update_user_request.email

    if update_user_request.username and update_user_request.username != user.username:
        existing_user = db.query(User).filter(User.username == update_user_request.username).first()
        if existing_user and existing_user.id != user_id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username is already in use")
        user.username = update_user_request.username
    if update_user_request.first_name:
        user.first_name = update_user_request.first_name
    if update_user_request.last_name:
        user.last_name = update_user_request.last_name
    if update_user_request.department_id is not None:
        user.department_id = update_user_request.department_id

    db.commit()
    db.refresh(user)
    return user


@router.put("/{user_id}/manager", response_model=UserResponse)
async def assign_manager(assignment: ManagerAssignment, db: db_dependency,
                         current_user: superadmin_dependency, user_id: int = Path(gt=0)):
    user = get_user_or_404(db, user_id)

    if assignment.manager_id is not None:
        manager = db.query(User).filter(User.id == assignment.manager_id).first()
        if manager is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Manager not found")

    user.manager_id = assignment.manager_id
    db.commit()
    db.refresh(user)
    return user


@router.put("/{user_id}/role", response_model=UserResponse)
async def assign_role(assignment: RoleAssignment, db: db_dependency,
                      current_user: superadmin_dependency, user_id: int = Path(gt=0)):
    if assignment.role not in ROLES:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Role not found")

    user = get_user_or_404(db, user_id)
    user.role = assignment.role
    db.commit()
    db.refresh(user)

    logger.info("Role of user %s changed to %s", user.username, user.role)
    return user


@router.delete("/{user_id}", status_code=status.HTTP_200_OK)
async def delete_user(db: db_dependency, current_user: superadmin_dependency, user_id: int = Path(gt=0)):
    if current_user.id == user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot delete your own account")

    user = get_user_or_404(db, user_id)
    user.is_active = False
    db.commit()

    return {"success": True, "message": f"User {user.username} has been deactivated."}
