import logging
from datetime import timedelta, datetime, timezone
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordRequestForm, OAuth2PasswordBearer
from jose import jwt, JWTError
from passlib.context import CryptContext
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session
from starlette import status

from ..config import ACCESS_TOKEN_EXPIRE_MINUTES, ALGORITHM, API_PREFIX, ROLES, SECRET_KEY
from ..database import get_db
from ..models import User

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix='/auth',
    tags=['auth']
)

if not SECRET_KEY:
    raise ValueError("SECRET_KEY environment variable not set!")

bcrypt_context = CryptContext(schemes=['bcrypt'], deprecated='auto')
oauth2_bearer = OAuth2PasswordBearer(tokenUrl=f'{API_PREFIX}/auth/token')


class Token(BaseModel):
    access_token: str
    token_type: str
    username: Optional[str] = None
    role: Optional[str] = None


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: str
    first_name: str
    last_name: str
    role: str
    is_active: bool
    manager_id: Optional[int] = None
    department_id: Optional[int] = None


db_dependency = Annotated[Session, Depends(get_db)]


def get_user_by_username(username: str, db: Session):
    return db.query(User).filter(User.username == username).first()


def authenticate_user(username: str, password: str, db: Session):
    user = get_user_by_username(username, db)
    if user and user.is_active and bcrypt_context.verify(password, user.hashed_password):
        logger.info("Authenticated user: %s, role: %s", user.username, user.role)
        return user
    return None


def create_access_token(username: str, user_id: int, role: str, expires_delta: timedelta):
    encode = {'sub': username, 'id': user_id, 'role': role}
    expires = datetime.now(timezone.utc) + expires_delta
    encode.update({'exp': expires})
    return jwt.encode(encode, SECRET_KEY, algorithm=ALGORITHM)


async def get_current_user(token: str = Depends(oauth2_bearer), db: Session = Depends(get_db)) -> UserResponse:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials.",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise credentials_exception

    user_id = payload.get("id")
    if user_id is None:
        raise credentials_exception

    user = db.query(User).filter(User.id == user_id).first()
    if user is None or not user.is_active:
        raise credentials_exception

    return UserResponse.model_validate(user)


user_dependency = Annotated[UserResponse, Depends(get_current_user)]


def require_roles(*roles: str):
    """Dependency that lets through only users holding one of ``roles``."""
    async def check_role(current_user: user_dependency) -> UserResponse:
        if current_user.role not in roles:
            names = ' or '.join(ROLES.get(role, role) for role in roles)
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. {names} role required.",
            )
        return current_user

    return check_role


@router.post("/token", response_model=Token)
async def login_for_access_token(form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
                                 db: db_dependency):
    user = authenticate_user(form_data.username, form_data.password, db)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail='Invalid credentials')
    token = create_access_token(user.username, user.id, user.role, timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))

    return {
        'access_token': token,
        'token_type': 'bearer',
        'username': user.username,
        'role': user.role
    }


@router.get("/roles", status_code=status.HTTP_200_OK)
async def get_roles():
    return {
        'success': True,
        'data': [{'name': name, 'display_name': display} for name, display in ROLES.items()]
    }
