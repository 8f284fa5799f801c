import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Form, Header, status
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import get_db
from app.core.exceptions import ConflictError, UnauthenticatedError
from app.core.security import (
    create_access_token,
    get_password_hash,
    verify_password,
    verify_token,
)
from app.models.token import Token
from app.models.user import User
from app.schemas.auth import (
    AccessTokenResponse,
    LogoutResponse,
    RefreshTokenRequest,
    RegisterRequest,
    TokenResponse,
)
from app.schemas.user import UserResponse

logger = logging.getLogger(__name__)
router = APIRouter()


def get_current_user(
    authorization: Optional[str] = Header(None), db: Session = Depends(get_db)
) -> User:
    if not authorization:
        raise UnauthenticatedError("Authorization header required")

    try:
        scheme, token = authorization.split()
    except ValueError:
        raise UnauthenticatedError("Invalid authorization header format")
    if scheme.lower() != "bearer":
        raise UnauthenticatedError("Invalid authentication scheme")

    payload, error = verify_token(token)
    if error == "expired":
        raise UnauthenticatedError("Token has expired")
    elif error == "invalid":
        raise UnauthenticatedError("Invalid token")

    email: str = payload.get("sub")
    if email is None:
        raise UnauthenticatedError("Token payload invalid")

    user = db.query(User).filter(User.email == email).first()
    if user is None:
        raise UnauthenticatedError("User not found")

    return user


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def register_user(user_data: RegisterRequest, db: Session = Depends(get_db)):
    existing_user = db.query(User).filter(User.email == user_data.email).first()
    if existing_user:
        raise ConflictError("Email already registered")

    db_user = User(
        name=user_data.name,
        email=user_data.email,
        passwordhash=get_password_hash(user_data.password),
    )
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    logger.info(f"Registered user {db_user.id}")
    return db_user


@router.post("/login", response_model=TokenResponse)
def login(email: str = Form(), password: str = Form(), db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == email).first()
    if not user or not verify_password(password, user.passwordhash):
        raise UnauthenticatedError("Incorrect email or password")

    access_token = create_access_token(data={"sub": user.email})

    # Refresh tokens are opaque and tracked in the database so logout can revoke them
    refresh_token = str(uuid.uuid4())
    db.add(
        Token(
            token=refresh_token,
            expiry_date=datetime.now(timezone.utc)
            + timedelta(days=settings.refresh_token_expire_days),
            user_id=user.id,
        )
    )
    db.commit()

    return {
        "access_token": access_token,
        "refresh_token": refresh_token,
        "token_type": "bearer",
    }


@router.post("/refresh", response_model=AccessTokenResponse)
def refresh_token(request: RefreshTokenRequest, db: Session = Depends(get_db)):
    token_record = db.query(Token).filter(Token.token == request.refresh_token).first()
    if not token_record:
        raise UnauthenticatedError("Refresh token is not recognised")

    if _as_utc(token_record.expiry_date) < datetime.now(timezone.utc):
        db.delete(token_record)
        db.commit()
        raise UnauthenticatedError("Refresh token has expired, please sign in again")

    access_token = create_access_token(data={"sub": token_record.user.email})
    return {"access_token": access_token, "token_type": "bearer"}


@router.post("/logout", response_model=LogoutResponse)
def logout(
    request: RefreshTokenRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    (
        db.query(Token)
        .filter(Token.token == request.refresh_token, Token.user_id == current_user.id)
        .delete(synchronize_session=False)
    )
    db.commit()
    return {"message": "Successfully logged out"}
