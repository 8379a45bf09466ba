"""
Shift Marketplace Policy Engine - Authentication Router
Handles user registration, login and session verification.
"""
from uuid import uuid4
from typing import Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, EmailStr, field_validator
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.db_models import UserDB, UserRole, StandingRecordDB
from ..auth import hash_password, verify_password, create_access_token, get_current_user
from ..services.enforcement.trust_score import TRUST_SCORE_BASELINE

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class RegisterRequest(BaseModel):
    email: EmailStr
    username: str
    password: str
    role: str = UserRole.WORKER.value
    phone: Optional[str] = None

    @field_validator('role')
    @classmethod
    def validate_role(cls, v):
        # Admins are created by scripts/seed_admin.py only
        valid_roles = [UserRole.CLIENT.value, UserRole.WORKER.value, UserRole.COORDINATOR.value]
        if v not in valid_roles:
            raise ValueError(f'Invalid role. Must be one of: {", ".join(valid_roles)}')
        return v

    @field_validator('password')
    @classmethod
    def validate_password_strength(cls, v):
        if len(v) < 8:
            raise ValueError('Password must be at least 8 characters')
        return v


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class MessageResponse(BaseModel):
    message: str


class UserResponse(BaseModel):
    """Current user with the profile fields the guard reads."""
    id: str
    email: str
    username: str
    role: str
    is_demo: bool = False
    phone_verified: bool = False
    identity_status: str
    completed_jobs: int = 0


# =============================================================================
# API ENDPOINTS
# =============================================================================

@router.post("/register", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def register(request: RegisterRequest, db: Session = Depends(get_db)):
    """
    Register a new user account.

    The standing record is created together with the profile.
    """
    existing_email = db.query(UserDB).filter(UserDB.email == request.email).first()
    if existing_email:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered"
        )

    existing_username = db.query(UserDB).filter(UserDB.username == request.username).first()
    if existing_username:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Username already taken"
        )

    user = UserDB(
        id=str(uuid4()),
        email=request.email,
        username=request.username,
        password_hash=hash_password(request.password),
        role=request.role,
        phone=request.phone,
    )
    db.add(user)
    db.add(StandingRecordDB(user_id=user.id, trust_score=TRUST_SCORE_BASELINE))
    db.commit()

    logger.info(f"User registered: {request.email} ({request.role})")
    return MessageResponse(message="User created successfully")


@router.post("/login", response_model=TokenResponse)
async def login(request: LoginRequest, db: Session = Depends(get_db)):
    """
    Authenticate user and return JWT token.
    """
    user = db.query(UserDB).filter(UserDB.email == request.email).first()

    if not user or not verify_password(request.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token = create_access_token(user.id, user.email, user.role)

    logger.info(f"User logged in: {request.email}")
    return TokenResponse(access_token=access_token)


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: UserDB = Depends(get_current_user)):
    """Return the authenticated user."""
    return UserResponse(
        id=current_user.id,
        email=current_user.email,
        username=current_user.username,
        role=current_user.role,
        is_demo=bool(current_user.is_demo),
        phone_verified=bool(current_user.phone_verified),
        identity_status=current_user.identity_status,
        completed_jobs=current_user.completed_jobs or 0,
    )
