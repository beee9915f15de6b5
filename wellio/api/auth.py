from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from jose import JWTError
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

from wellio.core.security import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    create_access_token,
    decode_access_token,
    encrypt_api_key,
    get_password_hash,
    mask_api_key,
    verify_password,
)
from wellio.db.models import Coach, CoachAIConfig
from wellio.db.session import get_db
from wellio.services.llm import DEFAULT_AI_MODEL, DEFAULT_VISION_MODEL

router = APIRouter(prefix="/auth", tags=["auth"])
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


class AIProvider(str, Enum):
    openai = "openai"


class AIConfigInput(BaseModel):
    ai_provider: AIProvider = AIProvider.openai
    ai_model: str = Field(default=DEFAULT_AI_MODEL, min_length=1, max_length=128)
    ai_vision_model: Optional[str] = Field(default=None, min_length=1, max_length=128)
    ai_api_key: str = Field(min_length=8, max_length=512)


class SignupRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    name: str = Field(default="", max_length=255)
    ai_config: Optional[AIConfigInput] = None


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class CoachResponse(BaseModel):
    id: int
    email: str
    name: str
    ai_configured: bool
    created_at: datetime


class AIConfigResponse(BaseModel):
    ai_provider: AIProvider
    ai_model: str
    ai_vision_model: str
    api_key_masked: str
    configured: bool = True


def _bad_credentials() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


def _upsert_ai_config(db: Session, coach_id: int, ai: AIConfigInput) -> CoachAIConfig:
    existing = db.query(CoachAIConfig).filter(CoachAIConfig.coach_id == coach_id).first()
    encrypted = encrypt_api_key(ai.ai_api_key.strip())
    vision_model = (ai.ai_vision_model or DEFAULT_VISION_MODEL).strip()
    if existing:
        existing.ai_provider = ai.ai_provider.value
        existing.ai_model = ai.ai_model.strip()
        existing.ai_vision_model = vision_model
        existing.encrypted_api_key = encrypted
        return existing

    created = CoachAIConfig(
        coach_id=coach_id,
        ai_provider=ai.ai_provider.value,
        ai_model=ai.ai_model.strip(),
        ai_vision_model=vision_model,
        encrypted_api_key=encrypted,
    )
    db.add(created)
    return created


def get_current_coach(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> Coach:
    try:
        coach_id = decode_access_token(token)
    except JWTError:
        raise _bad_credentials()

    coach = db.query(Coach).filter(Coach.id == coach_id).first()
    if not coach:
        raise _bad_credentials()
    return coach


@router.post("/signup", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def signup(payload: SignupRequest, db: Session = Depends(get_db)) -> TokenResponse:
    email = payload.email.lower()
    existing = db.query(Coach).filter(Coach.email == email).first()
    if existing:
        raise HTTPException(status_code=409, detail="Email already registered")

    coach = Coach(email=email, name=payload.name.strip(), password_hash=get_password_hash(payload.password))
    db.add(coach)
    db.flush()

    if payload.ai_config:
        _upsert_ai_config(db, coach.id, payload.ai_config)

    db.commit()

    token = create_access_token(coach.id, expires_delta=timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    return TokenResponse(access_token=token)


@router.post("/login", response_model=TokenResponse)
def login(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)) -> TokenResponse:
    coach = db.query(Coach).filter(Coach.email == form_data.username.lower()).first()
    if not coach or not verify_password(form_data.password, coach.password_hash):
        raise _bad_credentials()

    token = create_access_token(coach.id, expires_delta=timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    return TokenResponse(access_token=token)


@router.get("/me", response_model=CoachResponse)
def me(coach: Coach = Depends(get_current_coach)) -> CoachResponse:
    return CoachResponse(
        id=coach.id,
        email=coach.email,
        name=coach.name,
        ai_configured=coach.ai_config is not None,
        created_at=coach.created_at,
    )


@router.put("/ai-config", response_model=AIConfigResponse)
def set_ai_config(
    payload: AIConfigInput,
    coach: Coach = Depends(get_current_coach),
    db: Session = Depends(get_db),
) -> AIConfigResponse:
    cfg = _upsert_ai_config(db, coach.id, payload)
    db.commit()
    return AIConfigResponse(
        ai_provider=AIProvider(cfg.ai_provider),
        ai_model=cfg.ai_model,
        ai_vision_model=cfg.ai_vision_model or cfg.ai_model,
        api_key_masked=mask_api_key(payload.ai_api_key.strip()),
    )


@router.get("/ai-config", response_model=AIConfigResponse)
def get_ai_config(coach: Coach = Depends(get_current_coach), db: Session = Depends(get_db)) -> AIConfigResponse:
    cfg = db.query(CoachAIConfig).filter(CoachAIConfig.coach_id == coach.id).first()
    if not cfg:
        raise HTTPException(status_code=404, detail="AI config not found")

    # Stored keys are never echoed back.
    return AIConfigResponse(
        ai_provider=AIProvider(cfg.ai_provider),
        ai_model=cfg.ai_model,
        ai_vision_model=cfg.ai_vision_model or cfg.ai_model,
        api_key_masked="****...****",
    )


@router.delete("/ai-config", status_code=status.HTTP_204_NO_CONTENT)
def revoke_ai_config(coach: Coach = Depends(get_current_coach), db: Session = Depends(get_db)) -> None:
    cfg = db.query(CoachAIConfig).filter(CoachAIConfig.coach_id == coach.id).first()
    if not cfg:
        raise HTTPException(status_code=404, detail="AI config not found")
    db.delete(cfg)
    db.commit()
