import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic.auth.dependencies import get_current_principal, get_token_authority, security
from clinic.auth.passwords import hash_password, verify_password
from clinic.auth.tokens import TokenAuthority, TokenClaims
from clinic.core import config
from clinic.core.errors import InvalidToken, NotFound
from clinic.core.validators import normalize_email, validate_password
from clinic.database import database_unavailable, get_db
from clinic.models.user import ACCOUNT_MODELS, Role

router = APIRouter(tags=['auth'])

logger = logging.getLogger(__name__)


class LoginRequest(BaseModel):
    email: str
    password: str

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return normalize_email(value)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = 'bearer'
    role: Role
    user_id: int
    expires_in: int


class PasswordResetRequest(BaseModel):
    email: str

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return normalize_email(value)


class PasswordResetRequestResponse(BaseModel):
    message: str
    reset_token: str | None = None


class PasswordResetConfirm(BaseModel):
    token: str
    new_password: str

    @field_validator('new_password')
    @classmethod
    def validate_new_password(cls, value: str) -> str:
        return validate_password(value)


class PrincipalResponse(BaseModel):
    email: str
    role: Role
    user_id: int
    expires_at: datetime


def find_accounts_by_email(db: Session, email: str) -> list:
    accounts = []
    for model in ACCOUNT_MODELS.values():
        account = db.query(model).filter(model.email == email).first()
        if account is not None:
            accounts.append(account)
    return accounts


def issue_token_response(authority: TokenAuthority, email: str, role: Role, user_id: int) -> TokenResponse:
    return TokenResponse(
        access_token=authority.issue(email, role, user_id),
        role=role,
        user_id=user_id,
        expires_in=authority.settings.expires_minutes * 60,
    )


@router.post('/login/{role}', response_model=TokenResponse)
def login(
    role: Role,
    data: LoginRequest,
    db: Session = Depends(get_db),
    authority: TokenAuthority = Depends(get_token_authority),
):
    model = ACCOUNT_MODELS[role]
    try:
        account = db.query(model).filter(model.email == data.email).first()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    if account is None or not verify_password(data.password, account.hashed_password):
        logger.info('Failed %s login attempt', role.value.lower())
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail='Invalid email or password.',
        )

    return issue_token_response(authority, account.email, role, account.id)


@router.post(
    '/password-reset/request',
    response_model=PasswordResetRequestResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def request_password_reset(
    data: PasswordResetRequest,
    db: Session = Depends(get_db),
    authority: TokenAuthority = Depends(get_token_authority),
):
    try:
        accounts = find_accounts_by_email(db, data.email)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    response = PasswordResetRequestResponse(
        message='If the account exists, password reset instructions have been sent.',
    )
    if accounts and config.EXPOSE_RESET_TOKENS:
        response.reset_token = authority.issue_password_reset(data.email)
    return response


@router.post('/password-reset/confirm', status_code=status.HTTP_204_NO_CONTENT)
def confirm_password_reset(
    data: PasswordResetConfirm,
    db: Session = Depends(get_db),
    authority: TokenAuthority = Depends(get_token_authority),
):
    if not authority.validate_password_reset(data.token):
        raise InvalidToken('Invalid or expired password reset token.')
    email = authority.password_reset_email(data.token)

    try:
        accounts = find_accounts_by_email(db, email)
        if not accounts:
            raise NotFound('Account not found.')

        hashed = hash_password(data.new_password)
        for account in accounts:
            account.hashed_password = hashed
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    logger.info('Password reset completed for %d account(s)', len(accounts))


@router.post('/refresh', response_model=TokenResponse)
def refresh(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    authority: TokenAuthority = Depends(get_token_authority),
):
    refreshed = authority.refresh(credentials.credentials) if credentials else None
    if refreshed is None:
        raise InvalidToken('A valid session token is required to refresh.')
    claims = authority.decode(refreshed)
    return TokenResponse(
        access_token=refreshed,
        role=claims.role,
        user_id=claims.user_id,
        expires_in=authority.remaining_seconds(refreshed),
    )


@router.get('/me', response_model=PrincipalResponse)
def me(principal: TokenClaims = Depends(get_current_principal)):
    return PrincipalResponse(
        email=principal.email,
        role=principal.role,
        user_id=principal.user_id,
        expires_at=principal.expires_at,
    )
