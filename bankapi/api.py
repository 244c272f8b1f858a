"""FastAPI application exposing authentication, user and banking endpoints."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Union

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .authentication import AuthenticationService, account_credentials, user_credentials
from .config import Settings, load_settings
from .database import MAX_BALANCE, Database
from .errors import BankingError
from .ledger import LedgerService
from .models import Account, BalanceInfo, Page, SessionInfo, TransferRecord, User
from .passwords import PasswordHasher
from .rate_limit import LoginRateLimiter
from .security import TokenAuth
from .users import UserService

logger = logging.getLogger("bankapi.api")

ACCOUNT_MENU = "/info, /changePassword, /withdraw, /deposit, /transfer"


def _normalize_email(value: str) -> str:
    stripped = value.strip().lower()
    local, _, domain = stripped.partition("@")
    if not local or "." not in domain or domain.startswith(".") or domain.endswith("."):
        raise ValueError("must be a valid email address")
    return stripped


def _strip_required(value: str) -> str:
    stripped = value.strip()
    if not stripped:
        raise ValueError("must not be empty")
    return stripped


# ----------------------------------------------------------------------
# Request bodies
# ----------------------------------------------------------------------
class LoginRequest(BaseModel):
    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def _validate_email(cls, value: str) -> str:
        return _normalize_email(value)


class CreateAccountRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=6, max_length=32)
    password_confirm: str = Field(..., min_length=1)
    nominal: int = Field(..., ge=0, le=MAX_BALANCE)

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        return _strip_required(value)

    @field_validator("email")
    @classmethod
    def _validate_email(cls, value: str) -> str:
        return _normalize_email(value)


class CreateUserRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=6, max_length=32)
    password_confirm: str = Field(..., min_length=1)

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        return _strip_required(value)

    @field_validator("email")
    @classmethod
    def _validate_email(cls, value: str) -> str:
        return _normalize_email(value)


class UpdateProfileRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., max_length=255)

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        return _strip_required(value)

    @field_validator("email")
    @classmethod
    def _validate_email(cls, value: str) -> str:
        return _normalize_email(value)


class ChangePasswordRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    old_password: str = Field(..., alias="oldPassword", min_length=1)
    new_password: str = Field(..., alias="newPassword", min_length=6, max_length=32)
    confirm_password: str = Field(..., alias="confirmPassword", min_length=1)


class WithdrawRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    amount: int = Field(..., alias="nominalTarik", gt=0, le=MAX_BALANCE)


class DepositRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    amount: int = Field(..., alias="nominalSetor", gt=0, le=MAX_BALANCE)


class TransferRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    to_id: str = Field(..., alias="toId", min_length=1)
    amount: int = Field(..., alias="nominalTransfer", gt=0, le=MAX_BALANCE)
    description: Optional[str] = Field(default=None, max_length=255)


# ----------------------------------------------------------------------
# Response bodies
# ----------------------------------------------------------------------
class SessionResponse(BaseModel):
    email: str
    name: str
    user_id: str
    account_number: Optional[str] = None
    token: str


class CreatedAccountResponse(BaseModel):
    name: str
    email: str


class IdResponse(BaseModel):
    id: str


class AccountSummaryResponse(BaseModel):
    id: str
    account_number: str
    name: str
    email: str


class AccountDetailResponse(AccountSummaryResponse):
    menu: str


class BalanceResponse(AccountSummaryResponse):
    balance: int
    checked_at: datetime


class BalanceChangeResponse(AccountSummaryResponse):
    balance: int


class TransferNoteResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    transaction_id: str
    from_: str = Field(..., alias="from")
    to: str
    amount: str
    date: datetime
    description: Optional[str]


class TransferResponse(BaseModel):
    transfer: TransferNoteResponse
    message: str


class UserResponse(BaseModel):
    id: str
    name: str
    email: str
    created_at: datetime


class UserPageResponse(BaseModel):
    page_number: int
    page_size: int
    count: int
    total_pages: int
    has_previous_page: bool
    has_next_page: bool
    data: List[UserResponse]


def session_to_response(session: SessionInfo, token: str) -> SessionResponse:
    return SessionResponse(
        email=session.email,
        name=session.name,
        user_id=session.id,
        account_number=session.account_number,
        token=token,
    )


def account_to_summary(account: Account) -> AccountSummaryResponse:
    return AccountSummaryResponse(
        id=account.id,
        account_number=account.account_number,
        name=account.name,
        email=account.email,
    )


def account_to_balance_change(account: Account) -> BalanceChangeResponse:
    return BalanceChangeResponse(
        id=account.id,
        account_number=account.account_number,
        name=account.name,
        email=account.email,
        balance=account.balance,
    )


def balance_to_response(info: BalanceInfo) -> BalanceResponse:
    return BalanceResponse(
        id=info.id,
        account_number=info.account_number,
        name=info.name,
        email=info.email,
        balance=info.balance,
        checked_at=info.checked_at,
    )


def transfer_to_response(record: TransferRecord) -> TransferResponse:
    note = TransferNoteResponse(
        transaction_id=record.transaction_id,
        from_=record.source.describe(),
        to=record.destination.describe(),
        amount=str(record.amount),
        date=record.created_at,
        description=record.description,
    )
    return TransferResponse(transfer=note, message="Transfer Success")


def user_to_response(user: User) -> UserResponse:
    return UserResponse(id=user.id, name=user.name, email=user.email, created_at=user.created_at)


def page_to_response(page: Page[User]) -> UserPageResponse:
    return UserPageResponse(
        page_number=page.page_number,
        page_size=page.page_size,
        count=page.count,
        total_pages=page.total_pages,
        has_previous_page=page.has_previous_page,
        has_next_page=page.has_next_page,
        data=[user_to_response(user) for user in page.data],
    )


def create_app(
    *,
    settings: Settings | None = None,
    database: Database | None = None,
    clock: Callable[[], datetime] | None = None,
) -> FastAPI:
    """Build the ASGI application and the services behind it.

    Each call constructs its own limiters, so separate apps (and tests) never
    share login attempt state.
    """

    if settings is None:
        settings = load_settings()

    if database is None:
        database = Database(settings.database_path, timeout=settings.database_timeout)
    database.initialize()

    hasher = PasswordHasher(rounds=settings.password_rounds)
    token_auth = TokenAuth(settings.token_secret, ttl=settings.token_ttl)
    ledger = LedgerService(
        database,
        hasher,
        minimum_opening_deposit=settings.minimum_opening_deposit,
        clock=clock,
    )
    user_service = UserService(database, hasher)
    user_login = AuthenticationService(
        user_credentials(database),
        hasher,
        LoginRateLimiter(settings.login_policy, clock=clock),
    )
    bank_login = AuthenticationService(
        account_credentials(database),
        hasher,
        LoginRateLimiter(settings.bank_login_policy, clock=clock),
    )

    app = FastAPI(
        title="Bank API",
        description="Authentication, user management and simple banking operations",
        version="1.0.0",
    )
    app.state.settings = settings
    app.state.database = database
    app.state.ledger = ledger
    app.state.users = user_service
    app.state.user_login = user_login
    app.state.bank_login = bank_login
    app.state.token_auth = token_auth

    @app.exception_handler(BankingError)
    async def handle_banking_error(request: Request, exc: BankingError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})

    @app.get("/health")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    auth_router = APIRouter(prefix="/authentication")

    @auth_router.post("/login/users", response_model=SessionResponse)
    def login_user(payload: LoginRequest) -> SessionResponse:
        session = user_login.authenticate(payload.email, payload.password)
        return session_to_response(session, token_auth.issue(session, "user"))

    # ------------------------------------------------------------------
    # General users
    # ------------------------------------------------------------------
    users_router = APIRouter(prefix="/users", dependencies=[Depends(token_auth)])

    @users_router.get("", response_model=Union[UserPageResponse, List[UserResponse]])
    def list_users(
        page_number: Optional[int] = Query(default=None, ge=1),
        page_size: Optional[int] = Query(default=None, ge=1, le=100),
        search: Optional[str] = Query(default=None, max_length=255),
        sort: Optional[str] = Query(default=None, max_length=64),
    ) -> Union[UserPageResponse, List[UserResponse]]:
        if page_number is not None and page_size is not None:
            page = user_service.page_users(page_number, page_size, search=search, sort=sort)
            return page_to_response(page)
        return [user_to_response(user) for user in user_service.list_users(search=search, sort=sort)]

    @users_router.post("", response_model=CreatedAccountResponse)
    def create_user(payload: CreateUserRequest) -> CreatedAccountResponse:
        user = user_service.create_user(payload.name, payload.email, payload.password, payload.password_confirm)
        return CreatedAccountResponse(name=user.name, email=user.email)

    @users_router.get("/{user_id}", response_model=UserResponse)
    def read_user(user_id: str) -> UserResponse:
        return user_to_response(user_service.get_user(user_id))

    @users_router.put("/{user_id}", response_model=IdResponse)
    def update_user(user_id: str, payload: UpdateProfileRequest) -> IdResponse:
        user_service.update_user(user_id, name=payload.name, email=payload.email)
        return IdResponse(id=user_id)

    @users_router.delete("/{user_id}", response_model=IdResponse)
    def delete_user(user_id: str) -> IdResponse:
        user_service.delete_user(user_id)
        return IdResponse(id=user_id)

    @users_router.post("/{user_id}/change-password", response_model=IdResponse)
    def change_user_password(user_id: str, payload: ChangePasswordRequest) -> IdResponse:
        user_service.change_password(user_id, payload.old_password, payload.new_password, payload.confirm_password)
        return IdResponse(id=user_id)

    # ------------------------------------------------------------------
    # Banking
    # ------------------------------------------------------------------
    bank_public_router = APIRouter(prefix="/banks")

    @bank_public_router.post("/login", response_model=SessionResponse)
    def login_account(payload: LoginRequest) -> SessionResponse:
        session = bank_login.authenticate(payload.email, payload.password)
        return session_to_response(session, token_auth.issue(session, "account"))

    banks_router = APIRouter(prefix="/banks", dependencies=[Depends(token_auth)])

    @banks_router.get("/check", response_model=List[AccountSummaryResponse])
    def list_accounts() -> List[AccountSummaryResponse]:
        return [account_to_summary(account) for account in ledger.list_accounts()]

    @banks_router.post("/createAcc", response_model=CreatedAccountResponse)
    def create_account(payload: CreateAccountRequest) -> CreatedAccountResponse:
        account = ledger.open_account(
            payload.name,
            payload.email,
            payload.password,
            payload.password_confirm,
            payload.nominal,
        )
        return CreatedAccountResponse(name=account.name, email=account.email)

    @banks_router.get("/login/{account_id}", response_model=AccountDetailResponse)
    def read_account(account_id: str) -> AccountDetailResponse:
        account = ledger.get_account(account_id)
        summary = account_to_summary(account)
        return AccountDetailResponse(**summary.model_dump(), menu=ACCOUNT_MENU)

    @banks_router.get("/login/{account_id}/info", response_model=BalanceResponse)
    def read_balance(account_id: str) -> BalanceResponse:
        return balance_to_response(ledger.get_balance(account_id))

    @banks_router.put("/login/{account_id}/withdraw", response_model=BalanceChangeResponse)
    def withdraw(account_id: str, payload: WithdrawRequest) -> BalanceChangeResponse:
        return account_to_balance_change(ledger.withdraw(account_id, payload.amount))

    @banks_router.put("/login/{account_id}/deposit", response_model=BalanceChangeResponse)
    def deposit(account_id: str, payload: DepositRequest) -> BalanceChangeResponse:
        return account_to_balance_change(ledger.deposit(account_id, payload.amount))

    @banks_router.post("/login/{account_id}/transfer", response_model=TransferResponse)
    def transfer(account_id: str, payload: TransferRequest) -> TransferResponse:
        record = ledger.transfer(account_id, payload.to_id, payload.amount, payload.description)
        return transfer_to_response(record)

    @banks_router.post("/login/{account_id}/changePassword", response_model=IdResponse)
    def change_account_password(account_id: str, payload: ChangePasswordRequest) -> IdResponse:
        ledger.change_password(account_id, payload.old_password, payload.new_password, payload.confirm_password)
        return IdResponse(id=account_id)

    @banks_router.delete("/login/{account_id}/delete", response_model=IdResponse)
    def delete_account(account_id: str) -> IdResponse:
        ledger.delete_account(account_id)
        return IdResponse(id=account_id)

    @banks_router.put("/{account_id}", response_model=IdResponse)
    def update_account(account_id: str, payload: UpdateProfileRequest) -> IdResponse:
        ledger.update_profile(account_id, name=payload.name, email=payload.email)
        return IdResponse(id=account_id)

    app.include_router(auth_router)
    app.include_router(users_router)
    app.include_router(bank_public_router)
    app.include_router(banks_router)

    return app


__all__ = ["create_app"]
