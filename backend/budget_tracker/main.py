from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, FastAPI, Header, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .config import Settings, settings
from .errors import BackendUnavailable, FinanceError, Unauthorized
from .handlers import FinanceService
from .logging_setup import configure_logging, get_logger
from .persistence import get_repository
from .schemas import (
    AccountCreate,
    AccountResponse,
    AccountUpdate,
    ApiErrorDetail,
    ApiErrorPayload,
    ApiErrorResponse,
    AuthResponse,
    BudgetCreate,
    BudgetResponse,
    BudgetUpdate,
    CategoryCreate,
    CategoryResponse,
    CategoryType,
    CategoryUpdate,
    DashboardResponse,
    DeleteResponse,
    HealthResponse,
    LoginRequest,
    Pagination,
    ParentOption,
    RegisterRequest,
    StorageInitResponse,
    StorageStatusResponse,
    TransactionCreate,
    TransactionListResponse,
    TransactionResponse,
    TransactionType,
    TransactionUpdate,
    UserPreferencesUpdate,
    UserProfileResponse,
)
from .sessions import SessionStore

logger = get_logger(__name__)

SESSION_COOKIE_NAME = "bt_session"
REMEMBER_ME_SECONDS = 60 * 60 * 24 * 30

router = APIRouter(prefix="/api/v1")


def get_service(request: Request) -> FinanceService:
    return request.app.state.service


def get_sessions(request: Request) -> SessionStore:
    return request.app.state.sessions


def _token_from_request(authorization: str | None, session_token: str | None) -> str | None:
    if authorization:
        parts = authorization.split(" ", 1)
        if len(parts) != 2 or parts[0].lower() != "bearer":
            raise Unauthorized("invalid Authorization header")
        return parts[1].strip()
    return session_token


def current_user_id(
    authorization: str | None = Header(default=None),
    session_token: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
    sessions: SessionStore = Depends(get_sessions),
) -> str:
    token = _token_from_request(authorization, session_token)
    if not token:
        raise Unauthorized("missing session token")
    user_id = sessions.resolve(token)
    if user_id is None:
        raise Unauthorized("invalid or expired token")
    return user_id


def build_error_response(status_code: int, code: str, message: str, details: list[ApiErrorDetail]) -> JSONResponse:
    payload = ApiErrorResponse(error=ApiErrorPayload(code=code, message=message, details=details))
    return JSONResponse(status_code=status_code, content=payload.model_dump())


async def finance_error_handler(request: Request, exc: FinanceError) -> JSONResponse:
    if isinstance(exc, BackendUnavailable):
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    details = [ApiErrorDetail(**d) for d in exc.details]
    return build_error_response(exc.status_code, exc.code, exc.message, details)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details: list[ApiErrorDetail] = []
    for err in exc.errors():
        loc = ".".join(str(item) for item in err.get("loc", []) if item != "body")
        details.append(ApiErrorDetail(field=loc or "body", message=err.get("msg", "validation error")))
    return build_error_response(422, "VALIDATION_ERROR", "Invalid request payload", details)


def _start_session(response: Response, sessions: SessionStore, user: dict, remember: bool = False) -> AuthResponse:
    token = sessions.create(user["userId"])
    max_age = REMEMBER_ME_SECONDS if remember else None
    response.set_cookie(SESSION_COOKIE_NAME, token, httponly=True, samesite="lax", secure=False, max_age=max_age)
    return AuthResponse(token=token, userId=user["userId"], email=user["email"], name=user.get("name") or "")


@router.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    return HealthResponse(status="ok", storageBackend=request.app.state.config.storage_backend)


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def auth_register(
    payload: RegisterRequest,
    response: Response,
    service: FinanceService = Depends(get_service),
    sessions: SessionStore = Depends(get_sessions),
) -> AuthResponse:
    user = service.register_user(payload)
    return _start_session(response, sessions, user)


@router.post("/auth/login", response_model=AuthResponse)
def auth_login(
    payload: LoginRequest,
    response: Response,
    service: FinanceService = Depends(get_service),
    sessions: SessionStore = Depends(get_sessions),
) -> AuthResponse:
    user = service.authenticate_user(payload.email, payload.password)
    return _start_session(response, sessions, user, payload.rememberMe)


@router.post("/auth/logout")
def auth_logout(
    response: Response,
    authorization: str | None = Header(default=None),
    session_token: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
    sessions: SessionStore = Depends(get_sessions),
) -> dict[str, bool]:
    sessions.revoke(_token_from_request(authorization, session_token))
    response.delete_cookie(SESSION_COOKIE_NAME)
    return {"ok": True}


@router.get("/users/me", response_model=UserProfileResponse)
def get_profile(user_id: str = Depends(current_user_id), service: FinanceService = Depends(get_service)) -> UserProfileResponse:
    return UserProfileResponse.from_record(service.get_user(user_id))


@router.put("/users/me", response_model=UserProfileResponse)
def update_profile(
    payload: UserPreferencesUpdate,
    user_id: str = Depends(current_user_id),
    service: FinanceService = Depends(get_service),
) -> UserProfileResponse:
    return UserProfileResponse.from_record(service.update_user(user_id, payload))


@router.get("/accounts", response_model=list[AccountResponse])
def list_accounts(user_id: str = Depends(current_user_id), service: FinanceService = Depends(get_service)) -> list[AccountResponse]:
    return [AccountResponse.from_record(row) for row in service.list_accounts(user_id)]


@router.post("/accounts", response_model=AccountResponse, status_code=201)
def create_account(
    payload: AccountCreate,
    user_id: str = Depends(current_user_id),
    service: FinanceService = Depends(get_service),
) -> AccountResponse:
    return AccountResponse.from_record(service.create_account(user_id, payload))


@router.get("/accounts/{account_id}", response_model=AccountResponse)
def get_account(account_id: str, user_id: str = Depends(current_user_id), service: FinanceService = Depends(get_service)) -> AccountResponse:
    return AccountResponse.from_record(service.get_account(user_id, account_id))


@router.put("/accounts/{account_id}", response_model=AccountResponse)
def update_account(
    account_id: str,
    payload: AccountUpdate,
    user_id: str = Depends(current_user_id),
    service: FinanceService = Depends(get_service),
) -> AccountResponse:
    return AccountResponse.from_record(service.update_account(user_id, account_id, payload))


@router.delete("/accounts/{account_id}", response_model=DeleteResponse)
def delete_account(account_id: str, user_id: str = Depends(current_user_id), service: FinanceService = Depends(get_service)) -> DeleteResponse:
    return DeleteResponse(deleted=service.delete_account(user_id, account_id))


@router.get("/categories", response_model=list[CategoryResponse])
def list_categories(
    type: Optional[CategoryType] = Query(default=None),
    nested: bool = False,
    user_id: str = Depends(current_user_id),
    service: FinanceService = Depends(get_service),
) -> list[CategoryResponse]:
    rows = service.list_categories(user_id, type.value if type else None, nested)
    return [CategoryResponse.from_record(row) for row in rows]


@router.get("/categories/parent-options", response_model=list[ParentOption])
def category_parent_options(
    type: CategoryType,
    exclude: Optional[str] = None,
    user_id: str = Depends(current_user_id),
    service: FinanceService = Depends(get_service),
) -> list[ParentOption]:
    return [
        ParentOption(value=row["categoryId"], label=row.get("name") or "", color=row.get("color") or "")
        for row in service.parent_options(user_id, type.value, exclude)
    ]


@router.post("/categories", response_model=CategoryResponse, status_code=201)
def create_category(
    payload: CategoryCreate,
    user_id: str = Depends(current_user_id),
    service: FinanceService = Depends(get_service),
) -> CategoryResponse:
    return CategoryResponse.from_record(service.create_category(user_id, payload))


@router.get("/categories/{category_id}", response_model=CategoryResponse)
def get_category(category_id: str, user_id: str = Depends(current_user_id), service: FinanceService = Depends(get_service)) -> CategoryResponse:
    return CategoryResponse.from_record(service.get_category(user_id, category_id))


@router.put("/categories/{category_id}", response_model=CategoryResponse)
def update_category(
    category_id: str,
    payload: CategoryUpdate,
    user_id: str = Depends(current_user_id),
    service: FinanceService = Depends(get_service),
) -> CategoryResponse:
    return CategoryResponse.from_record(service.update_category(user_id, category_id, payload))


@router.delete("/categories/{category_id}", response_model=DeleteResponse)
def delete_category(category_id: str, user_id: str = Depends(current_user_id), service: FinanceService = Depends(get_service)) -> DeleteResponse:
    return DeleteResponse(deleted=service.delete_category(user_id, category_id))


@router.get("/transactions", response_model=TransactionListResponse)
def list_transactions(
    type: Optional[TransactionType] = Query(default=None),
    accountId: Optional[str] = None,
    categoryId: Optional[str] = None,
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    user_id: str = Depends(current_user_id),
    service: FinanceService = Depends(get_service),
) -> TransactionListResponse:
    rows, total = service.list_transactions(
        user_id,
        transaction_type=type.value if type else None,
        account_id=accountId,
        category_id=categoryId,
        start_date=startDate,
        end_date=endDate,
        limit=limit,
        offset=offset,
    )
    return TransactionListResponse(
        transactions=[TransactionResponse.from_record(row) for row in rows],
        pagination=Pagination(total=total, limit=limit, offset=offset),
    )


@router.post("/transactions", response_model=TransactionResponse, status_code=201)
def create_transaction(
    payload: TransactionCreate,
    user_id: str = Depends(current_user_id),
    service: FinanceService = Depends(get_service),
) -> TransactionResponse:
    return TransactionResponse.from_record(service.create_transaction(user_id, payload))


@router.get("/transactions/{transaction_id}", response_model=TransactionResponse)
def get_transaction(
    transaction_id: str, user_id: str = Depends(current_user_id), service: FinanceService = Depends(get_service)
) -> TransactionResponse:
    return TransactionResponse.from_record(service.get_transaction(user_id, transaction_id))


@router.put("/transactions/{transaction_id}", response_model=TransactionResponse)
def update_transaction(
    transaction_id: str,
    payload: TransactionUpdate,
    user_id: str = Depends(current_user_id),
    service: FinanceService = Depends(get_service),
) -> TransactionResponse:
    return TransactionResponse.from_record(service.update_transaction(user_id, transaction_id, payload))


@router.delete("/transactions/{transaction_id}", response_model=DeleteResponse)
def delete_transaction(
    transaction_id: str, user_id: str = Depends(current_user_id), service: FinanceService = Depends(get_service)
) -> DeleteResponse:
    return DeleteResponse(deleted=service.delete_transaction(user_id, transaction_id))


@router.get("/budgets", response_model=list[BudgetResponse])
def list_budgets(
    month: Optional[str] = None,
    user_id: str = Depends(current_user_id),
    service: FinanceService = Depends(get_service),
) -> list[BudgetResponse]:
    return [BudgetResponse.from_record(row) for row in service.list_budgets(user_id, month)]


@router.post("/budgets", response_model=BudgetResponse, status_code=201)
def create_budget(
    payload: BudgetCreate,
    user_id: str = Depends(current_user_id),
    service: FinanceService = Depends(get_service),
) -> BudgetResponse:
    return BudgetResponse.from_record(service.create_budget(user_id, payload))


@router.get("/budgets/{budget_id}", response_model=BudgetResponse)
def get_budget(budget_id: str, user_id: str = Depends(current_user_id), service: FinanceService = Depends(get_service)) -> BudgetResponse:
    return BudgetResponse.from_record(service.get_budget(user_id, budget_id))


@router.put("/budgets/{budget_id}", response_model=BudgetResponse)
def update_budget(
    budget_id: str,
    payload: BudgetUpdate,
    user_id: str = Depends(current_user_id),
    service: FinanceService = Depends(get_service),
) -> BudgetResponse:
    return BudgetResponse.from_record(service.update_budget(user_id, budget_id, payload))


@router.delete("/budgets/{budget_id}", response_model=DeleteResponse)
def delete_budget(budget_id: str, user_id: str = Depends(current_user_id), service: FinanceService = Depends(get_service)) -> DeleteResponse:
    return DeleteResponse(deleted=service.delete_budget(user_id, budget_id))


@router.get("/dashboard/stats", response_model=DashboardResponse)
def dashboard_stats(
    month: Optional[str] = None,
    user_id: str = Depends(current_user_id),
    service: FinanceService = Depends(get_service),
) -> DashboardResponse:
    return service.dashboard(user_id, month)


@router.get("/admin/storage", response_model=StorageStatusResponse)
def storage_status(
    request: Request,
    user_id: str = Depends(current_user_id),
    service: FinanceService = Depends(get_service),
) -> StorageStatusResponse:
    return StorageStatusResponse(backend=request.app.state.config.storage_backend, sheets=service.storage_status())


@router.post("/admin/storage/initialize", response_model=StorageInitResponse)
def initialize_storage(user_id: str = Depends(current_user_id), service: FinanceService = Depends(get_service)) -> StorageInitResponse:
    initialized, failed = service.initialize_storage()
    return StorageInitResponse(initialized=initialized, failed=failed)


def create_app(service: FinanceService | None = None, config: Settings = settings) -> FastAPI:
    configure_logging(config.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if config.init_storage_on_startup:
            app.state.service.initialize_storage()
        if config.seed_default_categories:
            try:
                app.state.service.seed_default_categories()
            except BackendUnavailable as exc:
                logger.warning("default categories not seeded: %s", exc.message)
        yield

    app = FastAPI(
        title="Budget Tracker API",
        version="0.1.0",
        description="Accounts, categories, transactions, budgets and dashboard statistics over a spreadsheet row store.",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.service = service or FinanceService(get_repository(config), config)
    app.state.sessions = SessionStore(config.session_timeout_minutes)
    app.add_exception_handler(FinanceError, finance_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.include_router(router)
    return app


app = create_app()
