from datetime import date
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from .entities import LIST_DELIMITER, Record, to_amount

MONTH_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"
    transfer = "transfer"


class CategoryType(str, Enum):
    income = "income"
    expense = "expense"


class AccountType(str, Enum):
    cash = "cash"
    bank = "bank"
    ewallet = "ewallet"
    credit = "credit"


class AuthProvider(str, Enum):
    credentials = "credentials"
    google = "google"


class Language(str, Enum):
    en = "en"
    km = "km"


class ApiErrorDetail(BaseModel):
    field: str
    message: str


class ApiErrorPayload(BaseModel):
    code: str
    message: str
    details: list[ApiErrorDetail] = Field(default_factory=list)


class ApiErrorResponse(BaseModel):
    error: ApiErrorPayload


def _validate_currency(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    up = value.strip().upper()
    if len(up) != 3 or not up.isalpha():
        raise ValueError("must be 3-letter ISO code")
    return up


def _validate_iso_date(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    try:
        date.fromisoformat(value[:10])
    except ValueError as exc:
        raise ValueError("must be an ISO date (YYYY-MM-DD)") from exc
    return value


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _tags(value: Any) -> list[str]:
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if str(v)]
    return [t.strip() for t in _text(value).split(LIST_DELIMITER) if t.strip()]


class HealthResponse(BaseModel):
    status: str
    storageBackend: str


class RegisterRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: str = Field(min_length=3, max_length=320)
    password: str = Field(min_length=8, max_length=256)

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        value = value.strip().lower()
        if "@" not in value or value.startswith("@") or value.endswith("@"):
            raise ValueError("invalid email format")
        return value


class LoginRequest(BaseModel):
    email: str
    password: str
    rememberMe: bool = False


class AuthResponse(BaseModel):
    token: str
    userId: str
    email: str
    name: str


class UserProfileResponse(BaseModel):
    userId: str
    email: str
    name: str
    imageUrl: str
    authProvider: str
    currency: str
    timezone: str
    language: str
    createdAt: str
    updatedAt: str

    @classmethod
    def from_record(cls, row: Record) -> "UserProfileResponse":
        return cls(**{field: _text(row.get(field)) for field in cls.model_fields})


class UserPreferencesUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    imageUrl: Optional[str] = None
    currency: Optional[str] = None
    timezone: Optional[str] = None
    language: Optional[Language] = None

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, value: Optional[str]) -> Optional[str]:
        return _validate_currency(value)


class AccountCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    type: AccountType
    currency: Optional[str] = None
    startingBalance: float = 0
    note: str = ""
    color: str = "#22c55e"

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, value: Optional[str]) -> Optional[str]:
        return _validate_currency(value)


class AccountUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    type: Optional[AccountType] = None
    currency: Optional[str] = None
    startingBalance: Optional[float] = None
    note: Optional[str] = None
    color: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, value: Optional[str]) -> Optional[str]:
        return _validate_currency(value)


class AccountResponse(BaseModel):
    accountId: str
    userId: str
    name: str
    type: str
    currency: str
    startingBalance: float
    note: str
    color: str
    createdAt: str
    updatedAt: str

    @classmethod
    def from_record(cls, row: Record) -> "AccountResponse":
        data: dict[str, Any] = {field: _text(row.get(field)) for field in cls.model_fields}
        data["startingBalance"] = to_amount(row.get("startingBalance"))
        return cls(**data)


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    type: CategoryType
    icon: str = "📁"
    color: str = "#22c55e"
    parentCategoryId: Optional[str] = None


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    type: Optional[CategoryType] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    parentCategoryId: Optional[str] = None


class CategoryResponse(BaseModel):
    categoryId: str
    userId: str
    name: str
    type: str
    icon: str
    color: str
    parentCategoryId: str
    createdAt: str
    updatedAt: str
    subcategories: Optional[list["CategoryResponse"]] = None

    @classmethod
    def from_record(cls, row: Record) -> "CategoryResponse":
        data: dict[str, Any] = {field: _text(row.get(field)) for field in cls.model_fields if field != "subcategories"}
        if row.get("subcategories") is not None:
            data["subcategories"] = [cls.from_record(sub) for sub in row["subcategories"]]
        return cls(**data)


class ParentOption(BaseModel):
    value: str
    label: str
    color: str


class TransactionCreate(BaseModel):
    type: TransactionType
    date: str
    amount: float
    currency: Optional[str] = None
    accountId: Optional[str] = None
    categoryId: Optional[str] = None
    fromAccountId: Optional[str] = None
    toAccountId: Optional[str] = None
    note: str = ""
    tags: list[str] | str = Field(default_factory=list)
    receiptUrl: str = ""

    @field_validator("date")
    @classmethod
    def validate_date(cls, value: str) -> str:
        return _validate_iso_date(value)

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, value: Optional[str]) -> Optional[str]:
        return _validate_currency(value)


class TransactionUpdate(BaseModel):
    type: Optional[TransactionType] = None
    date: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    accountId: Optional[str] = None
    categoryId: Optional[str] = None
    fromAccountId: Optional[str] = None
    toAccountId: Optional[str] = None
    note: Optional[str] = None
    tags: Optional[list[str] | str] = None
    receiptUrl: Optional[str] = None

    @field_validator("date")
    @classmethod
    def validate_date(cls, value: Optional[str]) -> Optional[str]:
        return _validate_iso_date(value)

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, value: Optional[str]) -> Optional[str]:
        return _validate_currency(value)


class TransactionResponse(BaseModel):
    transactionId: str
    userId: str
    type: str
    date: str
    amount: float
    currency: str
    accountId: str
    categoryId: str
    fromAccountId: str
    toAccountId: str
    note: str
    tags: list[str]
    receiptUrl: str
    createdAt: str
    updatedAt: str

    @classmethod
    def from_record(cls, row: Record) -> "TransactionResponse":
        data: dict[str, Any] = {field: _text(row.get(field)) for field in cls.model_fields}
        data["amount"] = to_amount(row.get("amount"))
        data["tags"] = _tags(row.get("tags"))
        return cls(**data)


class Pagination(BaseModel):
    total: int
    limit: int
    offset: int


class TransactionListResponse(BaseModel):
    transactions: list[TransactionResponse]
    pagination: Pagination


class BudgetCreate(BaseModel):
    month: str = Field(pattern=MONTH_PATTERN)
    categoryId: str = Field(min_length=1)
    limitAmount: float = Field(ge=0)


class BudgetUpdate(BaseModel):
    month: Optional[str] = Field(default=None, pattern=MONTH_PATTERN)
    categoryId: Optional[str] = Field(default=None, min_length=1)
    limitAmount: Optional[float] = Field(default=None, ge=0)


class BudgetResponse(BaseModel):
    budgetId: str
    userId: str
    month: str
    categoryId: str
    limitAmount: float
    createdAt: str
    updatedAt: str

    @classmethod
    def from_record(cls, row: Record) -> "BudgetResponse":
        data: dict[str, Any] = {field: _text(row.get(field)) for field in cls.model_fields}
        data["limitAmount"] = to_amount(row.get("limitAmount"))
        return cls(**data)


class DeleteResponse(BaseModel):
    deleted: bool


class AmountWithChange(BaseModel):
    amount: float
    change: Optional[float] = None


class AmountOnly(BaseModel):
    amount: float


class DashboardTotals(BaseModel):
    income: AmountWithChange
    expense: AmountWithChange
    netProfit: AmountWithChange
    totalBalance: AmountOnly


class RecentTransaction(TransactionResponse):
    categoryName: str


class DashboardResponse(BaseModel):
    month: str
    stats: DashboardTotals
    accounts: list[dict[str, Any]] = Field(default_factory=list)
    recentTransactions: list[RecentTransaction]
    weeklySpending: list[float]
    dailySpending: list[float]
    monthlySpending: list[float]


class StorageStatusResponse(BaseModel):
    backend: str
    sheets: dict[str, int]


class StorageInitResponse(BaseModel):
    initialized: list[str]
    failed: list[str] = Field(default_factory=list)
