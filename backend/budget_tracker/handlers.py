"""Per-entity request handlers.

Every operation receives the already-authenticated caller id. Input and
ownership are checked here, before a row is written; storage failures
surface as :class:`BackendUnavailable` untouched.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel

from .auth_utils import hash_password, verify_password
from .config import Settings
from .entities import COLUMNS, ID_FIELDS, OWNER_FIELD, EntityKind, Record, stamp_new, to_cell
from .errors import BackendUnavailable, Conflict, Forbidden, NotFound, Unauthorized, ValidationFailed
from .logging_setup import get_logger
from .persistence import Repository
from .schemas import (
    AccountCreate,
    AccountUpdate,
    BudgetCreate,
    BudgetUpdate,
    CategoryCreate,
    CategoryUpdate,
    DashboardResponse,
    RegisterRequest,
    TransactionCreate,
    TransactionUpdate,
    UserPreferencesUpdate,
)
from .services.aggregation import build_dashboard
from .services.categories import nest_categories, potential_parents

logger = get_logger(__name__)

MONTH_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")
GOOGLE_ACCOUNT_MESSAGE = "This email is registered with Google. Please use Google Sign In."

DEFAULT_INCOME_CATEGORIES = [
    ("Salary", "💰"),
    ("Freelance", "💻"),
    ("Investments", "📈"),
    ("Other Income", "🎁"),
]
DEFAULT_EXPENSE_CATEGORIES = [
    ("Food & Drinks", "🍔"),
    ("Transport", "🚗"),
    ("Entertainment", "🎬"),
    ("Shopping", "🛍️"),
    ("Utilities", "💡"),
    ("Rent", "🏠"),
    ("Healthcare", "🏥"),
    ("Education", "📚"),
]

_LABELS = {
    EntityKind.users: "user",
    EntityKind.accounts: "account",
    EntityKind.categories: "category",
    EntityKind.transactions: "transaction",
    EntityKind.budgets: "budget",
}


def _patch(payload: BaseModel) -> Record:
    return payload.model_dump(mode="json", exclude_none=True)


def _join_tags(tags: Any) -> str:
    return to_cell(tags) if isinstance(tags, (list, tuple)) else str(tags or "")


class FinanceService:
    def __init__(self, repository: Repository, config: Settings) -> None:
        self.repository = repository
        self.config = config

    # -- shared -------------------------------------------------------------

    def _get(self, kind: EntityKind, entity_id: str) -> Record:
        row = self.repository.get_by_id(kind, ID_FIELDS[kind], entity_id)
        if row is None:
            raise NotFound(f"{_LABELS[kind]} not found: {entity_id}")
        return row

    def _owned(self, kind: EntityKind, entity_id: str, user_id: str, allow_global: bool = False) -> Record:
        row = self._get(kind, entity_id)
        owner = row.get(OWNER_FIELD)
        if owner == user_id or (allow_global and owner == self.config.global_owner_id):
            return row
        raise Forbidden(f"{_LABELS[kind]} belongs to another user")

    def _create(self, kind: EntityKind, record: Record) -> Record:
        row = self.repository.add(kind, stamp_new(kind, record))
        logger.info("created %s %s", _LABELS[kind], row[ID_FIELDS[kind]])
        return row

    def _update(self, kind: EntityKind, entity_id: str, patch: Record) -> Record:
        patch.pop(OWNER_FIELD, None)
        row = self.repository.update(kind, ID_FIELDS[kind], entity_id, patch)
        if row is None:
            raise NotFound(f"{_LABELS[kind]} not found: {entity_id}")
        return row

    def _delete(self, kind: EntityKind, entity_id: str) -> bool:
        deleted = self.repository.delete(kind, ID_FIELDS[kind], entity_id)
        if not deleted:
            raise NotFound(f"{_LABELS[kind]} not found: {entity_id}")
        logger.info("deleted %s %s", _LABELS[kind], entity_id)
        return deleted

    # -- users --------------------------------------------------------------

    def _user_by_email(self, email: str) -> Record | None:
        rows = self.repository.list_where(EntityKind.users, {"email": email.strip().lower()})
        return rows[0] if rows else None

    def _new_user(self, email: str, name: str, provider: str, password_hash: str = "", image_url: str = "") -> Record:
        return {
            "email": email.strip().lower(),
            "name": name.strip(),
            "imageUrl": image_url,
            "authProvider": provider,
            "passwordHash": password_hash,
            "currency": self.config.default_currency,
            "timezone": self.config.default_timezone,
            "language": self.config.default_language,
        }

    def register_user(self, payload: RegisterRequest) -> Record:
        existing = self._user_by_email(payload.email)
        if existing is not None:
            if existing.get("authProvider") == "google":
                raise Conflict(GOOGLE_ACCOUNT_MESSAGE)
            raise Conflict("An account with this email already exists")
        record = self._new_user(payload.email, payload.name, "credentials", hash_password(payload.password))
        return self._create(EntityKind.users, record)

    def authenticate_user(self, email: str, password: str) -> Record:
        user = self._user_by_email(email)
        if user is None:
            raise Unauthorized("invalid email or password")
        if user.get("authProvider") == "google":
            raise Unauthorized(GOOGLE_ACCOUNT_MESSAGE)
        if not verify_password(password, user.get("passwordHash")):
            raise Unauthorized("invalid email or password")
        return user

    def link_external_user(self, email: str, name: str = "", image_url: str = "") -> Record:
        """Find or create the user behind an external-provider sign in."""
        existing = self._user_by_email(email)
        if existing is not None:
            return existing
        return self._create(EntityKind.users, self._new_user(email, name, "google", image_url=image_url))

    def get_user(self, user_id: str) -> Record:
        return self._get(EntityKind.users, user_id)

    def update_user(self, user_id: str, payload: UserPreferencesUpdate) -> Record:
        self._get(EntityKind.users, user_id)
        return self._update(EntityKind.users, user_id, _patch(payload))

    # -- accounts -----------------------------------------------------------

    def list_accounts(self, user_id: str) -> list[Record]:
        return self.repository.list_where(EntityKind.accounts, {OWNER_FIELD: user_id})

    def create_account(self, user_id: str, payload: AccountCreate) -> Record:
        record = payload.model_dump(mode="json")
        record[OWNER_FIELD] = user_id
        record["currency"] = payload.currency or self.config.default_currency
        return self._create(EntityKind.accounts, record)

    def get_account(self, user_id: str, account_id: str) -> Record:
        return self._owned(EntityKind.accounts, account_id, user_id)

    def update_account(self, user_id: str, account_id: str, payload: AccountUpdate) -> Record:
        self._owned(EntityKind.accounts, account_id, user_id)
        return self._update(EntityKind.accounts, account_id, _patch(payload))

    def delete_account(self, user_id: str, account_id: str) -> bool:
        # Transactions referencing the account are left in place.
        self._owned(EntityKind.accounts, account_id, user_id)
        return self._delete(EntityKind.accounts, account_id)

    # -- categories ---------------------------------------------------------

    def visible_categories(self, user_id: str) -> list[Record]:
        own = self.repository.list_where(EntityKind.categories, {OWNER_FIELD: user_id})
        shared = self.repository.list_where(EntityKind.categories, {OWNER_FIELD: self.config.global_owner_id})
        return own + shared

    def list_categories(self, user_id: str, category_type: Optional[str] = None, nested: bool = False) -> list[Record]:
        categories = self.visible_categories(user_id)
        if category_type:
            categories = [c for c in categories if c.get("type") == category_type]
        return nest_categories(categories) if nested else categories

    def parent_options(self, user_id: str, category_type: str, exclude_id: Optional[str] = None) -> list[Record]:
        return potential_parents(self.visible_categories(user_id), category_type, exclude_id)

    def _check_parent(self, user_id: str, parent_id: Optional[str], category_id: Optional[str] = None) -> None:
        if not parent_id:
            return
        if parent_id == category_id:
            raise ValidationFailed.for_field("parentCategoryId", "a category cannot be its own parent")
        try:
            self._owned(EntityKind.categories, parent_id, user_id, allow_global=True)
        except (NotFound, Forbidden) as exc:
            raise ValidationFailed.for_field("parentCategoryId", f"unknown parent category: {parent_id}") from exc

    def create_category(self, user_id: str, payload: CategoryCreate) -> Record:
        self._check_parent(user_id, payload.parentCategoryId)
        record = payload.model_dump(mode="json")
        record[OWNER_FIELD] = user_id
        return self._create(EntityKind.categories, record)

    def get_category(self, user_id: str, category_id: str) -> Record:
        return self._owned(EntityKind.categories, category_id, user_id, allow_global=True)

    def update_category(self, user_id: str, category_id: str, payload: CategoryUpdate) -> Record:
        self._owned(EntityKind.categories, category_id, user_id)
        self._check_parent(user_id, payload.parentCategoryId, category_id)
        return self._update(EntityKind.categories, category_id, _patch(payload))

    def delete_category(self, user_id: str, category_id: str) -> bool:
        # No cascade: transactions keep the dangling categoryId.
        self._owned(EntityKind.categories, category_id, user_id)
        return self._delete(EntityKind.categories, category_id)

    def seed_default_categories(self) -> int:
        owner = self.config.global_owner_id
        if self.repository.exists(EntityKind.categories, OWNER_FIELD, owner):
            return 0
        seeded = 0
        for category_type, defaults in (("income", DEFAULT_INCOME_CATEGORIES), ("expense", DEFAULT_EXPENSE_CATEGORIES)):
            for name, icon in defaults:
                self._create(
                    EntityKind.categories,
                    {
                        OWNER_FIELD: owner,
                        "name": name,
                        "type": category_type,
                        "icon": icon,
                        "color": "#22c55e",
                        "parentCategoryId": "",
                    },
                )
                seeded += 1
        logger.info("seeded %d default categories", seeded)
        return seeded

    # -- transactions -------------------------------------------------------

    def _check_transaction(self, values: Record) -> None:
        kind = values.get("type")
        if kind == "transfer" and (not values.get("fromAccountId") or not values.get("toAccountId")):
            raise ValidationFailed.for_field("fromAccountId", "Transfer requires fromAccountId and toAccountId")
        if kind in {"income", "expense"} and self.config.require_transaction_account and not values.get("accountId"):
            raise ValidationFailed.for_field("accountId", "accountId is required for income/expense")

    def list_transactions(
        self,
        user_id: str,
        *,
        transaction_type: Optional[str] = None,
        account_id: Optional[str] = None,
        category_id: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Record], int]:
        filters: dict[str, Any] = {OWNER_FIELD: user_id}
        if transaction_type:
            filters["type"] = transaction_type
        if account_id:
            filters["accountId"] = account_id
        if category_id:
            filters["categoryId"] = category_id
        rows = self.repository.list_where(EntityKind.transactions, filters)
        if start_date:
            rows = [t for t in rows if str(t.get("date") or "") >= start_date]
        if end_date:
            rows = [t for t in rows if str(t.get("date") or "")[: len(end_date)] <= end_date]
        rows.sort(key=lambda t: str(t.get("date") or ""), reverse=True)
        return rows[offset : offset + limit], len(rows)

    def create_transaction(self, user_id: str, payload: TransactionCreate) -> Record:
        record = payload.model_dump(mode="json")
        self._check_transaction(record)
        record[OWNER_FIELD] = user_id
        record["currency"] = payload.currency or self.config.default_currency
        record["tags"] = _join_tags(payload.tags)
        for field in ("accountId", "categoryId", "fromAccountId", "toAccountId"):
            record[field] = record.get(field) or ""
        return self._create(EntityKind.transactions, record)

    def get_transaction(self, user_id: str, transaction_id: str) -> Record:
        return self._owned(EntityKind.transactions, transaction_id, user_id)

    def update_transaction(self, user_id: str, transaction_id: str, payload: TransactionUpdate) -> Record:
        current = self._owned(EntityKind.transactions, transaction_id, user_id)
        patch = _patch(payload)
        if "tags" in patch:
            patch["tags"] = _join_tags(patch["tags"])
        self._check_transaction({**current, **patch})
        return self._update(EntityKind.transactions, transaction_id, patch)

    def delete_transaction(self, user_id: str, transaction_id: str) -> bool:
        self._owned(EntityKind.transactions, transaction_id, user_id)
        return self._delete(EntityKind.transactions, transaction_id)

    # -- budgets ------------------------------------------------------------

    def list_budgets(self, user_id: str, month: Optional[str] = None) -> list[Record]:
        filters: dict[str, Any] = {OWNER_FIELD: user_id}
        if month:
            filters["month"] = month
        return self.repository.list_where(EntityKind.budgets, filters)

    def _check_budget_unique(self, user_id: str, month: str, category_id: str, budget_id: Optional[str] = None) -> None:
        for budget in self.list_budgets(user_id, month):
            if budget.get("categoryId") == category_id and budget.get("budgetId") != budget_id:
                raise Conflict("Budget already exists for this category and month")

    def create_budget(self, user_id: str, payload: BudgetCreate) -> Record:
        self._check_budget_unique(user_id, payload.month, payload.categoryId)
        record = payload.model_dump(mode="json")
        record[OWNER_FIELD] = user_id
        return self._create(EntityKind.budgets, record)

    def get_budget(self, user_id: str, budget_id: str) -> Record:
        return self._owned(EntityKind.budgets, budget_id, user_id)

    def update_budget(self, user_id: str, budget_id: str, payload: BudgetUpdate) -> Record:
        current = self._owned(EntityKind.budgets, budget_id, user_id)
        patch = _patch(payload)
        if "month" in patch or "categoryId" in patch:
            self._check_budget_unique(
                user_id,
                patch.get("month", current.get("month")),
                patch.get("categoryId", current.get("categoryId")),
                budget_id,
            )
        return self._update(EntityKind.budgets, budget_id, patch)

    def delete_budget(self, user_id: str, budget_id: str) -> bool:
        self._owned(EntityKind.budgets, budget_id, user_id)
        return self._delete(EntityKind.budgets, budget_id)

    # -- dashboard ----------------------------------------------------------

    def dashboard(self, user_id: str, month: Optional[str] = None, today: Optional[date] = None) -> DashboardResponse:
        today = today or datetime.now(timezone.utc).date()
        month = month or today.strftime("%Y-%m")
        if not MONTH_RE.match(month):
            raise ValidationFailed.for_field("month", "month must use the YYYY-MM format")
        transactions = self.repository.list_where(EntityKind.transactions, {OWNER_FIELD: user_id})
        return build_dashboard(transactions, self.visible_categories(user_id), month, today)

    # -- storage ------------------------------------------------------------

    def storage_status(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for kind in COLUMNS:
            try:
                counts[kind.value] = self.repository.count(kind)
            except BackendUnavailable as exc:
                logger.warning("cannot read %s: %s", kind.value, exc.message)
                counts[kind.value] = -1
        return counts

    def initialize_storage(self) -> tuple[list[str], list[str]]:
        initialized: list[str] = []
        failed: list[str] = []
        for kind in COLUMNS:
            try:
                self.repository.initialize(kind)
                initialized.append(kind.value)
            except BackendUnavailable as exc:
                logger.warning("cannot initialize %s: %s", kind.value, exc.message)
                failed.append(kind.value)
        return initialized, failed
