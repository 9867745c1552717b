"""Entity kinds, their fixed column order and id generation."""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

Record = dict[str, Any]


class EntityKind(str, Enum):
    users = "users"
    accounts = "accounts"
    categories = "categories"
    transactions = "transactions"
    budgets = "budgets"


# Header row of each sheet. Reads re-associate values with these names
# through the stored header, writes always follow this order.
COLUMNS: dict[EntityKind, tuple[str, ...]] = {
    EntityKind.users: (
        "userId", "email", "name", "imageUrl", "authProvider",
        "passwordHash", "currency", "timezone", "language",
        "createdAt", "updatedAt",
    ),
    EntityKind.accounts: (
        "accountId", "userId", "name", "type", "currency",
        "startingBalance", "note", "color", "createdAt", "updatedAt",
    ),
    EntityKind.categories: (
        "categoryId", "userId", "name", "type", "icon", "color",
        "parentCategoryId", "createdAt", "updatedAt",
    ),
    EntityKind.transactions: (
        "transactionId", "userId", "type", "date", "amount",
        "currency", "accountId", "categoryId", "fromAccountId",
        "toAccountId", "note", "tags", "receiptUrl",
        "createdAt", "updatedAt",
    ),
    EntityKind.budgets: (
        "budgetId", "userId", "month", "categoryId",
        "limitAmount", "createdAt", "updatedAt",
    ),
}

ID_FIELDS: dict[EntityKind, str] = {
    EntityKind.users: "userId",
    EntityKind.accounts: "accountId",
    EntityKind.categories: "categoryId",
    EntityKind.transactions: "transactionId",
    EntityKind.budgets: "budgetId",
}

ID_PREFIXES: dict[EntityKind, str] = {
    EntityKind.users: "usr",
    EntityKind.accounts: "acc",
    EntityKind.categories: "cat",
    EntityKind.transactions: "txn",
    EntityKind.budgets: "bud",
}

OWNER_FIELD = "userId"
LIST_DELIMITER = ","


def generate_id(kind: EntityKind) -> str:
    return f"{ID_PREFIXES[kind]}_{uuid4().hex}"


def format_timestamp(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def now_iso() -> str:
    return format_timestamp(datetime.now(timezone.utc))


def next_timestamp(previous: str | None) -> str:
    """Current time, but never at or before ``previous``."""
    current = datetime.now(timezone.utc)
    current = current.replace(microsecond=current.microsecond // 1000 * 1000)
    last = parse_timestamp(previous)
    if last is not None and current <= last:
        current = last + timedelta(milliseconds=1)
    return format_timestamp(current)


def stamp_new(kind: EntityKind, record: Record) -> Record:
    """Assign id and creation timestamps to a fresh record."""
    stamped = dict(record)
    stamped[ID_FIELDS[kind]] = generate_id(kind)
    moment = now_iso()
    stamped["createdAt"] = moment
    stamped["updatedAt"] = moment
    return stamped


def to_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return LIST_DELIMITER.join(to_cell(item) for item in value)
    return str(value)


def to_row(kind: EntityKind, record: Record) -> list[str]:
    return [to_cell(record.get(column)) for column in COLUMNS[kind]]


def to_amount(value: Any) -> float:
    """Numeric value of a stored cell; blank or malformed cells count as zero."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    try:
        amount = float(str(value).strip().replace(LIST_DELIMITER, ""))
    except ValueError:
        return 0.0
    return amount if math.isfinite(amount) else 0.0
