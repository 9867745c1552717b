"""Dashboard statistics computed from a user's full transaction history.

Everything here is a pure function of the transaction rows (as returned by
the repository) and the requested month key ``YYYY-MM``; nothing is cached.
Amounts are summed as floats at full precision.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Iterable, Optional

from ..entities import Record, to_amount
from ..schemas import (
    AmountOnly,
    AmountWithChange,
    DashboardResponse,
    DashboardTotals,
    RecentTransaction,
    TransactionResponse,
)

RECENT_LIMIT = 10
UNKNOWN_CATEGORY = "Unknown"


def _date_text(tx: Record) -> str:
    return str(tx.get("date") or "")


def _parse_day(tx: Record) -> date | None:
    try:
        return date.fromisoformat(_date_text(tx)[:10])
    except ValueError:
        return None


def _expenses(transactions: Iterable[Record]) -> list[Record]:
    return [t for t in transactions if t.get("type") == "expense"]


def in_month(transactions: Iterable[Record], month: str) -> list[Record]:
    return [t for t in transactions if _date_text(t).startswith(month)]


def sum_by_type(transactions: Iterable[Record]) -> tuple[float, float]:
    income = 0.0
    expense = 0.0
    for tx in transactions:
        kind = tx.get("type")
        if kind == "income":
            income += to_amount(tx.get("amount"))
        elif kind == "expense":
            expense += to_amount(tx.get("amount"))
    return income, expense


def month_totals(transactions: Iterable[Record], month: str) -> tuple[float, float, float]:
    income, expense = sum_by_type(in_month(transactions, month))
    return income, expense, income - expense


def lifetime_balance(transactions: Iterable[Record]) -> float:
    income, expense = sum_by_type(transactions)
    return income - expense


def previous_month(month: str) -> str:
    year, mon = (int(part) for part in month.split("-")[:2])
    if mon == 1:
        return f"{year - 1:04d}-12"
    return f"{year:04d}-{mon - 1:02d}"


def percent_change(current: float, previous: float) -> Optional[float]:
    if previous > 0:
        return (current - previous) / previous * 100
    if current > 0:
        return 100.0
    return None


def profit_change(current: float, previous: float) -> Optional[float]:
    # Profit can be negative, so the baseline is its magnitude.
    if previous != 0:
        return (current - previous) / abs(previous) * 100
    if current > 0:
        return 100.0
    if current < 0:
        return -100.0
    return None


def weekly_spending(month_transactions: Iterable[Record]) -> list[float]:
    weeks = [0.0, 0.0, 0.0, 0.0]
    for tx in _expenses(month_transactions):
        day = _parse_day(tx)
        if day is None:
            continue
        weeks[min((day.day - 1) // 7, 3)] += to_amount(tx.get("amount"))
    return weeks


def daily_spending(transactions: Iterable[Record], today: date) -> list[float]:
    expenses = _expenses(transactions)
    days = []
    for back in range(6, -1, -1):
        key = (today - timedelta(days=back)).isoformat()
        days.append(sum(to_amount(t.get("amount")) for t in expenses if _date_text(t).startswith(key)))
    return days


def monthly_spending(transactions: Iterable[Record], today: date) -> list[float]:
    months = [0.0] * 12
    for tx in _expenses(transactions):
        day = _parse_day(tx)
        if day is not None and day.year == today.year:
            months[day.month - 1] += to_amount(tx.get("amount"))
    return months


def category_names(categories: Iterable[Record]) -> dict[str, str]:
    return {str(c.get("categoryId")): str(c.get("name") or "") for c in categories if c.get("categoryId")}


def recent_transactions(
    transactions: Iterable[Record], categories: Iterable[Record], limit: int = RECENT_LIMIT
) -> list[RecentTransaction]:
    names = category_names(categories)
    newest = sorted(transactions, key=_date_text, reverse=True)[:limit]
    return [
        RecentTransaction(
            **TransactionResponse.from_record(tx).model_dump(),
            categoryName=names.get(str(tx.get("categoryId") or ""), UNKNOWN_CATEGORY) or UNKNOWN_CATEGORY,
        )
        for tx in newest
    ]


def build_dashboard(
    transactions: list[Record], categories: list[Record], month: str, today: date
) -> DashboardResponse:
    income, expense, profit = month_totals(transactions, month)
    prev_income, prev_expense, prev_profit = month_totals(transactions, previous_month(month))

    return DashboardResponse(
        month=month,
        stats=DashboardTotals(
            income=AmountWithChange(amount=income, change=percent_change(income, prev_income)),
            expense=AmountWithChange(amount=expense, change=percent_change(expense, prev_expense)),
            netProfit=AmountWithChange(amount=profit, change=profit_change(profit, prev_profit)),
            totalBalance=AmountOnly(amount=lifetime_balance(transactions)),
        ),
        # Per-account balances are not rolled up yet.
        accounts=[],
        recentTransactions=recent_transactions(transactions, categories),
        weeklySpending=weekly_spending(in_month(transactions, month)),
        dailySpending=daily_spending(transactions, today),
        monthlySpending=monthly_spending(transactions, today),
    )
