from datetime import date

import pytest

from budget_tracker.config import Settings
from budget_tracker.entities import EntityKind
from budget_tracker.errors import BackendUnavailable, Conflict, Forbidden, NotFound, Unauthorized, ValidationFailed
from budget_tracker.grid import Grid, InMemoryGrid
from budget_tracker.handlers import FinanceService
from budget_tracker.persistence import SheetRowRepository
from budget_tracker.schemas import (
    AccountCreate,
    AccountUpdate,
    BudgetCreate,
    BudgetUpdate,
    CategoryCreate,
    CategoryUpdate,
    RegisterRequest,
    TransactionCreate,
    TransactionUpdate,
)


def make_service(**overrides) -> FinanceService:
    return FinanceService(SheetRowRepository(InMemoryGrid()), Settings(**overrides))


class BrokenGrid(Grid):
    def _fail(self, *args, **kwargs):
        raise BackendUnavailable("spreadsheet backend error during read")

    read_rows = read_header = append_row = write_row = delete_row = _fail


def test_register_and_authenticate() -> None:
    service = make_service()
    user = service.register_user(RegisterRequest(name="Dara", email="Dara@Example.com", password="password123"))
    assert user["email"] == "dara@example.com"
    assert user["currency"] == "USD"
    assert user["passwordHash"] and "password123" not in user["passwordHash"]

    assert service.authenticate_user("dara@example.com", "password123")["userId"] == user["userId"]
    with pytest.raises(Unauthorized):
        service.authenticate_user("dara@example.com", "wrong-password")
    with pytest.raises(Conflict):
        service.register_user(RegisterRequest(name="Other", email="dara@example.com", password="password123"))


def test_google_user_cannot_use_password_flows() -> None:
    service = make_service()
    linked = service.link_external_user("g@example.com", "G User")
    assert service.link_external_user("g@example.com")["userId"] == linked["userId"]

    with pytest.raises(Unauthorized):
        service.authenticate_user("g@example.com", "anything")
    with pytest.raises(Conflict) as excinfo:
        service.register_user(RegisterRequest(name="G", email="g@example.com", password="password123"))
    assert "Google" in excinfo.value.message


def test_accounts_are_private_to_owner() -> None:
    service = make_service(default_currency="KHR")
    account = service.create_account("usr_a", AccountCreate(name="Wallet", type="cash", startingBalance=20))
    assert account["currency"] == "KHR"

    with pytest.raises(Forbidden):
        service.get_account("usr_b", account["accountId"])
    with pytest.raises(Forbidden):
        service.update_account("usr_b", account["accountId"], AccountUpdate(name="Mine now"))
    with pytest.raises(Forbidden):
        service.delete_account("usr_b", account["accountId"])
    with pytest.raises(NotFound):
        service.get_account("usr_a", "acc_missing")

    assert service.list_accounts("usr_b") == []
    assert service.update_account("usr_a", account["accountId"], AccountUpdate(note="daily"))["name"] == "Wallet"
    assert service.delete_account("usr_a", account["accountId"]) is True
    with pytest.raises(NotFound):
        service.get_account("usr_a", account["accountId"])


def test_global_categories_are_readable_not_mutable() -> None:
    service = make_service()
    assert service.seed_default_categories() == 12
    assert service.seed_default_categories() == 0

    visible = service.list_categories("usr_a")
    assert len(visible) == 12
    assert len(service.list_categories("usr_a", "income")) == 4

    salary = next(c for c in visible if c["name"] == "Salary")
    assert service.get_category("usr_a", salary["categoryId"])["name"] == "Salary"
    with pytest.raises(Forbidden):
        service.update_category("usr_a", salary["categoryId"], CategoryUpdate(name="Pay"))
    with pytest.raises(Forbidden):
        service.delete_category("usr_a", salary["categoryId"])


def test_category_parent_checks() -> None:
    service = make_service()
    food = service.create_category("usr_a", CategoryCreate(name="Food", type="expense"))
    cafe = service.create_category("usr_a", CategoryCreate(name="Cafe", type="expense", parentCategoryId=food["categoryId"]))

    with pytest.raises(ValidationFailed):
        service.create_category("usr_a", CategoryCreate(name="X", type="expense", parentCategoryId="cat_missing"))
    with pytest.raises(ValidationFailed):
        service.create_category("usr_b", CategoryCreate(name="X", type="expense", parentCategoryId=food["categoryId"]))
    with pytest.raises(ValidationFailed):
        service.update_category("usr_a", food["categoryId"], CategoryUpdate(parentCategoryId=food["categoryId"]))

    options = [c["categoryId"] for c in service.parent_options("usr_a", "expense")]
    assert options == [food["categoryId"]]
    nested = service.list_categories("usr_a", nested=True)
    assert [s["categoryId"] for s in nested[0]["subcategories"]] == [cafe["categoryId"]]


def test_transfer_requires_both_accounts() -> None:
    service = make_service()
    with pytest.raises(ValidationFailed) as excinfo:
        service.create_transaction("usr_a", TransactionCreate(type="transfer", date="2024-05-01", amount=10, fromAccountId="acc_1"))
    assert excinfo.value.details[0]["field"] == "fromAccountId"

    tx = service.create_transaction(
        "usr_a",
        TransactionCreate(type="transfer", date="2024-05-01", amount=10, fromAccountId="acc_1", toAccountId="acc_2"),
    )
    with pytest.raises(ValidationFailed):
        service.update_transaction("usr_a", tx["transactionId"], TransactionUpdate(toAccountId=""))


def test_account_requirement_is_configurable() -> None:
    relaxed = make_service()
    assert relaxed.create_transaction("usr_a", TransactionCreate(type="expense", date="2024-05-01", amount=3))["accountId"] == ""

    strict = make_service(require_transaction_account=True)
    with pytest.raises(ValidationFailed):
        strict.create_transaction("usr_a", TransactionCreate(type="expense", date="2024-05-01", amount=3))


def test_transaction_listing_filters_and_pages() -> None:
    service = make_service()
    for day in ("2024-05-01", "2024-05-03", "2024-05-02", "2024-06-01"):
        service.create_transaction("usr_a", TransactionCreate(type="expense", date=day, amount=1, tags=["a", "b"]))
    service.create_transaction("usr_a", TransactionCreate(type="income", date="2024-05-05", amount=9))
    service.create_transaction("usr_b", TransactionCreate(type="expense", date="2024-05-04", amount=1))

    page, total = service.list_transactions("usr_a", transaction_type="expense", start_date="2024-05-01", end_date="2024-05-31", limit=2)
    assert total == 3
    assert [t["date"] for t in page] == ["2024-05-03", "2024-05-02"]
    assert page[0]["tags"] == "a,b"

    page, total = service.list_transactions("usr_a", limit=2, offset=4)
    assert total == 5
    assert len(page) == 1


def test_budget_uniqueness_per_month_and_category() -> None:
    service = make_service()
    first = service.create_budget("usr_a", BudgetCreate(month="2024-05", categoryId="cat_1", limitAmount=100))
    service.create_budget("usr_b", BudgetCreate(month="2024-05", categoryId="cat_1", limitAmount=100))
    second = service.create_budget("usr_a", BudgetCreate(month="2024-06", categoryId="cat_1", limitAmount=100))

    with pytest.raises(Conflict):
        service.create_budget("usr_a", BudgetCreate(month="2024-05", categoryId="cat_1", limitAmount=50))
    with pytest.raises(Conflict):
        service.update_budget("usr_a", second["budgetId"], BudgetUpdate(month="2024-05"))

    assert service.update_budget("usr_a", first["budgetId"], BudgetUpdate(limitAmount=120))["limitAmount"] == 120
    assert [b["budgetId"] for b in service.list_budgets("usr_a", "2024-06")] == [second["budgetId"]]


def test_owner_field_is_not_patchable() -> None:
    service = make_service()
    budget = service.create_budget("usr_a", BudgetCreate(month="2024-05", categoryId="cat_1", limitAmount=1))
    updated = service._update(EntityKind.budgets, budget["budgetId"], {"userId": "usr_b", "limitAmount": 2})
    assert updated["userId"] == "usr_a"


def test_dashboard_uses_only_callers_transactions() -> None:
    service = make_service()
    service.create_transaction("usr_a", TransactionCreate(type="income", date="2024-05-02", amount=500))
    service.create_transaction("usr_b", TransactionCreate(type="income", date="2024-05-02", amount=70))

    stats = service.dashboard("usr_a", "2024-05", today=date(2024, 5, 10))
    assert stats.stats.income.amount == 500
    assert stats.stats.totalBalance.amount == 500

    with pytest.raises(ValidationFailed):
        service.dashboard("usr_a", "2024-13")


def test_backend_failures_propagate_and_storage_reports_them() -> None:
    service = FinanceService(SheetRowRepository(BrokenGrid()), Settings())
    with pytest.raises(BackendUnavailable):
        service.list_accounts("usr_a")

    initialized, failed = service.initialize_storage()
    assert initialized == []
    assert failed == ["users", "accounts", "categories", "transactions", "budgets"]
    assert set(service.storage_status().values()) == {-1}


def test_storage_status_counts_rows() -> None:
    service = make_service()
    service.initialize_storage()
    service.create_account("usr_a", AccountCreate(name="Bank", type="bank"))
    status = service.storage_status()
    assert status["accounts"] == 1
    assert status["users"] == 0


def test_transactions_are_private_to_owner() -> None:
    service = make_service()
    tx = service.create_transaction("usr_a", TransactionCreate(type="expense", date="2024-05-01", amount=12))
    tx_id = tx["transactionId"]

    with pytest.raises(Forbidden):
        service.get_transaction("usr_b", tx_id)
    with pytest.raises(Forbidden):
        service.update_transaction("usr_b", tx_id, TransactionUpdate(amount=1))
    with pytest.raises(Forbidden):
        service.delete_transaction("usr_b", tx_id)
    with pytest.raises(NotFound):
        service.get_transaction("usr_a", "txn_missing")

    unchanged = service.get_transaction("usr_a", tx_id)
    assert unchanged["amount"] == "12"
    assert service.list_transactions("usr_b") == ([], 0)


def test_budgets_are_private_to_owner() -> None:
    service = make_service()
    budget = service.create_budget("usr_a", BudgetCreate(month="2024-05", categoryId="cat_1", limitAmount=100))
    budget_id = budget["budgetId"]

    with pytest.raises(Forbidden):
        service.get_budget("usr_b", budget_id)
    with pytest.raises(Forbidden):
        service.update_budget("usr_b", budget_id, BudgetUpdate(limitAmount=1))
    with pytest.raises(Forbidden):
        service.delete_budget("usr_b", budget_id)

    assert service.get_budget("usr_a", budget_id)["limitAmount"] == "100"
    assert service.list_budgets("usr_b") == []
