from fastapi.testclient import TestClient

from budget_tracker.config import Settings
from budget_tracker.grid import InMemoryGrid
from budget_tracker.handlers import FinanceService
from budget_tracker.main import app, create_app
from budget_tracker.persistence import SheetRowRepository

client = TestClient(app)


def register(email: str, name: str = "Test User") -> dict[str, str]:
    res = client.post("/api/v1/auth/register", json={"name": name, "email": email, "password": "Secret123!"})
    assert res.status_code == 201
    return {"Authorization": f"Bearer {res.json()['token']}"}


def test_health_reports_backend() -> None:
    res = client.get("/api/v1/health")
    assert res.status_code == 200
    assert res.json()["status"] == "ok"
    assert res.json()["storageBackend"]


def test_register_create_account_and_transaction() -> None:
    headers = register("tester@example.com")

    acc_res = client.post(
        "/api/v1/accounts",
        json={"name": "Main", "type": "bank", "currency": "khr", "startingBalance": 1000},
        headers=headers,
    )
    assert acc_res.status_code == 201
    account = acc_res.json()
    assert account["currency"] == "KHR"
    assert account["startingBalance"] == 1000

    cat_res = client.post("/api/v1/categories", json={"name": "Food", "type": "expense"}, headers=headers)
    assert cat_res.status_code == 201
    category_id = cat_res.json()["categoryId"]

    tx_res = client.post(
        "/api/v1/transactions",
        json={
            "type": "expense",
            "date": "2026-02-12",
            "amount": 100,
            "accountId": account["accountId"],
            "categoryId": category_id,
            "note": "test",
            "tags": ["groceries"],
        },
        headers=headers,
    )
    assert tx_res.status_code == 201
    transaction = tx_res.json()
    assert transaction["currency"] == "USD"
    assert transaction["tags"] == ["groceries"]

    list_acc = client.get("/api/v1/accounts", headers=headers)
    assert list_acc.status_code == 200
    assert len(list_acc.json()) == 1

    list_tx = client.get("/api/v1/transactions", headers=headers)
    assert list_tx.status_code == 200
    assert list_tx.json()["pagination"] == {"total": 1, "limit": 50, "offset": 0}
    assert list_tx.json()["transactions"][0]["amount"] == 100

    upd = client.put(f"/api/v1/transactions/{transaction['transactionId']}", json={"amount": 80.5}, headers=headers)
    assert upd.status_code == 200
    assert upd.json()["amount"] == 80.5
    assert upd.json()["note"] == "test"
    assert upd.json()["updatedAt"] > transaction["updatedAt"]

    dash = client.get("/api/v1/dashboard/stats", params={"month": "2026-02"}, headers=headers)
    assert dash.status_code == 200
    body = dash.json()
    assert body["stats"]["expense"]["amount"] == 80.5
    assert body["stats"]["income"]["change"] is None
    assert body["recentTransactions"][0]["categoryName"] == "Food"
    assert body["weeklySpending"] == [0, 80.5, 0, 0]
    assert body["accounts"] == []

    deleted = client.delete(f"/api/v1/transactions/{transaction['transactionId']}", headers=headers)
    assert deleted.status_code == 200
    assert deleted.json() == {"deleted": True}
    missing = client.get(f"/api/v1/transactions/{transaction['transactionId']}", headers=headers)
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "NOT_FOUND"


def test_requests_without_session_are_unauthorized() -> None:
    anonymous = TestClient(app)
    res = anonymous.get("/api/v1/accounts")
    assert res.status_code == 401
    assert res.json()["error"]["code"] == "UNAUTHORIZED"

    res = anonymous.get("/api/v1/accounts", headers={"Authorization": "Bearer not-a-token"})
    assert res.status_code == 401


def test_login_cookie_and_logout() -> None:
    register("cookie@example.com")
    browser = TestClient(app)

    bad = browser.post("/api/v1/auth/login", json={"email": "cookie@example.com", "password": "wrong-one"})
    assert bad.status_code == 401

    res = browser.post("/api/v1/auth/login", json={"email": "COOKIE@example.com", "password": "Secret123!", "rememberMe": True})
    assert res.status_code == 200
    assert "Max-Age=2592000" in res.headers["set-cookie"]

    me = browser.get("/api/v1/users/me")
    assert me.status_code == 200
    assert me.json()["email"] == "cookie@example.com"
    assert "passwordHash" not in me.json()

    prefs = browser.put("/api/v1/users/me", json={"language": "km", "currency": "khr"})
    assert prefs.status_code == 200
    assert prefs.json()["language"] == "km"
    assert prefs.json()["currency"] == "KHR"

    assert browser.post("/api/v1/auth/logout").status_code == 200
    assert browser.get("/api/v1/users/me").status_code == 401


def test_duplicate_registration_is_conflict() -> None:
    register("twice@example.com")
    res = client.post("/api/v1/auth/register", json={"name": "Again", "email": "twice@example.com", "password": "Secret123!"})
    assert res.status_code == 409
    assert res.json()["error"]["code"] == "CONFLICT"


def test_records_of_other_users_are_forbidden() -> None:
    owner = register("owner@example.com")
    intruder = register("intruder@example.com")

    account_id = client.post("/api/v1/accounts", json={"name": "Savings", "type": "bank"}, headers=owner).json()["accountId"]

    res = client.get(f"/api/v1/accounts/{account_id}", headers=intruder)
    assert res.status_code == 403
    assert res.json()["error"]["code"] == "FORBIDDEN"
    assert client.delete(f"/api/v1/accounts/{account_id}", headers=intruder).status_code == 403
    assert client.get("/api/v1/accounts", headers=intruder).json() == []


def test_budgets_crud_and_conflict() -> None:
    headers = register("budget@example.com")
    payload = {"month": "2026-03", "categoryId": "cat_food", "limitAmount": 300}

    created = client.post("/api/v1/budgets", json=payload, headers=headers)
    assert created.status_code == 201
    budget_id = created.json()["budgetId"]

    dup = client.post("/api/v1/budgets", json=payload, headers=headers)
    assert dup.status_code == 409

    upd = client.put(f"/api/v1/budgets/{budget_id}", json={"limitAmount": 250}, headers=headers)
    assert upd.json()["limitAmount"] == 250
    assert upd.json()["month"] == "2026-03"

    listed = client.get("/api/v1/budgets", params={"month": "2026-03"}, headers=headers)
    assert [b["budgetId"] for b in listed.json()] == [budget_id]
    assert client.delete(f"/api/v1/budgets/{budget_id}", headers=headers).status_code == 200
    assert client.delete(f"/api/v1/budgets/{budget_id}", headers=headers).status_code == 404


def test_category_parent_options_and_nesting() -> None:
    headers = register("categories@example.com")
    food = client.post("/api/v1/categories", json={"name": "Food", "type": "expense"}, headers=headers).json()
    cafe = client.post(
        "/api/v1/categories",
        json={"name": "Cafe", "type": "expense", "parentCategoryId": food["categoryId"]},
        headers=headers,
    ).json()

    options = client.get("/api/v1/categories/parent-options", params={"type": "expense"}, headers=headers)
    assert options.status_code == 200
    assert [o["value"] for o in options.json()] == [food["categoryId"]]

    nested = client.get("/api/v1/categories", params={"nested": "true", "type": "expense"}, headers=headers).json()
    assert nested[0]["subcategories"][0]["categoryId"] == cafe["categoryId"]


def test_startup_initializes_storage_and_seeds_categories() -> None:
    grid = InMemoryGrid()
    config = Settings(storage_backend="memory", init_storage_on_startup=True, seed_default_categories=True)
    seeded_app = create_app(FinanceService(SheetRowRepository(grid), config), config)

    with TestClient(seeded_app) as seeded:
        assert grid.read_header("budgets")[0] == "budgetId"
        res = seeded.post("/api/v1/auth/register", json={"name": "New", "email": "new@example.com", "password": "Secret123!"})
        headers = {"Authorization": f"Bearer {res.json()['token']}"}

        categories = seeded.get("/api/v1/categories", headers=headers).json()
        assert len(categories) == 12
        assert {c["userId"] for c in categories} == {"global"}

        status = seeded.get("/api/v1/admin/storage", headers=headers).json()
        assert status["backend"] == "memory"
        assert status["sheets"]["categories"] == 12
        assert status["sheets"]["users"] == 1

        init = seeded.post("/api/v1/admin/storage/initialize", headers=headers).json()
        assert init == {"initialized": ["users", "accounts", "categories", "transactions", "budgets"], "failed": []}


def test_transactions_of_other_users_are_forbidden() -> None:
    owner = register("tx-owner@example.com")
    intruder = register("tx-intruder@example.com")

    created = client.post("/api/v1/transactions", json={"type": "income", "date": "2026-04-01", "amount": 42}, headers=owner)
    tx_id = created.json()["transactionId"]

    res = client.get(f"/api/v1/transactions/{tx_id}", headers=intruder)
    assert res.status_code == 403
    assert res.json()["error"]["code"] == "FORBIDDEN"
    assert client.put(f"/api/v1/transactions/{tx_id}", json={"amount": 1}, headers=intruder).status_code == 403
    assert client.delete(f"/api/v1/transactions/{tx_id}", headers=intruder).status_code == 403
    assert client.get("/api/v1/transactions", headers=intruder).json()["pagination"]["total"] == 0

    still_there = client.get(f"/api/v1/transactions/{tx_id}", headers=owner)
    assert still_there.status_code == 200
    assert still_there.json()["amount"] == 42
