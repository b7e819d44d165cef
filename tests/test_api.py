from config import get_settings
from conftest import PASSWORD, auth_headers, signup


def _expense(client, headers, **overrides):
    body = {
        "amount": 35,
        "category": "Travel",
        "paymentMethod": "Credit Card",
        "description": "Taxi",
        "tags": ["trip"],
    }
    body.update(overrides)
    return client.post("/expenses", json=body, headers=headers)


def test_health(client) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "OK"
    assert response.json()["environment"] == "development"


def test_unknown_route(client) -> None:
    response = client.get("/nope")

    assert response.status_code == 404
    assert response.json() == {"success": False, "message": "Route not found"}


def test_signup_login_and_me(client) -> None:
    data = signup(client)
    assert set(data) == {"user", "accessToken", "refreshToken", "tokenType"}
    assert "password" not in data["user"]
    assert "passwordHash" not in data["user"]

    login = client.post(
        "/auth/login", json={"email": "alice@example.com", "password": PASSWORD}
    )
    assert login.status_code == 200
    assert login.json()["message"] == "Login successful"

    me = client.get("/auth/me", headers=auth_headers(login.json()["data"]))
    assert me.json()["data"]["user"]["username"] == "alice"


def test_signup_reports_all_validation_errors(client) -> None:
    response = client.post(
        "/auth/signup", json={"username": "a", "email": "bad", "password": "weak"}
    )

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Validation failed"
    assert {err["field"] for err in body["errors"]} == {"username", "email", "password"}


def test_duplicate_signup(client) -> None:
    signup(client)

    response = client.post(
        "/auth/signup",
        json={"username": "alice2", "email": "alice@example.com", "password": PASSWORD},
    )

    assert response.status_code == 400
    assert response.json()["message"] == "Email already exists"


def test_login_failures_look_the_same(client) -> None:
    signup(client)

    unknown = client.post(
        "/auth/login", json={"email": "who@example.com", "password": PASSWORD}
    )
    wrong = client.post(
        "/auth/login", json={"email": "alice@example.com", "password": "Wrong1234"}
    )

    assert unknown.status_code == wrong.status_code == 401
    assert unknown.json() == wrong.json()


def test_protected_routes_need_a_valid_token(client) -> None:
    assert client.get("/expenses").status_code == 401
    response = client.get("/expenses", headers={"Authorization": "Bearer garbage"})
    assert response.status_code == 401
    assert response.json()["success"] is False


def test_refresh(client) -> None:
    tokens = signup(client)

    response = client.post("/auth/refresh", json={"refreshToken": tokens["refreshToken"]})
    assert response.status_code == 200
    assert response.json()["data"]["tokenType"] == "Bearer"

    misuse = client.post("/auth/refresh", json={"refreshToken": tokens["accessToken"]})
    assert misuse.status_code == 401


def test_change_password(client) -> None:
    headers = auth_headers(signup(client))

    wrong = client.put(
        "/auth/change-password",
        json={"currentPassword": "Nope12345", "newPassword": "Fresh1234"},
        headers=headers,
    )
    assert wrong.status_code == 400

    ok = client.put(
        "/auth/change-password",
        json={"currentPassword": PASSWORD, "newPassword": "Fresh1234"},
        headers=headers,
    )
    assert ok.status_code == 200
    login = client.post(
        "/auth/login", json={"email": "alice@example.com", "password": "Fresh1234"}
    )
    assert login.status_code == 200


def test_expense_lifecycle(client) -> None:
    headers = auth_headers(signup(client))

    created = _expense(client, headers)
    assert created.status_code == 201
    expense = created.json()["data"]["expense"]
    assert expense["amount"] == 35.0
    assert expense["tags"] == ["trip"]
    assert "budgetAlerts" not in created.json()

    listed = client.get("/expenses", headers=headers).json()["data"]
    assert listed["pagination"]["totalItems"] == 1

    updated = client.put(
        f"/expenses/{expense['id']}", json={"description": "Airport taxi"}, headers=headers
    )
    assert updated.json()["data"]["expense"]["description"] == "Airport taxi"

    deleted = client.delete(f"/expenses/{expense['id']}", headers=headers)
    assert deleted.status_code == 200
    assert client.get(f"/expenses/{expense['id']}", headers=headers).status_code == 404


def test_expense_rejects_bad_input(client) -> None:
    headers = auth_headers(signup(client))

    assert _expense(client, headers, amount=0).status_code == 400
    assert _expense(client, headers, amount=1000000).status_code == 400
    created = _expense(client, headers).json()["data"]["expense"]
    owner_change = client.put(
        f"/expenses/{created['id']}", json={"userId": 42}, headers=headers
    )
    assert owner_change.status_code == 400

    cleared = client.put(
        f"/expenses/{created['id']}", json={"amount": None}, headers=headers
    )
    assert cleared.status_code == 400
    assert cleared.json()["errors"][0]["field"] == "amount"
    unchanged = client.get(f"/expenses/{created['id']}", headers=headers)
    assert unchanged.json()["data"]["expense"]["amount"] == 35.0


def test_other_users_records_are_invisible(client) -> None:
    alice = auth_headers(signup(client))
    bob = auth_headers(signup(client, username="bob", email="bob@example.com"))
    expense = _expense(client, alice).json()["data"]["expense"]

    assert client.get(f"/expenses/{expense['id']}", headers=bob).status_code == 404
    assert client.delete(f"/expenses/{expense['id']}", headers=bob).status_code == 404
    listed = client.get("/expenses", headers=bob).json()["data"]
    assert listed["expenses"] == []


def test_budget_alerts_on_expense_create(client) -> None:
    headers = auth_headers(signup(client))
    budget = client.post(
        "/budgets", json={"category": "Travel", "amountLimit": 100}, headers=headers
    )
    assert budget.status_code == 201

    _expense(client, headers, amount=50)
    second = _expense(client, headers, amount=35)
    assert second.json()["budgetAlerts"][0]["percentageUsed"] == 85.0

    third = _expense(client, headers, amount=20)
    assert third.json()["budgetAlerts"][0]["exceededBy"] == 5.0

    status = client.get("/budgets/status", headers=headers).json()["data"]
    [row] = status["budgetStatus"]
    assert row["remaining"] == -5.0
    assert row["isOverBudget"] is True

    alerts = client.get("/budgets/alerts", headers=headers).json()["data"]
    assert alerts["alertCount"] == 1


def test_duplicate_budget_and_copy_previous(client) -> None:
    headers = auth_headers(signup(client))
    body = {"category": "Travel", "amountLimit": 100}
    client.post("/budgets", json=body, headers=headers)

    duplicate = client.post("/budgets", json=body, headers=headers)
    assert duplicate.status_code == 400

    missing = client.post(
        "/budgets/copy-previous", json={"category": "Shopping"}, headers=headers
    )
    assert missing.status_code == 404


def test_search_requires_two_characters(client) -> None:
    headers = auth_headers(signup(client))

    response = client.get("/expenses/search", params={"q": "a"}, headers=headers)

    assert response.status_code == 400
    assert response.json()["message"] == "Search query must be at least 2 characters long"


def test_search_echoes_query(client) -> None:
    headers = auth_headers(signup(client))
    _expense(client, headers)

    data = client.get("/expenses/search", params={"q": "taxi"}, headers=headers).json()
    assert data["data"]["query"] == "taxi"
    assert len(data["data"]["expenses"]) == 1


def test_paging_parameters_are_validated(client) -> None:
    headers = auth_headers(signup(client))

    assert client.get("/expenses?limit=0", headers=headers).status_code == 400
    assert client.get("/expenses?page=abc", headers=headers).status_code == 400


def test_csv_export(client) -> None:
    headers = auth_headers(signup(client))

    empty = client.get("/export/expenses/csv", headers=headers)
    assert empty.status_code == 404
    assert empty.json()["message"] == "No expenses found for the specified criteria"

    _expense(client, headers)
    response = client.get("/export/expenses/csv", headers=headers)
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert "attachment" in response.headers["content-disposition"]
    lines = response.text.splitlines()
    assert lines[0] == "Date,Category,Amount,Payment Method,Description,Tags,Created At"
    assert len(lines) == 2
    assert not list(get_settings().export_dir.glob("*.csv"))


def test_json_exports(client) -> None:
    headers = auth_headers(signup(client))

    complete = client.get("/export/complete", headers=headers)
    assert complete.status_code == 200
    assert complete.json()["exportInfo"]["summary"]["expenseCount"] == 0

    _expense(client, headers)
    response = client.get("/export/expenses/json", headers=headers)
    assert response.status_code == 200
    assert "attachment" in response.headers["content-disposition"]
    assert response.json()["exportInfo"]["totalRecords"] == 1


def test_summary_routes(client) -> None:
    headers = auth_headers(signup(client))
    _expense(client, headers)

    dashboard = client.get("/summary/dashboard", headers=headers).json()["data"]
    assert dashboard["currentMonth"]["count"] == 1

    trends = client.get("/summary/trends", headers=headers).json()["data"]
    assert len(trends["trends"]) == 12

    for path in ("/summary/monthly", "/summary/category", "/summary/payment-methods"):
        assert client.get(path, headers=headers).status_code == 200


def test_summary_rejects_out_of_range_years(client) -> None:
    headers = auth_headers(signup(client))

    for url in (
        "/summary/monthly?year=99999&month=1",
        "/summary/monthly?year=0&month=1",
        "/summary/trends?period=year&year=99999",
    ):
        response = client.get(url, headers=headers)
        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["errors"][0]["field"] == "year"
