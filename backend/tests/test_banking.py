from decimal import Decimal

from fastapi.testclient import TestClient


def _setup(client: TestClient):
    bank = client.post("/api/v1/banking/accounts", json={"account_name": "Main Checking", "bank_name": "First Bank"}).json()
    client.post("/api/v1/accounting/accounts", json={"account_name": "Consulting Income", "account_type": "income"})
    client.post("/api/v1/accounting/accounts", json={"account_name": "Office Rent", "account_type": "expense"})
    return bank


def _transaction(client: TestClient, bank_id: int, amount="500.00", transaction_type="credit", **extra):
    payload = {
        "bank_account_id": bank_id,
        "transaction_date": "2024-07-10",
        "description": "Client payment",
        "amount": amount,
        "transaction_type": transaction_type,
    }
    payload.update(extra)
    response = client.post("/api/v1/banking/transactions", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def _balance(client: TestClient, name: str) -> Decimal:
    accounts = client.get("/api/v1/accounting/accounts").json()
    return Decimal(next(a for a in accounts if a["account_name"] == name)["current_balance"])


def test_bank_account_gets_an_asset_ledger_account(client: TestClient) -> None:
    bank = _setup(client)
    ledger = client.get(f"/api/v1/accounting/accounts/{bank['chart_account_id']}").json()
    assert ledger["account_name"] == "Main Checking"
    assert ledger["account_type"] == "asset"
    assert ledger["account_subtype"] == "bank"


def test_category_and_status_move_together(client: TestClient) -> None:
    bank = _setup(client)
    txn = _transaction(client, bank["id"])
    assert txn["status"] == "uncategorized"
    assert txn["category"] is None

    categorized = client.post(f"/api/v1/banking/transactions/{txn['id']}/categorize", json={"category": "Consulting Income"}).json()
    assert categorized["status"] == "categorized"
    assert categorized["category"] == "Consulting Income"
    assert categorized["is_reviewed"] is True

    cleared = client.post(f"/api/v1/banking/transactions/{txn['id']}/uncategorize").json()
    assert cleared["status"] == "uncategorized"
    assert cleared["category"] is None

    created_categorized = _transaction(client, bank["id"], category="Office Rent")
    assert created_categorized["status"] == "categorized"


def test_posting_credit_debits_the_bank(client: TestClient) -> None:
    bank = _setup(client)
    txn = _transaction(client, bank["id"], category="Consulting Income")

    posted = client.post(f"/api/v1/banking/transactions/{txn['id']}/post")
    assert posted.status_code == 200
    body = posted.json()
    assert body["status"] == "posted"
    assert body["journal_entry_id"] is not None

    entry = client.get(f"/api/v1/accounting/journal-entries/{body['journal_entry_id']}").json()
    assert entry["status"] == "posted"
    assert entry["reference_type"] == "bank_transaction"
    lines = {line["account_name"]: line for line in entry["lines"]}
    assert Decimal(lines["Main Checking"]["debit_amount"]) == Decimal("500")
    assert Decimal(lines["Consulting Income"]["credit_amount"]) == Decimal("500")

    assert _balance(client, "Main Checking") == Decimal("500")
    assert _balance(client, "Consulting Income") == Decimal("-500")


def test_posting_debit_credits_the_bank(client: TestClient) -> None:
    bank = _setup(client)
    txn = _transaction(client, bank["id"], amount="120.00", transaction_type="debit", category="Office Rent")

    assert client.post(f"/api/v1/banking/transactions/{txn['id']}/post").status_code == 200
    assert _balance(client, "Main Checking") == Decimal("-120")
    assert _balance(client, "Office Rent") == Decimal("120")


def test_posting_requires_a_known_category(client: TestClient) -> None:
    bank = _setup(client)
    uncategorized = _transaction(client, bank["id"])
    assert client.post(f"/api/v1/banking/transactions/{uncategorized['id']}/post").status_code == 422

    unknown = _transaction(client, bank["id"], category="Mystery")
    response = client.post(f"/api/v1/banking/transactions/{unknown['id']}/post")
    assert response.status_code == 422
    assert "Mystery" in response.json()["detail"]
    assert client.get("/api/v1/accounting/journal-entries").json() == []


def test_posted_transaction_is_immutable(client: TestClient) -> None:
    bank = _setup(client)
    txn = _transaction(client, bank["id"], category="Consulting Income")
    client.post(f"/api/v1/banking/transactions/{txn['id']}/post")

    assert client.post(f"/api/v1/banking/transactions/{txn['id']}/categorize", json={"category": "Office Rent"}).status_code == 409
    assert client.post(f"/api/v1/banking/transactions/{txn['id']}/uncategorize").status_code == 409
    assert client.put(f"/api/v1/banking/transactions/{txn['id']}", json={"amount": "1.00"}).status_code == 409
    assert client.delete(f"/api/v1/banking/transactions/{txn['id']}").status_code == 409
    assert client.post(f"/api/v1/banking/transactions/{txn['id']}/post").status_code == 409

    assert _balance(client, "Main Checking") == Decimal("500")


def test_bulk_operations_report_per_item_failures(client: TestClient) -> None:
    bank = _setup(client)
    first = _transaction(client, bank["id"])
    second = _transaction(client, bank["id"], amount="80.00")

    categorized = client.post("/api/v1/banking/transactions/bulk-categorize", json={
        "transaction_ids": [first["id"], second["id"], 9999],
        "category": "Consulting Income",
    }).json()
    assert categorized["success_count"] == 2
    assert categorized["error_count"] == 1
    assert categorized["errors"][0]["transaction_id"] == 9999

    posted = client.post("/api/v1/banking/transactions/bulk-post", json={
        "transaction_ids": [first["id"], second["id"]],
    }).json()
    assert posted == {"success_count": 2, "error_count": 0, "errors": []}
    assert _balance(client, "Main Checking") == Decimal("580")

    again = client.post("/api/v1/banking/transactions/bulk-post", json={"transaction_ids": [first["id"]]}).json()
    assert again["error_count"] == 1
    assert _balance(client, "Main Checking") == Decimal("580")


def test_transaction_amount_must_be_positive(client: TestClient) -> None:
    bank = _setup(client)
    response = client.post("/api/v1/banking/transactions", json={
        "bank_account_id": bank["id"],
        "transaction_date": "2024-07-10",
        "amount": "-5",
        "transaction_type": "debit",
    })
    assert response.status_code == 422
