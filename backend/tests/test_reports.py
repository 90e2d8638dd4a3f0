from decimal import Decimal
from io import BytesIO

from fastapi.testclient import TestClient
from openpyxl import load_workbook

from docledger.services.report_service import trial_balance_line


def _account(client: TestClient, name: str, account_type: str, opening: str = "0") -> int:
    return client.post(
        "/api/v1/accounting/accounts",
        json={"account_name": name, "account_type": account_type, "opening_balance": opening},
    ).json()["id"]


def _post(client: TestClient, debit_account: int, credit_account: int, amount: str, description="Entry") -> None:
    entry = client.post("/api/v1/accounting/journal-entries", json={
        "entry_date": "2024-06-01",
        "description": description,
        "lines": [
            {"account_id": debit_account, "debit_amount": amount},
            {"account_id": credit_account, "credit_amount": amount},
        ],
    }).json()
    assert client.post(f"/api/v1/accounting/journal-entries/{entry['id']}/post").status_code == 200


def test_trial_balance_sign_rule() -> None:
    assert trial_balance_line("asset", Decimal("100")) == {
        "debit_balance": Decimal("100"), "credit_balance": Decimal("0"), "is_contra": False,
    }
    assert trial_balance_line("asset", Decimal("-100")) == {
        "debit_balance": Decimal("0"), "credit_balance": Decimal("100"), "is_contra": True,
    }
    assert trial_balance_line("income", Decimal("-50")) == {
        "debit_balance": Decimal("50"), "credit_balance": Decimal("0"), "is_contra": True,
    }
    assert trial_balance_line("liability", Decimal("200"))["credit_balance"] == Decimal("200")
    assert trial_balance_line("expense", Decimal("30"))["debit_balance"] == Decimal("30")
    assert trial_balance_line("equity", Decimal("0")) == {
        "debit_balance": Decimal("0"), "credit_balance": Decimal("0"), "is_contra": False,
    }


def test_posted_entries_keep_the_trial_balance_balanced(client: TestClient) -> None:
    cash = _account(client, "Cash", "asset")
    sales = _account(client, "Sales", "income")
    rent = _account(client, "Rent", "expense")
    _post(client, cash, sales, "250.00")
    _post(client, rent, cash, "100.00")

    report = client.get("/api/v1/reports/trial-balance").json()
    assert report["is_balanced"] is True
    assert report["total_debit"] == report["total_credit"] == 250.0
    rows = {row["account_name"]: row for row in report["accounts"]}
    assert rows["Cash"]["debit_balance"] == 150.0
    assert rows["Sales"]["credit_balance"] == 250.0
    assert rows["Rent"]["debit_balance"] == 100.0
    assert not any(row["is_contra"] for row in report["accounts"])


def test_contra_balance_lands_on_the_other_side(client: TestClient) -> None:
    cash = _account(client, "Cash", "asset")
    capital = _account(client, "Capital", "equity")
    _post(client, capital, cash, "75.00", description="Overdrawn")

    rows = {row["account_name"]: row for row in client.get("/api/v1/reports/trial-balance").json()["accounts"]}
    assert rows["Cash"]["credit_balance"] == 75.0
    assert rows["Cash"]["is_contra"] is True
    assert rows["Capital"]["debit_balance"] == 75.0
    assert rows["Capital"]["is_contra"] is True


def test_unmatched_opening_balance_shows_as_difference(client: TestClient) -> None:
    _account(client, "Bank", "asset", opening="500")

    report = client.get("/api/v1/reports/trial-balance").json()
    assert report["is_balanced"] is False
    assert report["difference"] == 500.0


def test_profit_and_loss_and_balance_sheet(client: TestClient) -> None:
    cash = _account(client, "Cash", "asset")
    sales = _account(client, "Sales", "income")
    rent = _account(client, "Rent", "expense")
    _post(client, cash, sales, "900.00")
    _post(client, rent, cash, "300.00")

    pnl = client.get("/api/v1/reports/profit-loss").json()
    assert pnl["total_income"] == 900.0
    assert pnl["total_expenses"] == 300.0
    assert pnl["net_profit"] == 600.0
    assert pnl["has_contra_accounts"] is False

    sheet = client.get("/api/v1/reports/balance-sheet").json()
    assert sheet["total_assets"] == 600.0
    assert sheet["current_period_earnings"] == 600.0
    assert sheet["total_liabilities_and_equity"] == 600.0
    assert sheet["difference"] == 0.0
    assert sheet["is_balanced"] is True


def test_day_book_report_totals(client: TestClient) -> None:
    cash = _account(client, "Cash", "asset")
    sales = _account(client, "Sales", "income")
    _post(client, cash, sales, "40.00")
    _post(client, cash, sales, "60.00")

    report = client.get("/api/v1/reports/day-book", params={"start_date": "2024-06-01", "end_date": "2024-06-30"}).json()
    assert len(report["entries"]) == 4
    assert report["total_debit"] == report["total_credit"] == 100.0


def test_trial_balance_excel_export(client: TestClient) -> None:
    cash = _account(client, "Cash", "asset")
    sales = _account(client, "Sales", "income")
    _post(client, cash, sales, "125.00")

    response = client.get("/api/v1/reports/trial-balance/excel")
    assert response.status_code == 200
    assert "spreadsheetml" in response.headers["content-type"]

    sheet = load_workbook(BytesIO(response.content)).active
    assert sheet["A1"].value == "Trial Balance"
    assert [sheet.cell(row=4, column=c).value for c in range(1, 6)] == ["Account", "Type", "Balance", "Debit", "Credit"]
    names = [sheet.cell(row=r, column=1).value for r in range(5, 8)]
    assert names == ["Cash", "Sales", "TOTAL"]
    assert sheet.cell(row=7, column=4).value == 125.0


def test_rounding_the_ledger_accepts_keeps_the_report_balanced(client: TestClient) -> None:
    cash = _account(client, "Cash", "asset")
    sales = _account(client, "Sales", "income")
    entry = client.post("/api/v1/accounting/journal-entries", json={
        "entry_date": "2024-06-01",
        "description": "Rounded sale",
        "lines": [
            {"account_id": cash, "debit_amount": "100.00"},
            {"account_id": sales, "credit_amount": "99.99"},
        ],
    })
    assert entry.status_code == 201
    assert client.post(f"/api/v1/accounting/journal-entries/{entry.json()['id']}/post").status_code == 200

    report = client.get("/api/v1/reports/trial-balance").json()
    assert report["difference"] == 0.01
    assert report["is_balanced"] is True
