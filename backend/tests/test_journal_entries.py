from datetime import date
from decimal import Decimal
import threading

from fastapi.testclient import TestClient

from docledger.core.database import SessionLocal, commit_unit_of_work
from docledger.models import JournalEntry
from docledger.schemas import JournalEntryCreate, JournalEntryLineCreate
from docledger.services.accounting_service import JournalEntryService


def _account(client: TestClient, name: str, account_type: str, opening: str = "0") -> int:
    response = client.post(
        "/api/v1/accounting/accounts",
        json={"account_name": name, "account_type": account_type, "opening_balance": opening},
    )
    assert response.status_code == 201, response.text
    return response.json()["id"]


def _entry(client: TestClient, lines, entry_date="2024-01-15", description="Cash sale"):
    return client.post(
        "/api/v1/accounting/journal-entries",
        json={"entry_date": entry_date, "description": description, "lines": lines},
    )


def _cash_and_sales(client: TestClient):
    return _account(client, "Cash", "asset"), _account(client, "Sales", "income")


def test_draft_entry_does_not_touch_balances(client: TestClient) -> None:
    cash, sales = _cash_and_sales(client)
    response = _entry(client, [
        {"account_id": cash, "debit_amount": "100.00"},
        {"account_id": sales, "credit_amount": "100.00"},
    ])
    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "draft"
    assert body["entry_number"] == "JE20240115001"
    assert [line["line_order"] for line in body["lines"]] == [1, 2]
    assert body["lines"][0]["account_name"] == "Cash"

    assert Decimal(client.get(f"/api/v1/accounting/accounts/{cash}").json()["current_balance"]) == 0


def test_rounding_within_tolerance_is_accepted(client: TestClient) -> None:
    cash, sales = _cash_and_sales(client)
    response = _entry(client, [
        {"account_id": cash, "debit_amount": "100.00"},
        {"account_id": sales, "credit_amount": "99.991"},
    ])
    assert response.status_code == 201


def test_unbalanced_entry_is_rejected(client: TestClient) -> None:
    cash, sales = _cash_and_sales(client)
    response = _entry(client, [
        {"account_id": cash, "debit_amount": "100.00"},
        {"account_id": sales, "credit_amount": "99.98"},
    ])
    assert response.status_code == 400
    assert "not balanced" in response.json()["detail"]
    assert client.get("/api/v1/accounting/journal-entries").json() == []


def test_entry_validation_rules(client: TestClient) -> None:
    cash, sales = _cash_and_sales(client)

    no_description = _entry(client, [
        {"account_id": cash, "debit_amount": "10"},
        {"account_id": sales, "credit_amount": "10"},
    ], description="  ")
    assert no_description.status_code == 400
    assert no_description.json()["detail"] == "Description is required"

    one_line = _entry(client, [
        {"account_id": cash, "debit_amount": "10"},
        {"account_id": sales, "credit_amount": "0"},
    ])
    assert one_line.status_code == 400

    both_sides = _entry(client, [
        {"account_id": cash, "debit_amount": "10", "credit_amount": "10"},
        {"account_id": sales, "credit_amount": "0.01"},
        {"account_id": sales, "debit_amount": "0.01"},
    ])
    assert both_sides.status_code == 400

    unknown_account = _entry(client, [
        {"account_id": cash, "debit_amount": "10"},
        {"account_id": 9999, "credit_amount": "10"},
    ])
    assert unknown_account.status_code == 400

    negative = _entry(client, [
        {"account_id": cash, "debit_amount": "-10"},
        {"account_id": sales, "credit_amount": "-10"},
    ])
    assert negative.status_code == 422


def test_posting_updates_balances_and_day_book(client: TestClient) -> None:
    cash, sales = _cash_and_sales(client)
    entry = _entry(client, [
        {"account_id": cash, "debit_amount": "250.00", "description": "Till"},
        {"account_id": sales, "credit_amount": "250.00"},
    ]).json()

    posted = client.post(f"/api/v1/accounting/journal-entries/{entry['id']}/post")
    assert posted.status_code == 200
    assert posted.json()["status"] == "posted"
    assert posted.json()["posted_by"] == "user-1"

    assert Decimal(client.get(f"/api/v1/accounting/accounts/{cash}").json()["current_balance"]) == Decimal("250")
    assert Decimal(client.get(f"/api/v1/accounting/accounts/{sales}").json()["current_balance"]) == Decimal("-250")

    day_book = client.get("/api/v1/accounting/day-book").json()
    assert len(day_book) == 2
    assert {row["reference_number"] for row in day_book} == {entry["entry_number"]}
    descriptions = {row["account_name"]: row["description"] for row in day_book}
    assert descriptions == {"Cash": "Till", "Sales": "Cash sale"}

    # Outside the period
    assert client.get("/api/v1/accounting/day-book", params={"start_date": "2024-02-01"}).json() == []


def test_entry_cannot_be_posted_twice(client: TestClient) -> None:
    cash, sales = _cash_and_sales(client)
    entry = _entry(client, [
        {"account_id": cash, "debit_amount": "40"},
        {"account_id": sales, "credit_amount": "40"},
    ]).json()

    assert client.post(f"/api/v1/accounting/journal-entries/{entry['id']}/post").status_code == 200
    again = client.post(f"/api/v1/accounting/journal-entries/{entry['id']}/post")
    assert again.status_code == 409

    assert Decimal(client.get(f"/api/v1/accounting/accounts/{cash}").json()["current_balance"]) == Decimal("40")
    assert len(client.get("/api/v1/accounting/day-book").json()) == 2


def test_only_drafts_can_be_deleted(client: TestClient) -> None:
    cash, sales = _cash_and_sales(client)
    lines = [{"account_id": cash, "debit_amount": "5"}, {"account_id": sales, "credit_amount": "5"}]
    draft = _entry(client, lines).json()
    posted = _entry(client, lines).json()
    client.post(f"/api/v1/accounting/journal-entries/{posted['id']}/post")

    assert client.delete(f"/api/v1/accounting/journal-entries/{draft['id']}").status_code == 200
    assert client.get(f"/api/v1/accounting/journal-entries/{draft['id']}").status_code == 404
    assert client.delete(f"/api/v1/accounting/journal-entries/{posted['id']}").status_code == 409
    assert client.delete("/api/v1/accounting/journal-entries/9999").status_code == 404


def test_entry_numbers_are_sequential_per_day(client: TestClient) -> None:
    cash, sales = _cash_and_sales(client)
    lines = [{"account_id": cash, "debit_amount": "1"}, {"account_id": sales, "credit_amount": "1"}]

    numbers = [_entry(client, lines).json()["entry_number"] for _ in range(3)]
    numbers.append(_entry(client, lines, entry_date="2024-01-16").json()["entry_number"])

    assert numbers == ["JE20240115001", "JE20240115002", "JE20240115003", "JE20240116001"]


def test_taken_entry_number_is_skipped(client: TestClient, db) -> None:
    cash, sales = _cash_and_sales(client)
    db.add(JournalEntry(
        owner_id="someone-else",
        entry_number="JE20240115001",
        entry_date=date(2024, 1, 15),
        description="Imported",
        total_debit=Decimal("0"),
        total_credit=Decimal("0"),
        status="draft",
    ))
    db.commit()
    db.close()

    response = _entry(client, [
        {"account_id": cash, "debit_amount": "1"},
        {"account_id": sales, "credit_amount": "1"},
    ])
    assert response.status_code == 201
    assert response.json()["entry_number"] == "JE20240115002"


def test_counter_numbers_follow_prefix_and_date(db) -> None:
    service = JournalEntryService(db)
    assert service.next_entry_number("PUR", date(2024, 3, 1)) == "PUR20240301001"
    assert service.next_entry_number("PUR", date(2024, 3, 1)) == "PUR20240301002"
    assert service.next_entry_number("EXP", date(2024, 3, 1)) == "EXP20240301001"


def test_opening_balance_sets_running_balance(client: TestClient) -> None:
    bank = _account(client, "Bank", "asset", opening="1000")
    loan = _account(client, "Loan", "liability", opening="1000")

    assert Decimal(client.get(f"/api/v1/accounting/accounts/{bank}").json()["current_balance"]) == Decimal("1000")
    assert Decimal(client.get(f"/api/v1/accounting/accounts/{loan}").json()["current_balance"]) == Decimal("-1000")

    duplicate = client.post(
        "/api/v1/accounting/accounts",
        json={"account_name": "bank", "account_type": "asset"},
    )
    assert duplicate.status_code == 400


def test_concurrent_entries_get_distinct_sequential_numbers(client: TestClient) -> None:
    cash, sales = _cash_and_sales(client)
    entry_data = JournalEntryCreate(
        entry_date=date(2024, 1, 15),
        description="Counter sale",
        lines=[
            JournalEntryLineCreate(account_id=cash, debit_amount=Decimal("10")),
            JournalEntryLineCreate(account_id=sales, credit_amount=Decimal("10")),
        ],
    )
    # Both sessions have read before either writes
    both_validated = threading.Barrier(2)
    numbers = []
    errors = []

    def create_entry():
        session = SessionLocal()
        try:
            service = JournalEntryService(session)
            service.validate(entry_data, "user-1")
            both_validated.wait(timeout=10)
            entry = commit_unit_of_work(session, lambda: service.create("user-1", entry_data))
            numbers.append(entry.entry_number)
        except Exception as e:
            errors.append(e)
        finally:
            session.close()

    threads = [threading.Thread(target=create_entry) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert errors == []
    assert sorted(numbers) == ["JE20240115001", "JE20240115002"]
    assert len(client.get("/api/v1/accounting/journal-entries").json()) == 2
