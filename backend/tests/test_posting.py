from datetime import date, timedelta

from fastapi.testclient import TestClient

from docledger.models import Document


def _processed_document(db, extracted_data, owner_id="user-1") -> int:
    document = Document(
        owner_id=owner_id,
        file_name="scan.pdf",
        file_size=100,
        file_type="application/pdf",
        storage_path=f"{owner_id}/scan.pdf",
        status="completed",
        extracted_data=extracted_data,
    )
    db.add(document)
    db.commit()
    document_id = document.id
    db.close()
    return document_id


SALES_DOCUMENT = {
    "document_type": "invoice",
    "category": "revenue",
    "structured_data": {
        "customer_name": "Globex Corp",
        "invoice_number": "INV-9",
        "date": "2024-03-01",
        "total_amount": "1,500.00",
        "tax_amount": 150,
    },
}


def test_sales_document_creates_invoice_and_placeholder_customer(client: TestClient, db) -> None:
    document_id = _processed_document(db, SALES_DOCUMENT)

    response = client.post(f"/api/v1/documents/{document_id}/post", json={})
    assert response.status_code == 200
    result = response.json()
    assert result["reference_type"] == "invoice"
    assert result["number"] == "INV-9"

    invoice = client.get(f"/api/v1/sales/invoices/{result['reference_id']}").json()
    assert invoice["status"] == "draft"
    assert invoice["invoice_date"] == "2024-03-01"
    assert invoice["due_date"] == (date.today() + timedelta(days=30)).isoformat()
    assert float(invoice["total_amount"]) == 1500
    assert float(invoice["tax_amount"]) == 150
    assert float(invoice["subtotal"]) == 1350
    assert invoice["source_document_id"] == document_id
    assert invoice["notes"] == "Generated from document: scan.pdf"

    customers = client.get("/api/v1/sales/customers").json()
    assert len(customers) == 1
    customer = customers[0]
    assert customer["id"] == invoice["customer_id"]
    assert customer["name"] == "Globex Corp"
    assert customer["is_placeholder"] is True
    assert customer["email"] == "globexcorp@example.com"

    document = client.get(f"/api/v1/documents/{document_id}").json()
    assert document["extracted_data"]["posted_reference_type"] == "invoice"


def test_existing_customer_is_reused(client: TestClient, db) -> None:
    created = client.post("/api/v1/sales/customers", json={"name": "globex corp", "email": "ap@globex.com"})
    assert created.status_code == 201
    document_id = _processed_document(db, SALES_DOCUMENT)

    result = client.post(f"/api/v1/documents/{document_id}/post", json={"kind": "sales"}).json()

    invoice = client.get(f"/api/v1/sales/invoices/{result['reference_id']}").json()
    assert invoice["customer_id"] == created.json()["id"]
    assert len(client.get("/api/v1/sales/customers").json()) == 1


def test_reposting_is_rejected(client: TestClient, db) -> None:
    document_id = _processed_document(db, SALES_DOCUMENT)
    assert client.post(f"/api/v1/documents/{document_id}/post", json={}).status_code == 200

    again = client.post(f"/api/v1/documents/{document_id}/post", json={})
    assert again.status_code == 409
    assert len(client.get("/api/v1/sales/invoices").json()) == 1


def test_purchase_document_creates_posted_entry(client: TestClient, db) -> None:
    document_id = _processed_document(db, {
        "document_type": "purchase_order",
        "category": "inventory",
        "auto_filled_fields": {"supplier_name": "Initech Supplies"},
        "structured_data": {"total": "320.50", "date": "2024-04-02"},
    })

    result = client.post(f"/api/v1/documents/{document_id}/post", json={}).json()
    assert result["number"] == "PUR20240402001"

    entry = client.get(f"/api/v1/accounting/journal-entries/{result['reference_id']}").json()
    assert entry["status"] == "posted"
    assert entry["description"] == "Purchase: Initech Supplies - inventory"
    assert float(entry["total_debit"]) == float(entry["total_credit"]) == 320.5
    assert entry["reference_type"] == "purchase"


def test_expense_without_total_is_rejected(client: TestClient, db) -> None:
    document_id = _processed_document(db, {
        "document_type": "receipt",
        "category": "expense",
        "structured_data": {"merchant_name": "Cafe"},
    })

    response = client.post(f"/api/v1/documents/{document_id}/post", json={})
    assert response.status_code == 422
    assert client.get("/api/v1/accounting/journal-entries").json() == []
    assert "posted" not in client.get(f"/api/v1/documents/{document_id}").json()["extracted_data"]


def test_unclassifiable_document_needs_an_explicit_kind(client: TestClient, db) -> None:
    document_id = _processed_document(db, {
        "document_type": "contract",
        "category": "legal",
        "structured_data": {"total_amount": 80, "vendor_name": "Law LLP", "date": "2024-05-05"},
    })

    assert client.post(f"/api/v1/documents/{document_id}/post", json={}).status_code == 422
    explicit = client.post(f"/api/v1/documents/{document_id}/post", json={"kind": "expense"})
    assert explicit.status_code == 200
    assert explicit.json()["number"] == "EXP20240505001"


def test_unprocessed_document_cannot_be_posted(client: TestClient, db) -> None:
    document_id = _processed_document(db, {})
    assert client.post(f"/api/v1/documents/{document_id}/post", json={"kind": "expense"}).status_code == 422
    assert client.post("/api/v1/documents/9999/post", json={}).status_code == 404
