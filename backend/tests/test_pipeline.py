import json

from fastapi.testclient import TestClient

EXTRACTED = {
    "vendor_name": "City Power & Light",
    "invoice_number": "CP-2024-0042",
    "date": "2024-01-15",
    "total_amount": 1200,
}
CATEGORIZED = {
    "document_type": "utility_bill",
    "category": "expense",
    "tags": ["utilities"],
    "auto_filled_fields": {"vendor_name": "City Power & Light"},
    "insights": {"summary": "Monthly electricity bill"},
    "confidence": 0.92,
}


def _script(fake_inference) -> None:
    fake_inference.replies["document processing assistant"] = "City Power & Light\nAmount due: 1,200.00"
    fake_inference.replies["data extraction expert"] = json.dumps(EXTRACTED)
    fake_inference.replies["categorization expert"] = json.dumps(CATEGORIZED)


def _upload_pdf(client: TestClient) -> int:
    response = client.post(
        "/api/v1/documents",
        files={"file": ("power.pdf", b"%PDF-1.4 power bill", "application/pdf")},
    )
    assert response.status_code == 201
    return response.json()["id"]


def test_pdf_to_posted_expense_entry(client: TestClient, fake_inference, pdf_text) -> None:
    _script(fake_inference)
    document_id = _upload_pdf(client)

    run = client.post(f"/api/v1/documents/{document_id}/process")
    assert run.status_code == 200
    result = run.json()
    assert result["errors"] == 0
    assert result["documents"][0]["status"] == "completed"
    assert result["documents"][0]["has_errors"] is False

    document = client.get(f"/api/v1/documents/{document_id}").json()
    data = document["extracted_data"]
    assert document["status"] == "completed"
    assert data["structured_data"]["total_amount"] == 1200
    assert data["category"] == "expense"
    assert data["ocr_text"].startswith("City Power & Light")
    assert document["processing_summary"]["has_errors"] is False

    queue = client.get("/api/v1/processing/queue", params={"document_id": document_id}).json()
    assert {q["status"] for q in queue} == {"completed"}

    posted = client.post(f"/api/v1/documents/{document_id}/post", json={})
    assert posted.status_code == 200
    body = posted.json()
    assert body["reference_type"] == "journal_entry"
    assert body["number"] == "EXP20240115001"

    entry = client.get(f"/api/v1/accounting/journal-entries/{body['reference_id']}").json()
    assert entry["status"] == "posted"
    assert float(entry["total_debit"]) == 1200
    assert float(entry["total_credit"]) == 1200
    assert entry["description"] == "Expense: City Power & Light - expense"

    document = client.get(f"/api/v1/documents/{document_id}").json()
    assert document["extracted_data"]["posted"] is True
    assert document["extracted_data"]["posted_reference_id"] == body["reference_id"]


def test_posting_twice_is_rejected(client: TestClient, fake_inference, pdf_text) -> None:
    _script(fake_inference)
    document_id = _upload_pdf(client)
    client.post(f"/api/v1/documents/{document_id}/process")

    assert client.post(f"/api/v1/documents/{document_id}/post", json={"kind": "expense"}).status_code == 200
    again = client.post(f"/api/v1/documents/{document_id}/post", json={"kind": "expense"})
    assert again.status_code == 409


def test_sweep_processes_queued_documents(client: TestClient, fake_inference, pdf_text) -> None:
    _script(fake_inference)
    first = _upload_pdf(client)
    second = _upload_pdf(client)

    response = client.post("/api/v1/processing/run")
    assert response.status_code == 200
    result = response.json()
    assert result["documents_processed"] == 2
    assert {d["document_id"] for d in result["documents"]} == {first, second}
    assert all(d["status"] == "completed" for d in result["documents"])

    # Nothing left to do
    assert client.post("/api/v1/processing/run").json()["documents_processed"] == 0


def test_failing_stage_does_not_stop_later_stages(client: TestClient, fake_inference, pdf_text) -> None:
    _script(fake_inference)
    document_id = _upload_pdf(client)
    pdf_text("")  # no text layer: conversion fails for good

    result = client.post(f"/api/v1/documents/{document_id}/process").json()
    run = result["documents"][0]
    assert run["has_errors"] is True
    assert run["status"] == "failed"
    assert run["stages"]["conversion"]["errors"][0]["dead_lettered"] is True
    # Later stages still ran and recorded their own failures
    assert run["stages"]["ocr"]["errors"][0]["error"] == "No converted content available for OCR"

    document = client.get(f"/api/v1/documents/{document_id}").json()
    assert document["status"] == "failed"
    assert document["error_message"].startswith("Conversion failed:")
    failed = {s["processing_type"] for s in document["processing_summary"]["failed_stages"]}
    assert {"conversion", "ocr", "extraction"} <= failed


def test_statement_upload_generates_bank_transactions(client: TestClient, fake_inference) -> None:
    bank = client.post("/api/v1/banking/accounts", json={"account_name": "Main Checking"}).json()
    fake_inference.replies["data extraction expert"] = json.dumps({
        "transactions": [
            {"date": "2024-02-01", "description": "Client payment", "amount": "2,500.00", "type": "credit"},
            {"date": "2024-02-03", "description": "Office rent", "amount": -900},
            {"date": "not a date", "description": "Broken row", "amount": "abc"},
        ]
    })
    fake_inference.replies["categorization expert"] = json.dumps({
        "document_type": "bank_statement", "category": "banking", "confidence": 0.8,
    })

    upload = client.post(
        "/api/v1/documents",
        files={"file": ("feb.csv", b"date,description,amount\n2024-02-01,Client payment,2500\n", "text/csv")},
        data={"bank_account_id": str(bank["id"])},
    )
    document_id = upload.json()["id"]

    result = client.post(f"/api/v1/documents/{document_id}/process").json()
    assert result["documents"][0]["transactions_created"] == 2

    transactions = client.get("/api/v1/banking/transactions", params={"bank_account_id": bank["id"]}).json()
    assert len(transactions) == 2
    by_description = {t["description"]: t for t in transactions}
    assert by_description["Client payment"]["transaction_type"] == "credit"
    assert float(by_description["Client payment"]["amount"]) == 2500
    assert by_description["Office rent"]["transaction_type"] == "debit"
    assert float(by_description["Office rent"]["amount"]) == 900
    assert all(t["status"] == "uncategorized" and t["category"] is None for t in transactions)
    assert all(t["source_document_id"] == document_id for t in transactions)

    # Re-running the pipeline does not duplicate rows
    client.post(f"/api/v1/documents/{document_id}/process")
    assert len(client.get("/api/v1/banking/transactions").json()) == 2


def test_model_calls_run_off_the_event_loop(client: TestClient, fake_inference, pdf_text) -> None:
    _script(fake_inference)
    document_id = _upload_pdf(client)
    _upload_pdf(client)

    assert client.post(f"/api/v1/documents/{document_id}/process").status_code == 200
    assert client.post("/api/v1/processing/run").status_code == 200

    assert fake_inference.calls
    assert not any(call["on_event_loop"] for call in fake_inference.calls)
