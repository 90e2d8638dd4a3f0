from pathlib import Path

from fastapi.testclient import TestClient

from docledger.core.config import settings
from docledger.models import Document, ProcessingQueueItem

OTHER_USER_ID = "user-2"


def _upload(client: TestClient, name="bill.pdf", content=b"%PDF-1.4 fake", content_type="application/pdf", **data):
    return client.post(
        "/api/v1/documents",
        files={"file": (name, content, content_type)},
        data=data,
    )


def test_upload_creates_document_and_queues_every_stage(client: TestClient, db) -> None:
    response = _upload(client)
    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "processing"
    assert body["file_name"] == "bill.pdf"
    assert body["file_size"] == len(b"%PDF-1.4 fake")
    assert body["extracted_data"] == {}

    items = db.query(ProcessingQueueItem).filter(ProcessingQueueItem.document_id == body["id"]).all()
    assert sorted((i.processing_type, i.priority) for i in items) == [
        ("categorization", 4), ("conversion", 1), ("extraction", 3), ("ocr", 2)
    ]
    assert all(i.status == "queued" and i.attempts == 0 for i in items)

    stored = Path(settings.STORAGE_ROOT).resolve() / body["storage_path"]
    assert stored.read_bytes() == b"%PDF-1.4 fake"


def test_upload_rejects_unsupported_type(client: TestClient, db) -> None:
    response = _upload(client, name="run.exe", content=b"MZ", content_type="application/x-msdownload")
    assert response.status_code == 400
    assert "not supported" in response.json()["detail"]
    assert db.query(Document).count() == 0


def test_upload_rejects_empty_file(client: TestClient, db) -> None:
    response = _upload(client, content=b"")
    assert response.status_code == 400
    assert response.json()["detail"] == "File is empty"
    assert db.query(Document).count() == 0


def test_upload_rejects_unknown_bank_account(client: TestClient) -> None:
    response = _upload(client, name="statement.csv", content=b"date,amount\n", content_type="text/csv", bank_account_id="999")
    assert response.status_code == 404


def test_get_document_returns_signed_url_that_serves_the_file(client: TestClient) -> None:
    document_id = _upload(client, name="notes.txt", content=b"hello ledger", content_type="text/plain").json()["id"]

    response = client.get(f"/api/v1/documents/{document_id}")
    assert response.status_code == 200
    signed_url = response.json()["signed_url"]
    assert "/api/v1/storage/" in signed_url

    token = signed_url.rsplit("/", 1)[-1]
    download = client.get(f"/api/v1/storage/{token}")
    assert download.status_code == 200
    assert download.content == b"hello ledger"


def test_tampered_storage_token_is_rejected(client: TestClient) -> None:
    response = client.get("/api/v1/storage/not-a-real-token")
    assert response.status_code == 404


def test_documents_are_scoped_to_their_owner(client: TestClient) -> None:
    document_id = _upload(client).json()["id"]

    other = client.get(f"/api/v1/documents/{document_id}", headers={"X-User-Id": OTHER_USER_ID})
    assert other.status_code == 404
    listing = client.get("/api/v1/documents", headers={"X-User-Id": OTHER_USER_ID})
    assert listing.json() == []


def test_delete_document_removes_record_queue_and_file(client: TestClient, db) -> None:
    body = _upload(client).json()
    stored = Path(settings.STORAGE_ROOT).resolve() / body["storage_path"]
    assert stored.exists()

    response = client.delete(f"/api/v1/documents/{body['id']}")
    assert response.status_code == 200
    assert not stored.exists()
    assert db.query(ProcessingQueueItem).count() == 0
    assert client.get(f"/api/v1/documents/{body['id']}").status_code == 404
