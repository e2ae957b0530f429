"""Integration tests for bulk JSON submissions and CSV imports."""
import sqlite3

from classintake.models.submission import SubmissionStatus

BULK_URL = "/api/class-submissions/bulk"
IMPORT_URL = "/app/import-classes"

ATTRIBUTION = {"submitted_by_name": "Leather Guild", "submitted_by_email": "guild@example.com"}

CSV_HEADER = "class_title,instructor_name,format,location_city,location_state,start_date,cost,topics\n"
CSV_ROWS = (
    "Wallet Basics,Ana Ruiz,Online,Remote,NA,02/01/2026,$30,Wallets\n"
    'Belt Making,,In-Person,Denver,CO,2026-03-05,$45,"Belts, Bags"\n'
)


def _row(n: int) -> dict:
    return {
        "classTitle": f"Class {n}",
        "format": "Online",
        "locationCity": "Remote",
        "locationState": "NA",
        "startDate": "2026-04-01",
        "cost": "Free",
        "topic": "Beginner",
    }


def _count(db_path: str, table: str) -> int:
    conn = sqlite3.connect(db_path)
    row = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
    conn.close()
    return row[0]


def test_ping(client):
    assert client.get(BULK_URL).json() == {"ok": True, "route": "api.class-submissions.bulk"}


def test_batch_is_stored_with_shared_attribution(client):
    response = client.post(BULK_URL, json={**ATTRIBUTION, "rows": [_row(1), _row(2), _row(3)]})

    assert response.status_code == 200
    data = response.json()
    assert data["count"] == 3
    repository = client.app.state.repository
    pending = repository.list_by_status(SubmissionStatus.PENDING)
    assert len(pending) == 3
    assert {s.batch_id for s in pending} == {data["batchId"]}
    assert {s.submitted_by_email for s in pending} == {"guild@example.com"}
    assert repository.get_batch(data["batchId"]).source == "json"


def test_same_class_twice_gets_distinct_handles(client):
    response = client.post(BULK_URL, json={**ATTRIBUTION, "rows": [_row(1), _row(1)]})
    assert response.status_code == 200
    handles = [s.external_id for s in client.app.state.repository.list_by_status(SubmissionStatus.PENDING)]
    assert len(set(handles)) == 2


def test_too_many_rows_rejected(client, settings):
    response = client.post(BULK_URL, json={**ATTRIBUTION, "rows": [_row(n) for n in range(101)]})
    assert response.status_code == 400
    assert response.json()["error"] == "A batch may contain at most 100 rows; got 101."
    assert _count(settings.DB_PATH, "class_submissions") == 0


def test_empty_batch_rejected(client):
    response = client.post(BULK_URL, json={**ATTRIBUTION, "rows": []})
    assert response.status_code == 400
    assert response.json()["error"] == "A batch must contain at least 1 row."


def test_any_invalid_row_rejects_the_whole_batch(client, settings):
    rows = [_row(n) for n in range(1, 8)]
    rows[2]["cost"] = ""
    rows[5]["startDate"] = "soonish"

    response = client.post(BULK_URL, json={**ATTRIBUTION, "rows": rows})

    assert response.status_code == 400
    row_errors = response.json()["rowErrors"]
    assert [e["row"] for e in row_errors] == [3, 6]
    assert row_errors[0]["errors"] == {"cost": "is required."}
    assert list(row_errors[1]["errors"]) == ["start_date"]
    assert _count(settings.DB_PATH, "class_submissions") == 0
    assert _count(settings.DB_PATH, "submission_batches") == 0


def test_non_object_row_is_reported(client):
    response = client.post(BULK_URL, json={**ATTRIBUTION, "rows": ["Class 1", _row(2)]})
    assert response.status_code == 400
    assert response.json()["rowErrors"] == [{"row": 1, "errors": {"row": "must be an object."}}]


def test_rows_must_be_an_array(client):
    response = client.post(BULK_URL, json={**ATTRIBUTION, "rows": "Class 1"})
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid request body"


def test_batch_attribution_required(client):
    response = client.post(BULK_URL, json={"submitted_by_name": "Guild", "rows": [_row(1)]})
    assert response.status_code == 400
    assert response.json()["errors"] == {"submitted_by_email": "is required."}


def test_honeypot_on_bulk(client, settings):
    response = client.post(BULK_URL, json={**ATTRIBUTION, "website": "x", "rows": [_row(1)]})
    assert response.json() == {"ok": True}
    assert _count(settings.DB_PATH, "class_submissions") == 0


def test_public_csv_upload(client):
    response = client.post(
        BULK_URL,
        data=ATTRIBUTION,
        files={"csv_file": ("classes.csv", CSV_HEADER + CSV_ROWS, "text/csv")},
    )

    assert response.status_code == 200
    data = response.json()
    assert data == {"ok": True, "imported": 2, "errors": [], "batchId": data["batchId"]}
    assert client.app.state.repository.get_batch(data["batchId"]).source == "csv"


def test_admin_csv_import_with_bom_and_mixed_case_headers(client):
    text = "\ufeff" + CSV_HEADER.replace("class_title", "Class_Title") + CSV_ROWS
    response = client.post(
        IMPORT_URL,
        data=ATTRIBUTION,
        files={"csv_file": ("classes.csv", text.encode("utf-8"), "text/csv")},
    )
    assert response.status_code == 200
    assert response.json()["imported"] == 2


def test_csv_row_errors_are_listed_and_nothing_imported(client, settings):
    text = CSV_HEADER + CSV_ROWS + "Dyeing 101,,Online,Remote,NA,2026-05-01,,Dyeing\n"
    response = client.post(
        IMPORT_URL, data=ATTRIBUTION, files={"csv_file": ("classes.csv", text, "text/csv")}
    )

    assert response.status_code == 400
    assert response.json() == {"ok": False, "imported": 0, "errors": ["Row 3: cost is required."], "batchId": None}
    assert _count(settings.DB_PATH, "class_submissions") == 0


def test_csv_without_title_column(client):
    response = client.post(
        IMPORT_URL, data=ATTRIBUTION, files={"csv_file": ("x.csv", "name,cost\nA,1\n", "text/csv")}
    )
    assert response.status_code == 400
    assert response.json()["errors"][0].startswith("CSV parse error: missing class_title column")


def test_csv_header_only(client):
    response = client.post(
        IMPORT_URL, data=ATTRIBUTION, files={"csv_file": ("x.csv", CSV_HEADER, "text/csv")}
    )
    assert response.json()["errors"] == ["No rows found in CSV."]


def test_csv_must_be_utf8(client):
    response = client.post(
        IMPORT_URL, data=ATTRIBUTION, files={"csv_file": ("x.csv", b"\xff\xfe\xfa", "text/csv")}
    )
    assert response.status_code == 400
    assert response.json()["errors"] == ["CSV file must be UTF-8 encoded."]


def test_import_without_file(client):
    response = client.post(IMPORT_URL, data=ATTRIBUTION)
    assert response.status_code == 400
    assert response.json()["errors"] == ["Please upload a CSV file."]


def test_import_columns_listing(client):
    data = client.get(IMPORT_URL).json()
    assert data["columns"][:2] == ["external_id", "class_title"]
