"""End-to-end tests for the Excel customer import."""
import io
from datetime import datetime

import pytest
from openpyxl import Workbook
from werkzeug.security import generate_password_hash

from app.loyalty import create_app
from app.loyalty.db import session_scope
from app.loyalty.models import Admin, AuditEvent, Base
from app.loyalty.modules.customers.importer import ImportOutcome, ValidatedRow, commit_rows, import_customers
from app.loyalty.modules.customers.models import Customer
from app.loyalty.modules.customers.parsers.excel import EmptyFileError, MalformedFileError


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        s.add(Admin(username="admin", password_hash=generate_password_hash("secret123")))

    return app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def auth(client):
    r = client.post("/api/auth/login", json={"username": "admin", "password": "secret123"})
    return {"Authorization": f"Bearer {r.json['token']}"}


def _xlsx(rows, *, extra_sheet=None) -> bytes:
    wb = Workbook()
    ws = wb.active
    for r in rows:
        ws.append(r)
    if extra_sheet:
        other = wb.create_sheet("Other")
        for r in extra_sheet:
            other.append(r)
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def _upload(client, auth, data: bytes, filename: str = "customers.xlsx"):
    return client.post(
        "/api/customers/import-excel",
        data={"file": (io.BytesIO(data), filename)},
        headers=auth,
        content_type="multipart/form-data",
    )


def _mobiles(app) -> list[str]:
    with session_scope(app) as s:
        return sorted(c.mobile for c in s.query(Customer).all())


def _assert_totals(results):
    assert results["total"] == results["imported"] + results["skipped"] + results["failed"]


def test_import_valid_rows(client, auth, app):
    data = _xlsx([
        ["name", "mobile", "dob"],
        ["Alice", "9990001111", datetime(1990, 5, 17)],
        ["Bob", 9990002222, None],
        ["Carol", "9990003333", "1985-12-01"],
    ])
    r = _upload(client, auth, data)
    assert r.status_code == 200
    res = r.json["results"]
    assert res == {"total": 3, "imported": 3, "skipped": 0, "failed": 0, "errors": []}
    assert r.json["message"] == "Import completed: 3 imported, 0 skipped, 0 failed"
    assert _mobiles(app) == ["9990001111", "9990002222", "9990003333"]

    with session_scope(app) as s:
        alice = s.query(Customer).filter(Customer.mobile == "9990001111").one()
        assert alice.date_of_birth.isoformat() == "1990-05-17"
        assert alice.added_date is not None


def test_import_alias_headers_resolve_like_canonical(client, auth, app):
    data = _xlsx([
        ["Customer Name", "Mobile Number", "Date of Birth"],
        ["  Dana  ", " 9990004444 ", "2001-02-03"],
    ])
    r = _upload(client, auth, data)
    assert r.json["results"]["imported"] == 1

    customers = client.get("/api/customers", headers=auth).json
    assert customers[0]["name"] == "Dana"
    assert customers[0]["mobile"] == "9990004444"
    assert customers[0]["dateOfBirth"] == "2001-02-03"


def test_import_missing_fields_fail_with_row_numbers(client, auth, app):
    data = _xlsx([
        ["Name", "Mobile"],
        ["Alice", "9990001111"],
        ["Bob", "   "],
        [None, "9990003333"],
    ])
    r = _upload(client, auth, data)
    res = r.json["results"]
    _assert_totals(res)
    assert res["imported"] == 1
    assert res["failed"] == 2
    assert res["errors"] == [
        {"row": 3, "name": "Bob", "mobile": "N/A", "error": "Name and mobile are required"},
        {"row": 4, "name": "N/A", "mobile": "9990003333", "error": "Name and mobile are required"},
    ]
    assert _mobiles(app) == ["9990001111"]


def test_import_skips_existing_mobiles(client, auth, app):
    client.post("/api/customers", json={"name": "Existing", "mobile": "9990002222"}, headers=auth)
    data = _xlsx([
        ["name", "mobile"],
        ["Alice", "9990001111"],
        ["Bob", "9990002222"],
    ])
    res = _upload(client, auth, data).json["results"]
    _assert_totals(res)
    assert res["imported"] == 1
    assert res["skipped"] == 1
    assert res["errors"] == [
        {"row": 3, "name": "Bob", "mobile": "9990002222", "error": "Mobile number already exists"},
    ]

    with session_scope(app) as s:
        # the pre-existing record is untouched
        assert s.query(Customer).filter(Customer.mobile == "9990002222").one().name == "Existing"


def test_import_is_idempotent(client, auth, app):
    data = _xlsx([
        ["name", "mobile"],
        ["Alice", "9990001111"],
        ["Bob", "9990002222"],
        ["", ""],
        ["NoMobile", None],
    ])
    first = _upload(client, auth, data).json["results"]
    assert first["imported"] == 2
    assert first["failed"] == 1

    second = _upload(client, auth, data).json["results"]
    _assert_totals(second)
    assert second["imported"] == 0
    assert second["skipped"] == 2
    assert second["failed"] == 1
    assert _mobiles(app) == ["9990001111", "9990002222"]


def test_import_within_batch_duplicate(client, auth, app):
    data = _xlsx([
        ["name", "mobile"],
        ["Alice", "9990001111"],
        ["Alias", "9990001111"],
        ["Bob", "9990002222"],
    ])
    r = _upload(client, auth, data)
    assert r.status_code == 200
    res = r.json["results"]
    _assert_totals(res)
    assert res["total"] == 3
    assert res["imported"] == 2
    assert res["failed"] == 1
    assert res["errors"] == [
        {"row": "Multiple", "name": "N/A", "mobile": "N/A", "error": "Some duplicate mobile numbers were detected during insert"},
    ]
    assert _mobiles(app) == ["9990001111", "9990002222"]
    assert r.json["message"] == "Import completed: 2 imported, 0 skipped, 1 failed"


def test_import_error_order(client, auth, app):
    client.post("/api/customers", json={"name": "Old", "mobile": "1002"}, headers=auth)
    client.post("/api/customers", json={"name": "Old", "mobile": "1005"}, headers=auth)
    data = _xlsx([
        ["name", "mobile"],
        ["A", "1001"],
        ["B", "1002"],
        ["C", None],
        ["D", "1004"],
        ["E", "1005"],
        [None, "1006"],
        ["G", "1004"],
    ])
    res = _upload(client, auth, data).json["results"]
    _assert_totals(res)
    rows = [e["row"] for e in res["errors"]]
    errs = [e["error"] for e in res["errors"]]
    assert rows == [4, 7, 3, 6, "Multiple"]
    assert errs[:2] == ["Name and mobile are required"] * 2
    assert errs[2:4] == ["Mobile number already exists"] * 2
    assert res["imported"] == 2
    assert res["skipped"] == 2
    assert res["failed"] == 3


def test_import_only_reads_first_sheet(client, auth, app):
    data = _xlsx(
        [["name", "mobile"], ["Alice", "1001"]],
        extra_sheet=[["name", "mobile"], ["Ghost", "9999"]],
    )
    res = _upload(client, auth, data).json["results"]
    assert res["total"] == 1
    assert _mobiles(app) == ["1001"]


def test_import_header_below_blank_rows(client, auth, app):
    data = _xlsx([
        [None, None],
        [None, None],
        ["name", "mobile"],
        ["Alice", "9990001111"],
        [None, "9990002222"],
    ])
    r = _upload(client, auth, data)
    assert r.status_code == 200
    res = r.json["results"]
    assert res["total"] == 2
    assert res["imported"] == 1
    assert res["errors"] == [
        {"row": 3, "name": "N/A", "mobile": "9990002222", "error": "Name and mobile are required"},
    ]
    assert _mobiles(app) == ["9990001111"]


def test_import_reports_row_with_values_only_in_unlabelled_column(client, auth, app):
    data = _xlsx([
        ["name", "mobile", None],
        ["Alice", "9990001111", None],
        [None, None, "Bob 9990002222"],
    ])
    res = _upload(client, auth, data).json["results"]
    _assert_totals(res)
    assert res["total"] == 2
    assert res["imported"] == 1
    assert res["failed"] == 1
    assert res["errors"] == [
        {"row": 3, "name": "N/A", "mobile": "N/A", "error": "Name and mobile are required"},
    ]


def test_import_header_only_is_empty(client, auth, app):
    r = _upload(client, auth, _xlsx([["name", "mobile"]]))
    assert r.status_code == 400
    assert r.json == {"message": "Excel file is empty"}
    assert _mobiles(app) == []


def test_import_no_file(client, auth):
    r = client.post("/api/customers/import-excel", data={}, headers=auth, content_type="multipart/form-data")
    assert r.status_code == 400
    assert r.json == {"message": "No file uploaded"}


def test_import_rejects_non_excel_upload(client, auth):
    r = _upload(client, auth, b"name,mobile\nA,1\n", filename="customers.csv")
    assert r.status_code == 400
    assert r.json["message"] == "Only Excel files (.xls, .xlsx) are allowed"


def test_import_malformed_file(client, auth, app):
    r = _upload(client, auth, b"definitely not a workbook")
    assert r.status_code == 500
    assert r.json["message"]
    assert _mobiles(app) == []


def test_import_requires_auth(client):
    r = _upload(client, {}, _xlsx([["name", "mobile"], ["A", "1"]]))
    assert r.status_code == 401


def test_import_records_audit_event(client, auth, app):
    _upload(client, auth, _xlsx([["name", "mobile"], ["A", "1001"]]))
    with session_scope(app) as s:
        ev = s.query(AuditEvent).filter(AuditEvent.action == "customer.import").one()
        assert ev.actor_username == "admin"
        assert '"imported": 1' in ev.metadata_json


def test_import_customers_service_raises_file_errors(app):
    with app.app_context(), session_scope(app) as s:
        with pytest.raises(EmptyFileError):
            import_customers(s, _xlsx([["name", "mobile"]]))
        with pytest.raises(MalformedFileError):
            import_customers(s, b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1" + b"\x00" * 64)


def test_commit_rows_counts_rows_lost_to_concurrent_writer(app):
    # A row that passed the existence check but lost the race to another writer.
    with session_scope(app) as s:
        s.add(Customer(name="Racer", mobile="1001"))

    rows = [
        ValidatedRow(row_number=2, name="A", mobile="1001", date_of_birth=None),
        ValidatedRow(row_number=3, name="B", mobile="1002", date_of_birth=None),
    ]
    outcome = ImportOutcome(total=2)
    with session_scope(app) as s:
        commit_rows(s, rows, outcome)

    assert outcome.imported == 1
    assert outcome.failed == 1
    assert [e.row for e in outcome.errors] == ["Multiple"]
    assert _mobiles(app) == ["1001", "1002"]
