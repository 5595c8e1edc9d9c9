from __future__ import annotations

import io
import os
from datetime import date
from typing import Any

from flask import Blueprint, current_app, g, jsonify, request, send_file

from app.loyalty.auth import require_admin
from app.loyalty.db import db_session
from app.loyalty.models import Admin
from app.loyalty.modules.customers.importer import import_customers
from app.loyalty.modules.customers.parsers.excel import EmptyFileError, ImportFileError
from app.loyalty.modules.customers.service import (
    CustomerConflictError,
    CustomerValidationError,
    create_customer,
    delete_all_customers,
    delete_customer,
    export_customers_csv,
    get_customer_by_id,
    list_customers,
    live_search_customers,
    parse_customer_payload,
    search_customer,
    update_customer,
)

bp = Blueprint("customers", __name__)

EXCEL_MIMETYPES = frozenset(
    {
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    }
)
EXCEL_EXTENSIONS = frozenset({".xls", ".xlsx"})


def _current_admin() -> Admin:
    a = getattr(g, "current_admin", None)
    if not a:
        raise RuntimeError("No current admin")
    return a


def _json_body() -> dict[str, Any]:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def _is_excel_upload(filename: str, mimetype: str | None) -> bool:
    if (mimetype or "").lower() in EXCEL_MIMETYPES:
        return True
    return os.path.splitext(filename or "")[1].lower() in EXCEL_EXTENSIONS


@bp.errorhandler(CustomerValidationError)
@bp.errorhandler(CustomerConflictError)
def _customer_error(e: ValueError):
    db_session().rollback()
    return jsonify({"message": str(e)}), 400


@bp.get("/", strict_slashes=False)
@require_admin
def customers_list():
    s = db_session()
    return jsonify([c.to_dict() for c in list_customers(s)])


@bp.post("/", strict_slashes=False)
@require_admin
def customers_create():
    s = db_session()
    payload = parse_customer_payload(_json_body())
    c = create_customer(s, payload, actor=_current_admin())
    s.commit()
    return jsonify(c.to_dict()), 201


@bp.post("/import-excel")
@require_admin
def customers_import_excel():
    f = request.files.get("file")
    if not f or not f.filename:
        return jsonify({"message": "No file uploaded"}), 400
    if not _is_excel_upload(f.filename, f.mimetype):
        return jsonify({"message": "Only Excel files (.xls, .xlsx) are allowed"}), 400

    data = f.read()
    if not data:
        return jsonify({"message": "No file uploaded"}), 400

    s = db_session()
    try:
        outcome = import_customers(s, data, actor=_current_admin(), filename=f.filename)
    except EmptyFileError:
        return jsonify({"message": "Excel file is empty"}), 400
    except ImportFileError as e:
        current_app.logger.warning("Rejected Excel upload %s (request_id=%s): %s", f.filename, g.request_id, e)
        return jsonify({"message": str(e)}), 500
    except Exception:
        s.rollback()
        raise
    s.commit()
    return jsonify({"message": outcome.message, "results": outcome.to_dict()})


@bp.get("/search")
@require_admin
def customers_search():
    query = (request.args.get("query") or "").strip()
    if not query:
        return jsonify({"message": "Search query is required"}), 400
    c = search_customer(db_session(), query)
    if c:
        return jsonify({"found": True, "customer": c.to_dict()})
    return jsonify({"found": False, "query": query})


@bp.get("/live-search")
@require_admin
def customers_live_search():
    query = (request.args.get("query") or "").strip()
    customers = live_search_customers(db_session(), query)
    return jsonify({"customers": [c.to_dict() for c in customers]})


@bp.get("/export")
@require_admin
def customers_export():
    s = db_session()
    data = export_customers_csv(s, actor=_current_admin())
    s.commit()
    filename = f"loyalty_customers_{date.today().isoformat()}.csv"
    return send_file(
        io.BytesIO(data),
        mimetype="text/csv",
        as_attachment=True,
        download_name=filename,
        max_age=0,
    )


@bp.delete("/delete-all")
@require_admin
def customers_delete_all():
    s = db_session()
    deleted = delete_all_customers(s, actor=_current_admin())
    s.commit()
    current_app.logger.warning("All customers deleted (count=%s admin=%s)", deleted, _current_admin().username)
    return jsonify({"message": "Successfully deleted all customers", "deletedCount": deleted})


@bp.put("/<int:customer_id>")
@require_admin
def customers_update(customer_id: int):
    s = db_session()
    c = get_customer_by_id(s, customer_id)
    if not c:
        return jsonify({"message": "Customer not found"}), 404
    payload = parse_customer_payload(_json_body())
    update_customer(s, c, payload, actor=_current_admin())
    s.commit()
    return jsonify(c.to_dict())


@bp.delete("/<int:customer_id>")
@require_admin
def customers_delete(customer_id: int):
    s = db_session()
    c = get_customer_by_id(s, customer_id)
    if not c:
        return jsonify({"message": "Customer not found"}), 404
    snapshot = delete_customer(s, c, actor=_current_admin())
    s.commit()
    return jsonify({"message": "Customer deleted successfully", "customer": snapshot})
