from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime
from functools import wraps
from typing import Any

from flask import Blueprint, current_app, g, jsonify, request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy.exc import IntegrityError
from werkzeug.security import check_password_hash, generate_password_hash

from app.loyalty.audit import record_event
from app.loyalty.db import db_session
from app.loyalty.models import Admin

bp = Blueprint("auth", __name__)

_TOKEN_SALT = "admin-auth"
MIN_PASSWORD_LENGTH = 6


class AuthError(Exception):
    def __init__(self, message: str, status: int = 400) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=_TOKEN_SALT)


def issue_token(admin: Admin) -> str:
    return _serializer().dumps({"admin_id": admin.id})


def _bearer_token() -> str | None:
    header = request.headers.get("Authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def load_current_admin() -> None:
    """
    Loads g.current_admin from the bearer token, if any.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    g.current_admin = None
    g.auth_error = None

    token = _bearer_token()
    if token is None:
        return
    try:
        payload = _serializer().loads(token, max_age=current_app.config["TOKEN_MAX_AGE_SECONDS"])
    except SignatureExpired:
        g.auth_error = "expired"
        return
    except BadSignature:
        g.auth_error = "invalid"
        return

    admin = db_session().get(Admin, int(payload.get("admin_id") or 0))
    if admin is None:
        g.auth_error = "unknown_admin"
        return
    g.current_admin = admin


def require_admin(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        admin: Admin | None = getattr(g, "current_admin", None)
        if admin is None:
            if getattr(g, "auth_error", None):
                current_app.logger.info("Rejected token (reason=%s request_id=%s)", g.auth_error, g.request_id)
                return jsonify({"message": "Not authorized, token failed"}), 401
            return jsonify({"message": "Not authorized, no token"}), 401
        return fn(*args, **kwargs)

    return wrapped


def _admin_payload(admin: Admin, *, with_token: bool = True) -> dict[str, Any]:
    out: dict[str, Any] = {"id": admin.id, "username": admin.username}
    if with_token:
        out["token"] = issue_token(admin)
    return out


def _json_body() -> dict[str, Any]:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def authenticate(s, username: str, password: str) -> Admin:
    username = (username or "").strip()
    admin = s.query(Admin).filter(Admin.username == username).one_or_none()
    if admin is None or not check_password_hash(admin.password_hash, password or ""):
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="Admin",
            entity_id=username or None,
        )
        raise AuthError("Invalid credentials", status=401)
    return admin


def create_admin(s, username: str, password: str) -> Admin:
    username = (username or "").strip()
    if not username or not password:
        raise AuthError("Please provide username and password")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise AuthError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if s.query(Admin).filter(Admin.username == username).one_or_none():
        raise AuthError("Username already exists")

    admin = Admin(username=username, password_hash=generate_password_hash(password))
    s.add(admin)
    try:
        s.flush()
    except IntegrityError:
        raise AuthError("Username already exists")
    return admin


def update_credentials(
    s,
    admin: Admin,
    *,
    current_password: str,
    new_username: str | None,
    new_password: str | None,
) -> list[str]:
    if not check_password_hash(admin.password_hash, current_password or ""):
        raise AuthError("Current password is incorrect", status=401)

    new_username = (new_username or "").strip()
    changed: list[str] = []
    if new_username and new_username != admin.username:
        taken = s.query(Admin).filter(Admin.username == new_username, Admin.id != admin.id).one_or_none()
        if taken:
            raise AuthError("Username already exists")
        admin.username = new_username
        changed.append("username")
    if new_password:
        if len(new_password) < MIN_PASSWORD_LENGTH:
            raise AuthError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        admin.password_hash = generate_password_hash(new_password)
        changed.append("password")
    if not changed:
        raise AuthError("Nothing to update")
    admin.updated_at = datetime.utcnow()
    return changed


@bp.errorhandler(AuthError)
def _auth_error(e: AuthError):
    return jsonify({"message": e.message}), e.status


@bp.post("/login")
def login():
    body = _json_body()
    s = db_session()
    try:
        admin = authenticate(s, str(body.get("username") or ""), str(body.get("password") or ""))
    except AuthError:
        s.commit()
        raise
    record_event(s, actor=admin, action="auth.login", entity_type="Admin", entity_id=str(admin.id))
    s.commit()
    return jsonify(_admin_payload(admin))


@bp.post("/signup")
def signup():
    body = _json_body()
    s = db_session()
    try:
        admin = create_admin(s, str(body.get("username") or ""), str(body.get("password") or ""))
    except AuthError:
        s.rollback()
        raise
    record_event(s, actor=admin, action="auth.signup", entity_type="Admin", entity_id=str(admin.id))
    s.commit()
    current_app.logger.info("Admin signed up (username=%s)", admin.username)
    return jsonify(_admin_payload(admin)), 201


@bp.get("/verify")
@require_admin
def verify():
    return jsonify(_admin_payload(g.current_admin, with_token=False))


@bp.put("/update-credentials")
@require_admin
def update_credentials_put():
    body = _json_body()
    s = db_session()
    admin: Admin = g.current_admin
    try:
        changed = update_credentials(
            s,
            admin,
            current_password=str(body.get("currentPassword") or ""),
            new_username=body.get("newUsername"),
            new_password=body.get("newPassword"),
        )
    except AuthError:
        s.rollback()
        raise
    record_event(
        s,
        actor=admin,
        action="auth.update_credentials",
        entity_type="Admin",
        entity_id=str(admin.id),
        metadata={"fields_changed": changed},
    )
    s.commit()
    return jsonify(_admin_payload(admin))
