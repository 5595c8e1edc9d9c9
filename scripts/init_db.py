import sys
from pathlib import Path
import os

from werkzeug.security import generate_password_hash
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from contextlib import contextmanager

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.loyalty.models import Admin, Base


@contextmanager
def _session_scope(database_url: str, *, create_tables: bool = False):
    engine = create_engine(database_url, future=True)
    if create_tables:
        Base.metadata.create_all(bind=engine)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()


def seed_only(*, database_url: str | None = None, create_tables: bool = False) -> None:
    """
    Seed the admin account in an idempotent way.
    Does NOT overwrite an existing admin's password.
    """
    admin_username = (os.environ.get("ADMIN_USERNAME") or "admin").strip()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///loyalty.db").strip()

    with _session_scope(db_url, create_tables=create_tables) as s:
        admin = s.query(Admin).filter(Admin.username == admin_username).one_or_none()
        if admin:
            print(f"Admin user already exists: {admin_username}", flush=True)
            return
        s.add(Admin(username=admin_username, password_hash=generate_password_hash(admin_password)))
        print(f"Admin user created: {admin_username}", flush=True)


def main() -> None:
    # Local/dev convenience: create tables without Alembic, then seed.
    seed_only(create_tables=True)


if __name__ == "__main__":
    main()
