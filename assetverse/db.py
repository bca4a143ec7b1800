# assetverse/db.py
# Database layer: SQLAlchemy Core engine + schema for SQLite (dev) and PostgreSQL (production)

from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import urlparse

from sqlalchemy import (
    CheckConstraint,
    Column,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    text,
)
from sqlalchemy.engine import Engine

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(320), nullable=False, unique=True),
    Column("name", String(200), nullable=False),
    Column("role", String(20), nullable=False),
    Column("password_hash", Text),
    Column("photo", Text),
    Column("date_of_birth", String(32)),
    Column("company_name", String(200)),
    Column("company_logo", Text),
    Column("hr_email", String(320)),
    Column("package_name", String(100)),
    Column("package_limit", Integer),
    Column("current_employees", Integer, nullable=False, server_default="0"),
    Column("subscription", String(20)),
    Column("status", String(20), nullable=False, server_default="approved"),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
    CheckConstraint("role IN ('hr', 'employee')", name="ck_users_role"),
    CheckConstraint("status IN ('pending', 'approved', 'removed')", name="ck_users_status"),
    CheckConstraint("current_employees >= 0", name="ck_users_current_employees"),
)
Index("idx_users_company", users.c.company_name)
Index("idx_users_hr_email", users.c.hr_email)

packages = Table(
    "packages",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
    Column("price", Float, nullable=False),
    Column("employee_limit", Integer, nullable=False),
    Column("features_json", Text, nullable=False, server_default="[]"),
    Column("created_at", String(40), nullable=False),
)

assets = Table(
    "assets",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("product_name", String(200), nullable=False),
    Column("product_type", String(20), nullable=False),
    Column("product_image", Text),
    Column("product_quantity", Integer, nullable=False),
    Column("available_quantity", Integer, nullable=False),
    Column("hr_email", String(320), nullable=False),
    Column("company_name", String(200)),
    Column("date_added", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
    CheckConstraint("available_quantity >= 0", name="ck_assets_available_non_negative"),
    CheckConstraint("available_quantity <= product_quantity", name="ck_assets_available_le_total"),
)
Index("idx_assets_hr_email", assets.c.hr_email)

requests = Table(
    "requests",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("asset_id", Integer, nullable=False),
    Column("asset_name", String(200), nullable=False),
    Column("asset_type", String(20), nullable=False),
    Column("asset_image", Text),
    Column("requester_email", String(320), nullable=False),
    Column("requester_name", String(200)),
    Column("hr_email", String(320), nullable=False),
    Column("company_name", String(200)),
    Column("note", Text),
    Column("status", String(20), nullable=False, server_default="pending"),
    Column("request_date", String(40), nullable=False),
    Column("processed_by", String(320)),
    Column("processed_at", String(40)),
    CheckConstraint("status IN ('pending', 'approved', 'rejected')", name="ck_requests_status"),
)
Index("idx_requests_hr_email", requests.c.hr_email)
Index("idx_requests_requester_email", requests.c.requester_email)
# At most one pending request per (asset, requester)
Index(
    "uq_requests_pending_per_requester",
    requests.c.asset_id,
    requests.c.requester_email,
    unique=True,
    sqlite_where=text("status = 'pending'"),
    postgresql_where=text("status = 'pending'"),
)

assigned_assets = Table(
    "assigned_assets",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("request_id", Integer, nullable=False, unique=True),
    Column("asset_id", Integer, nullable=False),
    Column("asset_name", String(200), nullable=False),
    Column("asset_type", String(20), nullable=False),
    Column("asset_image", Text),
    Column("employee_email", String(320), nullable=False),
    Column("employee_name", String(200)),
    Column("hr_email", String(320), nullable=False),
    Column("company_name", String(200)),
    Column("assignment_date", String(40), nullable=False),
    Column("status", String(20), nullable=False, server_default="assigned"),
)
Index("idx_assigned_employee", assigned_assets.c.employee_email)
Index("idx_assigned_hr_email", assigned_assets.c.hr_email)

payments = Table(
    "payments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("package_id", Integer, nullable=False),
    Column("package_name", String(100), nullable=False),
    Column("employee_limit", Integer, nullable=False),
    Column("amount", Float, nullable=False),
    Column("transaction_id", String(255), nullable=False, unique=True),
    Column("customer_email", String(320)),
    Column("status", String(20), nullable=False, server_default="completed"),
    Column("payment_date", String(40), nullable=False),
)
Index("idx_payments_user_id", payments.c.user_id)


def _enable_sqlite_pragmas(dbapi_conn, _record) -> None:
    cur = dbapi_conn.cursor()
    cur.execute("PRAGMA journal_mode=WAL")
    cur.execute("PRAGMA busy_timeout=15000")
    cur.close()


def create_db_engine(database_url: str) -> Engine:
    """
    Create the SQLAlchemy engine for a database URL.

    SQLite connections are shared across FastAPI's worker threads, so
    check_same_thread is disabled and a busy timeout lets concurrent writers
    queue instead of failing immediately.
    """
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": 15},
        )
        event.listen(engine, "connect", _enable_sqlite_pragmas)
        print("[DB] Using SQLite (local dev mode)")
        return engine

    # Render/Heroku style URLs use the legacy scheme name
    if database_url.startswith("postgres://"):
        database_url = "postgresql://" + database_url[len("postgres://"):]

    parsed = urlparse(database_url)
    if not parsed.scheme or not parsed.netloc:
        raise ValueError(f"Invalid DATABASE_URL: {database_url[:20]}...")

    engine = create_engine(
        database_url,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,  # Verify connections before use
    )
    print(f"[DB] Using PostgreSQL ({parsed.hostname})")
    return engine


def init_db(engine: Engine) -> None:
    """Create tables and indexes (idempotent) and seed the package catalogue."""
    metadata.create_all(engine)
    print("[MIGRATION] Ensured users, packages, assets, requests, assigned_assets, payments")

    # Imported here: entitlements depends on this module for the table objects
    from assetverse.entitlements import seed_packages
    seed_packages(engine)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def row_to_dict(row: Any) -> Optional[dict]:
    """
    Convert a SQLAlchemy row mapping to a plain dict.

    Use this whenever a row leaves the service layer.
    """
    if row is None:
        return None
    return dict(row)
