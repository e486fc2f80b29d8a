"""Database tables and the connection store shared by request handlers."""

from __future__ import annotations

from contextlib import AbstractContextManager
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
)
from sqlalchemy.engine import Connection
from sqlalchemy.pool import StaticPool

POOL_SIZE = 10

schema = MetaData()

contracts = Table(
    "contracts",
    schema,
    Column("contract_address", String, primary_key=True),
    Column("owner", String, nullable=False),
    Column("tnx_hash", String, nullable=False),
    Column("created_at", String, nullable=False),
)

users_info = Table(
    "users_info",
    schema,
    Column("user_address", String, primary_key=True),
    Column("username", String, nullable=False),
    Column("is_registered", Boolean, nullable=False),
    Column("created_at", String, nullable=False),
    Column("tnx_hash", String, nullable=False),
)

manufacturers = Table(
    "manufacturers",
    schema,
    Column("manufacturer_address", String, primary_key=True),
    Column("manufacturer_name", String, nullable=False),
    Column("is_registered", Boolean, nullable=False),
    Column("registered_at", String, nullable=False),
    Column("tnx_hash", String, nullable=False),
)

ownership_codes = Table(
    "ownership_codes",
    schema,
    Column("ownership_code", String, primary_key=True),
    Column("item_id", String, nullable=False),
    Column("item_owner", String, nullable=False),
    Column("temp_owner", String, nullable=False),
    Column("created_at", String, nullable=False),
)

items = Table(
    "items",
    schema,
    Column("item_id", String, primary_key=True),
    Column("name", String, nullable=False),
    Column("serial", String, nullable=False),
    Column("date", BigInteger, nullable=False),
    Column("owner", String, nullable=False),
    Column("manufacturer", String, nullable=False),
    Column("metadata", JSON, nullable=False),
    Column("created_at", String, nullable=False),
    Column("tnx_hash", String, nullable=False),
)

ownership_claims = Table(
    "ownership_claims",
    schema,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("item_id", String, nullable=False),
    Column("new_owner", String, nullable=False),
    Column("old_owner", String, nullable=False),
    Column("tnx_hash", String, nullable=False),
    Column("created_at", String, nullable=False),
)

code_revokations = Table(
    "code_revokations",
    schema,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("item_hash", String, nullable=False),
    Column("tnx_hash", String, nullable=False),
    Column("created_at", String, nullable=False),
)

authenticity_settings = Table(
    "authenticity_settings",
    schema,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("authenticity_address", String, nullable=False),
    Column("tnx_hash", String, nullable=False),
    Column("created_at", String, nullable=False),
)

certificates = Table(
    "certificates",
    schema,
    Column("unique_id", String, primary_key=True),
    Column("name", String, nullable=False),
    Column("serial", String, nullable=False),
    Column("date", BigInteger, nullable=False),
    Column("owner", String, nullable=False),
    Column("metadata_hash", String, nullable=False),
    Column("metadata", JSON, nullable=False),
    Column("signature", String, nullable=False),
)


def _is_memory_sqlite(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:") or url.startswith("sqlite:///:memory:?")


class Store:
    """A pooled database engine with the application's tables."""

    def __init__(self, url: str) -> None:
        self.url = url
        options: dict[str, Any] = {}
        if _is_memory_sqlite(url):
            options = {
                "poolclass": StaticPool,
                "connect_args": {"check_same_thread": False},
            }
        elif not url.startswith("sqlite"):
            options = {"pool_size": POOL_SIZE, "max_overflow": 0}
        self.engine = create_engine(url, **options)

    def create_schema(self) -> None:
        """Create any tables that do not exist yet."""
        schema.create_all(self.engine)

    def connect(self) -> AbstractContextManager[Connection]:
        """Open a connection in a transaction, committed on success and rolled back on error."""
        return self.engine.begin()

    def close(self) -> None:
        """Release all pooled connections."""
        self.engine.dispose()

    def __enter__(self) -> Store:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()