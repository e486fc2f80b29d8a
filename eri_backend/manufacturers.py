"""Manufacturer lookups and certificate data for recorded items."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from http import HTTPStatus
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError

from eri_backend.errors import ApiError
from eri_backend.models import Manufacturer, ManufacturerQuery
from eri_backend.store import Store, items, manufacturers


def _internal(message: str) -> ApiError:
    return ApiError(HTTPStatus.INTERNAL_SERVER_ERROR, f"Internal server error: {message}")


@dataclass
class CertificateResponse:
    """The certificate fields of an item, owned by its manufacturer."""

    name: str
    unique_id: str
    serial: str
    date: int
    owner: str
    metadata: list[str] = field(default_factory=list)

    def to_json(self) -> dict[str, Any]:
        """Return the JSON form."""
        data = asdict(self)
        data["metadata"] = list(self.metadata)
        return data


def get_manufacturer(store: Store, query: ManufacturerQuery) -> Manufacturer:
    """Find a manufacturer matching the query's address or name."""
    try:
        with store.connect() as conn:
            if query.address is None and query.username is None:
                raise _internal("Either address or username must be provided")
            conditions = []
            if query.address is not None:
                conditions.append(manufacturers.c.manufacturer_address == query.address)
            if query.username is not None:
                conditions.append(manufacturers.c.manufacturer_name == query.username)
            row = conn.execute(
                select(
                    manufacturers.c.manufacturer_address,
                    manufacturers.c.manufacturer_name,
                    manufacturers.c.is_registered,
                    manufacturers.c.registered_at,
                ).where(or_(*conditions))
            ).first()
    except SQLAlchemyError as exc:
        raise _internal(f"Failed to fetch manufacturer: {exc}") from exc
    if row is None:
        raise ApiError(HTTPStatus.NOT_FOUND, "Manufacturer not found")
    return Manufacturer(**row._mapping)


def manufacturer_name_exists(store: Store, username: str | None) -> bool:
    """Return whether a manufacturer is registered under ``username``."""
    if username is None:
        raise _internal("Username must be provided")
    try:
        with store.connect() as conn:
            count = conn.execute(
                select(func.count())
                .select_from(manufacturers)
                .where(manufacturers.c.manufacturer_name == username)
            ).scalar_one()
    except SQLAlchemyError as exc:
        raise _internal(f"Failed to check manufacturer: {exc}") from exc
    return count > 0


def fetch_certificate(store: Store, item_id: str) -> CertificateResponse:
    """Build the certificate for a recorded item, owned by its manufacturer's address."""
    if not item_id:
        raise _internal("Item ID cannot be empty")
    try:
        with store.connect() as conn:
            item = conn.execute(select(items).where(items.c.item_id == item_id)).first()
            if item is None:
                raise ApiError(HTTPStatus.NOT_FOUND, "Item not found")
            manufacturer_address = conn.execute(
                select(manufacturers.c.manufacturer_address).where(
                    manufacturers.c.manufacturer_name == item.manufacturer
                )
            ).scalar()
    except SQLAlchemyError as exc:
        raise _internal(f"Failed to query database: {exc}") from exc
    if manufacturer_address is None:
        raise _internal(f"No manufacturer registered as {item.manufacturer!r}")
    return CertificateResponse(
        name=item.name,
        unique_id=item.item_id,
        serial=item.serial,
        date=item.date,
        owner=manufacturer_address,
        metadata=[entry for entry in (item.metadata or []) if entry],
    )