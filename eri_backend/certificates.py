"""Saving and fetching signed certificates."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from http import HTTPStatus
from typing import Any

from sqlalchemy import select
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from eri_backend.errors import ApiError
from eri_backend.store import Store, certificates, manufacturers


def _invalid(message: str) -> ApiError:
    return ApiError(HTTPStatus.UNPROCESSABLE_ENTITY, message)


def _require(data: Mapping[str, Any], key: str, kind: type) -> Any:
    if key not in data:
        raise _invalid(f"missing field `{key}`")
    value = data[key]
    if isinstance(value, bool) and kind is not bool or not isinstance(value, kind):
        raise _invalid(f"field `{key}` has the wrong type")
    return value


@contextmanager
def _connection(store: Store) -> Iterator[Connection]:
    """Open a transaction, reporting a failure to connect as a server error."""
    context = store.connect()
    try:
        conn = context.__enter__()
    except SQLAlchemyError as exc:
        raise ApiError(
            HTTPStatus.INTERNAL_SERVER_ERROR, f"Failed to get DB connection: {exc}"
        ) from exc
    try:
        yield conn
    except BaseException as exc:
        if not context.__exit__(type(exc), exc, exc.__traceback__):
            raise
    else:
        context.__exit__(None, None, None)


@dataclass
class CertificateRecord:
    """A certificate together with the manufacturer's signature."""

    unique_id: str
    name: str
    serial: str
    date: int
    owner: str
    metadata_hash: str
    metadata: list[str | None] = field(default_factory=list)
    signature: str = ""

    @classmethod
    def from_json(cls, data: Any) -> CertificateRecord:
        """Build a record from a JSON object, raising ``ApiError`` (422) on bad input."""
        if not isinstance(data, Mapping):
            raise _invalid("expected a JSON object")
        metadata = _require(data, "metadata", list)
        if not all(entry is None or isinstance(entry, str) for entry in metadata):
            raise _invalid("field `metadata` must hold strings or nulls")
        return cls(
            unique_id=_require(data, "unique_id", str),
            name=_require(data, "name", str),
            serial=_require(data, "serial", str),
            date=_require(data, "date", int),
            owner=_require(data, "owner", str),
            metadata_hash=_require(data, "metadata_hash", str),
            metadata=list(metadata),
            signature=_require(data, "signature", str),
        )

    def to_json(self) -> dict[str, Any]:
        """Return the JSON form."""
        data = asdict(self)
        data["metadata"] = list(self.metadata)
        return data


def save_certificate(store: Store, payload: CertificateRecord) -> dict[str, str]:
    """Store a certificate issued by a registered manufacturer and return its id."""
    with _connection(store) as conn:
        if not payload.unique_id:
            raise ApiError(HTTPStatus.BAD_REQUEST, "Unique ID cannot be empty")

        try:
            manufacturer_address = conn.execute(
                select(manufacturers.c.manufacturer_address).where(
                    manufacturers.c.manufacturer_address == payload.owner
                )
            ).scalar()
        except SQLAlchemyError as exc:
            raise ApiError(
                HTTPStatus.INTERNAL_SERVER_ERROR, f"Database error: {exc}"
            ) from exc
        if manufacturer_address is None:
            raise ApiError(HTTPStatus.NOT_FOUND, "Manufacturer not found")

        if manufacturer_address.lower() != payload.owner.lower():
            raise ApiError(
                HTTPStatus.BAD_REQUEST,
                "Owner address does not match registered manufacturer",
            )

        try:
            conn.execute(certificates.insert().values(**payload.to_json()))
        except SQLAlchemyError as exc:
            raise ApiError(
                HTTPStatus.INTERNAL_SERVER_ERROR, f"Failed to save certificate: {exc}"
            ) from exc

    return {"unique_id": payload.unique_id}


def get_certificate(store: Store, unique_id: str) -> CertificateRecord:
    """Return the stored certificate with ``unique_id``."""
    with _connection(store) as conn:
        if not unique_id:
            raise ApiError(HTTPStatus.BAD_REQUEST, "Unique ID cannot be empty")
        try:
            row = conn.execute(
                select(certificates).where(certificates.c.unique_id == unique_id)
            ).first()
        except SQLAlchemyError as exc:
            raise ApiError(
                HTTPStatus.INTERNAL_SERVER_ERROR, f"Database error: {exc}"
            ) from exc
    if row is None:
        raise ApiError(HTTPStatus.NOT_FOUND, "Certificate not found")
    values = dict(row._mapping)
    values["metadata"] = list(values["metadata"] or [])
    return CertificateRecord(**values)