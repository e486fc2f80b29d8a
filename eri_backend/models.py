"""Records stored in the database and exchanged with clients."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from typing import Any

from eri_backend.abi import ZERO_ADDRESS


@dataclass
class Contract:
    """A deployed authenticity contract."""

    contract_address: str
    owner: str
    tnx_hash: str
    created_at: str


@dataclass
class UserInfo:
    """A registered user row, including the registering transaction."""

    user_address: str
    username: str
    is_registered: bool
    created_at: str
    tnx_hash: str


@dataclass
class User:
    """A registered user as shown to clients."""

    user_address: str
    username: str
    is_registered: bool
    created_at: str


@dataclass
class Manufacturer:
    """A registered manufacturer as shown to clients."""

    manufacturer_address: str
    manufacturer_name: str
    is_registered: bool
    registered_at: str

    def to_json(self) -> dict[str, Any]:
        """Return the camelCase JSON form."""
        return {
            "manufacturerAddress": self.manufacturer_address,
            "manufacturerName": self.manufacturer_name,
            "isRegistered": self.is_registered,
            "registeredAt": self.registered_at,
        }


@dataclass
class NewManufacturer:
    """A manufacturer row about to be inserted."""

    manufacturer_address: str
    manufacturer_name: str
    is_registered: bool
    registered_at: str
    tnx_hash: str


@dataclass
class OwnershipCode:
    """A pending ownership-transfer code."""

    ownership_code: str
    item_id: str
    item_owner: str
    temp_owner: str
    created_at: str


@dataclass
class Item:
    """An item recorded on chain."""

    item_id: str
    name: str
    serial: str
    date: int
    owner: str
    manufacturer: str
    metadata: list[str | None] = field(default_factory=list)
    created_at: str = ""

    def to_json(self) -> dict[str, Any]:
        """Return the JSON form, keeping missing metadata entries as null."""
        data = asdict(self)
        data["metadata"] = list(self.metadata)
        return data


@dataclass
class NewItem:
    """An item row about to be inserted."""

    item_id: str
    name: str
    serial: str
    date: int
    owner: str
    manufacturer: str
    metadata: list[str]
    created_at: str
    tnx_hash: str


@dataclass
class OwnershipClaim:
    """A recorded ownership claim."""

    id: int
    item_id: str
    new_owner: str
    old_owner: str
    tnx_hash: str
    created_at: str


@dataclass
class CodeRevokation:
    """A revoked ownership code."""

    id: int
    item_hash: str
    tnx_hash: str
    created_at: str


@dataclass
class AuthenticitySetting:
    """The authenticity contract address configured on the ownership contract."""

    id: int
    authenticity_address: str
    tnx_hash: str
    created_at: str


@dataclass
class ManufacturerQuery:
    """Lookup criteria for a manufacturer: an address, a name, or both."""

    address: str | None = None
    username: str | None = None

    @classmethod
    def from_params(cls, params: Mapping[str, str]) -> ManufacturerQuery:
        """Build a query from URL query parameters."""
        return cls(address=params.get("address"), username=params.get("username"))


@dataclass
class ManufacturerRegistered:
    """A ManufacturerRegistered event payload."""

    manufacturer_address: str
    manufacturer_name: str

    @classmethod
    def empty(cls) -> ManufacturerRegistered:
        """Return an event with the zero address and no name."""
        return cls(manufacturer_address=ZERO_ADDRESS, manufacturer_name="")