"""EIP-712 typed-data hashing and validation for product certificates."""

from __future__ import annotations

import os
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Union

from eri_backend.abi import encode_abi, keccak256, parse_address, to_checksum_address

DOMAIN_TYPE = (
    "EIP712Domain(string name,string version,uint256 chainId,address verifyingContract)"
)
CERTIFICATE_TYPE = (
    "Certificate(string name,string uniqueId,string serial,uint256 date,"
    "address owner,bytes32 metadataHash)"
)

_HEX = re.compile(r"[0-9a-fA-F]*")
_DIGITS = re.compile(r"[0-9]+")
_U64_LIMIT = 1 << 64


def meta_hash(metadata: Sequence[str]) -> bytes:
    """Return the keccak hash of the ABI-encoded ``string[]`` metadata."""
    return keccak256(encode_abi(["string[]"], [list(metadata)]))


def type_hash(type_string: str) -> bytes:
    """Return the keccak hash of an EIP-712 type string."""
    return keccak256(type_string)


def _is_hex(text: str) -> bool:
    return len(text) % 2 == 0 and _HEX.fullmatch(text) is not None


def validate_address(address: str) -> None:
    """Raise ``ValueError`` unless ``address`` is a ``0x``-prefixed 20-byte hex string."""
    if not address.startswith("0x") or len(address) != 42 or not _is_hex(address[2:]):
        raise ValueError("Invalid Ethereum address")


def validate_signature(signature: str) -> None:
    """Raise ``ValueError`` unless ``signature`` is a ``0x``-prefixed 64- or 65-byte hex string."""
    if (
        not signature.startswith("0x")
        or len(signature) not in (130, 132)
        or not _is_hex(signature[2:])
    ):
        raise ValueError("Invalid signature")


def _field(data: Mapping[str, Any], key: str) -> Any:
    try:
        return data[key]
    except KeyError:
        raise ValueError(f"missing field `{key}`") from None


def _str_field(data: Mapping[str, Any], key: str) -> str:
    value = _field(data, key)
    if not isinstance(value, str):
        raise ValueError(f"field `{key}` must be a string")
    return value


def _u64_field(data: Mapping[str, Any], key: str) -> int:
    value = _field(data, key)
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value < _U64_LIMIT:
        raise ValueError(f"field `{key}` must be an unsigned 64-bit integer")
    return value


def _str_list_field(data: Mapping[str, Any], key: str) -> list[str]:
    value = _field(data, key)
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise ValueError(f"field `{key}` must be a list of strings")
    items = list(value)
    if not all(isinstance(item, str) for item in items):
        raise ValueError(f"field `{key}` must be a list of strings")
    return items


@dataclass(frozen=True)
class Eip712Domain:
    """The signing domain that binds signatures to one contract and chain."""

    name: str
    version: str
    chain_id: int
    verifying_contract: str
    salt: bytes | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Eip712Domain:
        """Read the domain from CONTRACT_ADDRESS, CHAIN_ID, SIGNING_DOMAIN and SIGNATURE_VERSION."""
        env = os.environ if environ is None else environ
        try:
            contract = parse_address(env["CONTRACT_ADDRESS"])
        except ValueError:
            raise ValueError("Invalid contract address") from None
        chain_text = env["CHAIN_ID"]
        if _DIGITS.fullmatch(chain_text) is None:
            raise ValueError(f"Invalid chain id: {chain_text!r}")
        return cls(
            name=env["SIGNING_DOMAIN"],
            version=env["SIGNATURE_VERSION"],
            chain_id=int(chain_text),
            verifying_contract=to_checksum_address(contract),
        )

    def separator(self) -> bytes:
        """Return the domain separator hash."""
        encoded = encode_abi(
            ["bytes32", "bytes32", "bytes32", "uint256", "address"],
            [
                type_hash(DOMAIN_TYPE),
                keccak256(self.name),
                keccak256(self.version),
                self.chain_id,
                self.verifying_contract,
            ],
        )
        return keccak256(encoded)

    def to_json(self) -> dict[str, Any]:
        """Return the domain as sent to clients for signing."""
        return {
            "name": self.name,
            "version": self.version,
            "chainId": str(self.chain_id),
            "verifyingContract": "0x" + parse_address(self.verifying_contract).hex(),
            "salt": None if self.salt is None else "0x" + self.salt.hex(),
        }


@dataclass
class SignedCertificate:
    """A certificate submitted together with its signature."""

    name: str
    unique_id: str
    serial: str
    date: int
    owner: str
    metadata: list[str]
    signature: str

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> SignedCertificate:
        """Build from a JSON object with snake_case keys."""
        return cls(
            name=_str_field(data, "name"),
            unique_id=_str_field(data, "unique_id"),
            serial=_str_field(data, "serial"),
            date=_u64_field(data, "date"),
            owner=_str_field(data, "owner"),
            metadata=_str_list_field(data, "metadata"),
            signature=_str_field(data, "signature"),
        )

    def validate(self) -> None:
        """Raise ``ValueError`` naming every field that fails validation."""
        problems: list[str] = []
        for name in ("name", "unique_id", "serial"):
            if not getattr(self, name):
                problems.append(f"{name}: length must be at least 1")
        try:
            validate_address(self.owner)
        except ValueError as exc:
            problems.append(f"owner: {exc}")
        if not self.metadata:
            problems.append("metadata: length must be at least 1")
        try:
            validate_signature(self.signature)
        except ValueError as exc:
            problems.append(f"signature: {exc}")
        if problems:
            raise ValueError("; ".join(problems))


@dataclass
class CertificateData:
    """An unsigned certificate as submitted by a client."""

    name: str
    unique_id: str
    serial: str
    date: int
    owner: str
    metadata: list[str]

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> CertificateData:
        """Build from a JSON object with snake_case keys."""
        return cls(
            name=_str_field(data, "name"),
            unique_id=_str_field(data, "unique_id"),
            serial=_str_field(data, "serial"),
            date=_u64_field(data, "date"),
            owner=_str_field(data, "owner"),
            metadata=_str_list_field(data, "metadata"),
        )


@dataclass(frozen=True)
class Certificate:
    """A certificate in the form that is hashed and signed."""

    name: str
    unique_id: str
    serial: str
    date: int
    owner: str
    metadata_hash: bytes
    metadata: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_data(cls, data: Union[CertificateData, SignedCertificate]) -> Certificate:
        """Convert submitted data, checksumming the owner and hashing the metadata."""
        try:
            owner = to_checksum_address(parse_address(data.owner))
        except ValueError:
            raise ValueError("Invalid address format") from None
        return cls(
            name=data.name,
            unique_id=data.unique_id,
            serial=data.serial,
            date=data.date,
            owner=owner,
            metadata_hash=meta_hash(data.metadata),
            metadata=tuple(data.metadata),
        )

    def struct_hash(self, type_string: str = CERTIFICATE_TYPE) -> bytes:
        """Return the EIP-712 struct hash for this certificate."""
        encoded = encode_abi(
            ["bytes32", "bytes32", "bytes32", "bytes32", "uint256", "address", "bytes32"],
            [
                type_hash(type_string),
                keccak256(self.name),
                keccak256(self.unique_id),
                keccak256(self.serial),
                self.date,
                self.owner,
                self.metadata_hash,
            ],
        )
        return keccak256(encoded)

    def encode_eip712(
        self, domain: Eip712Domain, type_string: str = CERTIFICATE_TYPE
    ) -> bytes:
        """Return the digest that is signed: keccak(0x1901 ‖ separator ‖ struct hash)."""
        return keccak256(b"\x19\x01" + domain.separator() + self.struct_hash(type_string))


@dataclass
class RegInput:
    """A manufacturer registration request."""

    name: str
    address: str


@dataclass
class Eip712Object:
    """Typed data handed to a client for signing."""

    domain: Eip712Domain
    types: dict[str, Any]
    value: dict[str, Any]

    def to_json(self) -> dict[str, Any]:
        """Return the JSON form."""
        return {"domain": self.domain.to_json(), "types": self.types, "value": self.value}