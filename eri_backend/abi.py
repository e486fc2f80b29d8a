"""Keccak hashing, contract ABI encoding and Ethereum address helpers."""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from Crypto.Hash import keccak as _keccak

ZERO_ADDRESS = "0x" + "00" * 20

CERTIFICATE_TUPLE = "(string,string,string,uint256,address,bytes32,string[])"

MANUFACTURER_REGISTERED = "ManufacturerRegistered(address,string)"
AUTHENTICITY_CREATED = "AuthenticityCreated(address,address)"
EIP712_DOMAIN_CHANGED = "EIP712DomainChanged()"

GET_MANUFACTURER = "getManufacturer(address)"
MANUFACTURER_REGISTERS = "manufacturerRegisters(string,address)"
USER_CLAIM_OWNERSHIP = f"userClaimOwnership({CERTIFICATE_TUPLE},bytes)"
VERIFY_AUTHENTICITY = f"verifyAuthenticity({CERTIFICATE_TUPLE},bytes)"
VERIFY_SIGNATURE = f"verifySignature({CERTIFICATE_TUPLE},bytes)"
EIP712_DOMAIN = "eip712Domain()"

_WORD = 32


def keccak256(data: bytes | bytearray | str) -> bytes:
    """Return the Keccak-256 digest of ``data`` (strings are UTF-8 encoded)."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    digest = _keccak.new(digest_bits=256)
    digest.update(bytes(data))
    return digest.digest()


def event_topic(signature: str) -> bytes:
    """Return the log topic identifying an event signature."""
    return keccak256(signature)


def function_selector(signature: str) -> bytes:
    """Return the four-byte selector of a function signature."""
    return keccak256(signature)[:4]


def parse_address(text: str | bytes) -> bytes:
    """Parse a hex address, with or without ``0x``, into 20 bytes."""
    if isinstance(text, (bytes, bytearray)):
        if len(text) != 20:
            raise ValueError("Invalid address format")
        return bytes(text)
    body = text[2:] if text[:2] in ("0x", "0X") else text
    if len(body) != 40:
        raise ValueError("Invalid address format")
    try:
        return bytes.fromhex(body)
    except ValueError:
        raise ValueError("Invalid address format") from None


def to_checksum_address(address: str | bytes) -> str:
    """Return the mixed-case checksummed form of an address."""
    lower = parse_address(address).hex()
    hashed = keccak256(lower.encode("ascii")).hex()
    return "0x" + "".join(
        ch.upper() if int(nibble, 16) >= 8 else ch for ch, nibble in zip(lower, hashed)
    )


@dataclass(frozen=True)
class _Type:
    kind: str
    size: int = 0
    children: tuple[_Type, ...] = ()


def _split_components(inner: str) -> list[str]:
    if not inner.strip():
        return []
    parts: list[str] = []
    current: list[str] = []
    depth = 0
    for ch in inner:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        if ch == "," and depth == 0:
            parts.append("".join(current))
            current = []
        else:
            current.append(ch)
    parts.append("".join(current))
    return parts


@lru_cache(maxsize=None)
def _parse(text: str) -> _Type:
    t = text.strip()
    if t.endswith("]"):
        i = t.rindex("[")
        element = _parse(t[:i])
        dim = t[i + 1 : -1]
        if dim == "":
            return _Type("array", -1, (element,))
        if not dim.isdigit():
            raise ValueError(f"unsupported ABI type: {text!r}")
        return _Type("array", int(dim), (element,))
    if t.startswith("(") and t.endswith(")"):
        return _Type("tuple", 0, tuple(_parse(c) for c in _split_components(t[1:-1])))
    if t in ("address", "bool", "string", "bytes"):
        return _Type(t)
    match = re.fullmatch(r"(u?int)(\d*)", t)
    if match:
        bits = int(match.group(2) or 256)
        if bits % 8 or not 8 <= bits <= 256:
            raise ValueError(f"unsupported ABI type: {text!r}")
        return _Type(match.group(1), bits)
    match = re.fullmatch(r"bytes(\d+)", t)
    if match:
        n = int(match.group(1))
        if not 1 <= n <= 32:
            raise ValueError(f"unsupported ABI type: {text!r}")
        return _Type("fixed", n)
    raise ValueError(f"unsupported ABI type: {text!r}")


def _is_dynamic(t: _Type) -> bool:
    if t.kind in ("bytes", "string"):
        return True
    if t.kind == "array":
        return t.size < 0 or _is_dynamic(t.children[0])
    if t.kind == "tuple":
        return any(_is_dynamic(c) for c in t.children)
    return False


def _head_size(t: _Type) -> int:
    if _is_dynamic(t):
        return _WORD
    if t.kind == "array":
        return t.size * _head_size(t.children[0])
    if t.kind == "tuple":
        return sum(_head_size(c) for c in t.children)
    return _WORD


def _uint_word(value: int) -> bytes:
    return value.to_bytes(_WORD, "big")


def _pad_right(data: bytes) -> bytes:
    return data + bytes(-len(data) % _WORD)


def _as_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str) and value[:2] in ("0x", "0X"):
        return bytes.fromhex(value[2:])
    raise ValueError(f"expected bytes, got {type(value).__name__}")


def _check_int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"expected an integer, got {type(value).__name__}")
    return value


def _encode_sequence(types: Sequence[_Type], values: Sequence[Any]) -> bytes:
    if isinstance(values, (str, bytes)) or len(values) != len(types):
        raise ValueError(f"expected {len(types)} values")
    head_size = sum(_head_size(t) for t in types)
    heads: list[bytes] = []
    tails: list[bytes] = []
    tail_length = 0
    for t, value in zip(types, values):
        encoded = _encode(t, value)
        if _is_dynamic(t):
            heads.append(_uint_word(head_size + tail_length))
            tails.append(encoded)
            tail_length += len(encoded)
        else:
            heads.append(encoded)
    return b"".join(heads) + b"".join(tails)


def _encode(t: _Type, value: Any) -> bytes:
    kind = t.kind
    if kind == "uint":
        number = _check_int(value)
        if not 0 <= number < 1 << t.size:
            raise ValueError(f"value {number} out of range for uint{t.size}")
        return _uint_word(number)
    if kind == "int":
        number = _check_int(value)
        bound = 1 << (t.size - 1)
        if not -bound <= number < bound:
            raise ValueError(f"value {number} out of range for int{t.size}")
        return _uint_word(number % (1 << 256))
    if kind == "address":
        return bytes(12) + parse_address(value)
    if kind == "bool":
        if not isinstance(value, bool):
            raise ValueError("expected a bool")
        return _uint_word(int(value))
    if kind == "fixed":
        raw = _as_bytes(value)
        if len(raw) > t.size:
            raise ValueError(f"value too long for bytes{t.size}")
        return raw + bytes(_WORD - len(raw))
    if kind in ("bytes", "string"):
        if kind == "string":
            if not isinstance(value, str):
                raise ValueError("expected a string")
            raw = value.encode("utf-8")
        else:
            raw = _as_bytes(value)
        return _uint_word(len(raw)) + _pad_right(raw)
    if kind == "array":
        if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
            raise ValueError("expected a sequence")
        if t.size >= 0 and len(value) != t.size:
            raise ValueError(f"expected {t.size} elements")
        body = _encode_sequence([t.children[0]] * len(value), value)
        return body if t.size >= 0 else _uint_word(len(value)) + body
    return _encode_sequence(t.children, value)


def _word(data: bytes, at: int) -> bytes:
    if at < 0 or at + _WORD > len(data):
        raise ValueError("ABI data too short")
    return data[at : at + _WORD]


def _read_uint(data: bytes, at: int) -> int:
    return int.from_bytes(_word(data, at), "big")


def _decode_sequence(types: Sequence[_Type], data: bytes, start: int) -> tuple[Any, ...]:
    values = []
    pos = start
    for t in types:
        if _is_dynamic(t):
            values.append(_decode(t, data, start + _read_uint(data, pos)))
            pos += _WORD
        else:
            values.append(_decode(t, data, pos))
            pos += _head_size(t)
    return tuple(values)


def _decode(t: _Type, data: bytes, at: int) -> Any:
    kind = t.kind
    if kind == "uint":
        number = _read_uint(data, at)
        if number >= 1 << t.size:
            raise ValueError(f"value out of range for uint{t.size}")
        return number
    if kind == "int":
        number = int.from_bytes(_word(data, at), "big", signed=True)
        bound = 1 << (t.size - 1)
        if not -bound <= number < bound:
            raise ValueError(f"value out of range for int{t.size}")
        return number
    if kind == "address":
        return to_checksum_address(_word(data, at)[12:])
    if kind == "bool":
        number = _read_uint(data, at)
        if number not in (0, 1):
            raise ValueError("invalid bool value")
        return bool(number)
    if kind == "fixed":
        return _word(data, at)[: t.size]
    if kind in ("bytes", "string"):
        length = _read_uint(data, at)
        end = at + _WORD + length
        if end > len(data):
            raise ValueError("ABI data too short")
        raw = data[at + _WORD : end]
        return raw.decode("utf-8") if kind == "string" else raw
    if kind == "array":
        element = t.children[0]
        if t.size < 0:
            count = _read_uint(data, at)
            base = at + _WORD
        else:
            count = t.size
            base = at
        if count * min(_head_size(element), _WORD) > len(data) - base:
            raise ValueError("ABI data too short")
        return list(_decode_sequence([element] * count, data, base))
    return _decode_sequence(t.children, data, at)


def encode_abi(types: Sequence[str], values: Sequence[Any]) -> bytes:
    """Encode ``values`` as the ABI tuple described by ``types``."""
    return _encode_sequence([_parse(t) for t in types], values)


def decode_abi(types: Sequence[str], data: bytes) -> tuple[Any, ...]:
    """Decode ABI ``data`` holding values of ``types``.

    Addresses come back checksummed, arrays as lists and tuples as tuples.
    """
    return _decode_sequence([_parse(t) for t in types], bytes(data), 0)