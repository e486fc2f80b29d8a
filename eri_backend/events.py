"""Indexing of authenticity contract events into the database."""

from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Union

import httpx
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from eri_backend.abi import (
    AUTHENTICITY_CREATED,
    EIP712_DOMAIN_CHANGED,
    MANUFACTURER_REGISTERED,
    decode_abi,
    event_topic,
    to_checksum_address,
)
from eri_backend.models import ManufacturerRegistered
from eri_backend.store import Store, contracts, manufacturers

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK = 20
DEFAULT_CHUNK_SIZE = 4
DEFAULT_TIMEOUT = 10.0
RETRY_DELAY = 5.0

_MANUFACTURER_REGISTERED_TOPIC = event_topic(MANUFACTURER_REGISTERED)
_AUTHENTICITY_CREATED_TOPIC = event_topic(AUTHENTICITY_CREATED)
_DOMAIN_CHANGED_TOPIC = event_topic(EIP712_DOMAIN_CHANGED)
_ALL_TOPICS = [
    "0x" + topic.hex()
    for topic in (
        _MANUFACTURER_REGISTERED_TOPIC,
        _AUTHENTICITY_CREATED_TOPIC,
        _DOMAIN_CHANGED_TOPIC,
    )
]


@dataclass
class AuthenticityCreated:
    """An AuthenticityCreated event payload."""

    contract_address: str
    owner: str


AuthenticityEvent = Union[ManufacturerRegistered, AuthenticityCreated]


class _RpcError(RuntimeError):
    """A JSON-RPC request failed or returned an error."""


def _strip_hex(value: str) -> str:
    return value[2:] if value[:2] in ("0x", "0X") else value


def _quantity(value: Any) -> int:
    if not isinstance(value, str):
        raise _RpcError(f"expected a hex quantity, got {value!r}")
    try:
        return int(_strip_hex(value), 16)
    except ValueError:
        raise _RpcError(f"expected a hex quantity, got {value!r}") from None


def _block_tag(block: int | None) -> str:
    return "latest" if block is None else hex(block)


class RpcClient:
    """A minimal Ethereum JSON-RPC client over HTTP."""

    def __init__(self, url: str, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.url = url
        self._http = httpx.Client(timeout=timeout)
        self._ids = itertools.count(1)

    def _call(self, method: str, params: list[Any]) -> Any:
        request = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = self._http.post(self.url, json=request)
            response.raise_for_status()
            reply = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise _RpcError(f"{method} failed: {exc}") from exc
        if not isinstance(reply, Mapping):
            raise _RpcError(f"{method} failed: malformed reply")
        if reply.get("error") is not None:
            raise _RpcError(f"{method} failed: {reply['error']}")
        return reply.get("result")

    def block_number(self) -> int:
        """Return the number of the latest block."""
        return _quantity(self._call("eth_blockNumber", []))

    def chain_id(self) -> int:
        """Return the chain id of the connected network."""
        return _quantity(self._call("eth_chainId", []))

    def get_logs(
        self,
        address: str,
        topics: Sequence[Any],
        from_block: int | None,
        to_block: int | None,
    ) -> list[dict[str, Any]]:
        """Return the logs of ``address`` matching ``topics`` in a block range."""
        result = self._call(
            "eth_getLogs",
            [
                {
                    "address": address,
                    "topics": list(topics),
                    "fromBlock": _block_tag(from_block),
                    "toBlock": _block_tag(to_block),
                }
            ],
        )
        if not isinstance(result, list):
            raise _RpcError("eth_getLogs failed: expected a list of logs")
        return result

    def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        self._http.close()

    def __enter__(self) -> RpcClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _topic_bytes(value: str) -> bytes:
    raw = bytes.fromhex(_strip_hex(value))
    if len(raw) != 32:
        raise ValueError("log topic must be 32 bytes")
    return raw


def decode_event(log: Mapping[str, Any]) -> AuthenticityEvent | None:
    """Decode a contract log; EIP712DomainChanged yields ``None``.

    Raises ``ValueError`` for logs that are not authenticity events.
    """
    topics = [_topic_bytes(topic) for topic in log.get("topics") or []]
    if not topics:
        raise ValueError("log has no topics")
    data = bytes.fromhex(_strip_hex(log.get("data") or "0x"))
    signature = topics[0]
    if signature == _MANUFACTURER_REGISTERED_TOPIC:
        if len(topics) < 2:
            raise ValueError("ManufacturerRegistered log is missing its address topic")
        (username,) = decode_abi(["string"], data)
        return ManufacturerRegistered(
            manufacturer_address=to_checksum_address(topics[1][12:]),
            manufacturer_name=username,
        )
    if signature == _AUTHENTICITY_CREATED_TOPIC:
        if len(topics) < 3:
            raise ValueError("AuthenticityCreated log is missing its topics")
        return AuthenticityCreated(
            contract_address=to_checksum_address(topics[1][12:]),
            owner=to_checksum_address(topics[2][12:]),
        )
    if signature == _DOMAIN_CHANGED_TOPIC:
        return None
    raise ValueError(f"unknown event topic 0x{signature.hex()}")


def _tx_hash(log: Mapping[str, Any]) -> str | None:
    value = log.get("transactionHash")
    if not value:
        return None
    return "0x" + bytes.fromhex(_strip_hex(value)).hex()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def process_manufacturer_registered(
    store: Store, event: ManufacturerRegistered, tx_hash: str | None
) -> bool:
    """Record a manufacturer registration; return whether a row was inserted."""
    address = to_checksum_address(event.manufacturer_address)
    logger.info("Username: %r", event.manufacturer_name)
    with store.connect() as conn:
        try:
            count = conn.execute(
                select(func.count())
                .select_from(manufacturers)
                .where(manufacturers.c.manufacturer_address == address)
            ).scalar_one()
        except SQLAlchemyError as exc:
            raise RuntimeError(f"Failed to check existing manufacturer: {exc}") from exc
        if count > 0:
            logger.info(
                "Skipping duplicate manufacturer registration for %s (tx: %s)", address, tx_hash
            )
            return False
        if tx_hash is None:
            raise ValueError("Transaction hash is required for manufacturer registration")
        try:
            conn.execute(
                manufacturers.insert().values(
                    manufacturer_address=address,
                    manufacturer_name=event.manufacturer_name,
                    is_registered=True,
                    registered_at=_now(),
                    tnx_hash=tx_hash,
                )
            )
        except SQLAlchemyError as exc:
            raise RuntimeError(f"Failed to insert manufacturer: {exc}") from exc
    return True


def process_authenticity_created(
    store: Store, event: AuthenticityCreated, tx_hash: str | None
) -> bool:
    """Record a created authenticity contract; return whether a row was inserted."""
    address = to_checksum_address(event.contract_address)
    owner = to_checksum_address(event.owner)
    with store.connect() as conn:
        try:
            count = conn.execute(
                select(func.count())
                .select_from(contracts)
                .where(contracts.c.contract_address == address)
            ).scalar_one()
        except SQLAlchemyError as exc:
            raise RuntimeError(f"Failed to check existing contract: {exc}") from exc
        if count > 0:
            logger.info("Skipping duplicate contract created for %s (tx: %s)", address, tx_hash)
            return False
        if tx_hash is None:
            raise ValueError("Transaction hash is required for manufacturer registration")
        try:
            conn.execute(
                contracts.insert().values(
                    contract_address=address,
                    owner=owner,
                    tnx_hash=tx_hash,
                    created_at=_now(),
                )
            )
        except SQLAlchemyError as exc:
            raise RuntimeError(f"Failed to insert contract: {exc}") from exc
    return True


def _handle(store: Store, log: Mapping[str, Any]) -> bool:
    try:
        event = decode_event(log)
    except ValueError as exc:
        logger.warning("Event stream error: %s", exc)
        return False
    tx_hash = _tx_hash(log)
    if event is None:
        logger.info("EIP712DomainChanged event received (tx: %s)", tx_hash)
        return False
    if isinstance(event, ManufacturerRegistered):
        return process_manufacturer_registered(store, event, tx_hash)
    return process_authenticity_created(store, event, tx_hash)


def backfill(
    store: Store,
    client: RpcClient,
    contract_address: str,
    latest_block: int,
    lookback: int = DEFAULT_LOOKBACK,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> int:
    """Index recent historical events in block chunks; return the number of rows inserted."""
    inserted = 0
    current = max(latest_block - lookback, 0)
    while current < latest_block:
        to_block = min(current + chunk_size, latest_block)
        logger.info(
            "Querying Authenticity historical events from block %d to %d (range: %d)",
            current,
            to_block,
            to_block - current + 1,
        )
        registered = client.get_logs(
            contract_address, ["0x" + _MANUFACTURER_REGISTERED_TOPIC.hex()], current, to_block
        )
        created = client.get_logs(
            contract_address, ["0x" + _AUTHENTICITY_CREATED_TOPIC.hex()], current, to_block
        )
        for entry in [*registered, *created]:
            inserted += _handle(store, entry)
        current = to_block + 1
    return inserted


def _log_position(log: Mapping[str, Any]) -> tuple[int, int]:
    return (
        int(_strip_hex(log.get("blockNumber") or "0x0"), 16),
        int(_strip_hex(log.get("logIndex") or "0x0"), 16),
    )


def listen_for_authenticity_events(
    store: Store,
    client: RpcClient,
    contract_address: str,
    poll_interval: float = 1.0,
    stop: threading.Event | None = None,
) -> None:
    """Backfill recent events, then poll for new ones until ``stop`` is set."""
    stop = stop if stop is not None else threading.Event()
    try:
        latest_block = client.block_number()
    except _RpcError as exc:
        raise RuntimeError(f"Failed to get latest block: {exc}") from exc

    backfill(store, client, contract_address, latest_block)

    next_block = latest_block + 1
    logger.info("Starting Authenticity event stream from block %d", next_block)
    while not stop.is_set():
        try:
            head = client.block_number()
            logs = (
                client.get_logs(contract_address, [_ALL_TOPICS], next_block, head)
                if head >= next_block
                else []
            )
        except _RpcError as exc:
            logger.warning("Event stream error: %s", exc)
            stop.wait(RETRY_DELAY)
            continue
        for entry in sorted(logs, key=_log_position):
            _handle(store, entry)
        next_block = max(next_block, head + 1)
        stop.wait(poll_interval)