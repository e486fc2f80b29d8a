"""Application start-up: configuration, database readiness, event indexing and serving."""

from __future__ import annotations

import argparse
import logging
import os
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field

import uvicorn
from dotenv import find_dotenv, load_dotenv
from sqlalchemy.exc import SQLAlchemyError

from eri_backend.abi import parse_address, to_checksum_address
from eri_backend.events import RpcClient, listen_for_authenticity_events
from eri_backend.routes import OPENAPI_PATH, RouterPath, build_app
from eri_backend.store import Store

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080
DB_ATTEMPTS = 3
DB_RETRY_DELAY = 2.0
LISTENER_ATTEMPTS = 5
LISTENER_RETRY_DELAY = 5.0
POLL_INTERVAL = 1.0

# Name of the environment variable that holds the signer's key.
_SIGNER_VAR = "PRIVATE_KEY"


def _require(env: Mapping[str, str], key: str) -> str:
    try:
        return env[key]
    except KeyError:
        raise ValueError(f"{key} must be set") from None


def _contract_address(text: str) -> str:
    try:
        return to_checksum_address(parse_address(text))
    except ValueError:
        raise ValueError("Invalid contract address") from None


@dataclass(frozen=True)
class Settings:
    """Configuration read from the environment."""

    database_url: str
    rpc_url: str
    private_key: str = field(repr=False)
    authenticity_address: str
    ownership_address: str
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Read DATABASE_URL, BASE_URL, PRIVATE_KEY and the two contract addresses."""
        env = os.environ if environ is None else environ
        return cls(
            database_url=_require(env, "DATABASE_URL"),
            rpc_url=_require(env, "BASE_URL"),
            private_key=_require(env, _SIGNER_VAR),
            authenticity_address=_contract_address(_require(env, "AUTHENTICITY_ADDRESS")),
            ownership_address=_contract_address(_require(env, "OWNERSHIP_ADDRESS")),
        )


def connect_with_retries(
    store: Store, attempts: int = DB_ATTEMPTS, delay: float = DB_RETRY_DELAY
) -> int:
    """Wait until the database accepts a connection; return the attempt that succeeded."""
    if attempts < 1:
        raise ValueError("attempts must be at least 1")
    for attempt in range(1, attempts + 1):
        try:
            with store.connect():
                return attempt
        except SQLAlchemyError as exc:
            logger.warning("Failed to get DB connection (attempt %d): %s", attempt, exc)
            if attempt == attempts:
                raise RuntimeError(
                    f"Failed to get DB connection after retries: {exc}"
                ) from exc
            time.sleep(delay)
    raise AssertionError("unreachable")


def run_with_retries(
    func: Callable[[], object],
    attempts: int = LISTENER_ATTEMPTS,
    delay: float = LISTENER_RETRY_DELAY,
) -> bool:
    """Call ``func`` until it returns normally; return False once all attempts have failed."""
    if attempts < 1:
        raise ValueError("attempts must be at least 1")
    for attempt in range(1, attempts + 1):
        try:
            func()
        except Exception as exc:  # noqa: BLE001 - a background task must not die silently
            logger.error("Error in listener (attempt %d): %s", attempt, exc)
            if attempt == attempts:
                logger.error("Max retries reached for listener")
                return False
            time.sleep(delay)
        else:
            return True
    return False


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serve the certificate and manufacturer API.")
    parser.add_argument("--env-file", help="file of environment settings to load")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Start the event listener and serve the API until interrupted."""
    args = _parse_args(argv)
    logging.basicConfig(level=logging.INFO)
    logger.info("PROJECT STARTING...")
    load_dotenv(args.env_file or find_dotenv(usecwd=True))

    try:
        settings = Settings.from_env()
    except ValueError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 1

    store = Store(settings.database_url)
    try:
        try:
            connect_with_retries(store)
            store.create_schema()
        except (RuntimeError, SQLAlchemyError) as exc:
            logger.error("Database setup failed: %s", exc)
            return 1
        logger.info("Database migrations completed successfully")

        client = RpcClient(settings.rpc_url)
        stop = threading.Event()
        try:
            try:
                chain_id = client.chain_id()
            except RuntimeError as exc:
                logger.error("Failed to reach the chain: %s", exc)
                return 1
            logger.info("Connected to chain %d", chain_id)

            listener = threading.Thread(
                target=run_with_retries,
                args=(
                    lambda: listen_for_authenticity_events(
                        store,
                        client,
                        settings.authenticity_address,
                        poll_interval=POLL_INTERVAL,
                        stop=stop,
                    ),
                ),
                name="authenticity-listener",
                daemon=True,
            )
            listener.start()

            app = build_app(store, RouterPath())
            logger.info("Server running on %s:%d", settings.host, settings.port)
            logger.info(
                "OpenAPI document available at http://%s:%d%s",
                settings.host,
                settings.port,
                OPENAPI_PATH,
            )
            uvicorn.run(app, host=settings.host, port=settings.port)
        finally:
            stop.set()
            client.close()
    finally:
        store.close()
    return 0