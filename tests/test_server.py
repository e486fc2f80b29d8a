from unittest.mock import patch

import pytest
from sqlalchemy import inspect

from eri_backend.abi import to_checksum_address
from eri_backend.server import (
    Settings,
    connect_with_retries,
    main,
    run_with_retries,
)
from eri_backend.store import Store

ADDRESS = "0x1234567890abcdef1234567890abcdef12345678"


def _environ(**overrides):
    env = {
        "DATABASE_URL": "sqlite://",
        "BASE_URL": "http://localhost:8545",
        "PRIVATE_KEY": "placeholder",
        "AUTHENTICITY_ADDRESS": ADDRESS,
        "OWNERSHIP_ADDRESS": ADDRESS,
    }
    env.update(overrides)
    return {key: value for key, value in env.items() if value is not None}


def test_settings_from_env_reads_values():
    settings = Settings.from_env(_environ())
    assert settings.database_url == "sqlite://"
    assert settings.rpc_url == "http://localhost:8545"
    assert settings.private_key == "placeholder"
    assert settings.host == "127.0.0.1"
    assert settings.port == 8080


def test_settings_checksums_contract_addresses():
    settings = Settings.from_env(_environ())
    assert settings.authenticity_address == to_checksum_address(ADDRESS)
    assert settings.authenticity_address.lower() == ADDRESS
    assert settings.ownership_address == settings.authenticity_address


def test_settings_repr_hides_private_key():
    settings = Settings.from_env(_environ())
    assert "placeholder" not in repr(settings)


def test_settings_missing_database_url():
    with pytest.raises(ValueError, match="DATABASE_URL must be set"):
        Settings.from_env(_environ(DATABASE_URL=None))


@pytest.mark.parametrize("key", ["BASE_URL", "PRIVATE_KEY", "OWNERSHIP_ADDRESS"])
def test_settings_missing_required_key(key):
    with pytest.raises(ValueError, match=key):
        Settings.from_env(_environ(**{key: None}))


def test_settings_invalid_address():
    with pytest.raises(ValueError, match="Invalid contract address"):
        Settings.from_env(_environ(AUTHENTICITY_ADDRESS="not-an-address"))


def test_connect_with_retries_succeeds_first_time():
    store = Store("sqlite://")
    try:
        assert connect_with_retries(store, attempts=3, delay=0) == 1
        store.create_schema()
        assert "manufacturers" in inspect(store.engine).get_table_names()
    finally:
        store.close()


def test_connect_with_retries_gives_up(tmp_path):
    store = Store(f"sqlite:///{tmp_path}/missing/dir/db.sqlite")
    try:
        with patch("time.sleep") as sleep:
            with pytest.raises(RuntimeError, match="after retries"):
                connect_with_retries(store, attempts=3, delay=2.0)
        assert sleep.call_count == 2
        assert all(call.args == (2.0,) for call in sleep.call_args_list)
    finally:
        store.close()


def test_connect_with_retries_rejects_zero_attempts():
    store = Store("sqlite://")
    try:
        with pytest.raises(ValueError):
            connect_with_retries(store, attempts=0, delay=0)
    finally:
        store.close()


def test_run_with_retries_recovers():
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise RuntimeError("boom")

    with patch("time.sleep") as sleep:
        assert run_with_retries(flaky, attempts=5, delay=5.0) is True
    assert len(calls) == 3
    assert sleep.call_count == 2


def test_run_with_retries_exhausts():
    calls = []

    def failing():
        calls.append(1)
        raise RuntimeError("boom")

    with patch("time.sleep") as sleep:
        assert run_with_retries(failing, attempts=5, delay=5.0) is False
    assert len(calls) == 5
    assert sleep.call_count == 4


def test_run_with_retries_success_calls_once():
    calls = []
    assert run_with_retries(lambda: calls.append(1), attempts=5, delay=0) is True
    assert calls == [1]


def test_main_fails_without_configuration(tmp_path):
    env_file = tmp_path / "empty.env"
    env_file.write_text("")
    with patch.dict("os.environ", {}, clear=True):
        assert main(["--env-file", str(env_file)]) == 1


def test_main_fails_when_database_unreachable(tmp_path):
    env_file = tmp_path / "settings.env"
    env_file.write_text("")
    environ = _environ(DATABASE_URL=f"sqlite:///{tmp_path}/missing/dir/db.sqlite")
    with patch.dict("os.environ", environ, clear=True), patch("time.sleep"):
        assert main(["--env-file", str(env_file)]) == 1