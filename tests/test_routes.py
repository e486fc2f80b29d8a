import pytest
from starlette.testclient import TestClient

from eri_backend.routes import CoreRouterPath, RouterPath, build_app, openapi_document
from eri_backend.store import Store, manufacturers

MAKER = "0x1234567890abcdef1234567890abcdef12345678"


@pytest.fixture
def store():
    s = Store("sqlite://")
    s.create_schema()
    with s.connect() as conn:
        conn.execute(
            manufacturers.insert().values(
                manufacturer_address=MAKER,
                manufacturer_name="SAMSUNG",
                is_registered=True,
                registered_at="2025-08-24T12:04:00Z",
                tnx_hash="0x01",
            )
        )
    yield s
    s.close()


@pytest.fixture
def client(store):
    with TestClient(build_app(store)) as c:
        yield c


def _certificate(unique_id="123"):
    return {
        "unique_id": unique_id,
        "name": "iPhone 15 Pro",
        "serial": "SN000000",
        "date": 1695868800,
        "owner": MAKER,
        "metadata_hash": "0x" + "ab" * 32,
        "metadata": ["Black", "128GB", None],
        "signature": "0x" + "cd" * 65,
    }


def test_router_path_defaults():
    paths = RouterPath()
    assert paths.get_manufacturer == "/api/manufacturer"
    assert paths.manufacturer_name_exists == "/api/manufacturer/exists"
    assert paths.get_certificate == "/api/certificate/{item_id}"
    assert paths.save_certificate == "/api/certificate/create"


def test_core_paths_agree_with_full_paths():
    core, full = CoreRouterPath(), RouterPath()
    assert core.get_owner == "/get_owner/{address}"
    for name in core.__dataclass_fields__:
        assert getattr(core, name) == getattr(full, name)


def test_openapi_document_describes_routes():
    doc = openapi_document()
    assert doc["info"]["title"] == "ERI APIs"
    paths = RouterPath()
    for path in (paths.get_manufacturer, paths.manufacturer_name_exists, paths.get_certificate):
        assert path in doc["paths"]
    refs = {"Manufacturer", "IsExistsResponse", "Certificates", "CertificateDTO"}
    assert refs <= set(doc["components"]["schemas"])


def test_openapi_served(client):
    response = client.get("/api-docs/openapi.json")
    assert response.status_code == 200
    assert response.json() == openapi_document()


def test_get_manufacturer_by_address(client):
    response = client.get("/api/manufacturer", params={"address": MAKER})
    assert response.status_code == 200
    assert response.json() == {
        "manufacturerAddress": MAKER,
        "manufacturerName": "SAMSUNG",
        "isRegistered": True,
        "registeredAt": "2025-08-24T12:04:00Z",
    }


def test_get_manufacturer_by_name(client):
    response = client.get("/api/manufacturer", params={"username": "SAMSUNG"})
    assert response.json()["manufacturerAddress"] == MAKER


def test_get_manufacturer_not_found(client):
    response = client.get("/api/manufacturer", params={"username": "NOKIA"})
    assert response.status_code == 404
    assert response.json() == {"error": "Manufacturer not found"}


def test_get_manufacturer_without_criteria(client):
    response = client.get("/api/manufacturer")
    assert response.status_code == 500
    assert "Either address or username must be provided" in response.json()["error"]


def test_name_exists(client):
    assert client.get("/api/manufacturer/exists", params={"username": "SAMSUNG"}).json() == {
        "exists": True
    }
    assert client.get("/api/manufacturer/exists", params={"username": "NOKIA"}).json() == {
        "exists": False
    }


def test_save_then_get_certificate(client):
    saved = client.request("GET", "/api/certificate/create", json=_certificate())
    assert saved.status_code == 200
    assert saved.json() == {"unique_id": "123"}
    fetched = client.get("/api/certificate/anything", params={"unique_id": "123"})
    assert fetched.status_code == 200
    assert fetched.json() == _certificate()


def test_save_certificate_unknown_manufacturer(client):
    payload = _certificate()
    payload["owner"] = "0x" + "99" * 20
    response = client.request("GET", "/api/certificate/create", json=payload)
    assert response.status_code == 404
    assert response.json() == {"error": "Manufacturer not found"}


def test_save_certificate_requires_json(client):
    response = client.request("GET", "/api/certificate/create", content=b"{}")
    assert response.status_code == 415


def test_get_certificate_requires_query(client):
    response = client.get("/api/certificate/123")
    assert response.status_code == 400
    assert "unique_id" in response.json()["error"]


def test_get_certificate_not_found(client):
    response = client.get("/api/certificate/x", params={"unique_id": "missing"})
    assert response.status_code == 404
    assert response.json() == {"error": "Certificate not found"}


def test_cors_allows_any_origin(client):
    response = client.get(
        "/api/manufacturer/exists",
        params={"username": "SAMSUNG"},
        headers={"Origin": "http://app.example.com"},
    )
    assert response.headers["access-control-allow-origin"] == "*"