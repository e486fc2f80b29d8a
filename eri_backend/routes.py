"""URL paths, OpenAPI description and the HTTP application."""

from __future__ import annotations

import json
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any

from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from eri_backend.certificates import CertificateRecord, get_certificate, save_certificate
from eri_backend.errors import ApiError
from eri_backend.manufacturers import get_manufacturer, manufacturer_name_exists
from eri_backend.models import ManufacturerQuery
from eri_backend.store import Store

OPENAPI_PATH = "/api-docs/openapi.json"


@dataclass(frozen=True)
class RouterPath:
    """The URL path of every endpoint."""

    generate_signature: str = "/generate_signature"
    verify_authenticity: str = "/verify_authenticity"
    sign_up: str = "/manufacturer_registers"
    get_owner: str = "/get_owner/{address}"
    verify_signature: str = "/verify_signature"
    create_certificate: str = "/create_certificate"
    qr_code: str = "/qr_code"
    get_manufacturer: str = "/api/manufacturer"
    manufacturer_name_exists: str = "/api/manufacturer/exists"
    get_user: str = "/api/user/get"
    is_user_exist: str = "/api/user/exists"
    get_my_items: str = "/api/items/owner"
    transfer_ownership: str = "/api/transfer_ownership"
    transfer_code: str = "/api/get_transfer_code"
    revoke_code: str = "/api/revoke_ownership_code"
    user_register: str = "/api/user/register"
    set_authenticity: str = "/api/set_authenticity"
    claim_ownership: str = "/api/ownership/claim"
    create_item: str = "/api/item/create"
    get_item: str = "/api/item/{item_id}"
    sync: str = "/api/sync"
    batch_items: str = "/api/items/batch"
    get_certificate: str = "/api/certificate/{item_id}"
    save_certificate: str = "/api/certificate/create"
    check_before_claim: str = "/api/ownership/check_temp_owner"


@dataclass(frozen=True)
class CoreRouterPath:
    """The URL paths of the signing and verification endpoints."""

    generate_signature: str = "/generate_signature"
    verify_authenticity: str = "/verify_authenticity"
    sign_up: str = "/manufacturer_registers"
    get_owner: str = "/get_owner/{address}"
    verify_signature: str = "/verify_signature"
    create_certificate: str = "/create_certificate"
    qr_code: str = "/qr_code"
    get_manufacturer: str = "/api/manufacturer"


def _ref(name: str) -> dict[str, str]:
    return {"$ref": f"#/components/schemas/{name}"}


def _object(properties: dict[str, Any], required: list[str]) -> dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required}


_STRING = {"type": "string"}
_STRING_LIST = {"type": "array", "items": {"type": "string"}}
_NULLABLE_STRING_LIST = {"type": "array", "items": {"type": ["string", "null"]}}


def _error(description: str) -> dict[str, Any]:
    return {
        "description": description,
        "content": {"application/json": {"schema": _ref("ErrorResponse")}},
    }


def _ok(description: str, schema: dict[str, Any]) -> dict[str, Any]:
    return {"description": description, "content": {"application/json": {"schema": schema}}}


def _query(name: str, description: str, required: bool) -> dict[str, Any]:
    return {
        "name": name,
        "in": "query",
        "description": description,
        "required": required,
        "schema": _STRING,
    }


def openapi_document() -> dict[str, Any]:
    """Return the OpenAPI description of the served endpoints."""
    schemas = {
        "ErrorResponse": _object({"error": _STRING}, ["error"]),
        "Manufacturer": _object(
            {
                "manufacturerAddress": _STRING,
                "manufacturerName": _STRING,
                "isRegistered": {"type": "boolean"},
                "registeredAt": _STRING,
            },
            ["manufacturerAddress", "manufacturerName", "isRegistered", "registeredAt"],
        ),
        "ManufacturerQuery": _object(
            {"address": {"type": ["string", "null"]}, "username": {"type": ["string", "null"]}},
            [],
        ),
        "IsExistsQuery": _object({"username": {"type": ["string", "null"]}}, []),
        "IsExistsResponse": _object({"exists": {"type": "boolean"}}, ["exists"]),
        "CertificateDTO": _object({"unique_id": _STRING}, ["unique_id"]),
        "Certificates": _object(
            {
                "unique_id": _STRING,
                "name": _STRING,
                "serial": _STRING,
                "date": {"type": "integer", "format": "int64"},
                "owner": _STRING,
                "metadata_hash": _STRING,
                "metadata": _NULLABLE_STRING_LIST,
                "signature": _STRING,
            },
            [
                "unique_id",
                "name",
                "serial",
                "date",
                "owner",
                "metadata_hash",
                "metadata",
                "signature",
            ],
        ),
        "CertificateResponse": _object(
            {
                "name": _STRING,
                "unique_id": _STRING,
                "serial": _STRING,
                "date": {"type": "integer", "format": "int64"},
                "owner": _STRING,
                "metadata": _STRING_LIST,
            },
            ["name", "unique_id", "serial", "date", "owner", "metadata"],
        ),
    }
    paths = {
        "/api/manufacturer": {
            "get": {
                "tags": ["Manufacturers"],
                "operationId": "get_manufacturer",
                "parameters": [
                    _query("address", "Manufacturer's blockchain address", False),
                    _query("username", "Manufacturer's username", False),
                ],
                "responses": {
                    "200": _ok("Manufacturer found", _ref("Manufacturer")),
                    "400": _error("Neither address nor username provided"),
                    "404": _error("Manufacturer not found"),
                    "500": _error("Internal server error"),
                },
            }
        },
        "/api/manufacturer/exists": {
            "get": {
                "tags": ["Manufacturers"],
                "operationId": "manufacturer_name_exists",
                "parameters": [_query("username", "Manufacturer's username", False)],
                "responses": {
                    "200": _ok("Check if manufacturer exists", _ref("IsExistsResponse")),
                    "400": _error("Username not provided"),
                    "500": _error("Internal server error"),
                },
            }
        },
        "/api/certificate/create": {
            "post": {
                "tags": ["Certificates"],
                "operationId": "save_certificate",
                "requestBody": {
                    "required": True,
                    "content": {"application/json": {"schema": _ref("Certificates")}},
                },
                "responses": {
                    "200": _ok(
                        "Certificate and signature saved successfully", _ref("CertificateDTO")
                    ),
                    "400": _error("Invalid input (e.g., empty unique_id or invalid owner)"),
                    "404": _error("Manufacturer not found"),
                    "500": _error("Internal server error"),
                },
            }
        },
        "/api/certificate/{item_id}": {
            "get": {
                "tags": ["Certificates"],
                "operationId": "get_certificate",
                "parameters": [_query("unique_id", "Unique ID of the certificate", True)],
                "responses": {
                    "200": _ok(
                        "Certificate and signature retrieved successfully", _ref("Certificates")
                    ),
                    "400": _error("Invalid input (e.g., empty unique_id)"),
                    "404": _error("Certificate not found"),
                    "500": _error("Internal server error"),
                },
            }
        },
    }
    return {
        "openapi": "3.1.0",
        "info": {
            "title": "ERI APIs",
            "description": "Signature Verifying Project on the Blockchain",
            "version": "0.1.0",
        },
        "tags": [{"name": "ERI", "description": "Signature Verifying APIs"}],
        "paths": paths,
        "components": {"schemas": schemas},
    }


def _store(request: Request) -> Store:
    return request.app.state.store


async def _read_json(request: Request) -> Any:
    content_type = request.headers.get("content-type", "").split(";")[0].strip().lower()
    if content_type != "application/json" and not (
        content_type.startswith("application/") and content_type.endswith("+json")
    ):
        raise ApiError(
            HTTPStatus.UNSUPPORTED_MEDIA_TYPE,
            "Expected request with `Content-Type: application/json`",
        )
    body = await request.body()
    try:
        return json.loads(body)
    except ValueError as exc:
        raise ApiError(
            HTTPStatus.BAD_REQUEST, f"Failed to parse the request body as JSON: {exc}"
        ) from exc


async def _handle_get_manufacturer(request: Request) -> JSONResponse:
    query = ManufacturerQuery.from_params(request.query_params)
    manufacturer = await run_in_threadpool(get_manufacturer, _store(request), query)
    return JSONResponse(manufacturer.to_json())


async def _handle_name_exists(request: Request) -> JSONResponse:
    username = request.query_params.get("username")
    exists = await run_in_threadpool(manufacturer_name_exists, _store(request), username)
    return JSONResponse({"exists": exists})


async def _handle_save_certificate(request: Request) -> JSONResponse:
    payload = CertificateRecord.from_json(await _read_json(request))
    result = await run_in_threadpool(save_certificate, _store(request), payload)
    return JSONResponse(result)


async def _handle_get_certificate(request: Request) -> JSONResponse:
    unique_id = request.query_params.get("unique_id")
    if unique_id is None:
        raise ApiError(
            HTTPStatus.BAD_REQUEST,
            "Failed to deserialize query string: missing field `unique_id`",
        )
    record = await run_in_threadpool(get_certificate, _store(request), unique_id)
    return JSONResponse(record.to_json())


async def _handle_openapi(request: Request) -> JSONResponse:
    return JSONResponse(openapi_document())


async def _api_error(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, ApiError)
    return JSONResponse(exc.to_json(), status_code=exc.status)


def build_app(store: Store, paths: RouterPath | None = None) -> Starlette:
    """Return the HTTP application serving the endpoints backed by ``store``."""
    paths = paths if paths is not None else RouterPath()
    routes = [
        Route(paths.get_manufacturer, _handle_get_manufacturer, methods=["GET"]),
        Route(paths.manufacturer_name_exists, _handle_name_exists, methods=["GET"]),
        Route(paths.save_certificate, _handle_save_certificate, methods=["GET"]),
        Route(paths.get_certificate, _handle_get_certificate, methods=["GET"]),
        Route(OPENAPI_PATH, _handle_openapi, methods=["GET"]),
    ]
    middleware = [
        Middleware(
            CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"]
        )
    ]
    app = Starlette(
        routes=routes,
        middleware=middleware,
        exception_handlers={ApiError: _api_error},
    )
    app.state.store = store
    return app