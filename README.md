# eri-backend

A JSON API and blockchain event indexer for product authenticity
certificates. It follows an authenticity contract's events, records
registered manufacturers and created contracts in a database, stores
signed certificates, and serves them over HTTP. Certificates can be hashed
with EIP-712 so that a wallet signature can be checked against them.

## Installing

```
pip install .
```

For the tests:

```
pip install ".[test]"
pytest
```

## Configuration

`eri-backend` reads these settings from the environment, after loading a
`.env` file (the one given with `--env-file`, or the nearest one found from
the working directory):

- `DATABASE_URL` – SQLAlchemy URL of the database
- `BASE_URL` – JSON-RPC endpoint of the chain
- `PRIVATE_KEY` – must be set; it is read but not used for anything
- `AUTHENTICITY_ADDRESS` – address of the authenticity contract whose events are indexed
- `OWNERSHIP_ADDRESS` – must be a valid address; it is not otherwise used

A missing setting or an invalid address makes the command exit with status 1.

## Running

```
eri-backend
eri-backend --env-file path/to/settings.env
```

On start the command:

1. connects to the database, trying up to 3 times, 2 seconds apart;
2. creates any missing tables (`Store.create_schema`);
3. asks the chain for its id, exiting with status 1 if it cannot;
4. starts a background thread that indexes authenticity events: it reads
   `ManufacturerRegistered` and `AuthenticityCreated` logs from the last 20
   blocks in chunks of 4 blocks, then polls for new logs every second. A
   manufacturer or contract already in the database is skipped. If the
   listener fails it is restarted up to 5 times, 5 seconds apart;
5. serves the API on `127.0.0.1:8080` with uvicorn until interrupted.

## Endpoints

- `GET /api/manufacturer?address=…&username=…` – the first manufacturer whose
  address or name matches, as `manufacturerAddress`, `manufacturerName`,
  `isRegistered`, `registeredAt`. Giving neither parameter is answered with 500.
- `GET /api/manufacturer/exists?username=…` – `{"exists": true|false}`;
  without `username` the answer is 500.
- `GET /api/certificate/create` – with a JSON body (`Content-Type:
  application/json`) holding `unique_id`, `name`, `serial`, `date`, `owner`,
  `metadata_hash`, `metadata` and `signature`. The owner must be a registered
  manufacturer address. Returns `{"unique_id": …}`.
- `GET /api/certificate/{item_id}?unique_id=…` – the saved certificate with
  that `unique_id` (the path segment is not used).
- `GET /api-docs/openapi.json` – an OpenAPI 3.1 description of these endpoints.

All routes allow any origin. Errors come back as `{"error": "…"}`: 400 for
an empty or missing id or an owner mismatch, 404 when nothing is found, 415
for a body that is not JSON, 422 for a body with missing or mistyped fields,
500 for database failures.

## Library use

- `eri_backend.abi` – `keccak256`, `encode_abi` / `decode_abi` for the
  standard contract ABI, `parse_address`, `to_checksum_address`,
  `event_topic`, `function_selector`.
- `eri_backend.eip712` – `Certificate`, `CertificateData`,
  `SignedCertificate` (with `validate`), `Eip712Domain`, `meta_hash`,
  `type_hash`, `validate_address`, `validate_signature`.
- `eri_backend.store` – `Store`, the table definitions and connections.
- `eri_backend.certificates` – `save_certificate`, `get_certificate`.
- `eri_backend.manufacturers` – `get_manufacturer`,
  `manufacturer_name_exists`, and `fetch_certificate`, which builds a
  certificate from a recorded item owned by its manufacturer's address.
- `eri_backend.events` – `RpcClient`, `decode_event`, `backfill`,
  `listen_for_authenticity_events`.
- `eri_backend.routes` – `build_app`, `openapi_document`, `RouterPath`.

Hashing a certificate:

```python
from eri_backend.eip712 import Certificate, CertificateData, Eip712Domain

data = CertificateData.from_json({
    "name": "Widget",
    "unique_id": "item123",
    "serial": "SN000000",
    "date": 1693526400,
    "owner": "0x1234567890abcdef1234567890abcdef12345678",
    "metadata": ["color: blue", "size: medium"],
})
cert = Certificate.from_data(data)
domain = Eip712Domain.from_env({
    "CONTRACT_ADDRESS": "0x0000000000000000000000000000000000000001",
    "CHAIN_ID": "1",
    "SIGNING_DOMAIN": "CertificateAuth",
    "SIGNATURE_VERSION": "1",
})
digest = cert.encode_eip712(domain)
```

`encode_eip712` and `struct_hash` take the certificate type string as an
optional second argument; the default is
`Certificate(string name,string uniqueId,string serial,uint256 date,address owner,bytes32 metadataHash)`.

## What it does not do

- It does not sign, send transactions or verify signatures on chain; no
  wallet is used.
- It does not index the ownership contract; only authenticity events are
  followed.
- `RouterPath` lists paths for signing, verification, user registration,
  items, ownership transfers, QR codes and syncing, but none of those are
  served; only the endpoints above are.
- There are no schema migrations; tables are created if missing and never altered.