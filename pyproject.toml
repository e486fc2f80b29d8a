[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "eri-backend"
version = "0.1.0"
description = "JSON API and event indexer for manufacturers and EIP-712 hashed product authenticity certificates"
requires-python = ">=3.10"
keywords = ["eip712", "ethereum", "certificates", "authenticity", "api", "indexer", "abi"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Web Environment",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
    "Topic :: Security :: Cryptography",
]
dependencies = [
    "pycryptodome",
    "sqlalchemy>=2.0",
    "starlette",
    "uvicorn",
    "httpx",
    "python-dotenv",
]

[project.optional-dependencies]
test = [
    "pytest",
    "respx",
    "httpx",
]

[project.scripts]
eri-backend = "eri_backend.server:main"

[tool.hatch.build.targets.wheel]
packages = ["eri_backend"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true
