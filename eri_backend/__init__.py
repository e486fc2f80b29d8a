"""JSON API, event indexer and EIP-712 hashing for product authenticity certificates."""

__version__ = "0.1.0"