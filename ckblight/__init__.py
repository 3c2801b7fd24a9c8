"""Storage, cell and transaction indexing, and JSON-RPC queries for a light blockchain client."""

__version__ = "0.1.0"