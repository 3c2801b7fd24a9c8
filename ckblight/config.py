"""Run configuration loaded from TOML."""

from __future__ import annotations

import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import tomli_w


def _check_fields(table: Mapping[str, Any], required: tuple[str, ...], where: str) -> None:
    for key in table:
        if key not in required:
            raise ValueError(f"unknown field `{key}` in {where}, expected one of {', '.join(required)}")
    for key in required:
        if key not in table:
            raise ValueError(f"missing field `{key}` in {where}")


@dataclass
class StoreConfig:
    """Where the local database lives."""

    path: Path

    def __post_init__(self) -> None:
        self.path = Path(self.path)


@dataclass
class RunEnv:
    """Top-level run configuration: chain spec, store and network settings."""

    chain: str
    store: StoreConfig
    network: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_toml(cls, text: str) -> RunEnv:
        """Parse a configuration document, rejecting unknown fields."""
        data = tomllib.loads(text)
        _check_fields(data, ("chain", "store", "network"), "run environment")
        chain = data["chain"]
        if not isinstance(chain, str):
            raise ValueError("field `chain` must be a string")
        store = data["store"]
        if not isinstance(store, dict):
            raise ValueError("field `store` must be a table")
        _check_fields(store, ("path",), "store")
        if not isinstance(store["path"], str):
            raise ValueError("field `store.path` must be a string")
        network = data["network"]
        if not isinstance(network, dict):
            raise ValueError("field `network` must be a table")
        return cls(chain=chain, store=StoreConfig(Path(store["path"])), network=dict(network))

    def to_toml(self) -> str:
        """Render the configuration as a TOML document."""
        document = {
            "chain": self.chain,
            "store": {"path": str(self.store.path)},
            "network": self.network,
        }
        return tomli_w.dumps(document)

    def __str__(self) -> str:
        return self.to_toml()