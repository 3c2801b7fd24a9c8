import tomllib
from pathlib import Path

import pytest

from ckblight.config import RunEnv, StoreConfig

SAMPLE = """
chain = "testnet"

[store]
path = "data/store"

[network]
path = "data/network"
listen_addresses = ["/ip4/0.0.0.0/tcp/8110"]
max_peers = 125
"""


def test_parse_sample():
    env = RunEnv.from_toml(SAMPLE)
    assert env.chain == "testnet"
    assert env.store.path == Path("data/store")
    assert env.network["path"] == "data/network"
    assert env.network["max_peers"] == 125


def test_round_trip():
    env = RunEnv.from_toml(SAMPLE)
    again = RunEnv.from_toml(env.to_toml())
    assert again == env


def test_str_is_toml():
    env = RunEnv.from_toml(SAMPLE)
    assert tomllib.loads(str(env))["store"]["path"] == "data/store"


def test_store_config_coerces_path():
    assert StoreConfig("some/dir").path == Path("some/dir")


def test_unknown_top_level_field_rejected():
    with pytest.raises(ValueError, match="unknown field `extra`"):
        RunEnv.from_toml(SAMPLE + '\nextra = 1\n'.replace("\nextra", "\n[other]\nextra"))


def test_unknown_store_field_rejected():
    text = 'chain = "mainnet"\n[store]\npath = "p"\nsize = 3\n[network]\n'
    with pytest.raises(ValueError, match="unknown field `size`"):
        RunEnv.from_toml(text)


def test_missing_field_rejected():
    text = 'chain = "mainnet"\n[network]\n'
    with pytest.raises(ValueError, match="missing field `store`"):
        RunEnv.from_toml(text)


def test_wrong_type_rejected():
    text = 'chain = 5\n[store]\npath = "p"\n[network]\n'
    with pytest.raises(ValueError, match="chain"):
        RunEnv.from_toml(text)


def test_invalid_toml_rejected():
    with pytest.raises(ValueError):
        RunEnv.from_toml("chain = ")