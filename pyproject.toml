[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ckblight"
version = "0.1.0"
description = "Block-filter storage, cell and transaction indexing, and JSON-RPC queries for a light blockchain client"
requires-python = ">=3.11"
dependencies = [
    "tomli-w",
]
keywords = [
    "blockchain",
    "light-client",
    "block-filter",
    "indexer",
    "json-rpc",
    "utxo",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["ckblight"]

[tool.hatch.build.targets.sdist]
include = [
    "ckblight",
    "tests",
]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
warn_redundant_casts = true
