[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "fincaskv"
version = "1.0.0"
description = "A Bitcask-style log-structured key-value storage engine with pluggable in-memory indexes and RESP protocol helpers"
requires-python = ">=3.10"
dependencies = []
keywords = ["bitcask", "key-value", "storage", "database", "bloom-filter", "skiplist", "btree", "resp"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database :: Database Engines/Servers",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["fincaskv"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
