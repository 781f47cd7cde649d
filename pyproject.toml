[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "lvldb"
version = "0.1.0"
description = "Building blocks of a log-structured key/value store: write batches, key comparers and a namespaced LRU cache"
requires-python = ">=3.10"
dependencies = []
keywords = ["leveldb", "key-value", "write-batch", "lru", "cache", "storage"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database :: Database Engines/Servers",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest", "hypothesis"]

[tool.hatch.build.targets.wheel]
packages = ["lvldb"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
