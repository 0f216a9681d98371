[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "versionstore"
version = "0.1.0"
description = "A multi-version key-value storage server that applies a replicated commit log to per-graph column families."
requires-python = ">=3.10"
dependencies = []
keywords = ["storage", "mvcc", "key-value", "versioned", "commit-log", "database"]
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
    "Framework :: AsyncIO",
    "Topic :: Database :: Database Engines/Servers",
]

[project.optional-dependencies]
test = ["pytest", "pytest-asyncio"]

[project.scripts]
versionstore = "versionstore.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["versionstore"]

[tool.pytest.ini_options]
addopts = "-ra"
