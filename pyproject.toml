[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "warehouse-wms"
version = "0.1.0"
description = "Offline-first warehouse management core: replicated documents, a sync outbox, timesheets and client-side state helpers"
requires-python = ">=3.10"
dependencies = []
keywords = ["warehouse", "wms", "crdt", "sync", "timesheets", "offline-first", "sqlite"]
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
    "Topic :: Office/Business",
    "Topic :: Database",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["warehouse_wms"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
