[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "chdriver"
version = "0.1.0"
description = "Client driver for ClickHouse over the native TCP protocol: connection pool, parameter binding, batches and a DB-API layer"
requires-python = ">=3.10"
dependencies = []
keywords = ["clickhouse", "database", "driver", "dbapi", "sql", "olap"]
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
    "Topic :: Database",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["chdriver"]

[tool.pytest.ini_options]
addopts = "-ra"
