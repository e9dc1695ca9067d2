[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "pqkit"
version = "0.1.0"
description = "PostgreSQL client building blocks: SQL quoting, type OIDs, column metadata, SCRAM authentication, TLS setup and LISTEN/NOTIFY listeners."
requires-python = ">=3.10"
dependencies = []
keywords = [
    "postgresql",
    "postgres",
    "scram",
    "listen",
    "notify",
    "tls",
    "sql",
    "quoting",
]
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
    "Topic :: Database :: Front-Ends",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["pqkit"]

[tool.hatch.build.targets.sdist]
include = ["pqkit", "tests", "README.md"]

[tool.pytest.ini_options]
addopts = "-ra"
