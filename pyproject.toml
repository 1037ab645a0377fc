[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "pairgate"
version = "0.1.0"
description = "HTTP API gateway and coordinator building blocks for a replicated key-value store"
requires-python = ">=3.10"
keywords = [
    "key-value",
    "gateway",
    "grpc",
    "consistent-hashing",
    "quorum",
    "vector-clock",
    "wsgi",
]
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
    "Topic :: Database",
    "Topic :: Internet :: WWW/HTTP :: WSGI :: Application",
    "Topic :: System :: Distributed Computing",
]
dependencies = [
    "grpcio",
    "pyyaml",
    "werkzeug",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["pairgate"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "I", "B", "UP"]
