[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "asynq"
version = "0.1.0"
description = "Building blocks for a distributed task queue: configuration, errors, wire messages and asyncio background components over a pluggable broker"
requires-python = ">=3.10"
dependencies = []
keywords = ["task queue", "background jobs", "worker", "asyncio", "distributed", "protobuf"]
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
    "Topic :: System :: Distributed Computing",
]

[project.optional-dependencies]
test = ["pytest", "pytest-asyncio"]

[tool.hatch.build.targets.wheel]
packages = ["asynq"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
