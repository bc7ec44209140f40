[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "distill"
version = "0.1.0"
description = "SQLite memory store with semantic deduplication and decay, embedding provider clients, vector math and code dependency graphs"
requires-python = ">=3.10"
dependencies = [
    "requests",
]
keywords = ["embeddings", "memory", "deduplication", "sqlite", "dependency-graph", "llm", "context"]
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
    "Topic :: Software Development :: Libraries :: Python Modules",
    "Topic :: Database",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[tool.hatch.build.targets.wheel]
packages = ["distill"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
