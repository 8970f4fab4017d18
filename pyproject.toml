[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "featuremanifest"
version = "0.1.17"
description = "Living feature documentation tools for AI-assisted development: an HTTP API client and a stdio MCP tool server"
requires-python = ">=3.10"
dependencies = [
    "requests",
]
keywords = [
    "mcp",
    "model-context-protocol",
    "features",
    "documentation",
    "ai-agents",
    "orchestration",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Documentation",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[project.scripts]
mfst = "featuremanifest.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["featuremanifest"]

[tool.hatch.build.targets.sdist]
include = [
    "featuremanifest",
    "tests",
]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
