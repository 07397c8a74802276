[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "arkdiag"
version = "0.1.0"
description = "Event-driven causal graph, scene analysis and cluster hub for diagnosing AI training clusters"
requires-python = ">=3.10"
keywords = [
    "monitoring",
    "diagnosis",
    "root-cause",
    "gpu",
    "npu",
    "rdma",
    "kubernetes",
    "prometheus",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: AsyncIO",
    "Topic :: System :: Monitoring",
    "Topic :: System :: Distributed Computing",
]
dependencies = [
    "httpx>=0.24",
    "aiohttp>=3.8",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
    "pytest-asyncio>=0.21",
]

[project.scripts]
ark-hub = "arkdiag.hub.server:main"

[tool.hatch.build.targets.wheel]
packages = ["arkdiag"]

[tool.hatch.build.targets.sdist]
include = ["arkdiag", "tests", "README.md", "pyproject.toml"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
target-version = "py310"
line-length = 100

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
ignore_missing_imports = true
