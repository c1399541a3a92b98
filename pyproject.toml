[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "nodeproblem"
version = "0.1.0"
description = "Node problem detection building blocks: custom plugin result handling, node condition syncing and problem exporters for Kubernetes nodes."
requires-python = ">=3.10"
dependencies = [
    "requests",
]
keywords = [
    "kubernetes",
    "node",
    "monitoring",
    "health-check",
    "node-conditions",
    "problem-detection",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
    "Topic :: System :: Systems Administration",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["nodeproblem"]

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
