[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "komari-agent"
version = "0.0.1"
description = "Monitoring agent that reports host metrics to a Komari server over a websocket"
requires-python = ">=3.10"
keywords = ["monitoring", "agent", "metrics", "websocket", "server-monitoring"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Environment :: No Input/Output (Daemon)",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Operating System :: POSIX :: Linux",
    "Operating System :: MacOS",
    "Operating System :: POSIX :: BSD :: FreeBSD",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
]
dependencies = [
    "psutil",
    "requests",
    "websocket-client",
    "semver",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[project.scripts]
komari-agent = "komari_agent.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["komari_agent"]

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
ignore_missing_imports = true
