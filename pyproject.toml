[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ipwhereabouts"
version = "0.1.0"
description = "IP address management for container networks: range arithmetic, address allocation, pool records and IPAM configuration loading"
requires-python = ">=3.10"
dependencies = []
keywords = ["ipam", "ip-address", "cni", "networking", "subnet", "allocation"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["ipwhereabouts"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
